"""
Command-line entry point, one process per command
"""
import pytest

from main import _build_parser, build_application, run_command
from portal.errors import AuthenticationRequiredError
from portal.models.enums import PortalRole


@pytest.fixture
def cli_config(config, tmp_path):
    return config.model_copy(
        update={
            "SESSION_SALT_PATH": str(tmp_path / "cli_salt"),
            "SESSION_KDF_ITERATIONS": 1_000,
        }
    )


@pytest.fixture
def run(cli_config):
    """Run one command in a freshly wired application."""

    def _run(*argv):
        app = build_application(cli_config)
        try:
            return run_command(app, _build_parser().parse_args(list(argv)))
        finally:
            for role in PortalRole:
                app.shell.manager(role).close()
            app.db.close()

    return _run


def printed_value(output, label):
    for line in output.splitlines():
        if line.startswith(label):
            return line.split(":", 1)[1].strip()
    raise AssertionError(f"{label!r} not printed")


class TestCommands:
    """Admin bootstrap through to a teacher's first login"""

    def test_full_flow(self, run, capsys, monkeypatch):
        assert run("bootstrap-admin") == 0
        temporary = printed_value(capsys.readouterr().out, "Temporary password")

        assert run("bootstrap-admin") == 0
        assert "already provisioned" in capsys.readouterr().out

        monkeypatch.setattr("getpass.getpass", lambda prompt="": "adminpass")
        assert run("login", "admin", "ADMIN001", "--password", temporary) == 0
        assert "Password updated" in capsys.readouterr().out

        assert run("issue", "teacher", "--surname", "Mensah", "--other-names", "Ama") == 0
        teacher_id = printed_value(capsys.readouterr().out, "ID")
        assert teacher_id.startswith("TEA")

        assert run("status") == 0
        status = capsys.readouterr().out
        assert "ADMIN001" in status
        assert "HOME" in status

        assert run("deactivate", teacher_id) == 0
        assert "deactivated" in capsys.readouterr().out

        assert run("logout", "admin") == 0
        assert "Successfully signed out" in capsys.readouterr().out

    def test_issue_without_admin_session(self, run):
        with pytest.raises(AuthenticationRequiredError):
            run("issue", "student", "--surname", "Owusu", "--other-names", "Kofi")

    def test_refused_login_exits_nonzero(self, run, capsys):
        assert run("login", "student", "STU2025001", "--password", "whatever") == 1
        assert "Invalid Student ID or password" in capsys.readouterr().out
