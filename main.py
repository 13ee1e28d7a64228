"""
SchoolGate Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite schema, restores every portal's session and runs one
command.  Every subsystem is wired here with no module-level globals.

Usage::

    python main.py bootstrap-admin
    python main.py login admin ADMIN001
    python main.py issue teacher --surname Mensah --other-names "Ama Serwaa"
    python main.py deactivate TEA2025001
    python main.py status
    python main.py logout admin
"""

from __future__ import annotations

import argparse
import atexit
import getpass
import sys
from pathlib import Path
from typing import NamedTuple, Optional, Sequence

from portal.auth import create_session_managers
from portal.config import AppConfig, get_config
from portal.database import DatabaseManager
from portal.errors import PortalError
from portal.logger import StructuredLogger, get_logger
from portal.models.enums import PortalRole
from portal.models.principal import ProfileSeed
from portal.schema import initialize_schema
from portal.services import ServiceContainer, create_services
from portal.services.session_cache import SessionCacheService
from portal.shell import PortalShell, PortalView, ShellResponse


class Application(NamedTuple):
    db: DatabaseManager
    services: ServiceContainer
    shell: PortalShell


def build_application(config: AppConfig) -> Application:
    """Wire the database, services, session managers and shell."""
    # ------------------------------------------------------------------
    # 1. Database Manager (Supabase optional, SQLite always)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(config.SQLITE_PATH),
        logger=StructuredLogger(name="database"),
    )
    # DatabaseManager.close() is safe to call multiple times.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 2. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 3. Persisted sessions + service container
    # ------------------------------------------------------------------
    session_cache = SessionCacheService(
        db=db,
        logger=StructuredLogger(name="session_cache"),
        salt_path=Path(config.SESSION_SALT_PATH) if config.SESSION_SALT_PATH else None,
        pbkdf2_iterations=config.SESSION_KDF_ITERATIONS,
    )
    services = create_services(db=db, config=config, session_cache=session_cache)

    # ------------------------------------------------------------------
    # 4. One Session Manager per portal, routed by the shell
    # ------------------------------------------------------------------
    managers = create_session_managers(services, config)
    shell = PortalShell(
        managers=managers,
        accounts=services["account_service"],
        logger=get_logger("shell"),
    )
    return Application(db=db, services=services, shell=shell)


# ---------------------------------------------------------------------------
# Command-line interface
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schoolgate",
        description="Credential issuance and portal sessions for the school portal",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    roles = [role.value for role in PortalRole]

    sub.add_parser("bootstrap-admin", help="create the first administrator account")

    issue = sub.add_parser("issue", help="register an account (admin session required)")
    issue.add_argument("role", choices=roles)
    issue.add_argument("--surname")
    issue.add_argument("--other-names")
    issue.add_argument("--display-name")
    issue.add_argument("--department")
    issue.add_argument("--class-name")
    issue.add_argument("--subject", action="append", default=[], dest="subjects")
    issue.add_argument("--class", action="append", default=[], dest="classes")
    issue.add_argument("--year", type=int)

    for name in ("deactivate", "reactivate"):
        cmd = sub.add_parser(name, help=f"{name} an account (admin session required)")
        cmd.add_argument("external_id")

    login = sub.add_parser("login", help="sign in to a portal")
    login.add_argument("portal", choices=roles)
    login.add_argument("external_id")
    login.add_argument("--password", help="prompted for when omitted")

    rotate = sub.add_parser("rotate", help="replace a temporary password")
    rotate.add_argument("portal", choices=roles)

    logout = sub.add_parser("logout", help="sign out of a portal")
    logout.add_argument("portal", choices=roles)

    sub.add_parser("status", help="show each portal's session")
    return parser


def _print_response(response: ShellResponse) -> None:
    if response.notice is not None:
        print(f"[{response.notice.level}] {response.notice.message}")


def _rotate_interactively(shell: PortalShell, role: PortalRole) -> int:
    new_password = getpass.getpass("New password: ")
    confirm = getpass.getpass("Confirm new password: ")
    response = shell.submit_rotation(role, new_password, confirm)
    _print_response(response)
    return 0 if response.view == PortalView.HOME else 1


def run_command(app: Application, args: argparse.Namespace) -> int:
    """Execute one parsed command against a wired application."""
    shell = app.shell
    shell.start()

    if args.command == "bootstrap-admin":
        issued = app.services["account_service"].bootstrap_admin()
        if issued is None:
            print("Administrator already provisioned.")
        else:
            print(f"Administrator ID: {issued.external_id}")
            print(f"Temporary password: {issued.temporary_password}")
        return 0

    if args.command == "issue":
        seed = ProfileSeed(
            surname=args.surname,
            other_names=args.other_names,
            display_name=args.display_name,
            department=args.department,
            class_name=args.class_name,
            subjects=args.subjects,
            classes=args.classes,
            year=args.year,
        )
        issued = shell.issue_credentials(PortalRole(args.role), seed)
        print(f"ID: {issued.external_id}")
        print(f"Temporary password: {issued.temporary_password}")
        return 0

    if args.command in ("deactivate", "reactivate"):
        action = shell.deactivate if args.command == "deactivate" else shell.reactivate
        principal = action(args.external_id)
        print(f"{principal.external_id}: {'active' if principal.is_active else 'deactivated'}")
        return 0

    if args.command == "login":
        role = PortalRole(args.portal)
        password = args.password if args.password is not None else getpass.getpass("Password: ")
        response = shell.submit_login(role, args.external_id, password)
        _print_response(response)
        if response.view == PortalView.PASSWORD_ROTATION:
            return _rotate_interactively(shell, role)
        return 0 if response.view == PortalView.HOME else 1

    if args.command == "rotate":
        return _rotate_interactively(shell, PortalRole(args.portal))

    if args.command == "logout":
        _print_response(shell.sign_out(PortalRole(args.portal)))
        return 0

    for role in PortalRole:
        state = shell.manager(role).session_state()
        who = state.principal.external_id if state.principal else "-"
        print(f"{role.value:<8} {shell.view_for(role):<18} {who}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point: wire dependencies and run one command."""
    args = _build_parser().parse_args(argv)
    logger: StructuredLogger = get_logger("main")
    app = build_application(get_config())
    try:
        return run_command(app, args)
    except PortalError as exc:
        logger.error("Command %s failed: %s", args.command, exc.message)
        print(f"error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        for role in PortalRole:
            app.shell.manager(role).close()
        app.db.close()


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
