"""
JSON log lines
"""
import io
import json
import logging

from portal.logger import JSONFormatter, StructuredLogger


def emit(tmp_path, name, *args, **kwargs):
    stream = io.StringIO()
    log = StructuredLogger(
        name=name, stream=stream, log_file=str(tmp_path / f"{name}.log"),
    )
    log.info(*args, **kwargs)
    return json.loads(stream.getvalue().splitlines()[-1])


class TestJSONFormatter:
    """Shape of each emitted line"""

    def test_lifecycle_context_is_top_level(self, tmp_path):
        line = emit(
            tmp_path,
            "log-lifted",
            "Signed out %s.",
            "TEA2025001",
            extra={"event": "SIGN_OUT", "portal": "teacher"},
        )

        assert line["msg"] == "Signed out TEA2025001."
        assert line["event"] == "SIGN_OUT"
        assert line["portal"] == "teacher"
        assert line["level"] == "INFO"
        assert line["logger"] == "log-lifted"
        assert "context" not in line

    def test_other_extras_are_nested(self, tmp_path):
        line = emit(
            tmp_path, "log-nested", "Issued.", extra={"role": "student", "attempt": 2},
        )

        assert line["role"] == "student"
        assert line["context"] == {"attempt": "2"}

    def test_plain_record_has_no_context(self):
        record = logging.makeLogRecord({"name": "x", "levelname": "WARNING", "msg": "hi"})
        line = json.loads(JSONFormatter().format(record))

        assert set(line) == {"ts", "level", "logger", "msg"}

    def test_file_receives_the_same_line(self, tmp_path):
        emit(tmp_path, "log-file", "Restored.", extra={"event": "RESTORE"})

        written = (tmp_path / "log-file.log").read_text(encoding="utf-8").splitlines()
        assert json.loads(written[-1])["event"] == "RESTORE"
