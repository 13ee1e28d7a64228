"""
Structured JSON Logging.

Every portal component logs through an injected ``StructuredLogger``.  One
JSON object is written per line, to stdout and to a size-rotated file.

Services tag lifecycle records with context::

    logger.info("Signed out %s.", external_id,
                extra={"event": "SIGN_OUT", "portal": "teacher"})

``event``, ``portal`` and ``role`` become top-level keys so the log can be
filtered by them directly; any other caller-supplied field is nested under
``"context"``.  Passwords are never passed to the logger.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

# Context keys promoted to the top level of each JSON line.
LIFTED_FIELDS: tuple[str, ...] = ("event", "portal", "role")


class JSONFormatter(logging.Formatter):
    """Renders a ``LogRecord`` as one JSON line.

    Keys: ``ts``, ``level``, ``logger``, ``msg``, then any of
    ``event``/``portal``/``role`` that were supplied, ``context`` for the
    remaining extras, and ``exception`` when one was attached.
    """

    _RESERVED: frozenset[str] = frozenset(
        logging.makeLogRecord({}).__dict__.keys()
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        context: dict[str, str] = {}
        for key, value in record.__dict__.items():
            if key in self._RESERVED:
                continue
            if key in LIFTED_FIELDS:
                entry[key] = str(value)
            else:
                context[key] = str(value)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


class StructuredLogger:
    """Thin injectable wrapper around a named ``logging.Logger``.

    Handlers are attached once per logger name, so constructing several
    ``StructuredLogger`` objects with the same name is harmless.  File size
    and backup count default to ``LOG_MAX_BYTES`` / ``LOG_BACKUP_COUNT``.
    """

    DEFAULT_LOG_FILE: str = "schoolgate.log"

    def __init__(
        self,
        name: str = "schoolgate",
        level: int = logging.INFO,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)
        if not self._logger.handlers:
            self._attach_handlers(level, stream, log_file, max_bytes, backup_count)

    def _attach_handlers(
        self,
        level: int,
        stream: Optional[TextIO],
        log_file: Optional[str],
        max_bytes: Optional[int],
        backup_count: Optional[int],
    ) -> None:
        # Imported here: portal.config logs through the stdlib at import time.
        from portal.config import get_config

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setFormatter(formatter)
        console.setLevel(level)
        self._logger.addHandler(console)

        cfg = get_config()
        path = Path(log_file or self.DEFAULT_LOG_FILE)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            rotating = RotatingFileHandler(
                filename=str(path),
                maxBytes=cfg.LOG_MAX_BYTES if max_bytes is None else max_bytes,
                backupCount=cfg.LOG_BACKUP_COUNT if backup_count is None else backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning("Log file %s unavailable (%s); console only.", path, exc)
            return
        rotating.setFormatter(formatter)
        rotating.setLevel(level)
        self._logger.addHandler(rotating)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)


def get_logger(name: str = "schoolgate") -> StructuredLogger:
    """Logger for *name* with the default level and handlers."""
    return StructuredLogger(name=name)
