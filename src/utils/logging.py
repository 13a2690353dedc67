"""Process-wide logging setup and the structured logger factory.

Console output is human readable with ``extra`` fields appended as
``key=value`` pairs; the rotating file under ``log/`` holds one JSON object
per record so API and worker logs can be grepped and parsed alike.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_LOG_ROOT = Path(os.getenv("MEDIA_VAULT_LOG_DIR", str(_PROJECT_ROOT / "log")))
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_RESERVED = frozenset(logging.makeLogRecord({}).__dict__) | {"stack_info", "asctime", "message"}


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key not in _RESERVED}


def _json_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


class _JsonLinesFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_record_extras(record),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=_json_value)


class _KeyValueFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = _record_extras(record)
        if not extras:
            return base
        return base + " | " + " ".join(f"{key}={extras[key]!r}" for key in sorted(extras))


def _configure_root_logger() -> None:
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(os.getenv("MEDIA_VAULT_LOG_LEVEL", "INFO").upper())

    console = logging.StreamHandler()
    console.setFormatter(_KeyValueFormatter(_LOG_FORMAT))
    root.addHandler(console)

    try:
        _LOG_ROOT.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            _LOG_ROOT / "media_vault.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError:
        # Read-only deployments still get console output.
        return
    file_handler.setFormatter(_JsonLinesFormatter(_LOG_FORMAT))
    root.addHandler(file_handler)


class _BoundLogger(logging.LoggerAdapter):
    """Adapter whose bound fields are merged with, not replaced by, call-site ``extra``."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str, extra: Dict[str, Any] | None = None) -> logging.LoggerAdapter:
    """Return a logger adapter that attaches ``extra`` to every record.

    Messages are event names such as ``asset_upload_created``; details go in
    ``extra``. Avoid keys reserved by :class:`logging.LogRecord` (``name``,
    ``filename``, ``module``...), which the logging module rejects.
    """

    _configure_root_logger()
    return _BoundLogger(logging.getLogger(name), extra or {})


__all__ = ["get_logger"]
