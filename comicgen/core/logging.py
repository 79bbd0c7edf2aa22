"""JSON log output carrying the request, session, stage and panel of the current context."""

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from comicgen.core.request_context import (
    get_panel_id,
    get_request_id,
    get_session_id,
    get_stage,
)

_CONTEXT_FIELDS = ("request_id", "session_id", "stage", "panel_id")
# Attributes every LogRecord has; anything else arrived through ``extra=``.
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "taskName"}

_MAX_LOG_BYTES = 10 * 1024 * 1024
_LOG_BACKUPS = 5


class RequestIdFilter(logging.Filter):
    """Copy the context variables onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "unknown"
        record.session_id = get_session_id() or ""
        record.stage = get_stage() or ""
        record.panel_id = get_panel_id() or ""
        return True


class StructuredJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, "")
            if value or field == "request_id":
                payload[field] = value or "unknown"
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
            and key not in _CONTEXT_FIELDS
            and not key.startswith("_")
            and value is not None
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info
        try:
            return json.dumps(payload, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            return super().format(record)


def _attach(root: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)


def configure_logging(level_name: str, log_file: str | None = None) -> None:
    """Send JSON logs to stderr and, when ``log_file`` is given, to a rotating file."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = StructuredJsonFormatter(datefmt="%Y-%m-%dT%H:%M:%S%z")
    _attach(root, logging.StreamHandler(), formatter)
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        _attach(
            root,
            RotatingFileHandler(path, maxBytes=_MAX_LOG_BYTES, backupCount=_LOG_BACKUPS, encoding="utf-8"),
            formatter,
        )

    # request_complete logs replace uvicorn's access log.
    for noisy in ("uvicorn.access", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
