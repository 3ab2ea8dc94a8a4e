import json
import logging
import sys
from datetime import datetime, timezone

from .config import settings
from .request_context import get_request_id, get_session_id

# Third-party loggers that are chatty at INFO (HTTP clients used by the
# text-generation and sandbox collaborators, the ORM engine, access logs).
_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "anthropic", "e2b")


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the current request and session ids."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        session_id = getattr(record, "session_id", None) or get_session_id()
        if request_id:
            payload["request_id"] = request_id
        if session_id:
            payload["session_id"] = session_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


class TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        session_id = get_session_id()
        return f"{line} [session={session_id}]" if session_id else line


def setup_logging(level: str | None = None, fmt: str | None = None) -> logging.Logger:
    """Configure root logging; ``LOG_FORMAT=text`` gives readable local output."""
    log_level = logging.getLevelName((level or settings.LOG_LEVEL or "INFO").upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    use_text = (fmt or settings.LOG_FORMAT or "json").strip().lower() == "text"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(TextFormatter() if use_text else JsonFormatter())
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger("assessment_engine")
