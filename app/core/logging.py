"""Line-oriented key=value logging for the Saga service.

Every module grabs its logger through get_logger(__name__). Turn-scoped
identifiers (project, stream, thread, tool call) ride along as extra fields
so a single agent turn can be grepped out of the combined output.
"""

import logging
import sys
from typing import Any

# Fields promoted to the front of each line, in this order, when present
CONTEXT_FIELDS = ("project_id", "stream_id", "thread_id", "tool_call_id")

_ENV_LEVELS = {
    "dev": logging.DEBUG,
    "test": logging.WARNING,
}


def _render(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text) or '"' in text:
        return '"' + text.replace('"', '\\"') + '"'
    return text


class SagaLogFormatter(logging.Formatter):
    """Render a record as `ts level logger key=value ... msg="..."`."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
        }
        context: dict[str, Any] = dict(getattr(record, "saga_context", {}) or {})
        for key in CONTEXT_FIELDS:
            if key in context:
                fields[key] = context.pop(key)
        fields.update(context)
        fields["msg"] = record.getMessage()

        line = " ".join(f"{key}={_render(value)}" for key, value in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _level_for_environment() -> int:
    try:
        from app.core.config import get_settings

        return _ENV_LEVELS.get(get_settings().SAGA_ENV, logging.INFO)
    except Exception:
        # Settings can fail to load before the environment is populated
        return logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Return the named logger, attaching the stdout handler on first use."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SagaLogFormatter())
    logger.addHandler(handler)
    logger.setLevel(_level_for_environment())
    logger.propagate = False
    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """Log `msg` with keyword arguments rendered as extra key=value fields.

    Keys named in CONTEXT_FIELDS are printed first; None values are dropped.
    """
    context = {key: value for key, value in kwargs.items() if value is not None}
    logger.log(level, msg, extra={"saga_context": context})
