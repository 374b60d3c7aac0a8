"""Logging setup for the progression service.

Production writes one JSON object per line; development writes colored
lines for a terminal. Engine code logs through plain ``logging.getLogger``
and attaches user, achievement, collectible and queue-entry ids via
``extra``; both formats carry those ids.
"""
import logging
import sys
import json
from datetime import datetime
from typing import Any, Dict, Optional
from app.config import settings

EXTRA_FIELDS = ("user_id", "achievement_id", "collectible_id", "entry_id", "request_id")
"""Record attributes reported when passed via ``extra``."""

HANDLER_NAME = "progression"
"""Name of the stdout handler installed by setup_logging."""

DEV_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Ids attached to a record through ``extra``."""
    return {name: getattr(record, name) for name in EXTRA_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(record_context(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Terminal output with the level name colored and ids appended."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers still see the plain level name
        colored = logging.makeLogRecord(record.__dict__)
        color = self.LEVEL_COLORS.get(record.levelname)
        if color:
            colored.levelname = f"{color}{record.levelname}{self.RESET}"
        line = super().format(colored)

        context = record_context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        return line


def setup_logging(log_level: Optional[str] = None) -> None:
    """Install the stdout handler on the root logger.

    Args:
        log_level: Level name; defaults to INFO in production, DEBUG otherwise.
                   Calling again replaces the handler installed earlier.
    """
    if log_level is None:
        log_level = "INFO" if settings.is_production else "DEBUG"
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ColoredFormatter(fmt=DEV_FORMAT, datefmt="%H:%M:%S"))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for existing in list(root_logger.handlers):
        if existing.get_name() == HANDLER_NAME:
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={log_level}, environment={settings.ENVIRONMENT}, "
        f"format={'JSON' if settings.is_production else 'colored'}"
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
