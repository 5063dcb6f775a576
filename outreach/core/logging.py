"""
Structured logging setup.

Production: JSON lines for log tooling.
Development: human readable, coloured output.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any

from outreach.core.config import settings


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Coloured formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class ExtraFieldsAdapter(logging.LoggerAdapter):
    """Attaches fixed fields (campaign_id, lead_id...) to every record."""

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        extra.setdefault("extra_fields", {}).update(self.extra)
        return msg, kwargs


def get_logger(name: str, **extra_fields: Any) -> logging.Logger | logging.LoggerAdapter:
    """
    Return a logger, optionally bound to extra fields.

    Usage:
        logger = get_logger(__name__, campaign_id="123", lead_id="456")
        logger.info("Processing lead")
    """
    logger = logging.getLogger(name)
    if extra_fields:
        return ExtraFieldsAdapter(logger, extra_fields)
    return logger


def setup_logging() -> None:
    """Configure root logging according to the environment."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ColoredFormatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.log_level_upper, logging.INFO))

    # Quieter third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
