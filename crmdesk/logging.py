"""Process-wide logging setup."""

from __future__ import annotations

import logging
import logging.config
from typing import Any

from .config import AppConfig

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_MAX_BYTES = 1_000_000
_BACKUP_COUNT = 3

_configured = False


def build_logging_config(config: AppConfig) -> dict[str, Any]:
    """``dictConfig`` mapping: Textual devtools handler plus an optional rotating file."""

    handlers: dict[str, dict[str, Any]] = {
        "textual": {
            "class": "textual.logging.TextualHandler",
            "level": config.log_level,
            "formatter": "standard",
        }
    }
    if config.log_file is not None:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": config.log_level,
            "formatter": "standard",
            "filename": str(config.log_file),
            "maxBytes": _MAX_BYTES,
            "backupCount": _BACKUP_COUNT,
            "encoding": "utf-8",
        }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"standard": {"format": _FORMAT}},
        "handlers": handlers,
        "loggers": {
            "crmdesk": {"handlers": list(handlers), "level": config.log_level, "propagate": False},
            "asyncpg": {"handlers": list(handlers), "level": "WARNING", "propagate": False},
        },
    }


def configure_logging(config: AppConfig, *, force: bool = False) -> None:
    """Install the logging configuration once per process."""

    global _configured
    if _configured and not force:
        return
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(config))
    _configured = True
    logging.getLogger(__name__).debug("Logging configured", extra={"level": config.log_level})


__all__ = ["build_logging_config", "configure_logging"]
