from __future__ import annotations

import logging
import logging.config

from app.core.config import get_settings

_configured = False


def build_logging_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": level,
            },
        },
        "loggers": {
            "app": {"level": level},
            "services": {"level": level},
        },
        "root": {
            "handlers": ["console"],
            "level": logging.WARNING,
        },
    }


def configure_logging(level: str | None = None) -> None:
    """Install the console handler once per process."""
    global _configured
    if _configured:
        return
    logging.config.dictConfig(build_logging_config(level or get_settings().log_level))
    _configured = True
