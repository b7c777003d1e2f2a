"""Central logging configuration."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Optional

from src.core.config import settings

LOGGER_NAME = "quota-pool"


def build_logging_config(level: Optional[str] = None) -> dict[str, Any]:
    """Console logging for the service loggers; SQL echo stays quiet unless asked for."""

    level = (level or settings.log_level or ("DEBUG" if settings.environment == "development" else "INFO")).upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
            }
        },
        "loggers": {
            LOGGER_NAME: {"handlers": ["console"], "level": level, "propagate": False},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
        "root": {
            "handlers": ["console"],
            "level": "INFO",
        },
    }


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the logging configuration once at process startup."""

    dictConfig(build_logging_config(level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


logger = logging.getLogger(LOGGER_NAME)
