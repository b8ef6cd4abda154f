"""Logging helpers for mini-netgw."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Dict

from .config import LoggingConfig

# Loggers emitting bind probe results and per-client approval decisions
DECISION_LOGGERS = ("netgw.net", "netgw.runtime")


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def configure_logging(config: LoggingConfig) -> None:
    """Configure global logging based on configuration values.

    ``decision_level`` tunes the address decision loggers independently of
    the root level, so approval decisions can be traced at DEBUG without
    making the whole gateway verbose.
    """

    level = _level(config.level)

    handler_config: Dict[str, Any] = {"formatter": "standard"}
    if config.file:
        handler_config["class"] = "logging.handlers.WatchedFileHandler"
        handler_config["filename"] = config.file
        handler_config["encoding"] = "utf-8"
    else:
        handler_config["class"] = "logging.StreamHandler"

    decision_level = _level(config.decision_level) if config.decision_level else level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
            },
            "handlers": {"default": handler_config},
            "loggers": {name: {"level": decision_level} for name in DECISION_LOGGERS},
            "root": {"handlers": ["default"], "level": level},
        }
    )

    logging.getLogger("uvicorn.access").disabled = not config.access_log


__all__ = ["DECISION_LOGGERS", "configure_logging"]
