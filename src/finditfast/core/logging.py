"""
Logging configuration.

The packaged `logging.yaml` wires one console handler on the root logger and keeps
third-party loggers (httpx, uvicorn) at WARNING. The configured level is applied to the
`finditfast` package logger and to the handlers, so `--log-level DEBUG` shows our own
debug output without turning on every library's.
"""

from __future__ import annotations

import copy
import logging.config

from finditfast.config.settings import Settings, get_logging_config, get_settings

PACKAGE_LOGGER = "finditfast"


def configure_logging(settings: Settings | None = None, *, level: str | None = None) -> str:
    """Apply the packaged logging config and return the effective package level.

    `level` (e.g. from a CLI flag) wins over `settings.app.log_level`.
    """
    settings = settings or get_settings()
    # The cached config is shared; never mutate it in place.
    config = copy.deepcopy(get_logging_config())

    resolved = (level or settings.app.log_level).upper()
    config.setdefault("loggers", {}).setdefault(PACKAGE_LOGGER, {})["level"] = resolved
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict):
            handler["level"] = resolved

    logging.config.dictConfig(config)
    return resolved
