"""Logger setup for the report engine.

The library itself only creates module loggers; applications call
configure_logging() to see their output on stderr.
"""

from __future__ import annotations

import logging
import sys

from banded_reports.config import EngineConfig

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

PACKAGE_LOGGER = "banded_reports"


class FlushingStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        self.flush()


def _create_stderr_handler() -> logging.StreamHandler:
    handler = FlushingStreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def configure_logging(
    level: int | str | None = None, config: EngineConfig | None = None
) -> logging.Logger:
    """Attach a stderr handler to the package logger and set its level.

    Without an explicit level, the level comes from ``config`` (or from
    EngineConfig.from_env() when no config is given). Calling this more
    than once only updates the level.
    """
    if level is None:
        level = (config if config is not None else EngineConfig.from_env()).numeric_log_level
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
        level = numeric

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    if not any(isinstance(h, FlushingStreamHandler) for h in logger.handlers):
        logger.addHandler(_create_stderr_handler())
    return logger
