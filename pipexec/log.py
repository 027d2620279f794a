"""Logging configuration using loguru.

The library logs through loguru and stays silent until an application
(the ``pipexec`` CLI, or a caller) installs a sink.  The only stdlib logger
pipexec's own code path touches is ``asyncio`` (subprocess transports,
unretrieved task exceptions); its records are forwarded to the same sink.
Other stdlib loggers are left alone.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


class _AsyncioHandler(logging.Handler):
    """Forward ``asyncio`` records to loguru, keeping their origin."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        def origin(r: dict) -> None:
            r.update(name=record.name, function=record.funcName, line=record.lineno)

        logger.patch(origin).opt(exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "WARNING") -> None:
    """Configure loguru as the sole logging sink, writing to stderr.

    Child process output goes to stdout/stderr as well, so the default level
    keeps pipexec's own messages out of the way.
    """
    level = level.upper()

    logger.remove()
    logger.add(sys.stderr, level=level, format=_FORMAT)
    logger.enable("pipexec")

    aio = logging.getLogger("asyncio")
    aio.handlers = [_AsyncioHandler()]
    aio.propagate = False
    aio.setLevel(logging.WARNING)

    logger.debug("Logging initialised (level={})", level)
