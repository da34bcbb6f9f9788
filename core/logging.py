"""
core/logging.py -- Process logging setup and the fatal async-fault hook.

configure_logging() is called once by the app factory and the CLI. Loggers
are named under "tokengate.*" so operators can filter by layer.

install_fatal_handler() makes an exception that escapes an asyncio task fatal
to the process: it is logged at CRITICAL and SIGTERM is raised against our own
pid, letting uvicorn run its normal shutdown instead of serving requests in an
unknown state.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import Callable

_LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("tokengate.runtime")


def configure_logging(level: str = "INFO") -> None:
    """Configure process logging with a consistent format and runtime level."""
    normalized = level.strip().upper() if level and level.strip() else "INFO"
    logging.basicConfig(
        level=getattr(logging, normalized, logging.INFO),
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
    )


def _terminate_process() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


def install_fatal_handler(
    loop: asyncio.AbstractEventLoop,
    terminate: Callable[[], None] = _terminate_process,
) -> None:
    """Treat unhandled exceptions in background tasks as fatal.

    Args:
        loop:      The running event loop (from asyncio.get_running_loop()).
        terminate: Called after logging. Defaults to SIGTERM on our own pid;
                   tests pass a stub.
    """

    def _handler(_loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        logger.critical(
            "Unhandled async error, shutting down: %s",
            context.get("message", "unknown"),
            exc_info=exc,
        )
        terminate()

    loop.set_exception_handler(_handler)
