"""Structured logging setup.

The engine logs through structlog. setup_logging() is meant to be called
once by the process entrypoint (the CLI does it). Until then, and for
library users who never call it, events go to stdlib loggers named after
the emitting module, so nothing is printed unless the host application
has configured stdlib logging for them.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure stdlib logging and structlog processors."""
    level = log_level.upper()
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(message)s",
        force=True,
    )

    renderer: Any
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level)
        ),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger("ballotbox")


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_context(
    logger: structlog.BoundLogger,
    election_id: Optional[int] = None,
    caller: Optional[str] = None,
) -> structlog.BoundLogger:
    """Attach the standard election context to a logger."""
    context: dict[str, Any] = {}
    if election_id is not None:
        context["election_id"] = election_id
    if caller:
        context["caller"] = caller
    return logger.bind(**context)


def _route_to_stdlib() -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


if not structlog.is_configured():
    _route_to_stdlib()
