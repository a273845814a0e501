"""Structured logging for the retrieval core.

Every module logs through ``structlog.get_logger("<area>.<module>")`` with
key/value events. The host process calls ``configure_logging`` once; level
and renderer come from ``ML_LOG_LEVEL`` / ``ML_LOG_FORMAT`` unless a config
is passed in.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

from .config import BaseConfig

_performance_logger = structlog.get_logger("performance")


def configure_logging(
    service_name: str = "retrieval-core",
    config: Optional[BaseConfig] = None,
    **context: Any
) -> None:
    """Route structlog through stdlib logging and bind ``service`` to each line.

    Parameters
    - service_name: Bound as ``service`` on every event
    - config: Source of ``ml_log_level`` / ``ml_log_format``; read from the
      environment when omitted
    - context: Extra fields bound next to ``service``
    """
    config = config or BaseConfig()
    level = getattr(logging, config.ml_log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    if config.ml_log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_logger_name,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name, **context)


def log_performance(operation: str, duration_ms: float, **kwargs: Any) -> None:
    """Emit one timing event for a finished search or rerank call."""
    _performance_logger.info(
        f"Operation {operation} completed",
        operation=operation,
        duration_ms=duration_ms,
        **kwargs
    )
