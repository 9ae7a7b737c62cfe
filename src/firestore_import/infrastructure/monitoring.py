"""
Logging and operation tracking for firestore-import
Structured logs go to stderr; stdout is left to the CLI status lines
"""

import sys
import time
import logging
import logging.config
from contextlib import asynccontextmanager
from typing import Optional

import structlog

from .config import Settings, get_logging_config, load_settings

# Global logger
logger = structlog.get_logger()


def setup_logging(current: Optional[Settings] = None) -> None:
    """Configure standard logging and structlog from settings"""
    current = current or load_settings()
    level = getattr(logging, current.LOG_LEVEL.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown LOG_LEVEL: {current.LOG_LEVEL}")

    # Google client libraries log through the standard library
    logging.config.dictConfig(get_logging_config(current))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer() if current.LOG_FORMAT == "text" else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


@asynccontextmanager
async def track_operation(operation_type: str, **context):
    """Log the start, end and duration of an async operation"""
    start_time = time.perf_counter()
    logger.info("Operation started", operation_type=operation_type, **context)
    try:
        yield
    except Exception as e:
        logger.error(
            "Operation failed",
            operation_type=operation_type,
            duration_ms=(time.perf_counter() - start_time) * 1000,
            error=str(e),
            **context
        )
        raise
    logger.info(
        "Operation completed",
        operation_type=operation_type,
        duration_ms=(time.perf_counter() - start_time) * 1000,
        **context
    )


__all__ = [
    'setup_logging',
    'track_operation'
]
