"""
structlog setup shared by the API, the scheduler worker and the scripts.

Production renders one JSON object per line; everywhere else uses the
console renderer. Every event carries the request id bound by the request
middleware, or the job id when the work runs under the scheduler.

Usage:
    from app.core.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Price resolved", asset_id=12, source="tcgplayer", price=42.5)
"""

import logging
import os
import sys
from typing import Any

import structlog

from app.core.context import get_job_id

IS_PRODUCTION = os.getenv("ENVIRONMENT", "").lower() == "production"
IS_TEST = "pytest" in sys.modules
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Scraper and provider traffic is logged by our own http layer
QUIET_LOGGERS = ("httpx", "httpcore", "apscheduler", "sqlalchemy.engine")


def add_job_id(logger: Any, method_name: str, event_dict: dict) -> dict:
    job_id = get_job_id()
    if job_id and "job_id" not in event_dict:
        event_dict["job_id"] = job_id
    return event_dict


def configure_logging() -> None:
    level = logging.getLevelName(LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_job_id,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.dev.set_exc_info,
    ]
    if IS_PRODUCTION:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not IS_TEST))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
