#!/usr/bin/env python3
"""
Runs the daily price recording job outside the API process.

Deploy one of these with RUN_SCHEDULER=false on the API so the job is not
scheduled twice.
"""
import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.core.errors import init_sentry
from app.core.logging_config import get_logger
from app.core.scheduler import scheduler, start_scheduler

logger = get_logger("scheduler_worker")


async def main():
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
    start_scheduler()
    logger.info("Scheduler worker running", jobs=[job.id for job in scheduler.get_jobs()])
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler worker stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
