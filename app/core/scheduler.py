from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlmodel import Session

from app.core.config import settings
from app.core.context import clear_context, set_job_id
from app.core.errors import capture_exception
from app.core.logging_config import get_logger
from app.db import engine
from app.schemas import RecordPricesResult
from app.services.price_resolution import PriceResolver
from app.services.price_store import PriceStore
from app.services.pricing_clients import PricingClients

logger = get_logger(__name__)

scheduler = AsyncIOScheduler()


async def run_record_prices(clients: PricingClients, portfolio_id=None) -> RecordPricesResult:
    """One refresh + snapshot pass with its own DB session."""
    with Session(engine) as session:
        resolver = PriceResolver.from_clients(PriceStore(session), clients, settings)
        return await resolver.record_prices(portfolio_id=portfolio_id)


async def job_record_prices(clients: Optional[PricingClients] = None):
    """Scheduled pass. Uses the process-wide clients when given, else builds and closes its own."""
    set_job_id("record_prices")
    logger.info("Starting scheduled price recording", shared_clients=clients is not None)
    try:
        if clients is not None:
            result = await run_record_prices(clients)
        else:
            async with PricingClients.create(settings) as own_clients:
                result = await run_record_prices(own_clients)
        logger.info(
            "Scheduled price recording complete",
            snapshots_recorded=result.snapshots_recorded,
            **result.refresh.model_dump(),
        )
    except Exception as e:
        # Scheduler swallows job errors; report before they vanish
        capture_exception(e, context={"job": "record_prices"})
    finally:
        clear_context()


def start_scheduler(clients: Optional[PricingClients] = None):
    # max_instances=1: no overlapping runs
    # coalesce=True: missed runs collapse into one
    scheduler.add_job(
        job_record_prices,
        CronTrigger(hour=settings.RECORD_PRICES_HOUR, minute=0),
        kwargs={"clients": clients},
        id="job_record_prices",
        max_instances=1,
        misfire_grace_time=3600,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started", record_prices_hour=settings.RECORD_PRICES_HOUR)
