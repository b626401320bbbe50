from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api import deps
from app.core.context import set_job_id
from app.schemas import RecordPricesResult
from app.services.price_resolution import PriceResolver

router = APIRouter(dependencies=[Depends(deps.verify_cron_secret)])


@router.get("/record-prices", response_model=RecordPricesResult)
async def record_prices(
    portfolio_id: Optional[int] = Query(None),
    resolver: PriceResolver = Depends(deps.get_price_resolver),
):
    """
    Daily job: refresh stale prices, then snapshot every priced asset.
    """
    set_job_id("record_prices")
    return await resolver.record_prices(portfolio_id=portfolio_id)
