from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api import deps
from app.schemas import PortfolioChartPoint
from app.services.price_history import build_portfolio_chart
from app.services.price_store import PriceStore

router = APIRouter()


@router.get("/chart", response_model=List[PortfolioChartPoint])
def portfolio_chart(
    portfolio_id: int = Query(...),
    range: str = Query("3M", description="1M, 3M, 1Y or All"),
    store: PriceStore = Depends(deps.get_price_store),
):
    """
    Daily portfolio value split into raw, graded and sealed, with cost basis.
    """
    try:
        return build_portfolio_chart(store, portfolio_id, range)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
