from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api import deps
from app.core.logging_config import get_logger
from app.models.asset import Asset
from app.schemas import HistoryPoint, PriceSnapshotOut, RefreshSummary, SnapshotPurgeResult
from app.services.price_history import reconcile_price_history
from app.services.price_resolution import PriceResolver
from app.services.price_store import PriceStore
from app.services.pricing_clients import PricingClients

logger = get_logger(__name__)

router = APIRouter()


def _get_asset_or_404(store: PriceStore, asset_id: int) -> Asset:
    asset = store.get_asset(asset_id)
    if asset is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    return asset


@router.get("/{asset_id}/price-history", response_model=List[HistoryPoint])
async def asset_price_history(
    asset_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    store: PriceStore = Depends(deps.get_price_store),
    clients: PricingClients = Depends(deps.get_pricing_clients),
):
    """
    Daily series for one asset: local snapshots, topped up with provider
    history when fewer than two snapshot days exist.
    """
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")
    asset = _get_asset_or_404(store, asset_id)
    return await reconcile_price_history(store, asset, clients.cards, clients.sealed, start_date, end_date)


@router.get("/{asset_id}/price-snapshots", response_model=List[PriceSnapshotOut])
def list_price_snapshots(
    asset_id: int,
    store: PriceStore = Depends(deps.get_price_store),
):
    _get_asset_or_404(store, asset_id)
    return store.list_snapshots(asset_id)


@router.delete(
    "/{asset_id}/price-snapshots",
    response_model=SnapshotPurgeResult,
    dependencies=[Depends(deps.verify_cron_secret)],
)
def purge_price_snapshots(
    asset_id: int,
    snapshot_id: Optional[int] = Query(None),
    before: Optional[date] = Query(None, description="Delete snapshots up to and including this day"),
    all: bool = Query(False),
    store: PriceStore = Depends(deps.get_price_store),
):
    _get_asset_or_404(store, asset_id)
    try:
        deleted = store.purge_snapshots(asset_id, snapshot_id=snapshot_id, before=before, purge_all=all)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SnapshotPurgeResult(deleted=deleted)


@router.post(
    "/refresh-prices",
    response_model=RefreshSummary,
    dependencies=[Depends(deps.verify_cron_secret)],
)
async def refresh_prices(
    portfolio_id: Optional[int] = Query(None),
    resolver: PriceResolver = Depends(deps.get_price_resolver),
):
    """Refresh stale prices. No second snapshot pass."""
    return await resolver.refresh_prices(portfolio_id=portfolio_id)
