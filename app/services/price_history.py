"""
Price history reconciliation and portfolio-level aggregation.

Asset series (reconcile_price_history):
1. local snapshots in the window, one per calendar day (last inserted wins)
2. two or more snapshot days -> snapshots only, no provider call
3. otherwise provider history merged underneath, snapshots win on the same day
4. no data anywhere -> empty list

Portfolio series (aggregate_portfolio_series): forward-fill join of every
asset's snapshots, summed per category (raw / graded / sealed). An asset
contributes its purchase price until its first snapshot and never a value
recorded after the emitted day.
"""

import datetime as dt
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from app.core.errors import UpstreamUnavailable
from app.core.logging_config import get_logger
from app.models.asset import Asset
from app.models.snapshot import PriceSnapshot
from app.schemas import HistoryPoint, PortfolioChartPoint
from app.services.price_store import PriceStore, snapshot_day

logger = get_logger(__name__)

MIN_SNAPSHOT_DAYS = 2

CHART_RANGES: Dict[str, Optional[int]] = {
    "1M": 30,
    "3M": 90,
    "1Y": 365,
    "ALL": None,
}
DEFAULT_CHART_RANGE = "3M"


def dedupe_snapshots_by_day(snapshots: Iterable[PriceSnapshot]) -> Dict[dt.date, PriceSnapshot]:
    """
    One snapshot per calendar day. Input is expected in insertion order;
    a later snapshot replaces an earlier one on the same day.
    """
    by_day: Dict[dt.date, PriceSnapshot] = {}
    for snapshot in sorted(snapshots, key=lambda s: s.id or 0):
        by_day[snapshot_day(snapshot)] = snapshot
    return by_day


def merge_history(
    provider_points: Iterable[HistoryPoint],
    snapshot_points: Iterable[HistoryPoint],
) -> List[HistoryPoint]:
    merged: Dict[dt.date, HistoryPoint] = {}
    for point in provider_points:
        merged[point.date] = point
    for point in snapshot_points:
        merged[point.date] = point
    return [merged[day] for day in sorted(merged)]


async def reconcile_price_history(
    store: PriceStore,
    asset: Asset,
    card_provider,
    sealed_provider,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
) -> List[HistoryPoint]:
    if asset.id is None:
        return []

    by_day = dedupe_snapshots_by_day(store.get_snapshots(asset.id, start, end))
    snapshot_points = [
        HistoryPoint(date=day, price=snapshot.price, source=snapshot.source)
        for day, snapshot in sorted(by_day.items())
    ]

    if len(snapshot_points) >= MIN_SNAPSHOT_DAYS:
        return snapshot_points

    provider_points: List[HistoryPoint] = []
    try:
        if asset.is_sealed:
            provider_points = await sealed_provider.get_history(
                asset.external_id or "", start, end, name_hint=asset.name
            )
        elif asset.external_id:
            provider_points = await card_provider.get_history(asset.external_id, start, end)
    except UpstreamUnavailable as e:
        logger.warning("Provider history unavailable", asset_id=asset.id, error=str(e))

    merged = merge_history(provider_points, snapshot_points)
    logger.info(
        "Price history reconciled",
        asset_id=asset.id,
        snapshot_days=len(snapshot_points),
        provider_points=len(provider_points),
        points=len(merged),
    )
    return merged


def asset_category(asset: Asset) -> str:
    if asset.is_sealed:
        return "sealed"
    if asset.psa_grade:
        return "graded"
    return "raw"


def chart_start(range_key: Optional[str], assets: List[Asset], today: dt.date) -> Optional[dt.date]:
    """
    First day of a chart range: 1M, 3M (default), 1Y, or All (earliest
    purchase date, unbounded when no asset has one).

    Raises:
        ValueError: unknown range
    """
    key = (range_key or DEFAULT_CHART_RANGE).upper()
    if key not in CHART_RANGES:
        raise ValueError(f"unknown range {range_key!r}, expected one of 1M, 3M, 1Y, All")
    days = CHART_RANGES[key]
    if days is not None:
        return today - dt.timedelta(days=days)
    purchase_dates = [a.purchase_date for a in assets if a.purchase_date]
    return min(purchase_dates) if purchase_dates else None


@dataclass
class _Holding:
    category: str
    quantity: int
    purchase_price: float


def aggregate_portfolio_series(
    assets: List[Asset],
    snapshots: Iterable[PriceSnapshot],
    start: Optional[dt.date] = None,
    today: Optional[dt.date] = None,
) -> List[PortfolioChartPoint]:
    """
    Daily portfolio value per category.

    `snapshots` may reach back before `start`: earlier days seed the carried
    prices but only days on or after `start` are emitted. With nothing to
    emit, one point for today from current (or purchase) prices is returned.
    """
    if not assets:
        return []

    holdings: Dict[int, _Holding] = {}
    for asset in assets:
        if asset.id is None:
            continue
        holdings[asset.id] = _Holding(
            category=asset_category(asset),
            quantity=asset.quantity or 1,
            purchase_price=asset.purchase_price or 0.0,
        )

    cost_basis = sum(h.purchase_price * h.quantity for h in holdings.values())

    # day -> {asset_id: price}, latest inserted snapshot per asset per day
    by_day: Dict[dt.date, Dict[int, float]] = {}
    for snapshot in sorted(snapshots, key=lambda s: s.id or 0):
        if snapshot.asset_id not in holdings:
            continue
        by_day.setdefault(snapshot_day(snapshot), {})[snapshot.asset_id] = snapshot.price

    emitted_days = [day for day in sorted(by_day) if start is None or day >= start]

    def totals(prices: Dict[int, float]) -> Tuple[float, float, float]:
        sums = {"raw": 0.0, "graded": 0.0, "sealed": 0.0}
        for asset_id, holding in holdings.items():
            sums[holding.category] += prices[asset_id] * holding.quantity
        return sums["raw"], sums["graded"], sums["sealed"]

    if not emitted_days:
        current = {
            a.id: (a.current_price if a.current_price is not None else (a.purchase_price or 0.0))
            for a in assets
            if a.id is not None
        }
        raw, graded, sealed = totals(current)
        return [
            PortfolioChartPoint(
                date=today or dt.date.today(),
                value=raw + graded + sealed,
                raw=raw,
                graded=graded,
                sealed=sealed,
                cost_basis=cost_basis,
            )
        ]

    last_known = {asset_id: holding.purchase_price for asset_id, holding in holdings.items()}
    points: List[PortfolioChartPoint] = []
    for day in sorted(by_day):
        last_known.update(by_day[day])
        if start is not None and day < start:
            continue
        raw, graded, sealed = totals(last_known)
        points.append(
            PortfolioChartPoint(
                date=day,
                value=raw + graded + sealed,
                raw=raw,
                graded=graded,
                sealed=sealed,
                cost_basis=cost_basis,
            )
        )
    return points


def build_portfolio_chart(
    store: PriceStore,
    portfolio_id: int,
    range_key: Optional[str] = None,
    today: Optional[dt.date] = None,
) -> List[PortfolioChartPoint]:
    today = today or dt.date.today()
    assets = store.get_assets(portfolio_id=portfolio_id)
    if not assets:
        return []
    start = chart_start(range_key, assets, today)
    snapshots = store.get_snapshots_for_assets([a.id for a in assets if a.id is not None])
    return aggregate_portfolio_series(assets, snapshots, start=start, today=today)
