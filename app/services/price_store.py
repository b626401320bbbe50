"""
Persistence boundary for the pricing core.

Single-table reads and writes only: assets are read and their price fields
overwritten in place (last writer wins), snapshots are append-only.
"""

import datetime as dt
from typing import Iterable, List, Optional

from sqlalchemy import delete
from sqlmodel import Session, select

from app.core.logging_config import get_logger
from app.core.typing import col, ensure_utc, utc_now
from app.models.asset import Asset
from app.models.snapshot import PriceSnapshot

logger = get_logger(__name__)


def day_start(day: dt.date) -> dt.datetime:
    return dt.datetime.combine(day, dt.time.min, tzinfo=dt.timezone.utc)


class PriceStore:
    def __init__(self, session: Session):
        self.session = session

    # Assets

    def get_assets(
        self,
        portfolio_id: Optional[int] = None,
        asset_ids: Optional[Iterable[int]] = None,
    ) -> List[Asset]:
        statement = select(Asset)
        if portfolio_id is not None:
            statement = statement.where(Asset.portfolio_id == portfolio_id)
        if asset_ids is not None:
            statement = statement.where(col(Asset.id).in_(list(asset_ids)))
        return list(self.session.exec(statement.order_by(col(Asset.id))).all())

    def get_asset(self, asset_id: int) -> Optional[Asset]:
        return self.session.get(Asset, asset_id)

    def update_asset_price(
        self,
        asset_id: int,
        price: float,
        timestamp: Optional[dt.datetime] = None,
        source: Optional[str] = None,
    ) -> Asset:
        asset = self.session.get(Asset, asset_id)
        if asset is None:
            raise LookupError(f"asset {asset_id} not found")
        asset.current_price = price
        asset.price_updated_at = timestamp or utc_now()
        if source is not None:
            asset.price_source = source
        self.session.add(asset)
        self.session.commit()
        self.session.refresh(asset)
        return asset

    # Snapshots

    def insert_snapshot(
        self,
        asset_id: int,
        price: float,
        source: str,
        recorded_at: Optional[dt.datetime] = None,
    ) -> PriceSnapshot:
        snapshot = PriceSnapshot(
            asset_id=asset_id,
            price=price,
            source=source,
            recorded_at=recorded_at or utc_now(),
        )
        self.session.add(snapshot)
        self.session.commit()
        self.session.refresh(snapshot)
        return snapshot

    def get_snapshots(
        self,
        asset_id: int,
        start: Optional[dt.date] = None,
        end: Optional[dt.date] = None,
    ) -> List[PriceSnapshot]:
        """Snapshots for one asset in insertion order, `end` day inclusive."""
        statement = select(PriceSnapshot).where(PriceSnapshot.asset_id == asset_id)
        if start is not None:
            statement = statement.where(col(PriceSnapshot.recorded_at) >= day_start(start))
        if end is not None:
            statement = statement.where(col(PriceSnapshot.recorded_at) < day_start(end + dt.timedelta(days=1)))
        return list(self.session.exec(statement.order_by(col(PriceSnapshot.id))).all())

    def get_snapshots_for_assets(self, asset_ids: Iterable[int]) -> List[PriceSnapshot]:
        """Every snapshot of the given assets in insertion order."""
        ids = list(asset_ids)
        if not ids:
            return []
        statement = select(PriceSnapshot).where(col(PriceSnapshot.asset_id).in_(ids))
        return list(self.session.exec(statement.order_by(col(PriceSnapshot.id))).all())

    def list_snapshots(self, asset_id: int) -> List[PriceSnapshot]:
        """Newest first, for the admin listing."""
        statement = (
            select(PriceSnapshot)
            .where(PriceSnapshot.asset_id == asset_id)
            .order_by(col(PriceSnapshot.recorded_at).desc(), col(PriceSnapshot.id).desc())
        )
        return list(self.session.exec(statement).all())

    def purge_snapshots(
        self,
        asset_id: int,
        snapshot_id: Optional[int] = None,
        before: Optional[dt.date] = None,
        purge_all: bool = False,
    ) -> int:
        """
        Administrative delete. Exactly one of snapshot_id, before (that day
        included) or purge_all selects what goes.
        """
        selectors = [snapshot_id is not None, before is not None, purge_all]
        if sum(selectors) != 1:
            raise ValueError("specify exactly one of snapshot_id, before or purge_all")

        # SQLite hands back naive datetimes, so in-session rows are matched
        # by primary key rather than evaluated in Python
        statement = (
            delete(PriceSnapshot)
            .where(col(PriceSnapshot.asset_id) == asset_id)
            .execution_options(synchronize_session="fetch")
        )
        if snapshot_id is not None:
            statement = statement.where(col(PriceSnapshot.id) == snapshot_id)
        elif before is not None:
            statement = statement.where(col(PriceSnapshot.recorded_at) < day_start(before + dt.timedelta(days=1)))

        result = self.session.exec(statement)  # type: ignore[call-overload]
        self.session.commit()
        deleted = result.rowcount or 0
        logger.info(
            "Purged price snapshots",
            asset_id=asset_id,
            snapshot_id=snapshot_id,
            before=before.isoformat() if before else None,
            purge_all=purge_all,
            deleted=deleted,
        )
        return deleted


def snapshot_day(snapshot: PriceSnapshot) -> dt.date:
    """Calendar day (UTC) a snapshot was recorded on."""
    return ensure_utc(snapshot.recorded_at).date()  # type: ignore[union-attr]
