from typing import Optional
from sqlmodel import Field, SQLModel, Index
from datetime import datetime

from app.core.typing import utc_now


class PriceSnapshot(SQLModel, table=True):
    """
    Immutable, append-only price observation for one asset.

    Rows are never updated. Deletion only happens through the administrative
    purge. Same-day duplicates are expected and collapse at read time.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    asset_id: int = Field(foreign_key="asset.id", index=True)
    price: float
    source: str = Field(index=True)  # tcgplayer | pokemonpricetracker | pricecharting | manual
    recorded_at: datetime = Field(default_factory=utc_now, index=True)

    __table_args__ = (Index("ix_pricesnapshot_asset_recorded", "asset_id", "recorded_at"),)
