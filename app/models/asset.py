from typing import Optional
from enum import Enum
from sqlmodel import Field, SQLModel, Index
from datetime import datetime, date

from app.core.typing import utc_now


class AssetType(str, Enum):
    """Top-level kind of a tracked asset."""

    CARD = "card"
    SEALED = "sealed"


class Asset(SQLModel, table=True):
    """
    One tracked holding in a portfolio.

    The price fields (current_price, price_updated_at) are overwritten in place
    on each successful price resolution. Every resolution also appends a
    PriceSnapshot row.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    portfolio_id: Optional[int] = Field(default=None, index=True)

    # Identity as known by the provider the asset was added from
    external_id: Optional[str] = Field(default=None, index=True)
    name: str
    set_name: Optional[str] = Field(default=None)
    asset_type: str = Field(default=AssetType.CARD.value, index=True)  # card | sealed
    psa_grade: Optional[str] = Field(default=None)  # e.g. "PSA 10", "CGC 9.5"

    # Pricing
    manual_price: bool = Field(default=False)
    current_price: Optional[float] = Field(default=None)
    price_updated_at: Optional[datetime] = Field(default=None)
    price_source: Optional[str] = Field(default=None)  # source tag of the last resolution

    # Tether to an exact vendor detail page
    pc_url: Optional[str] = Field(default=None)
    pc_grade_field: Optional[str] = Field(default=None)  # e.g. "grade10", "psa10"

    # Cost basis
    purchase_price: Optional[float] = Field(default=None)
    purchase_date: Optional[date] = Field(default=None)
    quantity: int = Field(default=1)

    created_at: datetime = Field(default_factory=utc_now)

    __table_args__ = (Index("ix_asset_portfolio_type", "portfolio_id", "asset_type"),)

    @property
    def is_sealed(self) -> bool:
        return self.asset_type == AssetType.SEALED.value

    @property
    def is_tethered(self) -> bool:
        return bool(self.pc_url)
