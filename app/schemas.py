import datetime as dt
import math
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GradeTier(str, Enum):
    """Condition/grade axis shared by every provider. Declared low to high."""

    UNGRADED = "ungraded"
    GRADE7 = "grade7"
    GRADE8 = "grade8"
    GRADE9 = "grade9"
    GRADE9_5 = "grade9_5"
    GRADE10 = "grade10"


class ComicGrade(str, Enum):
    """
    Comic-book grade axis. The vendor reuses its card price slots for comics,
    so each value also names a fixed detail-page column.
    """

    UNGRADED = "ungraded"
    VG4 = "vg4"
    FINE6 = "fine6"
    VF8 = "vf8"
    NM92 = "nm92"
    NM98 = "nm98"


def positive_prices(value: Any) -> Any:
    """Drops zero, negative, non-finite and non-numeric prices from a tier map."""
    if not isinstance(value, dict):
        return value
    return {
        tier: price
        for tier, price in value.items()
        if isinstance(price, (int, float))
        and not isinstance(price, bool)
        and math.isfinite(price)
        and price > 0
    }


class ItemKind(str, Enum):
    CARD = "card"
    SEALED_PRODUCT = "sealed-product"
    GRADED_COLLECTIBLE = "graded-collectible"


class NormalizedPriceItem(BaseModel):
    """
    Canonical search-result/candidate record produced by every provider.

    `id` is only unique within `source`. `price_by_tier` is sparse: a missing
    key means "no price", never zero. `payload` keeps the provider-shaped
    record the canonical price extraction runs over; it is not serialized.
    """

    id: str
    name: str
    set_name: Optional[str] = None
    item_kind: ItemKind = ItemKind.CARD
    price_by_tier: Dict[GradeTier, float] = Field(default_factory=dict)
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    source: str
    payload: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @field_validator("price_by_tier", mode="before")
    @classmethod
    def drop_absent_prices(cls, value: Any) -> Any:
        return positive_prices(value)

    def price_for(self, tier: GradeTier) -> Optional[float]:
        return self.price_by_tier.get(tier)

    @property
    def ungraded_price(self) -> Optional[float]:
        return self.price_by_tier.get(GradeTier.UNGRADED)


class HistoryPoint(BaseModel):
    """One point of a chart series. Calendar day only, never persisted."""

    date: dt.date
    price: float
    source: Optional[str] = None


class RefreshSummary(BaseModel):
    total: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


class RecordPricesResult(BaseModel):
    refresh: RefreshSummary
    snapshots_recorded: int = 0
    timestamp: dt.datetime


class PriceSnapshotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asset_id: int
    price: float
    source: str
    recorded_at: dt.datetime


class SnapshotPurgeResult(BaseModel):
    deleted: int


class GradedPriceResponse(BaseModel):
    query: str
    grade: Optional[str] = None
    tier: GradeTier
    price: Optional[float] = None
    results: List[NormalizedPriceItem]


class PortfolioChartPoint(BaseModel):
    date: dt.date
    value: float
    raw: float = 0.0
    graded: float = 0.0
    sealed: float = 0.0
    cost_basis: float = 0.0


class ComicPriceItem(BaseModel):
    """A comic-book candidate from the HTML vendor, priced per comic grade."""

    id: str
    name: str
    set_name: Optional[str] = None
    prices: Dict[ComicGrade, float] = Field(default_factory=dict)
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    source: str
    currency: str = "USD"

    @field_validator("prices", mode="before")
    @classmethod
    def drop_absent_prices(cls, value: Any) -> Any:
        return positive_prices(value)

    def price_for(self, grade: ComicGrade) -> Optional[float]:
        return self.prices.get(grade)


class ComicPriceResponse(BaseModel):
    query: str
    grade: Optional[str] = None
    price_field: Optional[ComicGrade] = None
    price: Optional[float] = None
    results: List[ComicPriceItem]
