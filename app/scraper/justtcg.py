"""
JustTCG API client: per-condition/per-printing card pricing (TCGplayer data).

API Endpoints:
- GET /cards?q=&game=&set=&limit=                  - search
- GET /cards?cardId=&priceHistoryDuration=          - one card with history

A card carries many variants (Near Mint Holofoil, Lightly Played Normal, ...).
select_variant() picks the one that stands for "market price":

1. variants whose condition contains "near mint"
2. among priced near-mint variants, printing "normal" or "holofoil", else the first
3. no priced near-mint variant: highest-priced variant of any condition
4. nothing priced: the first variant, unpriced

A card counts as a sealed product when any variant's condition is
"sealed" or "s". Missing number/rarity is not used as a signal.
"""

import datetime as dt
from typing import Any, Dict, List, Optional, Union

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.core.errors import ConfigurationError
from app.schemas import GradeTier, HistoryPoint, ItemKind, NormalizedPriceItem
from app.scraper.http import clean_params, get_json
from app.scraper.utils import positive_number, sanitize_query

logger = structlog.get_logger(__name__)

SOURCE = "tcgplayer"
TCGPLAYER_IMAGE_URL = "https://tcgplayer-cdn.tcgplayer.com/product/{tcgplayer_id}_200w.jpg"

PREFERRED_PRINTINGS = ("normal", "holofoil")
SEALED_CONDITIONS = ("sealed", "s")


class JustTcgPricePoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    p: Optional[float] = None  # price
    t: Optional[int] = None  # unix seconds


class JustTcgVariant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    condition: str = ""
    printing: str = ""
    price: Optional[float] = None
    priceHistory: List[JustTcgPricePoint] = Field(default_factory=list)

    @property
    def market_price(self) -> Optional[float]:
        return positive_number(self.price)


class JustTcgCard(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    set_id: Optional[str] = Field(default=None, alias="set")
    set_name: Optional[str] = None
    number: Optional[str] = None
    rarity: Optional[str] = None
    tcgplayerId: Optional[Union[str, int]] = None
    variants: List[JustTcgVariant] = Field(default_factory=list)


def select_variant(variants: List[JustTcgVariant]) -> Optional[JustTcgVariant]:
    if not variants:
        return None

    priced_near_mint = [
        v for v in variants if "near mint" in v.condition.lower() and v.market_price is not None
    ]
    if priced_near_mint:
        for variant in priced_near_mint:
            if variant.printing.strip().lower() in PREFERRED_PRINTINGS:
                return variant
        return priced_near_mint[0]

    priced = [v for v in variants if v.market_price is not None]
    if priced:
        return max(priced, key=lambda v: v.market_price or 0.0)

    return variants[0]


def is_sealed_card(card: JustTcgCard) -> bool:
    return any(v.condition.strip().lower() in SEALED_CONDITIONS for v in card.variants)


def history_granularity(start: Optional[dt.date], end: Optional[dt.date]) -> str:
    """Shorter spans ask for finer history."""
    end = end or dt.date.today()
    start = start or (end - dt.timedelta(days=30))
    span = (end - start).days
    if span <= 7:
        return "7d"
    if span <= 30:
        return "30d"
    if span <= 90:
        return "90d"
    return "180d"


def _history_points(variant: Optional[JustTcgVariant]) -> List[Dict[str, Any]]:
    if variant is None:
        return []
    points = []
    for point in variant.priceHistory:
        price = positive_number(point.p)
        if price is None or point.t is None:
            continue
        day = dt.datetime.fromtimestamp(point.t, tz=dt.timezone.utc).date()
        points.append({"date": day.isoformat(), "price": price})
    return points


class JustTcgClient:
    """Card provider adapter. The API key is checked per call, not at construction."""

    source = SOURCE

    def __init__(self, client: httpx.AsyncClient, api_key: str, base_url: str = "https://api.justtcg.com/v1", game: str = "pokemon"):
        self.client = client
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.game = game

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("JUSTTCG_API_KEY")
        return {"x-api-key": self.api_key, "Accept": "application/json"}

    async def _get_cards(self, params: Dict[str, Any]) -> List[JustTcgCard]:
        headers = self._headers()
        body = await get_json(self.client, SOURCE, f"{self.base_url}/cards", params=clean_params(params), headers=headers)
        raw_cards = body.get("data", []) if isinstance(body, dict) else body
        if not isinstance(raw_cards, list):
            return []

        cards: List[JustTcgCard] = []
        for raw in raw_cards:
            try:
                cards.append(JustTcgCard.model_validate(raw))
            except ValidationError as e:
                logger.warning("Skipping unreadable JustTCG card", error=str(e))
        return cards

    def normalize(self, card: JustTcgCard) -> NormalizedPriceItem:
        variant = select_variant(card.variants)
        price = variant.market_price if variant else None
        image_url = TCGPLAYER_IMAGE_URL.format(tcgplayer_id=card.tcgplayerId) if card.tcgplayerId else None

        return NormalizedPriceItem(
            id=card.id,
            name=card.name,
            set_name=card.set_name or card.set_id,
            item_kind=ItemKind.SEALED_PRODUCT if is_sealed_card(card) else ItemKind.CARD,
            price_by_tier={GradeTier.UNGRADED: price},
            image_url=image_url,
            source=SOURCE,
            payload={
                "id": card.id,
                "prices": {"market": price},
                "priceHistory": _history_points(variant),
            },
        )

    async def search(self, query: str, set_filter: Optional[str] = None, limit: int = 20) -> List[NormalizedPriceItem]:
        cleaned = sanitize_query(query)
        cards = await self._get_cards({"q": cleaned, "game": self.game, "set": set_filter, "limit": limit})
        logger.info("JustTCG search", query=cleaned, results=len(cards))
        return [self.normalize(card) for card in cards]

    async def get_history(
        self,
        item_id: str,
        start: Optional[dt.date] = None,
        end: Optional[dt.date] = None,
        name_hint: Optional[str] = None,
    ) -> List[HistoryPoint]:
        """
        Daily history for one card, from its market-price variant.

        Without an id, the first search hit for `name_hint` is used.
        """
        duration = history_granularity(start, end)
        if item_id:
            cards = await self._get_cards({"cardId": item_id, "priceHistoryDuration": duration})
        elif name_hint:
            cards = await self._get_cards(
                {"q": sanitize_query(name_hint), "game": self.game, "limit": 1, "priceHistoryDuration": duration}
            )
        else:
            return []

        if not cards:
            return []

        by_day: Dict[dt.date, float] = {}
        for point in _history_points(select_variant(cards[0].variants)):
            day = dt.date.fromisoformat(point["date"])
            if start and day < start:
                continue
            if end and day > end:
                continue
            by_day[day] = point["price"]

        return [HistoryPoint(date=day, price=price, source=SOURCE) for day, price in sorted(by_day.items())]
