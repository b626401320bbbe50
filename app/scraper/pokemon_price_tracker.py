"""
PokemonPriceTracker API client: sealed-product pricing, plus a card endpoint
that catalog search can use in place of JustTCG.

API Endpoints:
- GET /api/v2/sealed-products?search=&set=&limit=[&includeHistory=&days=]
- GET /api/v2/cards?search=&set=&limit=

Responses are either a bare list or wrapped in `data`, `products` or `cards`.
Prices appear in several places depending on the record; the whole record
is kept as the item's payload and priced with extract_market_price().
"""

import datetime as dt
from typing import Any, ClassVar, Dict, List, Optional, Union

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.core.errors import ConfigurationError
from app.schemas import GradeTier, HistoryPoint, ItemKind, NormalizedPriceItem
from app.scraper.http import clean_params, get_json
from app.scraper.justtcg import TCGPLAYER_IMAGE_URL
from app.scraper.utils import sanitize_query
from app.services.price_extraction import extract_market_price, history_entries

logger = structlog.get_logger(__name__)

SOURCE = "pokemonpricetracker"
SEALED_PATH = "/api/v2/sealed-products"
CARDS_PATH = "/api/v2/cards"
LIST_KEYS = ("data", "products", "cards")
HISTORY_DAY_STEPS = (7, 30, 90, 180, 365)


class PptPriceBlock(BaseModel):
    model_config = ConfigDict(extra="allow")

    market: Optional[float] = None
    low: Optional[float] = None
    mid: Optional[float] = None
    high: Optional[float] = None
    tcgplayer: Optional[Dict[str, Any]] = None


class PptHistoryEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    date: str
    price: Optional[float] = None


class PptItem(BaseModel):
    """Fields shared by sealed products and cards."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    kind: ClassVar[ItemKind] = ItemKind.CARD

    id: Optional[str] = None
    mongo_id: Optional[str] = Field(default=None, alias="_id")
    name: str
    set: Optional[str] = None
    setName: Optional[str] = None
    tcgPlayerId: Optional[Union[str, int]] = None
    imageUrl: Optional[str] = None
    image: Optional[str] = None
    prices: Optional[PptPriceBlock] = None
    marketPrice: Optional[float] = None
    latestPrice: Optional[float] = None
    tcgplayerPrice: Optional[float] = None
    price: Optional[float] = None
    priceHistory: Optional[Union[List[PptHistoryEntry], Dict[str, Optional[float]]]] = None

    @property
    def item_id(self) -> str:
        return self.id or self.mongo_id or f"ppt-{self.kind.value}-{self.name}"

    @property
    def resolved_image_url(self) -> Optional[str]:
        if self.imageUrl or self.image:
            return self.imageUrl or self.image
        if self.tcgPlayerId:
            return TCGPLAYER_IMAGE_URL.format(tcgplayer_id=self.tcgPlayerId)
        return None

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PptSealedProduct(PptItem):
    kind: ClassVar[ItemKind] = ItemKind.SEALED_PRODUCT

    productType: Optional[str] = None


class PptCard(PptItem):
    kind: ClassVar[ItemKind] = ItemKind.CARD

    number: Optional[str] = None
    rarity: Optional[str] = None


def unwrap_list(body: Any) -> List[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in LIST_KEYS:
            value = body.get(key)
            if isinstance(value, list):
                return value
    return []


def history_days(start: Optional[dt.date], end: Optional[dt.date]) -> int:
    """Smallest supported window that covers the requested span."""
    end = end or dt.date.today()
    start = start or (end - dt.timedelta(days=90))
    span = max(0, (end - start).days)
    for days in HISTORY_DAY_STEPS:
        if span <= days:
            return days
    return HISTORY_DAY_STEPS[-1]


class PokemonPriceTrackerClient:
    """Sealed-product adapter. The API key is checked per call, not at construction."""

    source = SOURCE

    def __init__(self, client: httpx.AsyncClient, api_key: str, base_url: str = "https://www.pokemonpricetracker.com"):
        self.client = client
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("POKEMON_PRICE_API_KEY")
        return {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}

    async def _fetch(self, path: str, params: Dict[str, Any], model: type) -> List[PptItem]:
        headers = self._headers()
        body = await get_json(self.client, SOURCE, f"{self.base_url}{path}", params=clean_params(params), headers=headers)

        items: List[PptItem] = []
        for raw in unwrap_list(body):
            try:
                items.append(model.model_validate(raw))
            except ValidationError as e:
                logger.warning("Skipping unreadable PokemonPriceTracker record", path=path, error=str(e))
        return items

    def normalize(self, item: PptItem) -> NormalizedPriceItem:
        payload = item.payload()
        return NormalizedPriceItem(
            id=item.item_id,
            name=item.name,
            set_name=item.setName or item.set,
            item_kind=item.kind,
            price_by_tier={GradeTier.UNGRADED: extract_market_price(payload)},
            image_url=item.resolved_image_url,
            source=SOURCE,
            payload=payload,
        )

    async def search(self, query: str, set_filter: Optional[str] = None, limit: int = 20) -> List[NormalizedPriceItem]:
        """Sealed-product search."""
        cleaned = sanitize_query(query)
        items = await self._fetch(SEALED_PATH, {"search": cleaned, "set": set_filter, "limit": limit}, PptSealedProduct)
        logger.info("PokemonPriceTracker sealed search", query=cleaned, results=len(items))
        return [self.normalize(item) for item in items]

    async def search_cards(self, query: str, set_filter: Optional[str] = None, limit: int = 20) -> List[NormalizedPriceItem]:
        """Card search on the alternate endpoint."""
        cleaned = sanitize_query(query)
        items = await self._fetch(CARDS_PATH, {"search": cleaned, "set": set_filter, "limit": limit}, PptCard)
        logger.info("PokemonPriceTracker card search", query=cleaned, results=len(items))
        return [self.normalize(item) for item in items]

    async def get_history(
        self,
        item_id: str,
        start: Optional[dt.date] = None,
        end: Optional[dt.date] = None,
        name_hint: Optional[str] = None,
    ) -> List[HistoryPoint]:
        """
        Sealed-product history. The endpoint is searched by name, so the
        record whose id equals `item_id` is preferred over the first hit.
        """
        query = name_hint or item_id
        if not query:
            return []

        items = await self._fetch(
            SEALED_PATH,
            {
                "search": sanitize_query(query),
                "includeHistory": "true",
                "days": history_days(start, end),
                "limit": 5,
            },
            PptSealedProduct,
        )
        if not items:
            return []

        match = next((item for item in items if item_id and item.item_id == item_id), items[0])
        payload = match.payload()

        by_day: Dict[dt.date, float] = {}
        for date_key, price in history_entries(payload.get("priceHistory")):
            try:
                day = dt.date.fromisoformat(date_key[:10])
            except ValueError:
                continue
            if start and day < start:
                continue
            if end and day > end:
                continue
            by_day[day] = price

        return [HistoryPoint(date=day, price=price, source=SOURCE) for day, price in sorted(by_day.items())]
