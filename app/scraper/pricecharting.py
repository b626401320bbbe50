"""
PriceCharting scraper for graded card/product prices.

PriceCharting has no public API but server-renders prices, so pages are
fetched with a plain httpx GET and handed to app.scraper.pricecharting_parser.

Flow:
1. search_by_name: search-results page -> candidates with {ungraded, grade7, grade8}
2. fetch_detail_prices: detail page -> all six tiers
3. search_with_graded_prices: 1 + bounded concurrent 2 for the top candidates
4. fetch_tethered_price: 2 for an already-known detail URL, one tier selected
5. search_comics / search_comics_with_graded_prices: 1 and 3 against the
   comic-books category, prices relabelled onto the comic grade axis

Successful page bodies are cached for SCRAPER_CACHE_TTL_SECONDS (1 hour by
default) to keep scraping load down.
"""

import asyncio
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

import httpx
import structlog
from cachetools import TTLCache

from app.core.errors import ParseError, UpstreamUnavailable
from app.schemas import ComicGrade, ComicPriceItem, GradeTier, ItemKind, NormalizedPriceItem
from app.scraper.http import send_get
from app.scraper.pricecharting_parser import (
    ScrapedProduct,
    is_detail_page,
    parse_detail_page,
    parse_detail_prices,
    parse_search_results,
)
from app.scraper.utils import BROWSER_HEADERS, build_search_url, sanitize_query

logger = structlog.get_logger(__name__)

SOURCE = "pricecharting"

# Grade hints stored on tethered assets. Older rows use the vendor-side
# field names (psa10, grade95).
GRADE_HINT_ALIASES: Dict[str, GradeTier] = {
    "ungraded": GradeTier.UNGRADED,
    "raw": GradeTier.UNGRADED,
    "grade7": GradeTier.GRADE7,
    "grade8": GradeTier.GRADE8,
    "grade9": GradeTier.GRADE9,
    "grade9_5": GradeTier.GRADE9_5,
    "grade95": GradeTier.GRADE9_5,
    "grade10": GradeTier.GRADE10,
    "psa10": GradeTier.GRADE10,
}

DEFAULT_TETHER_TIER = GradeTier.GRADE9

# Comic pages reuse the card price columns with a different meaning
COMIC_GRADE_BY_SLOT: Dict[GradeTier, ComicGrade] = {
    GradeTier.UNGRADED: ComicGrade.UNGRADED,
    GradeTier.GRADE7: ComicGrade.VG4,
    GradeTier.GRADE8: ComicGrade.FINE6,
    GradeTier.GRADE9: ComicGrade.VF8,
    GradeTier.GRADE9_5: ComicGrade.NM92,
    GradeTier.GRADE10: ComicGrade.NM98,
}


def tier_for_hint(grade_hint: Optional[str]) -> GradeTier:
    """Maps a stored grade hint to a tier; unknown or missing hints mean grade9."""
    if not grade_hint:
        return DEFAULT_TETHER_TIER
    return GRADE_HINT_ALIASES.get(grade_hint.strip().lower(), DEFAULT_TETHER_TIER)


class PriceChartingScraper:
    source = SOURCE

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://www.pricecharting.com",
        category: str = "pokemon-cards",
        cache_ttl: int = 3600,
        cache_maxsize: int = 512,
        detail_concurrency: int = 4,
        comic_category: str = "comic-books",
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.category = category
        self.comic_category = comic_category
        self.detail_concurrency = max(1, detail_concurrency)
        # url -> (html, final url after redirects)
        self._cache: TTLCache = TTLCache(maxsize=cache_maxsize, ttl=cache_ttl)

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings) -> "PriceChartingScraper":
        return cls(
            client,
            base_url=settings.PRICECHARTING_BASE,
            category=settings.PRICECHARTING_CATEGORY,
            cache_ttl=settings.SCRAPER_CACHE_TTL_SECONDS,
            cache_maxsize=settings.SCRAPER_CACHE_MAXSIZE,
            detail_concurrency=settings.SCRAPER_DETAIL_CONCURRENCY,
            comic_category=settings.PRICECHARTING_COMIC_CATEGORY,
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _fetch_page(self, url: str) -> Tuple[str, str]:
        cached = self._cache.get(url)
        if cached is not None:
            return cached

        response = await send_get(self.client, SOURCE, url, headers=BROWSER_HEADERS)
        page = (response.text, str(response.url))
        self._cache[url] = page
        return page

    async def _search_products(self, query: str, category: Optional[str] = None) -> List[ScrapedProduct]:
        cleaned = sanitize_query(query)
        category = category or self.category
        url = build_search_url(self.base_url, cleaned, category)
        html, final_url = await self._fetch_page(url)

        # Exact matches redirect straight to the product page
        if is_detail_page(html):
            product = parse_detail_page(html, final_url)
            logger.info("PriceCharting search redirected to detail page", query=cleaned, matched=bool(product))
            return [product] if product else []

        products = parse_search_results(html)
        logger.info("PriceCharting search", query=cleaned, category=category, results=len(products))
        return products

    def _to_item(self, product: ScrapedProduct) -> NormalizedPriceItem:
        return NormalizedPriceItem(
            id=product.product_id,
            name=product.name,
            set_name=product.set_name or None,
            item_kind=ItemKind.GRADED_COLLECTIBLE,
            price_by_tier=dict(product.prices),
            image_url=product.image_url,
            source_url=product.url,
            source=SOURCE,
        )

    async def search_by_name(self, query: str) -> List[NormalizedPriceItem]:
        """
        Searches the vendor by free text.

        Search-results rows only carry {ungraded, grade7, grade8}. When the
        vendor redirects to a detail page the single result has every tier.

        Raises:
            UpstreamUnavailable: non-2xx response, timeout or transport error
        """
        products = await self._search_products(query)
        return [self._to_item(product) for product in products]

    async def fetch_detail_prices(self, detail_url: str) -> Dict[GradeTier, float]:
        """Fetches one detail page and returns whatever tiers it prices."""
        html, _ = await self._fetch_page(detail_url)
        return parse_detail_prices(html)

    async def search_with_graded_prices(self, query: str, limit: int = 3) -> List[NormalizedPriceItem]:
        """
        Search, then fetch the top `limit` candidates' detail pages concurrently
        (at most `detail_concurrency` in flight) and merge the price maps.

        A candidate whose detail fetch fails is dropped. The search itself
        failing still raises.
        """
        candidates = (await self._search_products(query))[: max(0, limit)]
        return [self._to_item(product) for product in await self._with_detail_prices(candidates)]

    async def _with_detail_prices(self, candidates: List[ScrapedProduct]) -> List[ScrapedProduct]:
        if not candidates:
            return []

        semaphore = asyncio.Semaphore(self.detail_concurrency)

        async def enrich(product: ScrapedProduct) -> ScrapedProduct:
            if product.has_full_prices():
                return product
            async with semaphore:
                detail = await self.fetch_detail_prices(product.url)
            return replace(product, prices={**product.prices, **detail})

        results = await asyncio.gather(*(enrich(p) for p in candidates), return_exceptions=True)

        enriched: List[ScrapedProduct] = []
        for product, result in zip(candidates, results):
            if isinstance(result, (UpstreamUnavailable, ParseError)):
                logger.warning(
                    "Dropping candidate after detail fetch failure",
                    product_id=product.product_id,
                    url=product.url,
                    error=str(result),
                )
                continue
            if isinstance(result, BaseException):
                raise result
            enriched.append(result)

        return enriched

    async def fetch_tethered_price(self, detail_url: str, grade_hint: Optional[str] = None) -> Optional[float]:
        """
        Price for an asset bound to a known detail URL, skipping search.

        Returns None when the page has no price for the selected tier.
        """
        tier = tier_for_hint(grade_hint)
        prices = await self.fetch_detail_prices(detail_url)
        price = prices.get(tier)
        logger.info("Tethered price", url=detail_url, tier=tier.value, price=price)
        return price

    # Comics

    def _to_comic(self, product: ScrapedProduct) -> ComicPriceItem:
        return ComicPriceItem(
            id=product.product_id,
            name=product.name,
            set_name=product.set_name or None,
            prices={COMIC_GRADE_BY_SLOT[slot]: price for slot, price in product.prices.items()},
            image_url=product.image_url,
            source_url=product.url,
            source=SOURCE,
        )

    async def search_comics(self, query: str) -> List[ComicPriceItem]:
        """Comic-book search. Rows carry {ungraded, vg4, fine6}."""
        products = await self._search_products(query, category=self.comic_category)
        return [self._to_comic(product) for product in products]

    async def search_comics_with_graded_prices(self, query: str, limit: int = 3) -> List[ComicPriceItem]:
        """Comic counterpart of search_with_graded_prices, same fan-out bound."""
        candidates = (await self._search_products(query, category=self.comic_category))[: max(0, limit)]
        return [self._to_comic(product) for product in await self._with_detail_prices(candidates)]
