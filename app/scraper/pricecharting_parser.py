"""
Pattern-based parsing of PriceCharting HTML.

PriceCharting server-renders prices, so no browser or DOM parser is used:
rows and anchors are located by fixed identifier strings in the markup.
Everything vendor-markup-specific lives in this module so the fetching
layer (app.scraper.pricecharting) never touches raw HTML.

Detail page anchor -> tier:
    used_price        -> ungraded
    complete_price    -> grade7
    new_price         -> grade8
    graded_price      -> grade9
    box_only_price    -> grade9_5
    manual_only_price -> grade10
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from app.core.errors import ParseError, capture_message
from app.schemas import GradeTier
from app.scraper.utils import parse_price

logger = structlog.get_logger(__name__)

DETAIL_ANCHORS: Dict[str, GradeTier] = {
    "used_price": GradeTier.UNGRADED,
    "complete_price": GradeTier.GRADE7,
    "new_price": GradeTier.GRADE8,
    "graded_price": GradeTier.GRADE9,
    "box_only_price": GradeTier.GRADE9_5,
    "manual_only_price": GradeTier.GRADE10,
}

# Search result rows only show the first three price columns
SEARCH_ROW_TIERS = [GradeTier.UNGRADED, GradeTier.GRADE7, GradeTier.GRADE8]

ROW_PATTERN = re.compile(r'<tr id="product-(\d+)"[^>]*>(.*?)</tr>', re.DOTALL)
PRODUCT_ANCHOR_PATTERN = re.compile(
    r'<a[^>]*href="(https://www\.pricecharting\.com/game/[^"]+)"[^>]*>(.*?)</a>', re.DOTALL
)
SET_PATTERN = re.compile(r'href="/console/[^"]*"[^>]*>([^<]+)')
IMAGE_PATTERN = re.compile(r'src="(https://storage\.googleapis\.com/images\.pricecharting\.com/[^"]+)"')
ROW_PRICE_PATTERN = re.compile(r'class="js-price"[^>]*>([^<]*)')
TAG_PATTERN = re.compile(r"<[^>]+>")
PRODUCT_NAME_PATTERN = re.compile(r'<h1[^>]*id="product_name"[^>]*>([^<]+)')
TITLE_PATTERN = re.compile(r"<title>([^|<]+)")
PRODUCT_ID_PATTERN = re.compile(r"""product_id['":\s]+(\d+)""")
DETAIL_MARKERS = ('id="used_price"', 'id="graded_price"')

_anchor_patterns: Dict[str, re.Pattern] = {
    anchor_id: re.compile(
        rf'id="{anchor_id}"[^>]*>\s*<span[^>]*class="price[^"]*"[^>]*>([^<]*)', re.DOTALL
    )
    for anchor_id in DETAIL_ANCHORS
}


@dataclass
class ScrapedProduct:
    """One product as read off a search-results row or a detail page."""

    product_id: str
    name: str
    url: str
    set_name: str = ""
    image_url: Optional[str] = None
    prices: Dict[GradeTier, float] = field(default_factory=dict)

    def has_full_prices(self) -> bool:
        """True when the high tiers are present (i.e. parsed from a detail page)."""
        return GradeTier.GRADE9 in self.prices or GradeTier.GRADE10 in self.prices


def is_detail_page(html: str) -> bool:
    """The vendor redirects an exact-match search straight to the detail page."""
    return any(marker in html for marker in DETAIL_MARKERS)


def parse_detail_prices(html: str) -> Dict[GradeTier, float]:
    """
    Reads the six fixed price anchors. Missing anchors and zero prices
    are left out of the map.
    """
    prices: Dict[GradeTier, float] = {}
    for anchor_id, tier in DETAIL_ANCHORS.items():
        match = _anchor_patterns[anchor_id].search(html)
        if not match:
            continue
        price = parse_price(match.group(1))
        if price is not None:
            prices[tier] = price
    return prices


def _parse_row(product_id: str, row_html: str) -> ScrapedProduct:
    url = ""
    name = ""
    for anchor in PRODUCT_ANCHOR_PATTERN.finditer(row_html):
        href = anchor.group(1)
        text = TAG_PATTERN.sub("", anchor.group(2)).strip()
        if not url:
            url = href
        if text and not name:
            name = text

    if not url:
        raise ParseError(f"search row product-{product_id} has no product link")

    set_match = SET_PATTERN.search(row_html)
    image_match = IMAGE_PATTERN.search(row_html)

    prices: Dict[GradeTier, float] = {}
    cells = [value.strip() for value in ROW_PRICE_PATTERN.findall(row_html)]
    for tier, cell in zip(SEARCH_ROW_TIERS, cells):
        price = parse_price(cell)
        if price is not None:
            prices[tier] = price

    return ScrapedProduct(
        product_id=product_id,
        name=name,
        url=url,
        set_name=set_match.group(1).strip() if set_match else "",
        image_url=image_match.group(1) if image_match else None,
        prices=prices,
    )


def parse_search_results(html: str) -> List[ScrapedProduct]:
    """
    Parses every `product-<id>` row of a search-results page.

    A structurally malformed row is logged and skipped; its siblings are
    still returned.
    """
    products: List[ScrapedProduct] = []
    skipped = 0

    for row in ROW_PATTERN.finditer(html):
        product_id, row_html = row.group(1), row.group(2)
        try:
            products.append(_parse_row(product_id, row_html))
        except ParseError as e:
            skipped += 1
            logger.warning("Skipping malformed search row", product_id=product_id, error=str(e))

    if skipped and not products:
        capture_message(
            "All PriceCharting search rows failed to parse",
            level="warning",
            context={"skipped": skipped},
        )

    return products


def parse_detail_page(html: str, page_url: str) -> Optional[ScrapedProduct]:
    """
    Parses a full detail page into one product with every available tier.
    Returns None when the page has no recognizable product name.
    """
    name_match = PRODUCT_NAME_PATTERN.search(html) or TITLE_PATTERN.search(html)
    name = name_match.group(1).strip() if name_match else ""
    name = re.sub(r"\s*Prices$", "", name).strip()
    if not name:
        return None

    clean_url = page_url.split("?")[0]
    id_match = PRODUCT_ID_PATTERN.search(html)
    product_id = id_match.group(1) if id_match else clean_url.rstrip("/").split("/")[-1] or "unknown"

    set_match = SET_PATTERN.search(html)
    image_match = IMAGE_PATTERN.search(html)

    return ScrapedProduct(
        product_id=product_id,
        name=name,
        url=clean_url,
        set_name=set_match.group(1).strip() if set_match else "",
        image_url=image_match.group(1) if image_match else None,
        prices=parse_detail_prices(html),
    )
