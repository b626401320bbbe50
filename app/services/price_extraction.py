"""
Canonical price extraction and grade label mapping.

extract_market_price() walks a provider-shaped record through a fixed
cascade and stops at the first positive number:

1. prices.market, prices.low
2. the same fields under a sub-provider key (prices.tcgplayer.market/low)
3. flat aliases on the item: marketPrice, latestPrice, tcgplayerPrice, price
4. the latest priceHistory entry, latest by ISO date string comparison
   (history may be a list of {date, price} or a {date: price} object)
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.schemas import ComicGrade, GradeTier
from app.scraper.utils import positive_number

PRICE_FIELDS = ("market", "low")
SUB_PROVIDER_KEYS = ("tcgplayer",)
FLAT_PRICE_ALIASES = ("marketPrice", "latestPrice", "tcgplayerPrice", "price")

# Substring priority: "10" before "9.5" before "9", otherwise "9" would
# swallow both.
GRADE_LABEL_RULES: List[Tuple[str, GradeTier]] = [
    ("10", GradeTier.GRADE10),
    ("9.5", GradeTier.GRADE9_5),
    ("9", GradeTier.GRADE9),
    ("8", GradeTier.GRADE8),
    ("7", GradeTier.GRADE7),
]
DEFAULT_GRADE_TIER = GradeTier.GRADE9


def grade_to_tier(label: Optional[str]) -> GradeTier:
    """
    Maps a grade label ("PSA 10", "CGC 9.5", "BGS 9") to a tier.

    The grading authority is dropped: PSA 10, CGC 10 and BGS 10 are all grade10.
    """
    text = (label or "").lower()
    for needle, tier in GRADE_LABEL_RULES:
        if needle in text:
            return tier
    return DEFAULT_GRADE_TIER


# Lowest numeric grade that reaches each comic price column, highest first
COMIC_GRADE_THRESHOLDS: List[Tuple[float, ComicGrade]] = [
    (9.8, ComicGrade.NM98),
    (9.0, ComicGrade.NM92),
    (8.0, ComicGrade.VF8),
    (6.0, ComicGrade.FINE6),
    (4.0, ComicGrade.VG4),
]
NUMERIC_GRADE_PATTERN = re.compile(r"\d+(?:\.\d+)?")


def comic_grade_to_field(label: Optional[str]) -> ComicGrade:
    """
    Maps a CGC/CBCS grade ("CGC 9.6", "9.0") to the comic price column at or
    below it. Labels without a number, and grades under 4.0, are ungraded.
    """
    match = NUMERIC_GRADE_PATTERN.search(label or "")
    if not match:
        return ComicGrade.UNGRADED
    grade = float(match.group(0))
    for threshold, field in COMIC_GRADE_THRESHOLDS:
        if grade >= threshold:
            return field
    return ComicGrade.UNGRADED


def _first_price(container: Any, keys: Iterable[str]) -> Optional[float]:
    if not isinstance(container, dict):
        return None
    for key in keys:
        price = positive_number(container.get(key))
        if price is not None:
            return price
    return None


def history_entries(history: Any) -> List[Tuple[str, float]]:
    """Normalizes either history shape into (iso_date, price) pairs."""
    pairs: List[Tuple[str, float]] = []
    if isinstance(history, dict):
        for date_key, raw_price in history.items():
            price = positive_number(raw_price)
            if isinstance(date_key, str) and price is not None:
                pairs.append((date_key, price))
    elif isinstance(history, list):
        for entry in history:
            if not isinstance(entry, dict):
                continue
            date_key = entry.get("date")
            price = positive_number(entry.get("price"))
            if isinstance(date_key, str) and price is not None:
                pairs.append((date_key, price))
    return pairs


def latest_history_price(history: Any) -> Optional[float]:
    entries = history_entries(history)
    if not entries:
        return None
    return max(entries, key=lambda pair: pair[0])[1]


def extract_market_price(payload: Optional[Dict[str, Any]]) -> Optional[float]:
    """Returns the market price of a provider record, or None when every tier misses."""
    if not isinstance(payload, dict):
        return None

    prices = payload.get("prices")

    price = _first_price(prices, PRICE_FIELDS)
    if price is not None:
        return price

    if isinstance(prices, dict):
        for key in SUB_PROVIDER_KEYS:
            price = _first_price(prices.get(key), PRICE_FIELDS)
            if price is not None:
                return price

    price = _first_price(payload, FLAT_PRICE_ALIASES)
    if price is not None:
        return price

    return latest_history_price(payload.get("priceHistory"))
