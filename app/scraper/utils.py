import math
import re
import urllib.parse
from typing import Any, Optional

# Providers index by name, not printed number, so smart quotes and
# trailing card numbers are removed before searching.
QUOTE_REPLACEMENTS = [
    (re.compile("[‘’‚‛]"), "'"),
    (re.compile("[“”„‟]"), '"'),
]

CARD_NUMBER_SUFFIX_PATTERNS = [
    re.compile(r"\s+[-#]\s*[\d/]+\s*$"),  # "Charizard - 4", "Charizard #4/102"
    re.compile(r"\s+\d+/\d+\s*$"),  # "Charizard 4/102"
]

_NON_PRICE_CHARS = re.compile(r"[^\d.]")

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


def sanitize_query(query: str) -> str:
    """
    Normalizes a free-text card/product name for provider search.

    Examples:
        - "Professor’s Research - 178" -> "Professor's Research"
        - "Charizard #4" -> "Charizard"
        - "Pikachu 58/102" -> "Pikachu"
    """
    cleaned = query
    for pattern, replacement in QUOTE_REPLACEMENTS:
        cleaned = pattern.sub(replacement, cleaned)
    for pattern in CARD_NUMBER_SUFFIX_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()


def parse_price(text: Optional[str]) -> Optional[float]:
    """
    Parses a displayed price such as "$1,234.56".

    Every character except digits and "." is stripped. Zero means
    "not for sale" and, like unparsable text, yields None.
    """
    if not text:
        return None
    digits = _NON_PRICE_CHARS.sub("", text)
    if not digits:
        return None
    try:
        value = float(digits)
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def positive_number(value: Any) -> Optional[float]:
    """Returns value as float when it is a positive finite number (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def build_search_url(base_url: str, query: str, category: str) -> str:
    """Builds the vendor search URL restricted to one product category."""
    params = urllib.parse.urlencode({"q": query, "type": "prices", "category": category})
    return f"{base_url}/search-products?{params}"
