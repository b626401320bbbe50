"""
Catalog search across both REST providers.

"all" queries the card and sealed providers concurrently and tolerates
one side failing; only when every queried provider fails is the error
raised. Results are sorted by ungraded price, highest first, unpriced last.

Card results come from JustTCG unless card_source selects the
PokemonPriceTracker card endpoint.
"""

import asyncio
from enum import Enum
from typing import List, Optional

from app.core.errors import UpstreamUnavailable
from app.core.logging_config import get_logger
from app.schemas import NormalizedPriceItem

logger = get_logger(__name__)


class SearchKind(str, Enum):
    CARD = "card"
    SEALED = "sealed"
    ALL = "all"


class CardSource(str, Enum):
    TCGPLAYER = "tcgplayer"
    POKEMONPRICETRACKER = "pokemonpricetracker"


def sort_by_price(items: List[NormalizedPriceItem]) -> List[NormalizedPriceItem]:
    return sorted(items, key=lambda item: (item.ungraded_price is None, -(item.ungraded_price or 0.0)))


async def search_catalog(
    card_provider,
    sealed_provider,
    query: str,
    kind: SearchKind = SearchKind.ALL,
    set_filter: Optional[str] = None,
    limit: int = 20,
    card_source: CardSource = CardSource.TCGPLAYER,
) -> List[NormalizedPriceItem]:
    calls = []
    if kind in (SearchKind.CARD, SearchKind.ALL):
        if card_source == CardSource.POKEMONPRICETRACKER:
            card_call = sealed_provider.search_cards(query, set_filter=set_filter, limit=limit)
        else:
            card_call = card_provider.search(query, set_filter=set_filter, limit=limit)
        calls.append(("card", card_call))
    if kind in (SearchKind.SEALED, SearchKind.ALL):
        calls.append(("sealed", sealed_provider.search(query, set_filter=set_filter, limit=limit)))

    results = await asyncio.gather(*(call for _, call in calls), return_exceptions=True)

    items: List[NormalizedPriceItem] = []
    failures: List[UpstreamUnavailable] = []
    for (name, _), result in zip(calls, results):
        if isinstance(result, UpstreamUnavailable):
            logger.warning("Catalog provider failed", provider=name, query=query, error=str(result))
            failures.append(result)
            continue
        if isinstance(result, BaseException):
            raise result
        items.extend(result)

    if failures and len(failures) == len(calls):
        raise failures[0]

    return sort_by_price(items)
