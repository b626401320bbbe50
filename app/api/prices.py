from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.api import deps
from app.core.config import settings
from app.schemas import ComicPriceResponse, GradedPriceResponse, HistoryPoint, NormalizedPriceItem
from app.services.catalog_search import CardSource, SearchKind, search_catalog
from app.services.price_extraction import comic_grade_to_field, grade_to_tier
from app.services.pricing_clients import PricingClients

router = APIRouter()


@router.get("/search", response_model=List[NormalizedPriceItem])
async def search_prices(
    q: str = Query(..., min_length=1),
    type: SearchKind = Query(SearchKind.ALL),
    set: Optional[str] = Query(None, description="Set name or id filter"),
    limit: int = Query(20, ge=1, le=100),
    card_source: CardSource = Query(CardSource.TCGPLAYER),
    clients: PricingClients = Depends(deps.get_pricing_clients),
):
    """
    Search the card and sealed catalogs. With type=all one provider may fail
    without failing the request. card_source=pokemonpricetracker reads cards
    from the PokemonPriceTracker card endpoint instead of JustTCG.
    """
    return await search_catalog(
        clients.cards, clients.sealed, q, kind=type, set_filter=set, limit=limit, card_source=card_source
    )


@router.get("/graded", response_model=GradedPriceResponse)
async def graded_price(
    q: str = Query(..., min_length=1),
    grade: Optional[str] = Query(None, description="Grade label, e.g. 'PSA 10'"),
    clients: PricingClients = Depends(deps.get_pricing_clients),
):
    tier = grade_to_tier(grade)
    results = await clients.scraper.search_with_graded_prices(q, settings.GRADED_SEARCH_LIMIT)
    price = results[0].price_for(tier) if results else None
    return GradedPriceResponse(query=q, grade=grade, tier=tier, price=price, results=results)


@router.get("/history", response_model=List[HistoryPoint])
async def provider_history(
    card_id: Optional[str] = Query(None),
    name: Optional[str] = Query(None),
    type: SearchKind = Query(SearchKind.CARD),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    clients: PricingClients = Depends(deps.get_pricing_clients),
):
    """Provider history as-is, without local snapshots."""
    provider = clients.sealed if type == SearchKind.SEALED else clients.cards
    return await provider.get_history(card_id or "", start_date, end_date, name_hint=name)


@router.get("/comics", response_model=ComicPriceResponse)
async def comic_prices(
    q: str = Query(..., min_length=1),
    grade: Optional[str] = Query(None, description="CGC/CBCS grade, e.g. 'CGC 9.8'"),
    clients: PricingClients = Depends(deps.get_pricing_clients),
):
    """Comic-book candidates priced per comic grade, with the price for `grade` when given."""
    results = await clients.scraper.search_comics_with_graded_prices(q, settings.COMIC_SEARCH_LIMIT)
    price_field = comic_grade_to_field(grade) if grade else None
    price = results[0].price_for(price_field) if results and price_field else None
    return ComicPriceResponse(query=q, grade=grade, price_field=price_field, price=price, results=results)
