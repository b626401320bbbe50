"""
Build-once container for the outbound pricing clients.

One httpx.AsyncClient is shared by the PriceCharting scraper and both
provider adapters. The container is created in the FastAPI lifespan (or by
a script) and handed to whatever needs it; nothing is cached at module level.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import Settings, settings as default_settings
from app.scraper.http import build_http_client
from app.scraper.justtcg import JustTcgClient
from app.scraper.pokemon_price_tracker import PokemonPriceTrackerClient
from app.scraper.pricecharting import PriceChartingScraper


@dataclass
class PricingClients:
    http: httpx.AsyncClient
    scraper: PriceChartingScraper
    cards: JustTcgClient
    sealed: PokemonPriceTrackerClient

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "PricingClients":
        settings = settings or default_settings
        http = build_http_client(settings.HTTP_TIMEOUT_SECONDS, transport=transport)
        return cls(
            http=http,
            scraper=PriceChartingScraper.from_settings(http, settings),
            cards=JustTcgClient(
                http,
                api_key=settings.JUSTTCG_API_KEY,
                base_url=settings.JUSTTCG_API_BASE,
                game=settings.JUSTTCG_GAME,
            ),
            sealed=PokemonPriceTrackerClient(
                http,
                api_key=settings.POKEMON_PRICE_API_KEY,
                base_url=settings.POKEMON_PRICE_API_BASE,
            ),
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "PricingClients":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
