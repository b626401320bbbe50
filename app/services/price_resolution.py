"""
Price resolution: one authoritative current price per asset.

Per asset, per refresh:

    SKIP             manual price without a tether, or priced within the staleness window
    TETHERED_LOOKUP  asset has pc_url -> scraper.fetch_tethered_price
    GRADED_LOOKUP    psa_grade on a card -> scraper.search_with_graded_prices, tier from grade label
    STANDARD_LOOKUP  sealed: sealed provider, card provider if that fails
                     card:   card provider
                     candidate whose id == external_id, else the first one,
                     priced with extract_market_price()

A failing or empty step falls through to the next one. UpstreamUnavailable
never escapes resolve(); ConfigurationError always does. A successful
resolution updates the asset and appends a snapshot.

Batch mode processes assets one at a time so scraper calls can be spaced
with SCRAPER_BATCH_DELAY_SECONDS.
"""

import asyncio
import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from app.core.config import Settings, settings as default_settings
from app.core.errors import ErrorHandler, UpstreamUnavailable
from app.core.logging_config import get_logger
from app.core.typing import ensure_int, ensure_utc, utc_now
from app.models.asset import Asset
from app.schemas import NormalizedPriceItem, RecordPricesResult, RefreshSummary
from app.services.price_extraction import extract_market_price, grade_to_tier
from app.services.price_store import PriceStore
from app.services.pricing_clients import PricingClients

logger = get_logger(__name__)

MANUAL_SOURCE = "manual"


class ResolutionStep(str, Enum):
    TETHERED_LOOKUP = "tethered"
    GRADED_LOOKUP = "graded"
    STANDARD_LOOKUP = "standard"


@dataclass
class ResolvedPrice:
    price: float
    source: str
    step: ResolutionStep
    item_id: Optional[str] = None


def plan_steps(asset: Asset) -> List[ResolutionStep]:
    """Lookup steps in the order they are tried."""
    steps: List[ResolutionStep] = []
    if asset.is_tethered:
        steps.append(ResolutionStep.TETHERED_LOOKUP)
    if asset.psa_grade and not asset.is_sealed:
        steps.append(ResolutionStep.GRADED_LOOKUP)
    steps.append(ResolutionStep.STANDARD_LOOKUP)
    return steps


def snapshot_source(asset: Asset, scraper_source: str, card_source: str, sealed_source: str) -> str:
    """
    Source tag for a snapshot of the asset's stored price: the provider that
    last resolved it. Assets priced before that was recorded fall back to
    the source their shape would normally resolve from.
    """
    if asset.manual_price and not asset.is_tethered:
        return MANUAL_SOURCE
    if asset.price_source:
        return asset.price_source
    if asset.is_tethered:
        return scraper_source
    if asset.is_sealed:
        return sealed_source
    if asset.psa_grade:
        return scraper_source
    return card_source


def pick_candidate(candidates: List[NormalizedPriceItem], external_id: Optional[str]) -> Optional[NormalizedPriceItem]:
    if not candidates:
        return None
    if external_id:
        for candidate in candidates:
            if candidate.id == external_id:
                return candidate
    return candidates[0]


class PriceResolver:
    def __init__(
        self,
        store: PriceStore,
        scraper,
        card_provider,
        sealed_provider,
        stale_after: dt.timedelta = dt.timedelta(hours=24),
        scraper_delay: float = 1.0,
        graded_limit: int = 3,
        search_limit: int = 5,
        clock: Callable[[], dt.datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.scraper = scraper
        self.card_provider = card_provider
        self.sealed_provider = sealed_provider
        self.stale_after = stale_after
        self.scraper_delay = scraper_delay
        self.graded_limit = graded_limit
        self.search_limit = search_limit
        self.clock = clock
        self.sleep = sleep
        self._scraper_calls = 0

    @classmethod
    def from_clients(
        cls,
        store: PriceStore,
        clients: PricingClients,
        settings: Optional[Settings] = None,
    ) -> "PriceResolver":
        settings = settings or default_settings
        return cls(
            store,
            scraper=clients.scraper,
            card_provider=clients.cards,
            sealed_provider=clients.sealed,
            stale_after=dt.timedelta(hours=settings.PRICE_STALE_HOURS),
            scraper_delay=settings.SCRAPER_BATCH_DELAY_SECONDS,
            graded_limit=settings.GRADED_SEARCH_LIMIT,
            search_limit=settings.PROVIDER_SEARCH_LIMIT,
        )

    def skip_reason(self, asset: Asset, now: Optional[dt.datetime] = None) -> Optional[str]:
        if asset.manual_price and not asset.is_tethered:
            return "manual_price"
        updated_at = ensure_utc(asset.price_updated_at)
        if updated_at is not None and (now or self.clock()) - updated_at < self.stale_after:
            return "fresh"
        return None

    async def _throttle_scraper(self) -> None:
        """Spaces consecutive scraper calls within one batch."""
        if self._scraper_calls and self.scraper_delay > 0:
            await self.sleep(self.scraper_delay)
        self._scraper_calls += 1

    async def _tethered_lookup(self, asset: Asset) -> Optional[ResolvedPrice]:
        await self._throttle_scraper()
        price = await self.scraper.fetch_tethered_price(asset.pc_url, asset.pc_grade_field)
        if price is None:
            return None
        return ResolvedPrice(price=price, source=self.scraper.source, step=ResolutionStep.TETHERED_LOOKUP)

    async def _graded_lookup(self, asset: Asset) -> Optional[ResolvedPrice]:
        tier = grade_to_tier(asset.psa_grade)
        await self._throttle_scraper()
        results = await self.scraper.search_with_graded_prices(asset.name, self.graded_limit)
        if not results:
            return None
        best = results[0]
        price = best.price_for(tier)
        if price is None:
            logger.info("Graded match has no price for tier", asset_id=asset.id, tier=tier.value, item_id=best.id)
            return None
        return ResolvedPrice(price=price, source=self.scraper.source, step=ResolutionStep.GRADED_LOOKUP, item_id=best.id)

    async def _standard_lookup(self, asset: Asset) -> Optional[ResolvedPrice]:
        if asset.is_sealed:
            try:
                candidates = await self.sealed_provider.search(asset.name, limit=self.search_limit)
            except UpstreamUnavailable as e:
                logger.warning("Sealed lookup failed, trying card provider", asset_id=asset.id, error=str(e))
                candidates = await self.card_provider.search(asset.name, limit=self.search_limit)
        else:
            candidates = await self.card_provider.search(asset.name, limit=self.search_limit)

        match = pick_candidate(candidates, asset.external_id)
        if match is None:
            return None
        price = extract_market_price(match.payload)
        if price is None:
            price = match.ungraded_price
        if price is None:
            return None
        return ResolvedPrice(price=price, source=match.source, step=ResolutionStep.STANDARD_LOOKUP, item_id=match.id)

    async def resolve(self, asset: Asset) -> Optional[ResolvedPrice]:
        """
        Runs the lookup steps for one asset. Returns None when every step
        failed or came back empty.
        """
        lookups = {
            ResolutionStep.TETHERED_LOOKUP: self._tethered_lookup,
            ResolutionStep.GRADED_LOOKUP: self._graded_lookup,
            ResolutionStep.STANDARD_LOOKUP: self._standard_lookup,
        }
        for step in plan_steps(asset):
            try:
                resolved = await lookups[step](asset)
            except UpstreamUnavailable as e:
                logger.warning("Lookup step failed", asset_id=asset.id, step=step.value, error=str(e))
                continue
            if resolved is not None:
                return resolved
            logger.info("Lookup step found nothing", asset_id=asset.id, step=step.value)
        return None

    async def refresh_asset(self, asset: Asset, now: Optional[dt.datetime] = None) -> Optional[ResolvedPrice]:
        """Resolve and persist one asset (price + snapshot). None means no price."""
        resolved = await self.resolve(asset)
        if resolved is None:
            logger.info("No price found", asset_id=asset.id, name=asset.name)
            return None

        asset_id = ensure_int(asset.id)
        self.store.update_asset_price(asset_id, resolved.price, now or self.clock(), source=resolved.source)
        self.store.insert_snapshot(asset_id, resolved.price, resolved.source)
        logger.info(
            "Price resolved",
            asset_id=asset.id,
            price=resolved.price,
            source=resolved.source,
            step=resolved.step.value,
        )
        return resolved

    async def refresh_prices(
        self,
        portfolio_id: Optional[int] = None,
        assets: Optional[List[Asset]] = None,
    ) -> RefreshSummary:
        """
        Refresh every stale asset. One asset failing never stops the batch;
        only ConfigurationError aborts it.
        """
        if assets is None:
            assets = self.store.get_assets(portfolio_id=portfolio_id)

        summary = RefreshSummary(total=len(assets))
        self._scraper_calls = 0
        now = self.clock()

        for asset in assets:
            reason = self.skip_reason(asset, now)
            if reason:
                summary.skipped += 1
                continue

            resolved = None
            with ErrorHandler("refresh_asset_price", context={"asset_id": asset.id, "name": asset.name}) as handler:
                resolved = await self.refresh_asset(asset, now)

            if handler.failed:
                summary.errors += 1
            elif resolved is None:
                summary.skipped += 1
            else:
                summary.updated += 1

        logger.info("Price refresh complete", **summary.model_dump())
        return summary

    def record_price_snapshots(self, assets: Optional[List[Asset]] = None) -> int:
        """
        Snapshot every asset that has a current price, refreshed or not.
        Calling it twice writes two rows per asset.
        """
        if assets is None:
            assets = self.store.get_assets()

        recorded = 0
        for asset in assets:
            if asset.current_price is None or asset.id is None:
                continue
            source = snapshot_source(
                asset,
                scraper_source=self.scraper.source,
                card_source=self.card_provider.source,
                sealed_source=self.sealed_provider.source,
            )
            with ErrorHandler("record_price_snapshot", context={"asset_id": asset.id}) as handler:
                self.store.insert_snapshot(asset.id, asset.current_price, source)
            if not handler.failed:
                recorded += 1

        logger.info("Price snapshots recorded", recorded=recorded, total=len(assets))
        return recorded

    async def record_prices(self, portfolio_id: Optional[int] = None) -> RecordPricesResult:
        """Scheduled entry point: refresh stale prices, then snapshot everything."""
        summary = await self.refresh_prices(portfolio_id=portfolio_id)
        recorded = self.record_price_snapshots(self.store.get_assets(portfolio_id=portfolio_id))
        return RecordPricesResult(refresh=summary, snapshots_recorded=recorded, timestamp=self.clock())
