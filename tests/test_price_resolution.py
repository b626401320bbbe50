"""
Tests for the price resolution engine.

Tests cover:
- Step planning and skip rules (manual, freshness window)
- Each lookup path (tethered, graded, standard card, standard sealed)
- Fall-through between steps on failure or empty results
- Batch isolation (one failing asset never stops the batch)
- ConfigurationError aborting the batch
- The second snapshot pass and its source tags
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.errors import ConfigurationError, UpstreamError, UpstreamUnavailable
from app.models.asset import Asset, AssetType
from app.schemas import GradeTier, ItemKind, NormalizedPriceItem
from app.services.price_resolution import (
    PriceResolver,
    ResolutionStep,
    pick_candidate,
    plan_steps,
    snapshot_source,
)
from app.services.price_store import PriceStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def card_item(item_id: str, price, source: str = "tcgplayer", kind: ItemKind = ItemKind.CARD) -> NormalizedPriceItem:
    return NormalizedPriceItem(
        id=item_id,
        name=f"item {item_id}",
        item_kind=kind,
        source=source,
        price_by_tier={GradeTier.UNGRADED: price},
        payload={"id": item_id, "prices": {"market": price}},
    )


def graded_item(item_id: str, prices) -> NormalizedPriceItem:
    return NormalizedPriceItem(
        id=item_id,
        name=f"graded {item_id}",
        item_kind=ItemKind.GRADED_COLLECTIBLE,
        source="pricecharting",
        price_by_tier=prices,
    )


def make_scraper():
    scraper = MagicMock()
    scraper.source = "pricecharting"
    scraper.fetch_tethered_price = AsyncMock(return_value=None)
    scraper.search_with_graded_prices = AsyncMock(return_value=[])
    return scraper


def make_provider(source: str):
    provider = MagicMock()
    provider.source = source
    provider.search = AsyncMock(return_value=[])
    return provider


@pytest.fixture
def store(test_session) -> PriceStore:
    return PriceStore(test_session)


@pytest.fixture
def scraper():
    return make_scraper()


@pytest.fixture
def cards():
    return make_provider("tcgplayer")


@pytest.fixture
def sealed():
    return make_provider("pokemonpricetracker")


@pytest.fixture
def resolver(store, scraper, cards, sealed) -> PriceResolver:
    return PriceResolver(
        store,
        scraper=scraper,
        card_provider=cards,
        sealed_provider=sealed,
        stale_after=timedelta(hours=24),
        scraper_delay=1.0,
        clock=lambda: NOW,
        sleep=AsyncMock(),
    )


class TestPlanning:
    """Tests for plan_steps, snapshot_source and pick_candidate."""

    def test_plain_card(self):
        assert plan_steps(Asset(name="x")) == [ResolutionStep.STANDARD_LOOKUP]

    def test_tethered_graded_card(self):
        asset = Asset(name="x", pc_url="https://www.pricecharting.com/game/a/b", psa_grade="PSA 9")
        assert plan_steps(asset) == [
            ResolutionStep.TETHERED_LOOKUP,
            ResolutionStep.GRADED_LOOKUP,
            ResolutionStep.STANDARD_LOOKUP,
        ]

    def test_graded_sealed_skips_graded_lookup(self):
        asset = Asset(name="x", asset_type=AssetType.SEALED.value, psa_grade="PSA 10")
        assert plan_steps(asset) == [ResolutionStep.STANDARD_LOOKUP]

    def test_snapshot_source_tags(self):
        sources = ("pricecharting", "tcgplayer", "pokemonpricetracker")
        assert snapshot_source(Asset(name="x", pc_url="u", manual_price=True), *sources) == "pricecharting"
        assert snapshot_source(Asset(name="x", manual_price=True), *sources) == "manual"
        assert snapshot_source(Asset(name="x", asset_type="sealed"), *sources) == "pokemonpricetracker"
        assert snapshot_source(Asset(name="x", psa_grade="PSA 10"), *sources) == "pricecharting"
        assert snapshot_source(Asset(name="x"), *sources) == "tcgplayer"

    def test_pick_candidate_prefers_external_id(self):
        candidates = [card_item("a", 1.0), card_item("b", 2.0)]
        assert pick_candidate(candidates, "b").id == "b"
        assert pick_candidate(candidates, "zzz").id == "a"
        assert pick_candidate(candidates, None).id == "a"
        assert pick_candidate([], "b") is None


class TestSkipRules:
    """Tests for PriceResolver.skip_reason."""

    def test_manual_untethered_is_skipped(self, resolver):
        assert resolver.skip_reason(Asset(name="x", manual_price=True)) == "manual_price"

    def test_manual_tethered_is_resolved(self, resolver):
        asset = Asset(name="x", manual_price=True, pc_url="https://www.pricecharting.com/game/a/b")
        assert resolver.skip_reason(asset) is None

    def test_fresh_price_is_skipped(self, resolver):
        asset = Asset(name="x", current_price=5.0, price_updated_at=NOW - timedelta(hours=1))
        assert resolver.skip_reason(asset) == "fresh"

    def test_naive_timestamp_treated_as_utc(self, resolver):
        asset = Asset(name="x", current_price=5.0, price_updated_at=(NOW - timedelta(hours=2)).replace(tzinfo=None))
        assert resolver.skip_reason(asset) == "fresh"

    def test_stale_price_is_resolved(self, resolver):
        asset = Asset(name="x", current_price=5.0, price_updated_at=NOW - timedelta(hours=25))
        assert resolver.skip_reason(asset) is None


class TestResolve:
    """Tests for PriceResolver.resolve per lookup path."""

    @pytest.mark.asyncio
    async def test_standard_card_matches_external_id(self, resolver, cards, sample_assets):
        cards.search.return_value = [card_item("zz-9", 10.0), card_item("xy-1", 42.5)]

        resolved = await resolver.resolve(sample_assets[0])

        assert resolved.price == 42.5
        assert resolved.source == "tcgplayer"
        assert resolved.step == ResolutionStep.STANDARD_LOOKUP
        assert resolved.item_id == "xy-1"
        cards.search.assert_awaited_once_with("Charizard", limit=5)

    @pytest.mark.asyncio
    async def test_graded_lookup_uses_grade_tier(self, resolver, scraper, cards, sample_assets):
        scraper.search_with_graded_prices.return_value = [
            graded_item("p1", {GradeTier.GRADE9: 300.0, GradeTier.GRADE10: 900.0}),
            graded_item("p2", {GradeTier.GRADE10: 1.0}),
        ]

        resolved = await resolver.resolve(sample_assets[1])

        assert resolved.price == 900.0
        assert resolved.source == "pricecharting"
        assert resolved.step == ResolutionStep.GRADED_LOOKUP
        cards.search.assert_not_called()

    @pytest.mark.asyncio
    async def test_graded_missing_tier_falls_through(self, resolver, scraper, cards, sample_assets):
        scraper.search_with_graded_prices.return_value = [graded_item("p1", {GradeTier.GRADE9: 300.0})]
        cards.search.return_value = [card_item("c1", 20.0)]

        resolved = await resolver.resolve(sample_assets[1])

        assert resolved.step == ResolutionStep.STANDARD_LOOKUP
        assert resolved.price == 20.0

    @pytest.mark.asyncio
    async def test_tethered_lookup(self, resolver, scraper, sample_assets):
        scraper.fetch_tethered_price.return_value = 1500.0

        resolved = await resolver.resolve(sample_assets[3])

        assert resolved.price == 1500.0
        assert resolved.step == ResolutionStep.TETHERED_LOOKUP
        scraper.fetch_tethered_price.assert_awaited_once_with(sample_assets[3].pc_url, "grade10")

    @pytest.mark.asyncio
    async def test_tethered_failure_falls_through(self, resolver, scraper, cards, sample_assets):
        scraper.fetch_tethered_price.side_effect = UpstreamError("pricecharting", 503, "down")
        cards.search.return_value = [card_item("c1", 20.0)]

        resolved = await resolver.resolve(sample_assets[3])

        assert resolved.step == ResolutionStep.STANDARD_LOOKUP
        assert resolved.price == 20.0

    @pytest.mark.asyncio
    async def test_sealed_uses_sealed_provider(self, resolver, sealed, cards, sample_assets):
        sealed.search.return_value = [
            card_item("etb-151", 64.99, source="pokemonpricetracker", kind=ItemKind.SEALED_PRODUCT)
        ]

        resolved = await resolver.resolve(sample_assets[2])

        assert resolved.price == 64.99
        assert resolved.source == "pokemonpricetracker"
        cards.search.assert_not_called()

    @pytest.mark.asyncio
    async def test_sealed_failure_falls_back_to_card_provider(self, resolver, sealed, cards, sample_assets):
        sealed.search.side_effect = UpstreamUnavailable("pokemonpricetracker", "timed out")
        cards.search.return_value = [card_item("b1", 99.0)]

        resolved = await resolver.resolve(sample_assets[2])

        assert resolved.price == 99.0
        assert resolved.source == "tcgplayer"

    @pytest.mark.asyncio
    async def test_unpriced_candidate_gives_none(self, resolver, cards, sample_assets):
        cards.search.return_value = [
            NormalizedPriceItem(id="xy-1", name="Charizard", source="tcgplayer", payload={"prices": {}})
        ]
        assert await resolver.resolve(sample_assets[0]) is None

    @pytest.mark.asyncio
    async def test_every_step_failing_gives_none(self, resolver, scraper, cards, sample_assets):
        scraper.search_with_graded_prices.side_effect = UpstreamUnavailable("pricecharting", "down")
        cards.search.side_effect = UpstreamUnavailable("tcgplayer", "down")

        assert await resolver.resolve(sample_assets[1]) is None

    @pytest.mark.asyncio
    async def test_configuration_error_escapes(self, resolver, cards, sample_assets):
        cards.search.side_effect = ConfigurationError("JUSTTCG_API_KEY")

        with pytest.raises(ConfigurationError):
            await resolver.resolve(sample_assets[0])


class TestRefreshPrices:
    """Tests for PriceResolver.refresh_prices (batch mode)."""

    @pytest.mark.asyncio
    async def test_resolved_price_is_persisted_with_snapshot(self, resolver, store, cards, sample_assets):
        cards.search.return_value = [card_item("zz-9", 10.0), card_item("xy-1", 42.5)]

        summary = await resolver.refresh_prices(assets=[sample_assets[0]])

        assert summary.updated == 1
        asset = store.get_asset(1)
        assert asset.current_price == 42.5
        assert asset.price_updated_at is not None
        snapshots = store.get_snapshots(1)
        assert [(s.price, s.source) for s in snapshots] == [(42.5, "tcgplayer")]

    @pytest.mark.asyncio
    async def test_one_failing_asset_does_not_stop_batch(self, resolver, store, scraper, cards, sealed, sample_assets):
        async def card_search(query, limit=5, set_filter=None):
            if query == "Charizard":
                return [card_item("xy-1", 42.5)]
            raise UpstreamUnavailable("tcgplayer", "down")

        cards.search.side_effect = card_search
        scraper.search_with_graded_prices.side_effect = UpstreamUnavailable("pricecharting", "down")
        sealed.search.return_value = [card_item("etb-151", 64.99, source="pokemonpricetracker")]
        scraper.fetch_tethered_price.side_effect = RuntimeError("unexpected markup")

        summary = await resolver.refresh_prices(portfolio_id=1)

        assert summary.total == 5
        assert summary.updated == 2
        assert summary.skipped == 2  # graded card with no price + manual card
        assert summary.errors == 1  # tethered card
        assert store.get_asset(1).current_price == 42.5
        assert store.get_asset(3).current_price == 64.99
        assert store.get_asset(2).current_price is None

    @pytest.mark.asyncio
    async def test_scraper_calls_are_spaced(self, resolver, scraper, cards, sample_assets):
        scraper.fetch_tethered_price.return_value = 100.0
        scraper.search_with_graded_prices.return_value = [graded_item("p1", {GradeTier.GRADE10: 900.0})]

        await resolver.refresh_prices(assets=[sample_assets[1], sample_assets[3]])

        resolver.sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_configuration_error_aborts_batch(self, resolver, cards, sealed, sample_assets):
        cards.search.side_effect = ConfigurationError("JUSTTCG_API_KEY")

        with pytest.raises(ConfigurationError):
            await resolver.refresh_prices(assets=[sample_assets[0], sample_assets[2]])
        sealed.search.assert_not_called()

    @pytest.mark.asyncio
    async def test_fresh_assets_are_not_looked_up(self, resolver, store, cards, sample_assets):
        store.update_asset_price(1, 40.0, NOW - timedelta(hours=2))

        summary = await resolver.refresh_prices(assets=[store.get_asset(1)])

        assert summary.skipped == 1
        cards.search.assert_not_called()


class TestSnapshotPass:
    """Tests for record_price_snapshots and record_prices."""

    def test_snapshots_every_priced_asset(self, resolver, store, sample_assets):
        recorded = resolver.record_price_snapshots()

        # only the manual card has a price
        assert recorded == 1
        assert [(s.price, s.source) for s in store.get_snapshots(5)] == [(12.0, "manual")]

    def test_running_twice_writes_two_rows(self, resolver, store, sample_assets):
        resolver.record_price_snapshots()
        resolver.record_price_snapshots()

        assert len(store.get_snapshots(5)) == 2

    @pytest.mark.asyncio
    async def test_record_prices_refreshes_then_snapshots(self, resolver, store, cards, sample_assets):
        cards.search.side_effect = _charizard_only

        result = await resolver.record_prices(portfolio_id=1)

        assert result.refresh.updated == 1
        # Charizard (refreshed) and Mewtwo (manual)
        assert result.snapshots_recorded == 2
        assert result.timestamp == NOW
        # one row from resolution, one from the second pass
        assert [s.source for s in store.get_snapshots(1)] == ["tcgplayer", "tcgplayer"]


async def _charizard_only(query, **kwargs):
    if query == "Charizard":
        return [card_item("xy-1", 42.5)]
    return []


class TestSnapshotSourceFollowsResolution:
    """The second pass tags snapshots with the provider that actually priced the asset."""

    @pytest.mark.asyncio
    async def test_graded_card_priced_by_card_provider(self, resolver, store, scraper, cards, sample_assets):
        scraper.search_with_graded_prices.return_value = []
        cards.search.side_effect = _pikachu_only

        await resolver.record_prices(portfolio_id=1)

        assert store.get_asset(2).price_source == "tcgplayer"
        assert [(s.price, s.source) for s in store.get_snapshots(2)] == [(5.0, "tcgplayer"), (5.0, "tcgplayer")]

    @pytest.mark.asyncio
    async def test_sealed_priced_by_card_fallback(self, resolver, store, sealed, cards, sample_assets):
        sealed.search.side_effect = UpstreamUnavailable("pokemonpricetracker", "timed out")
        cards.search.return_value = [card_item("b1", 99.0)]

        await resolver.refresh_prices(assets=[sample_assets[2]])
        resolver.record_price_snapshots([store.get_asset(3)])

        assert [s.source for s in store.get_snapshots(3)] == ["tcgplayer", "tcgplayer"]

    def test_stored_source_wins_over_asset_shape(self):
        sources = ("pricecharting", "tcgplayer", "pokemonpricetracker")
        graded = Asset(name="x", psa_grade="PSA 10", price_source="tcgplayer")
        assert snapshot_source(graded, *sources) == "tcgplayer"
        # a manual price set after an automatic one is still tagged manual
        manual = Asset(name="x", manual_price=True, price_source="tcgplayer")
        assert snapshot_source(manual, *sources) == "manual"

    def test_update_asset_price_keeps_source_when_not_given(self, store, sample_assets):
        store.update_asset_price(1, 40.0, NOW, source="tcgplayer")
        store.update_asset_price(1, 41.0, NOW)

        assert store.get_asset(1).price_source == "tcgplayer"


async def _pikachu_only(query, **kwargs):
    if query == "Pikachu Illustrator":
        return [card_item("xy-1", 5.0)]
    return []
