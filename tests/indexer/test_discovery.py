"""Tests for market discovery and reconciliation."""

import logging

import pytest

from polymarket_trade_indexer.decoder.constants import DEFAULT_ORACLE_ADDRESS
from polymarket_trade_indexer.decoder.ids import decode_market
from polymarket_trade_indexer.errors import (
    MarketNotFoundError,
    RetryError,
    TokenIdMismatchError,
    ValidationError,
)
from polymarket_trade_indexer.indexer.discovery import DiscoveryResult, MarketRegistryReconciler
from polymarket_trade_indexer.ingestor.models import GammaEvent
from polymarket_trade_indexer.storage.repos import EventRepository, MarketRepository

CONDITION_ID = "0x" + "ab" * 32
QUESTION_ID = "0x" + "cd" * 32


@pytest.fixture
def reconciler(db, registry, fast_retry) -> MarketRegistryReconciler:
    return MarketRegistryReconciler(db.session_factory, registry, retry_policy=fast_retry)


async def stored_market(db, slug: str):
    async with db.session_factory() as session:
        return await MarketRepository(session).get_by_slug(slug)


class TestReconcile:
    """Tests for reconcile."""

    @pytest.mark.asyncio
    async def test_stores_derived_ids(self, db, reconciler, descriptor) -> None:
        market = await reconciler.reconcile(descriptor(), event_id=None)

        expected = decode_market(CONDITION_ID, QUESTION_ID, DEFAULT_ORACLE_ADDRESS)
        assert market.id is not None
        assert market.yes_token_id == expected.yes_token_id
        assert market.no_token_id == expected.no_token_id
        assert market.oracle == DEFAULT_ORACLE_ADDRESS
        assert market.status == "active"
        assert (await stored_market(db, "market-ab")) is not None

    @pytest.mark.asyncio
    async def test_is_idempotent(self, reconciler, descriptor) -> None:
        first = await reconciler.reconcile(descriptor(), event_id=None)
        second = await reconciler.reconcile(descriptor(closed=True), event_id=None)

        assert second.id == first.id
        assert second.status == "closed"

    @pytest.mark.asyncio
    async def test_hex_claimed_ids_match(self, reconciler, descriptor, caplog) -> None:
        expected = decode_market(CONDITION_ID, QUESTION_ID, DEFAULT_ORACLE_ADDRESS)
        with caplog.at_level(logging.WARNING):
            await reconciler.reconcile(
                descriptor(claimed=(expected.yes_token_id, expected.no_token_id)), event_id=None
            )
        assert "mismatch" not in caplog.text

    @pytest.mark.asyncio
    async def test_incomplete_descriptor(self, db, reconciler, descriptor) -> None:
        with pytest.raises(ValidationError, match="Incomplete"):
            await reconciler.reconcile(descriptor(clob_token_ids=("1",)), event_id=None)
        assert (await stored_market(db, "market-ab")) is None

    @pytest.mark.asyncio
    async def test_malformed_condition_id(self, reconciler, descriptor) -> None:
        with pytest.raises(ValidationError):
            await reconciler.reconcile(descriptor(condition_id="0x1234"), event_id=None)

    @pytest.mark.asyncio
    async def test_mismatch_fail_open_stores_computed_ids(
        self, db, reconciler, descriptor, caplog
    ) -> None:
        with caplog.at_level(logging.WARNING):
            market = await reconciler.reconcile(descriptor(claimed=("1", "2")), event_id=None)

        expected = decode_market(CONDITION_ID, QUESTION_ID, DEFAULT_ORACLE_ADDRESS)
        assert market.yes_token_id == expected.yes_token_id
        assert "Token id mismatch" in caplog.text

    @pytest.mark.asyncio
    async def test_mismatch_fail_closed_raises(self, db, registry, fast_retry, descriptor) -> None:
        reconciler = MarketRegistryReconciler(
            db.session_factory, registry, retry_policy=fast_retry, fail_closed=True
        )

        with pytest.raises(TokenIdMismatchError):
            await reconciler.reconcile(descriptor(claimed=("1", "2")), event_id=None)
        assert (await stored_market(db, "market-ab")) is None


class TestDiscoverEvent:
    """Tests for discover_event and discover_events."""

    @pytest.mark.asyncio
    async def test_stores_event_and_markets(self, db, registry, reconciler, descriptor) -> None:
        registry.events["weather"] = GammaEvent(
            slug="weather",
            title="Weather",
            markets=(
                descriptor("ab"),
                descriptor("cc"),
                descriptor("dd", clob_token_ids=()),
            ),
        )

        result = await reconciler.discover_event("weather")

        assert isinstance(result, DiscoveryResult)
        assert result.discovered == 2
        assert [f.slug for f in result.failures] == ["market-dd"]
        async with db.session_factory() as session:
            event = await EventRepository(session).get_by_slug("weather")
            page = await MarketRepository(session).list_by_event_id(
                result.event_id, limit=10, offset=0
            )
        assert event is not None and event.title == "Weather"
        assert page.total == 2

    @pytest.mark.asyncio
    async def test_missing_event(self, reconciler) -> None:
        with pytest.raises(MarketNotFoundError):
            await reconciler.discover_event("nope")

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, registry, reconciler, descriptor) -> None:
        registry.events["weather"] = GammaEvent(slug="weather", markets=(descriptor(),))
        registry.failures_left = 1

        result = await reconciler.discover_event("weather")

        assert result.discovered == 1
        assert registry.calls.count(("event", "weather")) == 2

    @pytest.mark.asyncio
    async def test_registry_down(self, registry, reconciler) -> None:
        registry.failures_left = 5
        with pytest.raises(RetryError):
            await reconciler.discover_event("weather")

    @pytest.mark.asyncio
    async def test_discover_events_isolates_failures(
        self, registry, reconciler, descriptor
    ) -> None:
        registry.events["weather"] = GammaEvent(slug="weather", markets=(descriptor("ab"),))
        registry.events["sports"] = GammaEvent(slug="sports", markets=(descriptor("cc"),))

        results = await reconciler.discover_events(
            ["weather", "missing", "sports", "weather"], concurrency=2
        )

        assert list(results) == ["weather", "missing", "sports"]
        assert isinstance(results["missing"], MarketNotFoundError)
        assert results["weather"].discovered == 1
        assert results["sports"].discovered == 1


class TestDynamicDiscovery:
    """Tests for dynamic_discover and discover_token."""

    @pytest.mark.asyncio
    async def test_invalid_condition_id(self, reconciler) -> None:
        with pytest.raises(ValidationError):
            await reconciler.dynamic_discover("0x1234")

    @pytest.mark.asyncio
    async def test_stores_unknown_market(self, registry, reconciler, descriptor) -> None:
        registry.add_market(descriptor())

        market = await reconciler.dynamic_discover(CONDITION_ID)

        assert market is not None
        assert market.event_id is None

    @pytest.mark.asyncio
    async def test_existing_market_skips_registry(self, registry, reconciler, descriptor) -> None:
        await reconciler.reconcile(descriptor(), event_id=None)

        market = await reconciler.dynamic_discover(CONDITION_ID.upper().replace("0X", "0x"))

        assert market is not None
        assert registry.calls == []

    @pytest.mark.asyncio
    async def test_registry_miss(self, reconciler) -> None:
        assert await reconciler.dynamic_discover(CONDITION_ID) is None

    @pytest.mark.asyncio
    async def test_rejected_descriptor_returns_none(self, db, registry, fast_retry, descriptor) -> None:
        registry.add_market(descriptor(claimed=("1", "2")))
        reconciler = MarketRegistryReconciler(
            db.session_factory, registry, retry_policy=fast_retry, fail_closed=True
        )
        assert await reconciler.dynamic_discover(CONDITION_ID) is None

    @pytest.mark.asyncio
    async def test_discover_token(self, registry, reconciler, descriptor) -> None:
        registry.add_market(descriptor())
        expected = decode_market(CONDITION_ID, QUESTION_ID, DEFAULT_ORACLE_ADDRESS)

        market = await reconciler.discover_token(expected.no_token_id)
        assert market is not None
        assert market.no_token_id == expected.no_token_id

        calls_before = len(registry.calls)
        again = await reconciler.discover_token(str(int(expected.no_token_id, 16)))
        assert again is not None and again.id == market.id
        assert len(registry.calls) == calls_before

    @pytest.mark.asyncio
    async def test_discover_unknown_token(self, reconciler) -> None:
        assert await reconciler.discover_token("0x" + "99" * 32) is None

    @pytest.mark.asyncio
    async def test_token_not_in_derived_market(self, registry, reconciler, descriptor) -> None:
        # Registry claims token 5 belongs to the market; derivation disagrees.
        registry.add_market(descriptor(claimed=("5", "6")))

        assert await reconciler.discover_token("5") is None
