"""Market discovery: reconcile registry descriptors with locally derived ids.

Token ids reported by the Gamma API are never trusted on their own. Each
descriptor's YES/NO ids are recomputed from its condition id and the
computed values are what gets stored.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from polymarket_trade_indexer.decoder.constants import DEFAULT_ORACLE_ADDRESS
from polymarket_trade_indexer.decoder.ids import decode_market, is_valid_bytes32, normalize_token_id
from polymarket_trade_indexer.errors import (
    IndexerError,
    MarketNotFoundError,
    TokenIdMismatchError,
    ValidationError,
)
from polymarket_trade_indexer.retry import (
    DEFAULT_CONCURRENCY,
    RetryPolicy,
    gather_limited,
    retry_with_backoff,
)
from polymarket_trade_indexer.storage.repos import (
    EventDTO,
    EventRepository,
    MarketDTO,
    MarketRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from polymarket_trade_indexer.ingestor.gamma import MarketRegistry
    from polymarket_trade_indexer.ingestor.models import GammaMarket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketFailure:
    slug: str
    reason: str


@dataclass
class DiscoveryResult:
    """Outcome of discovering one event."""

    event_slug: str
    event_id: int
    markets: list[MarketDTO] = field(default_factory=list)
    failures: list[MarketFailure] = field(default_factory=list)

    @property
    def discovered(self) -> int:
        return len(self.markets)


def _claimed_matches(claimed: str, computed: str) -> bool:
    try:
        return normalize_token_id(claimed) == computed.lower()
    except ValidationError:
        return False


class MarketRegistryReconciler:
    """Fetches market descriptors and persists them with derived token ids."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: MarketRegistry,
        *,
        retry_policy: RetryPolicy | None = None,
        fail_closed: bool = False,
        default_oracle: str = DEFAULT_ORACLE_ADDRESS,
    ) -> None:
        """Initialize the reconciler.

        Args:
            session_factory: Async session factory for the market store.
            registry: Source of event and market descriptors.
            retry_policy: Retry policy for registry calls.
            fail_closed: Raise ``TokenIdMismatchError`` instead of warning when
                the registry's token ids disagree with the derived ones.
            default_oracle: Oracle used when a descriptor carries none.
        """
        self._session_factory = session_factory
        self._registry = registry
        self._retry_policy = retry_policy or RetryPolicy()
        self._fail_closed = fail_closed
        self._default_oracle = default_oracle

    async def reconcile(self, descriptor: GammaMarket, event_id: int | None) -> MarketDTO:
        """Derive, verify and upsert one market.

        Raises:
            ValidationError: If the descriptor is incomplete or malformed.
            TokenIdMismatchError: On an id mismatch in fail-closed mode.
        """
        if not descriptor.is_complete:
            raise ValidationError(
                f"Incomplete market descriptor {descriptor.slug or '(no slug)'}: "
                "conditionId, questionID and two clobTokenIds are required"
            )

        oracle = descriptor.oracle or self._default_oracle
        decoded = decode_market(descriptor.condition_id, descriptor.question_id, oracle)

        claimed_yes, claimed_no = descriptor.clob_token_ids[0], descriptor.clob_token_ids[1]
        yes_ok = _claimed_matches(claimed_yes, decoded.yes_token_id)
        no_ok = _claimed_matches(claimed_no, decoded.no_token_id)
        if not (yes_ok and no_ok):
            message = (
                f"Token id mismatch for {descriptor.slug}: "
                f"registry YES={claimed_yes} NO={claimed_no}, "
                f"computed YES={decoded.yes_token_id} NO={decoded.no_token_id}"
            )
            if self._fail_closed:
                raise TokenIdMismatchError(message)
            logger.warning("%s; storing computed ids", message)

        dto = MarketDTO(
            event_id=event_id,
            slug=descriptor.slug,
            condition_id=decoded.condition_id,
            question_id=decoded.question_id,
            oracle=decoded.oracle,
            collateral_token=decoded.collateral_token,
            yes_token_id=decoded.yes_token_id,
            no_token_id=decoded.no_token_id,
            neg_risk=descriptor.neg_risk,
            status=descriptor.status,
        )
        async with self._session_factory() as session, session.begin():
            stored = await MarketRepository(session).upsert(dto)

        logger.info("Market saved: %s (id=%s, status=%s)", stored.slug, stored.id, stored.status)
        return stored

    async def discover_event(self, slug: str) -> DiscoveryResult:
        """Fetch an event and reconcile each of its markets.

        A market that fails to reconcile is recorded in the result; its
        siblings are still processed.

        Raises:
            MarketNotFoundError: If the registry does not know the slug.
            RetryError: If the registry stays unreachable.
        """
        event = await retry_with_backoff(
            lambda: self._registry.get_event_by_slug(slug),
            self._retry_policy,
            description=f"get_event_by_slug({slug})",
        )
        if event is None:
            raise MarketNotFoundError(f"Event not found: {slug}")

        async with self._session_factory() as session, session.begin():
            event_id = await EventRepository(session).upsert(
                EventDTO(
                    slug=event.slug or slug,
                    title=event.title,
                    description=event.description,
                    neg_risk=event.neg_risk,
                )
            )
        logger.info("Event saved: %s (id=%d, %d markets)", slug, event_id, len(event.markets))

        result = DiscoveryResult(event_slug=slug, event_id=event_id)
        for descriptor in event.markets:
            try:
                result.markets.append(await self.reconcile(descriptor, event_id))
            except IndexerError as e:
                logger.error("Failed to reconcile market %s: %s", descriptor.slug, e)
                result.failures.append(MarketFailure(slug=descriptor.slug, reason=str(e)))

        logger.info(
            "Discovery for %s finished: %d saved, %d failed",
            slug,
            result.discovered,
            len(result.failures),
        )
        return result

    async def discover_events(
        self,
        slugs: Iterable[str],
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> dict[str, DiscoveryResult | BaseException]:
        """Discover several events in parallel.

        Returns:
            Mapping of slug to its result, or to the exception it raised.
        """
        unique = list(dict.fromkeys(slugs))
        outcomes = await gather_limited(unique, self.discover_event, concurrency=concurrency)
        return dict(zip(unique, outcomes, strict=True))

    async def dynamic_discover(self, condition_id: str) -> MarketDTO | None:
        """Ensure the market for ``condition_id`` is stored.

        Returns:
            The stored market, or None if the registry does not know it.

        Raises:
            ValidationError: If ``condition_id`` is malformed.
        """
        if not is_valid_bytes32(condition_id):
            raise ValidationError(f"Invalid conditionId: {condition_id!r}")

        async with self._session_factory() as session:
            existing = await MarketRepository(session).get_by_condition_id(condition_id)
        if existing is not None:
            return existing

        descriptor = await retry_with_backoff(
            lambda: self._registry.get_market_by_condition_id(condition_id),
            self._retry_policy,
            description=f"get_market_by_condition_id({condition_id})",
        )
        if descriptor is None:
            logger.warning("Registry has no market for condition %s", condition_id)
            return None

        try:
            return await self.reconcile(descriptor, event_id=None)
        except (ValidationError, TokenIdMismatchError) as e:
            logger.warning("Dynamic discovery rejected condition %s: %s", condition_id, e)
            return None

    async def discover_token(self, token_id: str) -> MarketDTO | None:
        """Find and store the market owning an outcome token.

        Returns:
            The stored market, or None if it cannot be resolved.
        """
        token = normalize_token_id(token_id)

        async with self._session_factory() as session:
            existing = await MarketRepository(session).find_by_token_id(token)
        if existing is not None:
            return existing

        descriptor = await retry_with_backoff(
            lambda: self._registry.get_market_by_token_id(token),
            self._retry_policy,
            description=f"get_market_by_token_id({token})",
        )
        if descriptor is None or not descriptor.condition_id:
            logger.warning("Registry has no market for token %s", token)
            return None

        market = await self.dynamic_discover(descriptor.condition_id)
        if market is None:
            return None
        if token not in (market.yes_token_id.lower(), market.no_token_id.lower()):
            logger.warning(
                "Token %s does not belong to derived market %s; leaving unresolved",
                token,
                market.slug,
            )
            return None
        return market
