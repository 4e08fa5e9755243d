"""Polymarket Gamma API client - event and market descriptors.

Uses httpx directly against the Gamma API. No auth needed.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from polymarket_trade_indexer.errors import TransientTransportError, ValidationError
from polymarket_trade_indexer.ingestor.models import GammaEvent, GammaMarket

logger = logging.getLogger(__name__)

GAMMA_API = "https://gamma-api.polymarket.com"
DEFAULT_TIMEOUT_SECONDS = 30.0


class MarketRegistry(Protocol):
    """Source of market descriptors keyed by slug, condition id or token id."""

    async def get_event_by_slug(self, slug: str) -> GammaEvent | None: ...

    async def get_market_by_condition_id(self, condition_id: str) -> GammaMarket | None: ...

    async def get_market_by_token_id(self, token_id: str) -> GammaMarket | None: ...


def _token_id_to_decimal(token_id: str) -> str:
    """Gamma indexes ``clob_token_ids`` by their decimal form."""
    raw = token_id.strip()
    try:
        if raw.startswith(("0x", "0X")):
            return str(int(raw, 16))
        return str(int(raw))
    except ValueError as e:
        raise ValidationError(f"Invalid token id: {token_id!r}") from e


def _first(payload: Any) -> dict[str, Any] | None:
    """Gamma list endpoints return a bare list (older deployments wrap it in ``data``)."""
    if isinstance(payload, dict):
        payload = payload.get("data", [payload] if payload.get("slug") else [])
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        return payload[0]
    return None


class GammaClient:
    """Async Gamma API client.

    404 responses and empty result sets are a soft miss (``None``); rate
    limiting, server errors and network failures raise
    ``TransientTransportError`` so callers can retry.
    """

    def __init__(
        self,
        api_url: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = (api_url or GAMMA_API).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def _get(self, path: str, params: dict[str, Any]) -> Any | None:
        url = f"{self._api_url}{path}"
        try:
            resp = await self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise TransientTransportError(f"Gamma request failed ({url}): {e}") from e

        if resp.status_code == 404:
            return None
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientTransportError(
                f"Gamma API returned {resp.status_code} for {url}"
            )
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransientTransportError(f"Gamma API error for {url}: {e}") from e
        return resp.json()

    async def get_event_by_slug(self, slug: str) -> GammaEvent | None:
        data = _first(await self._get("/events", {"slug": slug}))
        if data is None:
            logger.info("Gamma has no event with slug %s", slug)
            return None
        return GammaEvent.from_dict(data)

    async def get_market_by_condition_id(self, condition_id: str) -> GammaMarket | None:
        data = _first(await self._get("/markets", {"condition_ids": condition_id}))
        return GammaMarket.from_dict(data) if data is not None else None

    async def get_market_by_token_id(self, token_id: str) -> GammaMarket | None:
        data = _first(
            await self._get("/markets", {"clob_token_ids": _token_id_to_decimal(token_id)})
        )
        return GammaMarket.from_dict(data) if data is not None else None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
