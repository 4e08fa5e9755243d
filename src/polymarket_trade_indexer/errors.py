"""Exception taxonomy shared by the decoder, indexer and storage layers."""

from __future__ import annotations


class IndexerError(Exception):
    """Base exception for all trade indexer errors."""


class ValidationError(IndexerError, ValueError):
    """Raised when an identifier or address is malformed. Never retried."""


class IrreversibleDerivationError(IndexerError):
    """Raised when asked to invert a one-way identifier derivation."""


class DecodeError(IndexerError):
    """Raised when a log does not have the shape of a fill event."""


class UnresolvedMarketError(IndexerError):
    """Raised when a token id cannot be attached to a known market."""

    def __init__(self, token_id: str) -> None:
        super().__init__(f"No market found for token {token_id}")
        self.token_id = token_id


class MarketNotFoundError(IndexerError):
    """Raised when the external registry has no descriptor for a lookup."""


class TokenIdMismatchError(IndexerError):
    """Raised when claimed token ids disagree with the derived ones (fail-closed mode)."""


class TransientTransportError(IndexerError):
    """Raised for retryable upstream failures (network, provider, 429/5xx)."""


class FatalConfigError(IndexerError):
    """Raised when no block range can be derived for a sync run."""


class OperationTimeoutError(IndexerError, TimeoutError):
    """Raised when a unit of work does not finish before its deadline."""


class RetryError(IndexerError):
    """Raised when all retry attempts are exhausted."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        last_exception: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


class WindowError(IndexerError):
    """A whole block window failed after retries.

    Carried as a value in sync reports; raised only internally.
    """

    def __init__(self, from_block: int, to_block: int, reason: str) -> None:
        super().__init__(f"Window {from_block}-{to_block} failed: {reason}")
        self.from_block = from_block
        self.to_block = to_block
        self.reason = reason

    def to_dict(self) -> dict[str, int | str]:
        return {
            "from_block": self.from_block,
            "to_block": self.to_block,
            "reason": self.reason,
        }
