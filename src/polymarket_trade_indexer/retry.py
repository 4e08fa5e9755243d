"""Retry, timeout and bounded-concurrency helpers for upstream calls.

Every call into the chain transport or the market registry goes through
``retry_with_backoff`` so transient failures are absorbed with exponential
backoff before they escalate to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from polymarket_trade_indexer.errors import (
    OperationTimeoutError,
    RetryError,
    TransientTransportError,
)

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 2.0
DEFAULT_CONCURRENCY = 5

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try a call and how long to wait in between.

    The delay before retry ``n`` (0-based) is ``base_delay_seconds * 2**n``.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    retry_on: tuple[type[BaseException], ...] = field(
        default=(TransientTransportError, OperationTimeoutError)
    )
    attempt_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_seconds * (2**attempt)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    description: str = "operation",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Await ``fn()`` until it succeeds or the policy's attempts run out.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        policy: Retry policy (defaults to ``RetryPolicy()``).
        description: Human-readable name used in log lines and errors.
        sleep: Injected sleep, for tests.

    Returns:
        The first successful result.

    Raises:
        RetryError: If every attempt failed with a retryable exception.
        Exception: Any non-retryable exception, immediately.
    """
    policy = policy or RetryPolicy()
    last_exception: BaseException | None = None

    for attempt in range(policy.max_attempts):
        try:
            if policy.attempt_timeout_seconds is not None:
                return await with_timeout(
                    fn(),
                    policy.attempt_timeout_seconds,
                    message=f"{description} timed out",
                )
            return await fn()
        except policy.retry_on as e:
            last_exception = e
            if attempt == policy.max_attempts - 1:
                break

            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
                description,
                attempt + 1,
                policy.max_attempts,
                e,
                delay,
            )
            await sleep(delay)

    raise RetryError(
        f"All {policy.max_attempts} attempts failed for {description}: {last_exception}",
        attempts=policy.max_attempts,
        last_exception=last_exception,
    )


def with_retry(
    policy: RetryPolicy | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator form of ``retry_with_backoff`` for coroutine functions."""

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await retry_with_backoff(
                lambda: func(*args, **kwargs),
                policy,
                description=func.__name__,
            )

        return wrapper

    return decorator


def _consume_result(task: asyncio.Future[Any]) -> None:
    # Abandoned work may still fail later; retrieve it so asyncio does not warn.
    if not task.cancelled():
        exc = task.exception()
        if exc is not None:
            logger.debug("Abandoned operation finished with error: %s", exc)


async def with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    *,
    message: str = "Operation timed out",
) -> T:
    """Race ``awaitable`` against a deadline.

    Only the wait is abandoned on timeout; the underlying operation keeps
    running in the background.

    Raises:
        OperationTimeoutError: If the deadline elapses first.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout_seconds)
    except asyncio.TimeoutError as e:
        task.add_done_callback(_consume_result)
        raise OperationTimeoutError(f"{message} ({timeout_seconds:.3f}s)") from e


async def gather_limited(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> Sequence[R | BaseException]:
    """Run ``fn`` over ``items`` with at most ``concurrency`` in flight.

    Results (or raised exceptions) are returned in input order. A failing
    item never cancels its siblings.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    semaphore = asyncio.Semaphore(concurrency)

    async def run(item: T) -> R:
        async with semaphore:
            return await fn(item)

    return await asyncio.gather(*(run(item) for item in items), return_exceptions=True)
