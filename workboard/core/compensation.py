"""Retry and compensation helpers for persistence calls.

`call_with_retry` bounds every storage call with a timeout and retries
transient failures with exponential backoff. `with_compensation` applies a
local change, persists it, and undoes the local change if persisting
fails or is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from workboard.core.errors import PersistenceError
from workboard.ports.repositories import DuplicateKeyError, RepositoryError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a storage call."""

    attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0
    timeout: float = 5.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt + 1` (attempt is 0-based)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        from workboard.config import settings

        return cls(
            attempts=settings.PERSISTENCE_RETRY_ATTEMPTS,
            base_delay=settings.PERSISTENCE_RETRY_BASE_DELAY,
            max_delay=settings.PERSISTENCE_RETRY_MAX_DELAY,
            timeout=settings.PERSISTENCE_TIMEOUT_SECONDS,
        )


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str,
) -> T:
    """Run `operation`, retrying RepositoryError and timeouts.

    DuplicateKeyError is not transient and propagates on the first attempt.
    Once the budget is spent, raises PersistenceError chained to the last
    failure.
    """
    last_error: BaseException | None = None

    for attempt in range(policy.attempts):
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout)
        except DuplicateKeyError:
            raise
        except (RepositoryError, asyncio.TimeoutError) as exc:
            last_error = exc
            if attempt + 1 < policy.attempts:
                delay = policy.delay_for(attempt)
                logger.warning(
                    "%s failed (%s), retrying in %.2fs (attempt %d/%d)",
                    description, exc or type(exc).__name__, delay,
                    attempt + 1, policy.attempts,
                )
                await asyncio.sleep(delay)

    logger.error(
        "%s failed after %d attempt(s): %s",
        description, policy.attempts, last_error or type(last_error).__name__,
    )
    raise PersistenceError(
        f"Could not {description}: storage is unavailable. Please try again."
    ) from last_error


async def with_compensation(
    apply: Callable[[], None],
    compensate: Callable[[], None],
    persist: Callable[[], Awaitable[T]],
) -> T:
    """Apply a local change, persist it, and revert the change on failure."""
    apply()
    try:
        return await persist()
    except BaseException:
        compensate()
        raise
