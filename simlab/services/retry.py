"""
Bounded exponential backoff for backing-store and queue round-trips.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Tuple, Type, TypeVar

from pymongo.errors import DuplicateKeyError

from simlab.services.errors import JobError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    def __init__(self, attempts: int = 5, backoff_s: float = 0.2, max_backoff_s: float = 5.0) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = attempts
        self.backoff_s = backoff_s
        self.max_backoff_s = max_backoff_s

    def delay(self, attempt: int) -> float:
        return min(self.backoff_s * (2 ** (attempt - 1)), self.max_backoff_s)


async def call_with_retries(
    op: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...],
    raise_as: Type[JobError],
    what: str,
) -> T:
    """Run `op`, retrying transient failures; exhaustion raises `raise_as`."""

    attempt = 0
    while True:
        attempt += 1
        try:
            return await op()
        except retry_on as exc:
            if attempt >= policy.attempts:
                logger.error("%s failed after %d attempts: %s", what, attempt, exc)
                raise raise_as(f"{what}: {exc}") from exc
            delay = policy.delay(attempt)
            logger.warning("%s failed (attempt %d/%d), retrying in %.2fs: %s", what, attempt, policy.attempts, delay, exc)
            await asyncio.sleep(delay)


def insert_once(collection: Any, doc: Dict[str, Any], what: str) -> Callable[[], Awaitable[None]]:
    """Build a retryable `insert_one` for a doc with a fixed `_id`.

    When a reply is lost the first insert may already have landed; the retry
    then collides with our own `_id`, which counts as success.
    """

    tries = 0

    async def _insert() -> None:
        nonlocal tries
        tries += 1
        try:
            await collection.insert_one(doc)
        except DuplicateKeyError:
            if tries == 1:
                raise
            logger.info("%s: %s was already written by an earlier attempt", what, doc["_id"])

    return _insert
