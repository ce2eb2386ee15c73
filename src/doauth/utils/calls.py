"""Helpers for awaiting external calls: deadlines and bounded retries."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from doauth.errors.doauth_errors import DOAuthError
from doauth.errors.external_errors import ExternalTimeoutError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_timeout(awaitable: Awaitable[T], *, timeout: float, operation: str) -> T:
    """Await *awaitable*, converting a missed deadline into ``ExternalTimeoutError``.

    A timed-out call is treated as failed; it is never retried here.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as exc:
        raise ExternalTimeoutError(operation, timeout) from exc


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    backoff: float,
    operation: str,
    before_retry: Callable[[DOAuthError], Awaitable[None]] | None = None,
) -> T:
    """Run *func*, retrying only ``DOAuthError``s flagged as retryable.

    Waits ``backoff * 2**n`` seconds before retry ``n + 1`` and awaits
    *before_retry* (if given) with the failure before every new attempt.
    Non-retryable errors and the last retryable error propagate unchanged.
    """
    for attempt in range(attempts):
        try:
            return await func()
        except DOAuthError as exc:
            if not exc.retryable or attempt >= attempts - 1:
                raise
            delay = backoff * (2**attempt)
            logger.warning(
                "%s failed (%s), retry %d/%d in %.2fs",
                operation,
                exc.code,
                attempt + 1,
                attempts - 1,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)
            if before_retry is not None:
                await before_retry(exc)
    msg = "attempts must be at least 1"
    raise ValueError(msg)
