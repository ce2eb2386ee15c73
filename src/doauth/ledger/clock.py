"""Ledger time sources.

The ledger's notion of "now" is the single source of truth for every expiry
comparison. Decisions always read it fresh; nothing caches it.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current ledger time in epoch millis."""

    def now_ms(self) -> int: ...


class SystemClock:
    """Wall-clock time."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000


class ManualClock:
    """Clock advanced explicitly. Used by tests and simulations."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self._now = start_ms

    def now_ms(self) -> int:
        return self._now

    def set(self, now_ms: int) -> None:
        self._now = now_ms

    def advance(self, *, ms: int = 0, seconds: float = 0, minutes: float = 0) -> int:
        """Move time forward and return the new reading."""
        self._now += ms + int(seconds * 1000) + int(minutes * 60_000)
        return self._now
