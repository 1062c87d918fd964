"""
Gatehouse — Rate Window Counter Store
=======================================

What:  Storage for per-client rate windows with an atomic check-and-increment.
How:   CounterStore is the abstract contract; InMemoryCounterStore implements
       it with lock striping: keys hash onto a fixed number of stripes, each
       a dict guarded by its own lock. Two requests for the same key always
       serialize on the same stripe; requests for keys on different stripes
       never wait on each other.
Who:   Owned by AdmissionLimiter. Nothing else reads or writes window entries.

Window entry lifecycle:
    absent ──first hit──▶ {count=1, reset_at=now+window}
           ◀──now ≥ reset_at (next hit opens a fresh window)
    active ──hit, count < limit──▶ count += 1
    active ──hit, count ≥ limit──▶ unchanged (rejected)

A shared external store (e.g. Redis INCR + PEXPIRE in a Lua script) can
replace the in-memory one by implementing `hit` and `sweep`.
"""

import threading
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass
class WindowEntry:
    count: int
    reset_at: float


@dataclass(frozen=True)
class HitResult:
    """Outcome of one atomic check-and-increment."""

    admitted: bool
    count: int
    reset_at: float


class CounterStore(ABC):
    """
    Contract for rate-window storage.

    Implementations must make `hit` atomic with respect to other calls for
    the same key. Times are seconds on the limiter's monotonic clock.
    """

    @abstractmethod
    def hit(self, key: str, limit: int, window: float, now: float) -> HitResult:
        """
        Charge one request against `key`.

        Opens a new window when none exists or the current one has expired.
        Increments only when the result stays within `limit`; a rejected hit
        leaves the entry untouched.
        """
        ...

    @abstractmethod
    def sweep(self, now: float) -> int:
        """Delete entries whose window has expired. Returns how many were removed."""
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[WindowEntry]:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...


class _Stripe:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: Dict[str, WindowEntry] = {}


class InMemoryCounterStore(CounterStore):
    """
    Process-local store with one lock per stripe.

    No await happens while a stripe lock is held, so the same store is safe
    under an asyncio event loop and under worker threads.
    """

    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._stripes: List[_Stripe] = [_Stripe() for _ in range(stripes)]

    def _stripe_for(self, key: str) -> _Stripe:
        # crc32 is stable across processes, unlike hash() with randomization
        return self._stripes[zlib.crc32(key.encode("utf-8")) % len(self._stripes)]

    def hit(self, key: str, limit: int, window: float, now: float) -> HitResult:
        stripe = self._stripe_for(key)
        with stripe.lock:
            entry = stripe.entries.get(key)
            if entry is None or now >= entry.reset_at:
                entry = WindowEntry(count=0, reset_at=now + window)
                stripe.entries[key] = entry
            if entry.count < limit:
                entry.count += 1
                return HitResult(admitted=True, count=entry.count, reset_at=entry.reset_at)
            return HitResult(admitted=False, count=entry.count, reset_at=entry.reset_at)

    def sweep(self, now: float) -> int:
        removed = 0
        for stripe in self._stripes:
            with stripe.lock:
                expired = [k for k, e in stripe.entries.items() if now >= e.reset_at]
                for key in expired:
                    del stripe.entries[key]
                removed += len(expired)
        return removed

    def get(self, key: str) -> Optional[WindowEntry]:
        stripe = self._stripe_for(key)
        with stripe.lock:
            entry = stripe.entries.get(key)
            if entry is None:
                return None
            return WindowEntry(count=entry.count, reset_at=entry.reset_at)

    def __len__(self) -> int:
        total = 0
        for stripe in self._stripes:
            with stripe.lock:
                total += len(stripe.entries)
        return total
