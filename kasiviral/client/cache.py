"""
Client-side entitlement status cache keyed by subject id.

Entries go stale after stale_seconds (5 minutes by default). invalidate marks
an entry stale so the next read refetches; evict drops it entirely (logout).
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from kasiviral.client.api_client import EntitlementStatus

DEFAULT_STALE_SECONDS = 5 * 60


@dataclass
class _Entry:
    value: EntitlementStatus
    fetched_at: float
    invalidated: bool = False


class EntitlementStatusCache:
    def __init__(
        self,
        stale_seconds: float = DEFAULT_STALE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stale_seconds = stale_seconds
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def get_fresh(self, subject_id: str) -> Optional[EntitlementStatus]:
        """Cached status if present and not stale, else None."""
        with self._lock:
            entry = self._entries.get(subject_id)
            if entry is None or entry.invalidated:
                return None
            if self._clock() - entry.fetched_at >= self.stale_seconds:
                return None
            return entry.value

    def peek(self, subject_id: str) -> Optional[EntitlementStatus]:
        """Last known status, stale or not."""
        with self._lock:
            entry = self._entries.get(subject_id)
            return entry.value if entry else None

    def put(self, subject_id: str, value: EntitlementStatus) -> None:
        with self._lock:
            self._entries[subject_id] = _Entry(value=value, fetched_at=self._clock())

    def invalidate(self, subject_id: str) -> None:
        with self._lock:
            entry = self._entries.get(subject_id)
            if entry is not None:
                entry.invalidated = True

    def evict(self, subject_id: str) -> None:
        with self._lock:
            self._entries.pop(subject_id, None)

    def __contains__(self, subject_id: str) -> bool:
        with self._lock:
            return subject_id in self._entries
