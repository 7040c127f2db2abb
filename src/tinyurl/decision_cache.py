"""
Short-lived cache of per-host reputation decisions.

Bounded LRU keyed by host. Entries older than the TTL are ignored and dropped
on lookup. All access goes through one lock so lookup and insert keep the
recency order consistent under concurrent submissions.
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from .enums import Decision
from .models import ReputationDecision


class DecisionCache:
    """Bounded LRU of ReputationDecision records with a TTL."""

    DEFAULT_CAPACITY = 128
    DEFAULT_TTL_SECONDS = 60.0

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            capacity: Maximum number of hosts kept
            ttl_seconds: How long a decision stays valid
            clock: Time source in epoch seconds
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, ReputationDecision] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def lookup(self, host: str) -> Optional[ReputationDecision]:
        """
        Return the live decision for host, or None on a miss or expiry.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(host)
            if entry is None:
                return None
            if entry.established_at + self._ttl <= now:
                del self._entries[host]
                return None
            self._entries.move_to_end(host)
            return entry

    def store(self, host: str, decision: Decision) -> ReputationDecision:
        """
        Record a decision for host established now, evicting the least
        recently used host when full.
        """
        entry = ReputationDecision(
            host=host,
            decision=decision,
            established_at=self._clock(),
        )
        with self._lock:
            self._entries[host] = entry
            self._entries.move_to_end(host)
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)
        return entry

    def allow(self, host: str) -> ReputationDecision:
        return self.store(host, Decision.ALLOW)

    def deny(self, host: str) -> ReputationDecision:
        return self.store(host, Decision.DENY)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
