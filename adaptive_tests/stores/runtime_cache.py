"""In-process cache of resolved targets, holding live values."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..models import CacheEntry, ResolvedTarget


@dataclass
class RuntimeEntry:
    entry: CacheEntry
    target: ResolvedTarget


class RuntimeCache:
    """LRU-bounded store keyed by signature cache key.

    Expiry is checked on read; entries past their TTL are dropped.
    """

    def __init__(self, max_entries: int = 256, clock: Callable[[], float] = time.time) -> None:
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: "OrderedDict[str, RuntimeEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[RuntimeEntry]:
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return None
            if is_expired(cached.entry, self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            cached.entry.hits += 1
            return cached

    def store(self, key: str, entry: CacheEntry, target: ResolvedTarget) -> None:
        with self._lock:
            self._entries[key] = RuntimeEntry(entry=entry, target=target)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def discard(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self._max_entries,
                "hits": sum(item.entry.hits for item in self._entries.values()),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def is_expired(entry: CacheEntry, now: float) -> bool:
    """``timestamp`` is in seconds, ``ttl_ms`` in milliseconds."""
    if entry.ttl_ms <= 0:
        return True
    return (now - entry.timestamp) * 1000.0 >= entry.ttl_ms


__all__ = ["RuntimeCache", "RuntimeEntry", "is_expired"]
