from __future__ import annotations

import re
from collections import OrderedDict
from threading import Lock
from typing import Any, Dict, Optional


def normalize_cache_key(address: Optional[str], lat: Optional[float] = None, lon: Optional[float] = None) -> str:
    key = address or ""
    if lat is not None and lon is not None:
        key = f"{key}_{lat}_{lon}"
    return re.sub(r"\s+", " ", key.strip()).upper()


class ResultCache:
    """Process-lifetime memo of terminal lookup outcomes, capped with LRU eviction.

    Error results are stored like successes so a dead address does not keep
    hitting the upstream services.
    """

    def __init__(self, max_entries: int = 256):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._lock = Lock()
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                self._stats["misses"] += 1
                return None
            self._entries.move_to_end(key)
            self._stats["hits"] += 1
            return value

    def set(self, key: str, value: Dict[str, Any]) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = value
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats["evictions"] += 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            for name in self._stats:
                self._stats[name] = 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats, size=len(self._entries))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
