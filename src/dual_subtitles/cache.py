from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple


class TTLCache:
    """Very small in-memory cache with TTL semantics.

    Holds merged subtitle files and subtitle responses between the request
    that builds them and the player fetching them. ``max_size`` bounds the
    number of items; when exceeded, expired entries go first, then the ones
    closest to expiry.
    """

    def __init__(self, default_ttl: float = 600.0, max_size: int | None = None,
                 clock: Callable[[], float] = time.time) -> None:
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._clock = clock
        self._lock = threading.Lock()
        self._store: Dict[str, Tuple[float, Any]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            expiry, value = item
            if expiry < self._clock():
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl_value = self._default_ttl if ttl is None else ttl
        with self._lock:
            self._store[key] = (self._clock() + ttl_value, value)
            if self._max_size is not None and len(self._store) > self._max_size:
                self._prune()

    def _prune(self) -> None:
        now = self._clock()
        for key in [k for k, (exp, _v) in self._store.items() if exp < now]:
            if len(self._store) <= self._max_size:
                break
            self._store.pop(key, None)
        overflow = len(self._store) - self._max_size
        if overflow > 0:
            by_expiry = sorted(self._store.items(), key=lambda kv: kv[1][0])
            for key, _item in by_expiry[:overflow]:
                self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)
