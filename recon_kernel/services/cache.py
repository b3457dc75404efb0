"""
Module: recon_kernel.services.cache
Responsibility: In-process TTL cache injected into services that memoize
    collaborator reads (candidate pools).
Architecture position: Kernel > Services.  No database access.

Invariants enforced:
    - Expiry is measured on the injected Clock, so tests control it.
    - A key whose ttl has elapsed reads as absent and is evicted.
    - All operations are safe to call from several threads.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Any

from recon_kernel.domain.clock import Clock, SystemClock

DEFAULT_TTL_SECONDS = 300.0


class TTLCache:
    """Key/value cache with per-key time-to-live."""

    def __init__(
        self,
        clock: Clock | None = None,
        default_ttl_seconds: float | None = DEFAULT_TTL_SECONDS,
    ):
        self._clock = clock or SystemClock()
        self._default_ttl = default_ttl_seconds
        self._entries: dict[str, tuple[Any, datetime | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and self._clock.now() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store ``value``; ``ttl_seconds=None`` uses the cache default."""
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        expires_at = None if ttl is None else self._clock.now() + timedelta(seconds=ttl)
        with self._lock:
            self._entries[key] = (value, expires_at)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
