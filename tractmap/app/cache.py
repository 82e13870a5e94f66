"""In-memory TTL cache owned by the statistics layer.

Entries are valid while ``now <= created_at + ttl`` and are evicted lazily on
the next read. ``get_or_fetch`` shares one in-flight fetch per key so that
concurrent callers never populate the same entry twice.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

_MISSING = object()


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Any
    created_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now <= self.created_at + self.ttl


class TTLCache:
    def __init__(
        self,
        default_ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    def _lookup(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        if not entry.is_valid(self._clock()):
            del self._entries[key]
            return _MISSING
        return entry.payload

    def get(self, key: str, default: Any = None) -> Any:
        value = self._lookup(key)
        return default if value is _MISSING else value

    def has(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    def set(self, key: str, payload: Any, ttl: float | None = None) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            payload=payload,
            created_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_fetch(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
        *,
        cache_none: bool = True,
    ) -> Any:
        cached = self._lookup(key)
        if cached is not _MISSING:
            return cached

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._populate(key, factory, ttl, cache_none))
            self._inflight[key] = pending
        # Shield so one cancelled waiter does not cancel the shared fetch.
        return await asyncio.shield(pending)

    async def _populate(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: float | None,
        cache_none: bool,
    ) -> Any:
        try:
            payload = await factory()
            if payload is not None or cache_none:
                self.set(key, payload, ttl)
            return payload
        finally:
            self._inflight.pop(key, None)
