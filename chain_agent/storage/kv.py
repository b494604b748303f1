"""Key-value store with TTL — ABC + in-memory implementation.

Values go in and out as JSON-compatible objects but are held as JSON text,
so what sits in the store is exactly the persisted wire layout.
"""

from __future__ import annotations

import asyncio
import heapq
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

from chain_agent.errors import StoreError


class KVStore(ABC):
    """Async key-value store with per-key expiry.

    Swap to Redis/Workers KV by implementing this ABC. ``take`` must be
    atomic: two concurrent callers can never both receive the same value.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None: ...

    @abstractmethod
    async def put(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def take(self, key: str) -> Any | None:
        """Return the value and delete it in one step (``None`` if absent)."""

    @abstractmethod
    async def touch(self, key: str, ttl: float) -> bool:
        """Push the expiry of *key* out to ``now + ttl``. False if absent."""


class InMemoryKVStore(KVStore):
    """Dict-backed store — suitable for single-process dev/test.

    Expired keys are dropped when read, and swept on every write using a
    heap of expiry times, so keys that are never read again do not pile up.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self._expiries: list[tuple[float, str]] = []
        self._lock = asyncio.Lock()

    def _schedule(self, key: str, expires_at: float | None) -> None:
        if expires_at is not None:
            heapq.heappush(self._expiries, (expires_at, key))

    def _sweep(self) -> None:
        # heap entries can be stale (key rewritten or touched); the dict is authoritative
        now = self._clock()
        while self._expiries and self._expiries[0][0] <= now:
            _, key = heapq.heappop(self._expiries)
            entry = self._data.get(key)
            if entry is not None and entry[1] is not None and entry[1] <= now:
                del self._data[key]

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return raw

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            raw = self._live(key)
        return None if raw is None else json.loads(raw)

    async def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Failed to serialize value for key {key}: {exc}") from exc
        expires_at = self._clock() + ttl if ttl is not None else None
        async with self._lock:
            self._sweep()
            self._data[key] = (raw, expires_at)
            self._schedule(key, expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def take(self, key: str) -> Any | None:
        async with self._lock:
            raw = self._live(key)
            if raw is None:
                return None
            del self._data[key]
        return json.loads(raw)

    async def touch(self, key: str, ttl: float) -> bool:
        async with self._lock:
            raw = self._live(key)
            if raw is None:
                return False
            expires_at = self._clock() + ttl
            self._data[key] = (raw, expires_at)
            self._schedule(key, expires_at)
            return True

    def __len__(self) -> int:
        return len(self._data)
