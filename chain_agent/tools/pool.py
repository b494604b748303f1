"""Tool connection pool — connectors, pooled handles, bounded checkout.

The executor only ever sees ``acquire``/``release`` (or the ``connection``
context manager); how a provider is reached is the connector's business.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable

from chain_agent.engine.models import AgentContext
from chain_agent.errors import PoolExhausted, ToolError, UnknownProvider

if TYPE_CHECKING:
    from chain_agent.tools.registry import ToolDef

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

class Connection(ABC):
    """A live handle to one tool provider. Used by one caller at a time."""

    @abstractmethod
    async def call(self, tool: ToolDef, arguments: Any, context: AgentContext) -> Any: ...

    def is_healthy(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class Connector(ABC):
    """Factory that opens new connections for a provider key."""

    @abstractmethod
    async def connect(self, provider_key: str) -> Connection: ...


class LocalConnection(Connection):
    """Runs in-process tool handlers."""

    async def call(self, tool: ToolDef, arguments: Any, context: AgentContext) -> Any:
        if tool.handler is None:
            raise ToolError(f"Tool '{tool.name}' has no local handler")
        return await tool.handler(arguments, context)


class LocalConnector(Connector):
    async def connect(self, provider_key: str) -> Connection:
        return LocalConnection()


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

@dataclass
class PooledConnection:
    provider_key: str
    transport: Connection
    created_at: float
    last_used: float
    healthy: bool = True
    checked_out: bool = field(default=False, repr=False)

    async def call(self, tool: ToolDef, arguments: Any, context: AgentContext) -> Any:
        return await self.transport.call(tool, arguments, context)


class ConnectionPool:
    """Keyed pool of reusable provider connections.

    * at most ``max_per_provider`` handles are checked out per key; further
      callers wait up to ``acquire_timeout`` and then get ``PoolExhausted``
    * idle handles that report unhealthy, or sat idle longer than
      ``max_idle_seconds``, are evicted on the next acquire
    * a handle released with ``ok=False`` is closed, never reused
    """

    def __init__(
        self,
        connectors: dict[str, Connector] | None = None,
        max_per_provider: int = 4,
        acquire_timeout: float = 10.0,
        max_idle_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_per_provider < 1:
            raise ValueError("max_per_provider must be >= 1")
        self._connectors: dict[str, Connector] = dict(connectors or {})
        self._max_per_provider = max_per_provider
        self._acquire_timeout = acquire_timeout
        self._max_idle = max_idle_seconds
        self._clock = clock

        self._lock = asyncio.Lock()
        self._idle: dict[str, list[PooledConnection]] = defaultdict(list)
        self._in_use: Counter[str] = Counter()
        self._slots: dict[str, asyncio.Semaphore] = {}
        self._counters: Counter[str] = Counter()

    def add_connector(self, provider_key: str, connector: Connector) -> None:
        self._connectors[provider_key] = connector

    @property
    def providers(self) -> list[str]:
        return list(self._connectors)

    def _slots_for(self, provider_key: str) -> asyncio.Semaphore:
        slots = self._slots.get(provider_key)
        if slots is None:
            slots = asyncio.Semaphore(self._max_per_provider)
            self._slots[provider_key] = slots
        return slots

    # -- checkout -----------------------------------------------------------

    async def acquire(self, provider_key: str) -> PooledConnection:
        connector = self._connectors.get(provider_key)
        if connector is None:
            raise UnknownProvider(provider_key)

        slots = self._slots_for(provider_key)
        try:
            await asyncio.wait_for(slots.acquire(), timeout=self._acquire_timeout)
        except asyncio.TimeoutError:
            logger.warning("pool=%s exhausted after %.1fs", provider_key, self._acquire_timeout)
            raise PoolExhausted(provider_key, self._acquire_timeout) from None

        conn: PooledConnection | None = None
        try:
            conn = await self._take_idle(provider_key)
            if conn is None:
                transport = await connector.connect(provider_key)
                now = self._clock()
                conn = PooledConnection(provider_key, transport, created_at=now, last_used=now)
                self._counters["created"] += 1
                logger.info("pool=%s opened new connection", provider_key)

            async with self._lock:
                conn.checked_out = True
                self._in_use[provider_key] += 1
                self._counters["acquired"] += 1
        except BaseException:
            slots.release()
            if conn is not None:
                # never handed out: close it so the transport does not leak
                self._counters["discarded"] += 1
                await self._close(conn)
            raise
        return conn

    async def _take_idle(self, provider_key: str) -> PooledConnection | None:
        stale: list[PooledConnection] = []
        found: PooledConnection | None = None
        now = self._clock()
        async with self._lock:
            idle = self._idle[provider_key]
            while idle:
                conn = idle.pop()
                if not conn.healthy or not conn.transport.is_healthy():
                    stale.append(conn)
                elif now - conn.last_used > self._max_idle:
                    stale.append(conn)
                else:
                    found = conn
                    break
            self._counters["discarded"] += len(stale)
        for conn in stale:
            logger.info("pool=%s evicted idle connection", provider_key)
            await self._close(conn)
        return found

    async def release(self, conn: PooledConnection, ok: bool = True) -> None:
        if not conn.checked_out:
            raise RuntimeError(f"Connection for '{conn.provider_key}' is not checked out")

        async with self._lock:
            conn.checked_out = False
            self._in_use[conn.provider_key] -= 1
            if not ok:
                conn.healthy = False
            keep = conn.healthy and conn.transport.is_healthy()
            if keep:
                conn.last_used = self._clock()
                self._idle[conn.provider_key].append(conn)
            else:
                self._counters["discarded"] += 1
        self._slots_for(conn.provider_key).release()

        if not keep:
            logger.info("pool=%s discarded connection", conn.provider_key)
            await self._close(conn)

    @asynccontextmanager
    async def connection(self, provider_key: str) -> AsyncIterator[PooledConnection]:
        """Check out a connection.

        It is discarded if the body raises or is cancelled, except for a
        non-retryable ``ToolError``: the provider answered, so the handle is
        still good.
        """
        conn = await self.acquire(provider_key)
        ok = False
        try:
            yield conn
            ok = True
        except ToolError as exc:
            ok = not exc.retryable
            raise
        finally:
            await self.release(conn, ok)

    # -- housekeeping -------------------------------------------------------

    async def _close(self, conn: PooledConnection) -> None:
        try:
            await conn.transport.close()
        except Exception:
            logger.warning("pool=%s error closing connection", conn.provider_key, exc_info=True)

    def stats(self) -> dict[str, Any]:
        keys = set(self._connectors) | set(self._idle) | set(self._in_use)
        return {
            "acquired": self._counters["acquired"],
            "created": self._counters["created"],
            "discarded": self._counters["discarded"],
            "providers": {
                key: {"idle": len(self._idle.get(key, [])), "in_use": self._in_use.get(key, 0)}
                for key in sorted(keys)
            },
        }

    async def close(self) -> None:
        async with self._lock:
            idle = [conn for conns in self._idle.values() for conn in conns]
            self._idle.clear()
        for conn in idle:
            await self._close(conn)
        logger.info("pool closed (%d idle connections)", len(idle))
