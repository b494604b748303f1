"""Tests for ConnectionPool — reuse, bounded checkout, eviction, discard on failure."""

from __future__ import annotations

import asyncio

import pytest

from chain_agent.errors import PoolExhausted, RemoteToolError, ToolExecutionError, UnknownProvider
from chain_agent.tools.pool import Connection, ConnectionPool, Connector

from conftest import FakeClock


class FakeConnection(Connection):
    def __init__(self, ident: int) -> None:
        self.ident = ident
        self.healthy = True
        self.closed = False

    async def call(self, tool, arguments, context):
        return {"conn": self.ident}

    def is_healthy(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True


class FakeConnector(Connector):
    def __init__(self) -> None:
        self.opened: list[FakeConnection] = []

    async def connect(self, provider_key: str) -> Connection:
        conn = FakeConnection(len(self.opened))
        self.opened.append(conn)
        return conn


def _pool(connector: FakeConnector, **kwargs) -> ConnectionPool:
    kwargs.setdefault("acquire_timeout", 0.05)
    return ConnectionPool({"p": connector}, **kwargs)


class TestCheckout:
    async def test_reuses_released_connection(self):
        connector = FakeConnector()
        pool = _pool(connector)

        first = await pool.acquire("p")
        await pool.release(first, ok=True)
        second = await pool.acquire("p")

        assert second is first
        assert len(connector.opened) == 1
        stats = pool.stats()
        assert stats["acquired"] == 2
        assert stats["created"] == 1

    async def test_failed_release_discards(self):
        connector = FakeConnector()
        pool = _pool(connector)

        conn = await pool.acquire("p")
        await pool.release(conn, ok=False)
        assert connector.opened[0].closed

        again = await pool.acquire("p")
        assert again.transport is connector.opened[1]
        assert pool.stats()["discarded"] == 1

    async def test_unknown_provider(self):
        pool = _pool(FakeConnector())
        with pytest.raises(UnknownProvider):
            await pool.acquire("nope")

    async def test_double_release_rejected(self):
        pool = _pool(FakeConnector())
        conn = await pool.acquire("p")
        await pool.release(conn)
        with pytest.raises(RuntimeError, match="not checked out"):
            await pool.release(conn)


class TestBoundedWaiting:
    async def test_exhausted_after_timeout(self):
        pool = _pool(FakeConnector(), max_per_provider=1)
        held = await pool.acquire("p")

        with pytest.raises(PoolExhausted):
            await pool.acquire("p")

        await pool.release(held)
        conn = await pool.acquire("p")
        assert conn is held

    async def test_waiter_gets_released_connection(self):
        pool = _pool(FakeConnector(), max_per_provider=1, acquire_timeout=1.0)
        held = await pool.acquire("p")

        waiter = asyncio.create_task(pool.acquire("p"))
        await asyncio.sleep(0)
        assert not waiter.done()

        await pool.release(held)
        got = await waiter
        assert got is held

    async def test_in_use_never_exceeds_limit(self):
        pool = _pool(FakeConnector(), max_per_provider=2, acquire_timeout=1.0)
        peak = 0

        async def worker():
            nonlocal peak
            async with pool.connection("p"):
                peak = max(peak, pool.stats()["providers"]["p"]["in_use"])
                await asyncio.sleep(0.01)

        await asyncio.gather(*(worker() for _ in range(6)))
        assert peak <= 2
        assert pool.stats()["providers"]["p"]["in_use"] == 0


class TestHealth:
    async def test_unhealthy_idle_connection_evicted(self):
        connector = FakeConnector()
        pool = _pool(connector)

        conn = await pool.acquire("p")
        await pool.release(conn)
        connector.opened[0].healthy = False

        fresh = await pool.acquire("p")
        assert fresh is not conn
        assert connector.opened[0].closed

    async def test_stale_idle_connection_evicted(self):
        clock = FakeClock()
        connector = FakeConnector()
        pool = _pool(connector, max_idle_seconds=60, clock=clock)

        conn = await pool.acquire("p")
        await pool.release(conn)
        clock.advance(61)

        fresh = await pool.acquire("p")
        assert fresh is not conn
        assert connector.opened[0].closed

    async def test_context_manager_discards_on_error(self):
        connector = FakeConnector()
        pool = _pool(connector)

        with pytest.raises(ValueError):
            async with pool.connection("p"):
                raise ValueError("boom")

        assert connector.opened[0].closed
        assert pool.stats()["providers"]["p"] == {"idle": 0, "in_use": 0}

    async def test_context_manager_keeps_connection_on_tool_level_error(self):
        connector = FakeConnector()
        pool = _pool(connector)

        with pytest.raises(RemoteToolError):
            async with pool.connection("p"):
                raise RemoteToolError("contract reverted")
        async with pool.connection("p") as again:
            pass

        assert again.transport is connector.opened[0]
        assert not connector.opened[0].closed
        assert pool.stats()["discarded"] == 0

    async def test_context_manager_discards_on_transport_error(self):
        connector = FakeConnector()
        pool = _pool(connector)

        with pytest.raises(ToolExecutionError):
            async with pool.connection("p"):
                raise ToolExecutionError("connection reset")

        assert connector.opened[0].closed
        assert pool.stats()["discarded"] == 1

    async def test_close_shuts_idle_connections(self):
        connector = FakeConnector()
        pool = _pool(connector)
        async with pool.connection("p"):
            pass
        await pool.close()
        assert connector.opened[0].closed


class TestCancellation:
    async def test_cancel_during_checkout_frees_slot_and_closes(self):
        gate = asyncio.Event()

        class GatedConnector(FakeConnector):
            async def connect(self, provider_key: str) -> Connection:
                await gate.wait()
                return await super().connect(provider_key)

        connector = GatedConnector()
        pool = _pool(connector, max_per_provider=1, acquire_timeout=0.5)

        task = asyncio.create_task(pool.acquire("p"))
        for _ in range(10):
            await asyncio.sleep(0)
        # the connection gets created, then the checkout blocks on the pool lock
        async with pool._lock:
            gate.set()
            for _ in range(5):
                await asyncio.sleep(0)
            assert len(connector.opened) == 1
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert connector.opened[0].closed
        assert pool.stats()["providers"]["p"] == {"idle": 0, "in_use": 0}
        conn = await pool.acquire("p")
        assert conn.transport is connector.opened[1]
