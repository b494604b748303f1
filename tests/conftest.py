"""Shared fixtures for chain_agent tests."""

from __future__ import annotations

import time
from typing import Any

import pytest

from chain_agent.engine.models import AgentContext, Chain
from chain_agent.engine.session import KVSessionStore
from chain_agent.storage.kv import InMemoryKVStore
from chain_agent.tools.builtins import make_builtin_tools
from chain_agent.tools.chain import ChainAdapter
from chain_agent.tools.executor import ToolExecutor
from chain_agent.tools.pool import ConnectionPool, LocalConnector
from chain_agent.tools.registry import LOCAL_PROVIDER, ToolRegistry


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChainAdapter(ChainAdapter):
    """Canned chain answers; records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    async def eth_balance(self, address: str) -> int:
        self.calls.append(("eth_balance", (address,)))
        return 1_500_000_000_000_000_000

    async def erc20_balance(self, token_address: str, wallet_address: str) -> int:
        self.calls.append(("erc20_balance", (token_address, wallet_address)))
        return 42

    async def sol_balance(self, address: str) -> int:
        self.calls.append(("sol_balance", (address,)))
        return 2_000_000_000

    async def eth_transaction_status(self, tx_hash: str) -> dict:
        self.calls.append(("eth_transaction_status", (tx_hash,)))
        return {"tx_hash": tx_hash, "status": "success", "block_number": 100}

    async def sol_transaction_status(self, signature: str) -> dict:
        self.calls.append(("sol_transaction_status", (signature,)))
        return {"tx_hash": signature, "status": "success", "block_number": 7}

    async def eth_send_raw(self, signed_tx: str) -> str:
        self.calls.append(("eth_send_raw", (signed_tx,)))
        return "0x" + "ab" * 32

    async def sol_send(self, signed_tx: str) -> str:
        self.calls.append(("sol_send", (signed_tx,)))
        return "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnb"

    async def eth_nonce(self, address: str) -> int:
        return 5

    async def eth_gas_price(self) -> int:
        return 1_000_000_000

    async def eth_chain_id(self) -> int:
        return 11155111


class CountingPool(ConnectionPool):
    """ConnectionPool that counts acquire calls."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.acquire_calls = 0

    async def acquire(self, provider_key: str):
        self.acquire_calls += 1
        return await super().acquire(provider_key)


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv(clock):
    return InMemoryKVStore(clock=clock)


@pytest.fixture
def ses_store(kv):
    return KVSessionStore(kv)


@pytest.fixture
def chain_adapter():
    return FakeChainAdapter()


@pytest.fixture
def tool_registry(chain_adapter):
    registry = ToolRegistry()
    for tool in make_builtin_tools(chain_adapter):
        registry.register(tool)
    return registry


@pytest.fixture
def pool():
    return CountingPool({LOCAL_PROVIDER: LocalConnector()}, acquire_timeout=1.0)


@pytest.fixture
def executor(tool_registry, pool):
    return ToolExecutor(tool_registry, pool, max_attempts=3, backoff=0.01, timeout=1.0, sleep=no_sleep)


@pytest.fixture
def context():
    return AgentContext(session_id="s-1")


@pytest.fixture
def wallet_context():
    return AgentContext(
        session_id="s-1",
        wallet_address="0x1111111111111111111111111111111111111111",
        chain=Chain.ETHEREUM,
    )
