"""Chain adapter — minimal JSON-RPC access to one EVM and one Solana endpoint."""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from chain_agent.errors import RpcError

logger = logging.getLogger(__name__)

DEFAULT_ETH_RPC_URL = "https://ethereum-sepolia-rpc.publicnode.com"
DEFAULT_SOL_RPC_URL = "https://api.devnet.solana.com"

WEI_PER_ETH = 10**18
LAMPORTS_PER_SOL = 10**9
BALANCE_OF_SELECTOR = "0x70a08231"


class ChainAdapter(ABC):
    """Chain queries and transaction broadcast used by the built-in tools."""

    @abstractmethod
    async def eth_balance(self, address: str) -> int:
        """Native balance in wei."""

    @abstractmethod
    async def erc20_balance(self, token_address: str, wallet_address: str) -> int:
        """Raw token balance (no decimals applied)."""

    @abstractmethod
    async def sol_balance(self, address: str) -> int:
        """Native balance in lamports."""

    @abstractmethod
    async def eth_transaction_status(self, tx_hash: str) -> dict[str, Any]: ...

    @abstractmethod
    async def sol_transaction_status(self, signature: str) -> dict[str, Any]: ...

    @abstractmethod
    async def eth_send_raw(self, signed_tx: str) -> str:
        """Broadcast a signed EVM transaction; returns the transaction hash."""

    @abstractmethod
    async def sol_send(self, signed_tx: str) -> str:
        """Broadcast a signed, base64-encoded Solana transaction; returns its signature."""

    @abstractmethod
    async def eth_nonce(self, address: str) -> int: ...

    @abstractmethod
    async def eth_gas_price(self) -> int: ...

    @abstractmethod
    async def eth_chain_id(self) -> int: ...

    async def aclose(self) -> None:
        return None


def _hex_to_int(value: Any, method: str) -> int:
    if not isinstance(value, str):
        raise RpcError(f"{method}: expected hex string, got {value!r}")
    try:
        return int(value, 16) if value not in ("0x", "") else 0
    except ValueError as exc:
        raise RpcError(f"{method}: malformed hex {value!r}") from exc


def _expect_str(value: Any, method: str) -> str:
    if not isinstance(value, str) or not value:
        raise RpcError(f"{method}: expected a transaction id, got {value!r}")
    return value


class JsonRpcChainAdapter(ChainAdapter):
    def __init__(
        self,
        eth_rpc_url: str = DEFAULT_ETH_RPC_URL,
        sol_rpc_url: str = DEFAULT_SOL_RPC_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._eth_url = eth_rpc_url
        self._sol_url = sol_rpc_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def _rpc(self, url: str, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._client.post(url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RpcError(f"{method} failed: {exc}") from exc

        if body.get("error"):
            error = body["error"]
            raise RpcError(f"{method} error {error.get('code')}: {error.get('message')}")
        if "result" not in body:
            raise RpcError(f"{method}: response has no result")
        return body["result"]

    # -- EVM ----------------------------------------------------------------

    async def eth_balance(self, address: str) -> int:
        result = await self._rpc(self._eth_url, "eth_getBalance", [address, "latest"])
        return _hex_to_int(result, "eth_getBalance")

    async def erc20_balance(self, token_address: str, wallet_address: str) -> int:
        data = BALANCE_OF_SELECTOR + wallet_address.lower().removeprefix("0x").rjust(64, "0")
        result = await self._rpc(self._eth_url, "eth_call", [{"to": token_address, "data": data}, "latest"])
        return _hex_to_int(result, "eth_call")

    async def eth_transaction_status(self, tx_hash: str) -> dict[str, Any]:
        receipt = await self._rpc(self._eth_url, "eth_getTransactionReceipt", [tx_hash])
        if receipt is None:
            return {"tx_hash": tx_hash, "status": "pending", "block_number": None}
        status = "success" if receipt.get("status") == "0x1" else "failed"
        block = receipt.get("blockNumber")
        return {
            "tx_hash": tx_hash,
            "status": status,
            "block_number": _hex_to_int(block, "eth_getTransactionReceipt") if block else None,
        }

    async def eth_send_raw(self, signed_tx: str) -> str:
        result = await self._rpc(self._eth_url, "eth_sendRawTransaction", [signed_tx])
        return _expect_str(result, "eth_sendRawTransaction")

    async def eth_nonce(self, address: str) -> int:
        result = await self._rpc(self._eth_url, "eth_getTransactionCount", [address, "latest"])
        return _hex_to_int(result, "eth_getTransactionCount")

    async def eth_gas_price(self) -> int:
        return _hex_to_int(await self._rpc(self._eth_url, "eth_gasPrice", []), "eth_gasPrice")

    async def eth_chain_id(self) -> int:
        return _hex_to_int(await self._rpc(self._eth_url, "eth_chainId", []), "eth_chainId")

    # -- Solana -------------------------------------------------------------

    async def sol_balance(self, address: str) -> int:
        result = await self._rpc(self._sol_url, "getBalance", [address])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, int):
            raise RpcError(f"getBalance: unexpected result {result!r}")
        return value

    async def sol_send(self, signed_tx: str) -> str:
        result = await self._rpc(self._sol_url, "sendTransaction", [signed_tx, {"encoding": "base64"}])
        return _expect_str(result, "sendTransaction")

    async def sol_transaction_status(self, signature: str) -> dict[str, Any]:
        result = await self._rpc(self._sol_url, "getSignatureStatuses", [[signature]])
        values = result.get("value") if isinstance(result, dict) else None
        status = values[0] if values else None
        if status is None:
            return {"tx_hash": signature, "status": "pending", "block_number": None}
        return {
            "tx_hash": signature,
            "status": "failed" if status.get("err") else "success",
            "block_number": status.get("slot"),
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
