"""Remote tool providers speaking MCP (JSON-RPC 2.0) over HTTP."""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any

import httpx

from chain_agent.engine.models import AgentContext
from chain_agent.errors import RemoteToolError, ToolExecutionError
from chain_agent.tools.pool import Connection, ConnectionPool, Connector
from chain_agent.tools.registry import ToolDef, ToolRegistry

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "chain-agent", "version": "0.1.0"}


class McpHttpConnection(Connection):
    """One initialized MCP session. Marks itself unhealthy on transport errors."""

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self._client = client
        self._url = url
        self._ids = itertools.count(1)
        self._healthy = True
        self.server_info: dict[str, Any] = {}

    async def initialize(self) -> None:
        result = await self._rpc(
            "initialize",
            {"protocolVersion": PROTOCOL_VERSION, "capabilities": {}, "clientInfo": CLIENT_INFO},
        )
        self.server_info = result.get("serverInfo", {})

    async def list_tools(self) -> list[dict[str, Any]]:
        result = await self._rpc("tools/list", {})
        return list(result.get("tools", []))

    async def call(self, tool: ToolDef, arguments: Any, context: AgentContext) -> Any:
        result = await self._rpc("tools/call", {"name": tool.name, "arguments": arguments})
        text = "\n".join(
            part.get("text", "") for part in result.get("content", []) if part.get("type") == "text"
        )
        if result.get("isError"):
            raise RemoteToolError(text or f"Remote tool '{tool.name}' failed")
        if not text:
            return result
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    async def _rpc(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._client.post(self._url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._healthy = False
            raise ToolExecutionError(f"MCP {method} failed: {exc}") from exc

        error = body.get("error")
        if error:
            raise RemoteToolError(f"MCP error {error.get('code')}: {error.get('message')}")
        return body.get("result") or {}

    def is_healthy(self) -> bool:
        return self._healthy

    async def close(self) -> None:
        await self._client.aclose()


class McpHttpConnector(Connector):
    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def connect(self, provider_key: str) -> Connection:
        client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        conn = McpHttpConnection(client, self._url)
        try:
            await conn.initialize()
        except BaseException:
            await client.aclose()
            raise
        logger.info("mcp=%s connected to %s (%s)", provider_key, self._url, conn.server_info.get("name", "?"))
        return conn


async def discover_tools(registry: ToolRegistry, pool: ConnectionPool, provider_key: str) -> list[ToolDef]:
    """Register one proxy ToolDef per tool the provider advertises."""
    async with pool.connection(provider_key) as conn:
        transport = conn.transport
        if not isinstance(transport, McpHttpConnection):
            raise TypeError(f"Provider '{provider_key}' does not support tool discovery")
        remote = await transport.list_tools()

    discovered = []
    for spec in remote:
        tool = ToolDef(
            name=spec["name"],
            description=spec.get("description", ""),
            input_schema=spec.get("inputSchema") or {"type": "object", "properties": {}},
            provider=provider_key,
        )
        registry.register(tool)
        discovered.append(tool)
    logger.info("mcp=%s discovered %d tools", provider_key, len(discovered))
    return discovered
