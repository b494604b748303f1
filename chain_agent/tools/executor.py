"""Tool executor — resolve, validate, then call through the pool with timeout + retry."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from chain_agent.engine.models import AgentContext, ToolCallRequest, ToolCallResult
from chain_agent.errors import ToolError, WalletRequired
from chain_agent.tools.pool import ConnectionPool
from chain_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Turns one ``ToolCallRequest`` into one ``ToolCallResult``.

    Never raises for tool failures: unknown tools, bad arguments, timeouts,
    transport errors and handler bugs all come back as ``success=False``.
    Cancellation is the one exception and propagates after the in-flight
    connection has been discarded.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        pool: ConnectionPool,
        max_attempts: int = 3,
        backoff: float = 0.5,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._registry = registry
        self._pool = pool
        self._max_attempts = max_attempts
        self._backoff = backoff
        self._timeout = timeout
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def execute(self, request: ToolCallRequest, context: AgentContext) -> ToolCallResult:
        try:
            tool = self._registry.resolve(request.tool_name)
            if tool.requires_wallet and not context.wallet_address:
                raise WalletRequired(tool.name)
            arguments = self._registry.validate(tool, request.arguments)
        except ToolError as exc:
            logger.warning("tool=%s rejected: %s", request.tool_name, exc)
            return _failure(request, str(exc), attempts=0)

        timeout = tool.timeout or self._timeout
        last_error = ""
        for attempt in range(1, self._max_attempts + 1):
            t0 = time.monotonic()
            try:
                async with self._pool.connection(tool.provider) as conn:
                    raw = await asyncio.wait_for(conn.call(tool, arguments, context), timeout=timeout)
            except asyncio.TimeoutError:
                last_error = f"Tool '{tool.name}' timed out after {timeout}s"
                logger.warning("tool=%s attempt=%d timeout=%.1fs", tool.name, attempt, timeout)
            except ToolError as exc:
                last_error = str(exc)
                logger.warning("tool=%s attempt=%d error=%s", tool.name, attempt, exc)
                if not exc.retryable:
                    return _failure(request, last_error, attempt)
            except Exception:
                logger.exception("tool=%s attempt=%d unexpected error", tool.name, attempt)
                return _failure(request, "internal error", attempt)
            else:
                logger.info(
                    "tool=%s attempt=%d latency=%.3fs OK",
                    tool.name, attempt, time.monotonic() - t0,
                )
                return _success(request, raw, attempt)

            if attempt < self._max_attempts:
                await self._sleep(self._backoff * 2 ** (attempt - 1))

        logger.warning("tool=%s giving up after %d attempts", tool.name, self._max_attempts)
        return _failure(request, last_error, self._max_attempts)


def _success(request: ToolCallRequest, raw: Any, attempts: int) -> ToolCallResult:
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(mode="json")
    content = raw if isinstance(raw, str) else json.dumps(raw, default=str)
    return ToolCallResult(
        call_id=request.call_id,
        tool_name=request.tool_name,
        success=True,
        content=content,
        data=raw,
        attempts=attempts,
    )


def _failure(request: ToolCallRequest, error: str, attempts: int) -> ToolCallResult:
    return ToolCallResult(
        call_id=request.call_id,
        tool_name=request.tool_name,
        success=False,
        error=error,
        attempts=attempts,
    )
