"""LLM client — ABC, OpenAI implementation, and mocks."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from chain_agent.engine.models import LLMResult, ToolCallRequest
from chain_agent.errors import ModelError

logger = logging.getLogger(__name__)


class LLMClient(ABC):
    """Abstract LLM interface. Returns a complete (non-streaming) response.

    Implementations raise ``asyncio.TimeoutError`` when the provider times
    out and ``ModelError`` for every other provider failure.
    """

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResult: ...


# ---------------------------------------------------------------------------
# OpenAI implementation (also serves OpenAI-compatible providers via base_url)
# ---------------------------------------------------------------------------

class OpenAILLMClient(LLMClient):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
    ) -> None:
        # Late import so the rest of the package works without openai installed
        import openai

        self._openai = openai
        self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._model = model

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResult:
        kwargs: dict[str, Any] = {"model": self._model, "messages": messages}
        if tools:
            kwargs["tools"] = tools

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except self._openai.APITimeoutError as exc:
            raise asyncio.TimeoutError(str(exc)) from exc
        except self._openai.OpenAIError as exc:
            raise ModelError(f"Model request failed: {exc}") from exc

        if not response.choices:
            raise ModelError("Model returned no choices")
        message = response.choices[0].message

        tc_list = [
            ToolCallRequest(
                call_id=tc.id or "",
                tool_name=tc.function.name,
                arguments=_parse_arguments(tc.function.name, tc.function.arguments),
            )
            for tc in message.tool_calls or []
        ]
        return LLMResult(content=message.content or "", tool_calls=tc_list or None)


def _parse_arguments(name: str, raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Unparseable arguments for tool %s: %r", name, raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ---------------------------------------------------------------------------
# Test mock: deterministic, pre-loaded responses
# ---------------------------------------------------------------------------

class MockLLMClient(LLMClient):
    """Returns pre-configured responses in order. Used in unit tests.

    An exception instance in the script is raised instead of returned.
    """

    def __init__(self, responses: list[LLMResult | BaseException]) -> None:
        self._responses = list(responses)
        self._call_index = 0
        self.calls: list[list[dict[str, Any]]] = []

    async def generate(self, messages: list[dict], tools: list[dict] | None = None) -> LLMResult:
        self.calls.append([dict(m) for m in messages])
        if self._call_index >= len(self._responses):
            return LLMResult(content="[mock responses exhausted]")
        result = self._responses[self._call_index]
        self._call_index += 1
        if isinstance(result, BaseException):
            raise result
        return result

    @property
    def call_count(self) -> int:
        return self._call_index


# ---------------------------------------------------------------------------
# Demo mock: context-aware, for running without an API key
# ---------------------------------------------------------------------------

class DemoMockLLMClient(LLMClient):
    """Demonstrates the full tool-calling loop without a real LLM.

    Behaviour:
    1. Right after a tool round → summarize the last tool result.
    2. If the user asks about networks, balances, or their wallet and a
       matching tool exists → call it.
    3. Otherwise → return a generic text response.
    """

    _KEYWORD_TOOLS = (
        ("network", "list_networks", {}),
        ("balance", "query_blockchain", {"action": "eth_balance"}),
        ("wallet", "get_wallet_info", {}),
    )

    def __init__(self) -> None:
        self._counter = 0

    async def generate(self, messages: list[dict], tools: list[dict] | None = None) -> LLMResult:
        last_tool = _trailing_tool_message(messages)
        if last_tool is not None:
            content = last_tool.get("content") or ""
            return LLMResult(content=f"Based on the tool results: {content[:200]}")

        available = {t["function"]["name"] for t in tools or []}
        user_text = next(
            (m["content"] for m in reversed(messages) if m.get("role") == "user" and m.get("content")),
            "",
        ).lower()
        for keyword, tool_name, arguments in self._KEYWORD_TOOLS:
            if keyword in user_text and tool_name in available:
                self._counter += 1
                return LLMResult(tool_calls=[
                    ToolCallRequest(call_id=f"demo-tc-{self._counter}", tool_name=tool_name, arguments=dict(arguments)),
                ])

        return LLMResult(content="This is a demo response. Set OPENAI_API_KEY for real LLM output.")


def _trailing_tool_message(messages: list[dict]) -> dict | None:
    """The last tool message, if it is the final entry or only a follow-up prompt comes after it."""
    tail = messages[-2:]
    for m in reversed(tail):
        if m.get("role") == "tool":
            return m
    return None
