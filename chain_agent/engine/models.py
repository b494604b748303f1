"""Core data models — chains, tool calls, messages, sessions, turn results."""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from chain_agent.errors import UnsupportedChain


def now_ts() -> int:
    return int(time.time())


# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------

class Chain(str, Enum):
    ETHEREUM = "ethereum"
    SOLANA = "solana"

    @classmethod
    def parse(cls, value: str | Chain) -> Chain:
        if isinstance(value, Chain):
            return value
        key = (value or "").strip().lower()
        if key in ("ethereum", "eth", "evm"):
            return cls.ETHEREUM
        if key in ("solana", "sol"):
            return cls.SOLANA
        raise UnsupportedChain(value)

    @property
    def is_evm(self) -> bool:
        return self is Chain.ETHEREUM


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------

class ToolCallRequest(BaseModel):
    """A single tool/function call requested by the LLM."""
    model_config = ConfigDict(frozen=True)

    call_id: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolCallResult(BaseModel):
    """Outcome of one tool call. Failure is data, never an exception."""
    call_id: str
    tool_name: str
    success: bool
    content: str | None = None
    error: str | None = None
    data: Any = None
    attempts: int = 0

    def for_model(self) -> str:
        if self.success:
            return self.content or ""
        return json.dumps({"error": self.error})

    def info(self) -> ToolCallInfo:
        result = self.data if self.success else {"error": self.error}
        return ToolCallInfo(id=self.call_id, name=self.tool_name, result=result)


class ToolCallInfo(BaseModel):
    id: str
    name: str
    result: Any = None


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

Role = Literal["user", "assistant", "tool"]


class Message(BaseModel):
    """One conversation entry. Frozen once built."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    timestamp: int = Field(default_factory=now_ts)
    tool_call_id: str | None = None
    # Only on assistant messages that requested tools.
    tool_calls: list[ToolCallRequest] | None = None

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCallRequest] | None = None) -> Message:
        return cls(role="assistant", content=content, tool_calls=tool_calls or None)

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    def to_openai(self) -> dict[str, Any]:
        if self.role == "tool":
            return {"role": "tool", "tool_call_id": self.tool_call_id, "content": self.content}
        if self.role == "assistant" and self.tool_calls:
            return {
                "role": "assistant",
                "content": self.content or None,
                "tool_calls": [
                    {
                        "id": tc.call_id,
                        "type": "function",
                        "function": {
                            "name": tc.tool_name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in self.tool_calls
                ],
            }
        return {"role": self.role, "content": self.content}


class Session(BaseModel):
    session_id: str
    wallet_address: str | None = None
    chain: Chain | None = None
    messages: list[Message] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ts)
    updated_at: int = Field(default_factory=now_ts)

    def append(self, message: Message, max_messages: int) -> None:
        """Append, dropping the oldest entries so the cap always holds."""
        self.messages.append(message)
        overflow = len(self.messages) - max_messages
        if overflow > 0:
            del self.messages[:overflow]
        self.updated_at = now_ts()

    def to_record(self) -> dict[str, Any]:
        """Persisted layout: nullable top-level keys stay, optional message keys go."""
        record = self.model_dump(mode="json", exclude={"messages"})
        record["messages"] = [m.model_dump(mode="json", exclude_none=True) for m in self.messages]
        return record


class AgentContext(BaseModel):
    """Identity passed read-only into every tool call."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    wallet_address: str | None = None
    chain: Chain | None = None


# ---------------------------------------------------------------------------
# LLM helpers
# ---------------------------------------------------------------------------

class LLMResult(BaseModel):
    """Complete (non-streaming) LLM response."""
    content: str | None = None
    tool_calls: list[ToolCallRequest] | None = None


# ---------------------------------------------------------------------------
# Turn outcome
# ---------------------------------------------------------------------------

class TurnState(str, Enum):
    COLLECTING = "collecting"
    DISPATCHING = "dispatching"
    DONE = "done"
    EXHAUSTED = "exhausted"


class AgentResponse(BaseModel):
    content: str
    session_id: str
    tool_calls: list[ToolCallInfo] = Field(default_factory=list)
    state: TurnState = TurnState.DONE
    iterations: int = 0

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"content": self.content, "session_id": self.session_id}
        if self.tool_calls:
            payload["tool_calls"] = [tc.model_dump(mode="json") for tc in self.tool_calls]
        return payload
