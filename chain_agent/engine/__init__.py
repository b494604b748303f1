from chain_agent.engine.models import (
    AgentContext,
    AgentResponse,
    Chain,
    LLMResult,
    Message,
    Session,
    ToolCallInfo,
    ToolCallRequest,
    ToolCallResult,
    TurnState,
)
from chain_agent.engine.session import KVSessionStore, SessionStore
from chain_agent.engine.llm import DemoMockLLMClient, LLMClient, MockLLMClient, OpenAILLMClient
from chain_agent.engine.agent import AgentEngine

__all__ = [
    "AgentContext",
    "AgentEngine",
    "AgentResponse",
    "Chain",
    "DemoMockLLMClient",
    "KVSessionStore",
    "LLMClient",
    "LLMResult",
    "Message",
    "MockLLMClient",
    "OpenAILLMClient",
    "Session",
    "SessionStore",
    "ToolCallInfo",
    "ToolCallRequest",
    "ToolCallResult",
    "TurnState",
]
