"""Error taxonomy shared by the engine, tools, and storage layers.

Auth errors live next to the auth models in ``chain_agent.auth.models``.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for every error raised by chain_agent."""


# ---------------------------------------------------------------------------
# Tool errors: always converted into a failed ToolCallResult by the executor
# ---------------------------------------------------------------------------

class ToolError(AgentError):
    """A single tool call failed.

    ``retryable`` tells the executor whether another transport attempt can
    change the outcome.
    """

    retryable: bool = False


class ToolNotFound(ToolError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' not found")
        self.name = name


class InvalidToolArgs(ToolError):
    pass


class WalletRequired(ToolError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' requires an authenticated wallet")
        self.name = name


class UnknownProvider(ToolError):
    def __init__(self, provider_key: str) -> None:
        super().__init__(f"No connector registered for provider '{provider_key}'")
        self.provider_key = provider_key


class RemoteToolError(ToolError):
    """The provider answered, but reported the tool call itself as failed."""


class ToolExecutionError(ToolError):
    """Timeout or transport failure talking to a tool provider."""

    retryable = True


class RpcError(ToolExecutionError):
    """An external chain/API call made by a tool failed."""


class PoolExhausted(ToolExecutionError):
    def __init__(self, provider_key: str, timeout: float) -> None:
        super().__init__(
            f"No connection for provider '{provider_key}' became available within {timeout}s"
        )
        self.provider_key = provider_key


class DuplicateToolError(AgentError, ValueError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' is already registered")
        self.name = name


# ---------------------------------------------------------------------------
# Turn-level errors: propagate to the HTTP boundary
# ---------------------------------------------------------------------------

class SessionNotFound(AgentError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class StoreError(AgentError):
    """The key-value store could not be read or written."""


class ModelError(AgentError):
    """The language model could not be reached or returned garbage."""


class InternalError(AgentError):
    pass


class UnsupportedChain(AgentError, ValueError):
    def __init__(self, value: str) -> None:
        super().__init__(f"Unknown chain type: {value}")
        self.value = value
