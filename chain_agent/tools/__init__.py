from chain_agent.tools.executor import ToolExecutor
from chain_agent.tools.pool import (
    Connection,
    ConnectionPool,
    Connector,
    LocalConnection,
    LocalConnector,
    PooledConnection,
)
from chain_agent.tools.registry import LOCAL_PROVIDER, ToolDef, ToolRegistry

__all__ = [
    "Connection",
    "ConnectionPool",
    "Connector",
    "LOCAL_PROVIDER",
    "LocalConnection",
    "LocalConnector",
    "PooledConnection",
    "ToolDef",
    "ToolExecutor",
    "ToolRegistry",
]
