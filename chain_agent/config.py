"""Runtime settings, read from the environment (``.env`` is loaded by the package)."""

from __future__ import annotations

import os
from typing import Mapping

from pydantic import BaseModel, Field

from chain_agent.tools.chain import DEFAULT_ETH_RPC_URL, DEFAULT_SOL_RPC_URL


class Settings(BaseModel):
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None
    use_mock_llm: bool = False

    auth_secret: str | None = None
    eth_rpc_url: str = DEFAULT_ETH_RPC_URL
    sol_rpc_url: str = DEFAULT_SOL_RPC_URL
    mcp_servers: dict[str, str] = Field(default_factory=dict)

    max_iterations: int = Field(default=10, ge=1)
    llm_timeout: float = Field(default=60.0, gt=0)
    tool_max_attempts: int = Field(default=3, ge=1)
    tool_timeout: float = Field(default=30.0, gt=0)
    tool_backoff: float = Field(default=0.5, ge=0)
    pool_max_per_provider: int = Field(default=4, ge=1)
    pool_acquire_timeout: float = Field(default=10.0, gt=0)
    pool_max_idle: float = Field(default=300.0, gt=0)

    session_ttl: int = Field(default=86400, gt=0)
    max_messages: int = Field(default=50, ge=1)
    nonce_ttl: int = Field(default=300, gt=0)
    token_ttl: int = Field(default=86400, gt=0)

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> Settings:
        """Build settings from environment variables; keyword overrides win.

        Variables (all optional): OPENAI_API_KEY, OPENAI_MODEL, OPENAI_BASE_URL,
        USE_MOCK_LLM, AUTH_SECRET, ETH_RPC_URL, SOL_RPC_URL,
        MCP_SERVERS (``name=url,name2=url2``), MAX_ITERATIONS, LLM_TIMEOUT,
        TOOL_MAX_ATTEMPTS, TOOL_TIMEOUT, TOOL_BACKOFF, POOL_MAX_PER_PROVIDER,
        POOL_ACQUIRE_TIMEOUT, POOL_MAX_IDLE, SESSION_TTL, MAX_MESSAGES,
        NONCE_TTL, TOKEN_TTL, LOG_LEVEL.
        """
        env = os.environ if environ is None else environ
        values: dict = {}
        for name in cls.model_fields:
            raw = env.get(name.upper())
            if raw is None or raw == "":
                continue
            if name == "mcp_servers":
                values[name] = parse_mcp_servers(raw)
            elif name == "use_mock_llm":
                values[name] = raw.strip().lower() in ("1", "true", "yes", "on")
            else:
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)


def parse_mcp_servers(raw: str) -> dict[str, str]:
    servers: dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        name, sep, url = entry.partition("=")
        if not sep or not name.strip() or not url.strip():
            raise ValueError(f"Invalid MCP_SERVERS entry {entry!r}; expected name=url")
        servers[name.strip()] = url.strip()
    return servers
