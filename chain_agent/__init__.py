"""chain_agent — wallet-aware conversational agent with pooled tool execution.

Usage::

    from chain_agent import create_services

    services = create_services()
    await services.start()          # discovers remote tools, freezes the registry
    response = await services.engine.handle(session_id, "list supported networks")
    await services.aclose()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()  # reads .env into os.environ (no-op if file missing)

from chain_agent.engine.agent import AgentEngine
from chain_agent.engine.llm import DemoMockLLMClient, LLMClient, OpenAILLMClient
from chain_agent.engine.models import AgentResponse, Chain
from chain_agent.engine.session import KVSessionStore
from chain_agent.storage.kv import InMemoryKVStore, KVStore
from chain_agent.tools.builtins import make_builtin_tools
from chain_agent.tools.chain import ChainAdapter, JsonRpcChainAdapter
from chain_agent.tools.executor import ToolExecutor
from chain_agent.tools.mcp import McpHttpConnector, discover_tools
from chain_agent.tools.pool import ConnectionPool, LocalConnector
from chain_agent.tools.registry import LOCAL_PROVIDER, ToolRegistry
from chain_agent.auth.service import WalletAuthService
from chain_agent.config import Settings
from chain_agent.errors import ToolError

__all__ = [
    "AgentEngine",
    "AgentResponse",
    "Chain",
    "Services",
    "Settings",
    "create_engine",
    "create_services",
]

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything one running process shares across sessions."""

    settings: Settings
    kv: KVStore
    sessions: KVSessionStore
    registry: ToolRegistry
    pool: ConnectionPool
    executor: ToolExecutor
    chain: ChainAdapter
    auth: WalletAuthService
    engine: AgentEngine

    async def start(self) -> None:
        """Discover remote tools, then freeze the registry."""
        for name in self.settings.mcp_servers:
            try:
                await discover_tools(self.registry, self.pool, name)
            except ToolError as exc:
                logger.error("mcp=%s discovery failed, its tools are unavailable: %s", name, exc)
        self.registry.freeze()
        logger.info("Ready with %d tools: %s", len(self.registry), [t.name for t in self.registry.list()])

    async def aclose(self) -> None:
        await self.pool.close()
        await self.chain.aclose()


def create_services(
    settings: Settings | None = None,
    *,
    llm_client: LLMClient | None = None,
    chain_adapter: ChainAdapter | None = None,
    kv: KVStore | None = None,
) -> Services:
    """Wire all components. Injected pieces replace the ones built from settings."""
    settings = settings or Settings.from_env()

    kv = kv or InMemoryKVStore()
    sessions = KVSessionStore(kv, ttl=settings.session_ttl, max_messages=settings.max_messages)

    chain = chain_adapter or JsonRpcChainAdapter(settings.eth_rpc_url, settings.sol_rpc_url)
    registry = ToolRegistry()
    for tool in make_builtin_tools(chain):
        registry.register(tool)

    pool = ConnectionPool(
        {LOCAL_PROVIDER: LocalConnector()},
        max_per_provider=settings.pool_max_per_provider,
        acquire_timeout=settings.pool_acquire_timeout,
        max_idle_seconds=settings.pool_max_idle,
    )
    for name, url in settings.mcp_servers.items():
        pool.add_connector(name, McpHttpConnector(url, timeout=settings.tool_timeout))

    executor = ToolExecutor(
        registry,
        pool,
        max_attempts=settings.tool_max_attempts,
        backoff=settings.tool_backoff,
        timeout=settings.tool_timeout,
    )

    if llm_client is None:
        if settings.use_mock_llm or not settings.openai_api_key:
            logger.info("Using demo mock LLM (set OPENAI_API_KEY for real output)")
            llm_client = DemoMockLLMClient()
        else:
            llm_client = OpenAILLMClient(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                base_url=settings.openai_base_url,
            )

    engine = AgentEngine(
        ses_store=sessions,
        tool_registry=registry,
        executor=executor,
        llm_client=llm_client,
        max_iterations=settings.max_iterations,
        llm_timeout=settings.llm_timeout,
    )
    auth = WalletAuthService(
        kv,
        sessions,
        secret=settings.auth_secret,
        nonce_ttl=settings.nonce_ttl,
        token_ttl=settings.token_ttl,
    )
    return Services(
        settings=settings,
        kv=kv,
        sessions=sessions,
        registry=registry,
        pool=pool,
        executor=executor,
        chain=chain,
        auth=auth,
        engine=engine,
    )


def create_engine(
    *,
    openai_api_key: str | None = None,
    openai_model: str | None = None,
    use_mock_llm: bool | None = None,
) -> AgentEngine:
    """Return a ready-to-use AgentEngine with the local tools only.

    Environment variables are documented on ``Settings.from_env``.
    """
    settings = Settings.from_env(
        openai_api_key=openai_api_key,
        openai_model=openai_model,
        use_mock_llm=use_mock_llm,
        mcp_servers={},
    )
    services = create_services(settings)
    services.registry.freeze()
    return services.engine
