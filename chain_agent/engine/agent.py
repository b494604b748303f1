"""AgentEngine — the core runtime loop."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from chain_agent.engine.llm import LLMClient
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
from chain_agent.engine.prompts import (
    CONTINUE_PROMPT,
    CompletionCheck,
    build_follow_up,
    exhausted_message,
    has_no_tool_calls,
    system_prompt,
)
from chain_agent.engine.session import SessionStore
from chain_agent.errors import ModelError, SessionNotFound
from chain_agent.tools.executor import ToolExecutor
from chain_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class AgentEngine:
    """Public API: ``response = await engine.handle(session_id, text)``

    One turn alternates model calls and tool dispatch until the completion
    check passes (``done``) or ``max_iterations`` model rounds have run
    (``exhausted``). The session is checkpointed after every dispatched tool
    round and at the end of the turn; a model failure before the first
    checkpoint leaves the stored session untouched.
    """

    MAX_ITERATIONS: int = 10

    def __init__(
        self,
        ses_store: SessionStore,
        tool_registry: ToolRegistry,
        executor: ToolExecutor,
        llm_client: LLMClient,
        max_iterations: int = MAX_ITERATIONS,
        llm_timeout: float = 60.0,
        completion_check: CompletionCheck = has_no_tool_calls,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self._ses = ses_store
        self._tools = tool_registry
        self._executor = executor
        self._llm = llm_client
        self._max_iterations = max_iterations
        self._llm_timeout = llm_timeout
        self._is_complete = completion_check

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    # ------------------------------------------------------------------
    # Public handle
    # ------------------------------------------------------------------

    async def handle(
        self,
        session_id: str,
        text: str,
        wallet_address: str | None = None,
        chain: Chain | None = None,
    ) -> AgentResponse:
        async with self._ses.lock(session_id):
            return await self._run_turn(session_id, text, wallet_address, chain)

    async def _run_turn(
        self,
        session_id: str,
        text: str,
        wallet_address: str | None,
        chain: Chain | None,
    ) -> AgentResponse:
        t_start = time.monotonic()
        cap = self._ses.max_messages

        # 1. Session ---------------------------------------------------
        try:
            stored = await self._ses.get(session_id)
        except SessionNotFound:
            logger.info("session=%s not found; starting a fresh one", session_id)
            stored = Session(session_id=session_id)
        session = stored.model_copy(deep=True)

        if wallet_address and not session.wallet_address:
            session.wallet_address = wallet_address
            session.chain = chain or session.chain
        context = AgentContext(
            session_id=session_id,
            wallet_address=wallet_address or session.wallet_address,
            chain=chain or session.chain,
        )
        session.append(Message.user(text), cap)

        tool_schemas = self._tools.openai_schemas() or None
        follow_up: str | None = None
        calls: list[ToolCallInfo] = []

        # 2. Model / tool loop -----------------------------------------
        for iteration in range(1, self._max_iterations + 1):
            prompt = self._build_prompt(session, context, follow_up)
            result = await self._call_model(prompt, tool_schemas, session_id, iteration)
            if result is None:
                continue

            if self._is_complete(result):
                content = result.content or ""
                session.append(Message.assistant(content), cap)
                await self._ses.save(session)
                return self._finish(session, content, calls, TurnState.DONE, iteration, t_start)

            if not result.tool_calls:
                # Plain text that does not count as done: keep it and ask to continue.
                session.append(Message.assistant(result.content or ""), cap)
                follow_up = CONTINUE_PROMPT
                continue

            requests = assign_call_ids(result.tool_calls, iteration)
            session.append(Message.assistant(result.content or "", requests), cap)
            results: list[ToolCallResult] = []
            for request in requests:
                outcome = await self._executor.execute(request, context)
                results.append(outcome)
                calls.append(outcome.info())
                session.append(Message.tool(request.call_id, outcome.for_model()), cap)
            await self._ses.save(session)

            follow_up = build_follow_up(results)
            logger.info(
                "session=%s iteration=%d dispatched=%d failed=%d",
                session_id, iteration, len(results), sum(not r.success for r in results),
            )

        # 3. Exhausted -------------------------------------------------
        content = exhausted_message(self._max_iterations)
        session.append(Message.assistant(content), cap)
        await self._ses.save(session)
        return self._finish(session, content, calls, TurnState.EXHAUSTED, self._max_iterations, t_start)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call_model(
        self,
        prompt: list[dict[str, Any]],
        tool_schemas: list[dict[str, Any]] | None,
        session_id: str,
        iteration: int,
    ) -> LLMResult | None:
        """Returns ``None`` on timeout; the iteration is spent."""
        t_llm = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self._llm.generate(prompt, tools=tool_schemas),
                timeout=self._llm_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "session=%s iteration=%d model timed out after %.1fs",
                session_id, iteration, self._llm_timeout,
            )
            return None
        except ModelError:
            raise
        except Exception as exc:
            raise ModelError(f"Model call failed: {exc}") from exc

        logger.debug(
            "session=%s iteration=%d llm latency=%.3fs tool_calls=%d",
            session_id, iteration, time.monotonic() - t_llm, len(result.tool_calls or []),
        )
        return result

    @staticmethod
    def _build_prompt(
        session: Session,
        context: AgentContext,
        follow_up: str | None,
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt(context)}]
        known_calls: set[str] = set()
        for msg in session.messages:
            if msg.role == "assistant" and msg.tool_calls:
                known_calls.update(tc.call_id for tc in msg.tool_calls)
            elif msg.role == "tool" and msg.tool_call_id not in known_calls:
                # Its assistant call fell off the history cap.
                continue
            messages.append(msg.to_openai())
        if follow_up:
            messages.append({"role": "user", "content": follow_up})
        return messages

    @staticmethod
    def _finish(
        session: Session,
        content: str,
        calls: list[ToolCallInfo],
        state: TurnState,
        iterations: int,
        t_start: float,
    ) -> AgentResponse:
        logger.info(
            "session=%s turn %s after %d iterations, %d tool calls, %.3fs",
            session.session_id, state.value, iterations, len(calls), time.monotonic() - t_start,
        )
        return AgentResponse(
            content=content,
            session_id=session.session_id,
            tool_calls=calls,
            state=state,
            iterations=iterations,
        )


def assign_call_ids(calls: list[ToolCallRequest], iteration: int) -> list[ToolCallRequest]:
    """Replace empty or repeated call ids with ``call_{iteration}_{index}``."""
    seen: set[str] = set()
    assigned = []
    for index, call in enumerate(calls):
        call_id = call.call_id
        if not call_id or call_id in seen:
            call_id = f"call_{iteration}_{index}"
            call = call.model_copy(update={"call_id": call_id})
        seen.add(call_id)
        assigned.append(call)
    return assigned
