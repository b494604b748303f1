"""Prompt text and completion predicates for the conversation loop."""

from __future__ import annotations

from typing import Callable, Iterable

from chain_agent.engine.models import AgentContext, LLMResult, ToolCallResult

BASE_SYSTEM_PROMPT = """\
You are a blockchain assistant. You help users check wallet balances \
(ETH, ERC-20 tokens, SOL), look up transaction status, explore supported \
networks, and prepare transactions for their wallet to sign.

How to work:
1. Understand what the user is asking for.
2. Use the available tools to fetch live on-chain data. Do not guess balances or statuses.
3. If a tool fails, read the error and try another approach.
4. Answer concisely. Never ask for private keys or seed phrases."""

COMPLETION_MARKER = "TASK COMPLETE"

CONTINUE_PROMPT = (
    "Continue with any remaining steps of the user's request. "
    f"If everything is done, reply with the final answer and state \"{COMPLETION_MARKER}\"."
)


def system_prompt(context: AgentContext) -> str:
    if context.wallet_address:
        chain = context.chain.value if context.chain else "unknown"
        return (
            f"{BASE_SYSTEM_PROMPT}\n\n=== Connected wallet ===\n"
            f"Address: {context.wallet_address}\nChain: {chain}\n\n"
            "Use this address directly for balance queries and transactions; "
            "do not ask the user for it again."
        )
    return (
        f"{BASE_SYSTEM_PROMPT}\n\n=== Wallet status ===\n"
        "No wallet is connected. For wallet-specific operations, ask the user "
        "to connect and sign in with their wallet first."
    )


def build_follow_up(results: list[ToolCallResult]) -> str:
    """Prompt for the next model round after a batch of tool calls.

    Any failure yields a corrective prompt naming each failed tool with its
    error alongside the successful results.
    """
    failed = [r for r in results if not r.success]
    if not failed:
        return "The tool calls above succeeded. " + CONTINUE_PROMPT

    succeeded = [r for r in results if r.success]
    ok_lines = "\n".join(f"- {r.tool_name}: {r.content}" for r in succeeded) or "- (none)"
    failed_lines = "\n".join(f"- {r.tool_name}: {r.error}" for r in failed)
    return (
        "Some tool calls failed.\n\n"
        f"Successful tool results:\n{ok_lines}\n\n"
        f"Failed tools:\n{failed_lines}\n\n"
        "Analyze why they failed and try another way to solve the user's problem. "
        f"If all tasks are already complete, say so explicitly (\"{COMPLETION_MARKER}\")."
    )


def exhausted_message(max_iterations: int) -> str:
    return (
        f"I could not finish this request within {max_iterations} steps. "
        "Please try rephrasing it or breaking it into smaller requests."
    )


# ---------------------------------------------------------------------------
# Completion predicates
# ---------------------------------------------------------------------------

CompletionCheck = Callable[[LLMResult], bool]

DEFAULT_COMPLETION_PHRASES = (
    COMPLETION_MARKER,
    "all tasks are complete",
    "all tasks completed",
    "task completed",
)


def has_no_tool_calls(result: LLMResult) -> bool:
    return not result.tool_calls


def mentions_completion(phrases: Iterable[str] = DEFAULT_COMPLETION_PHRASES) -> CompletionCheck:
    """Keyword check: the reply has no tool calls and mentions a completion phrase."""
    lowered = tuple(p.lower() for p in phrases)

    def check(result: LLMResult) -> bool:
        if result.tool_calls:
            return False
        text = (result.content or "").lower()
        return any(p in text for p in lowered)

    return check


def any_of(*checks: CompletionCheck) -> CompletionCheck:
    def check(result: LLMResult) -> bool:
        return any(c(result) for c in checks)

    return check
