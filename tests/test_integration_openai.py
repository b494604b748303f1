"""Integration tests that hit the real OpenAI API.

Skipped automatically when OPENAI_API_KEY is not set.
Run with:  OPENAI_API_KEY=sk-... pytest tests/test_integration_openai.py -v -s
"""

from __future__ import annotations

import os

import pytest

from chain_agent import create_engine
from chain_agent.engine.models import TurnState

pytestmark = pytest.mark.skipif(
    not os.environ.get("OPENAI_API_KEY"),
    reason="OPENAI_API_KEY not set — skipping real-API integration tests",
)


class TestOpenAINetworks:
    async def test_list_networks_uses_tool(self):
        engine = create_engine(use_mock_llm=False)

        response = await engine.handle("integ-networks", "Which blockchain networks do you support?")

        print(f"\n--- {len(response.tool_calls)} tool call(s) ---")
        for tc in response.tool_calls:
            print(f"  called: {tc.name}")
        print(response.content[:500])

        assert response.state is TurnState.DONE
        assert any(tc.name == "list_networks" for tc in response.tool_calls)
        assert len(response.content) > 10


class TestOpenAIWallet:
    async def test_wallet_tool_sees_context(self):
        engine = create_engine(use_mock_llm=False)
        address = "0x1111111111111111111111111111111111111111"

        response = await engine.handle("integ-wallet", "What is my wallet address?", wallet_address=address)

        print(f"\n--- wallet answer ---\n{response.content[:500]}")
        assert response.state is TurnState.DONE
        assert address in response.content.lower() or any(
            tc.name == "get_wallet_info" for tc in response.tool_calls
        )


class TestOpenAISessionContinuity:
    async def test_second_turn_has_history(self):
        engine = create_engine(use_mock_llm=False)
        sid = "integ-session-cont"

        first = await engine.handle(sid, "Remember the word 'sepolia' for me.")
        assert first.state is TurnState.DONE

        second = await engine.handle(sid, "Which word did I ask you to remember?")
        print(f"\n--- turn 2 ---\n{second.content[:500]}")
        assert "sepolia" in second.content.lower()
