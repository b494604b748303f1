"""CLI JSON adapter — reads text from argv/stdin, prints the agent response as JSON."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from chain_agent import create_services
from chain_agent.config import Settings
from chain_agent.engine.models import Chain


async def run_cli(
    text: str,
    session_id: str = "cli-default",
    wallet_address: str | None = None,
    chain: str | None = None,
) -> dict:
    services = create_services()
    await services.start()
    try:
        response = await services.engine.handle(
            session_id,
            text,
            wallet_address=wallet_address,
            chain=Chain.parse(chain) if chain else None,
        )
    finally:
        await services.aclose()
    payload = response.to_payload()
    print(json.dumps(payload, default=str), flush=True)
    return payload


def main() -> None:
    logging.basicConfig(level=Settings.from_env().log_level.upper(), stream=sys.stderr)

    data: dict = {}
    if len(sys.argv) > 1:
        data["text"] = " ".join(sys.argv[1:])
    else:
        raw = sys.stdin.read().strip()
        if not raw:
            print(
                "Usage: agent-cli <text>  OR  echo '{\"text\":\"...\",\"session_id\":\"...\"}' | agent-cli",
                file=sys.stderr,
            )
            sys.exit(1)
        try:
            parsed = json.loads(raw)
            data = parsed if isinstance(parsed, dict) else {"text": raw}
        except json.JSONDecodeError:
            data = {"text": raw}

    asyncio.run(run_cli(
        data.get("text", ""),
        session_id=data.get("session_id", "cli-default"),
        wallet_address=data.get("wallet_address"),
        chain=data.get("chain"),
    ))


if __name__ == "__main__":
    main()
