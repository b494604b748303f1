"""Built-in local tools: echo, networks, wallet info, chain queries, tx build and broadcast."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from chain_agent.engine.models import AgentContext, Chain
from chain_agent.errors import InvalidToolArgs
from chain_agent.tools.chain import LAMPORTS_PER_SOL, WEI_PER_ETH, ChainAdapter
from chain_agent.tools.registry import ToolDef

SIMPLE_TRANSFER_GAS = 21_000


def _fmt(amount: int, unit: int, symbol: str) -> str:
    return f"{Decimal(amount) / Decimal(unit):.6f} {symbol}"


# ---------------------------------------------------------------------------
# echo: connectivity check, reflects the caller's context
# ---------------------------------------------------------------------------

class EchoInput(BaseModel):
    message: str


async def _echo_handler(inp: EchoInput, context: AgentContext) -> dict:
    return {
        "message": inp.message,
        "session_id": context.session_id,
        "wallet_address": context.wallet_address,
        "chain": context.chain.value if context.chain else None,
    }


ECHO_TOOL = ToolDef(
    name="echo",
    description="Echo a message back along with the current session and wallet context.",
    input_model=EchoInput,
    handler=_echo_handler,
)


# ---------------------------------------------------------------------------
# list_networks: static table of supported EVM networks
# ---------------------------------------------------------------------------

def _network(chain_id: str, name: str, kind: str, rpc_url: str, currency: str, symbol: str) -> dict:
    return {
        "chainId": chain_id,
        "name": name,
        "type": kind,
        "rpcUrl": rpc_url,
        "nativeCurrency": {"name": currency, "symbol": symbol, "decimals": 18},
    }


SUPPORTED_NETWORKS: list[dict[str, Any]] = [
    _network("0xaa36a7", "Ethereum Sepolia", "Testnet", "https://sepolia.infura.io/v3/", "Sepolia ETH", "ETH"),
    _network("0x14a34", "Base Sepolia", "Testnet", "https://sepolia.base.org", "Base Sepolia ETH", "ETH"),
    _network("0x13882", "Polygon Amoy", "Testnet", "https://rpc-amoy.polygon.technology", "MATIC", "MATIC"),
    _network("0x1", "Ethereum Mainnet", "Mainnet", "https://mainnet.infura.io/v3/", "Ether", "ETH"),
    _network("0x2105", "Base Mainnet", "Mainnet", "https://mainnet.base.org", "Ether", "ETH"),
    _network("0x89", "Polygon Mainnet", "Mainnet", "https://polygon-rpc.com", "MATIC", "MATIC"),
]


class ListNetworksInput(BaseModel):
    pass


async def _list_networks_handler(inp: ListNetworksInput, context: AgentContext) -> dict:
    return {
        "networks": [dict(n) for n in SUPPORTED_NETWORKS],
        "message": "Retrieved list of supported networks",
    }


LIST_NETWORKS_TOOL = ToolDef(
    name="list_networks",
    description="List the blockchain networks (mainnets and testnets) this agent supports.",
    input_model=ListNetworksInput,
    handler=_list_networks_handler,
)


# ---------------------------------------------------------------------------
# get_wallet_info: needs an authenticated wallet
# ---------------------------------------------------------------------------

class WalletInfoInput(BaseModel):
    pass


async def _wallet_info_handler(inp: WalletInfoInput, context: AgentContext) -> dict:
    return {
        "address": context.wallet_address,
        "chain": context.chain.value if context.chain else None,
    }


WALLET_INFO_TOOL = ToolDef(
    name="get_wallet_info",
    description="Return the address and chain of the user's connected wallet.",
    input_model=WalletInfoInput,
    handler=_wallet_info_handler,
    requires_wallet=True,
)


# ---------------------------------------------------------------------------
# switch_network: wallet instruction for the client to execute
# ---------------------------------------------------------------------------

def find_network(chain_id: str) -> dict[str, Any] | None:
    wanted = chain_id.strip().lower()
    return next((n for n in SUPPORTED_NETWORKS if n["chainId"] == wanted), None)


class SwitchNetworkInput(BaseModel):
    chain_id: str = Field(description="Hex chain id, e.g. '0x1' for Ethereum Mainnet or '0xaa36a7' for Sepolia")


async def _switch_network_handler(inp: SwitchNetworkInput, context: AgentContext) -> dict:
    if context.chain is not None and not context.chain.is_evm:
        raise InvalidToolArgs("switch_network supports EVM wallets only")
    network = find_network(inp.chain_id)
    if network is None:
        supported = ", ".join(n["chainId"] for n in SUPPORTED_NETWORKS)
        raise InvalidToolArgs(f"Unsupported chainId: {inp.chain_id} (supported: {supported})")

    chain_id = network["chainId"]
    return {
        "action": "switch_network",
        "network": dict(network),
        "instruction": {
            "type": "wallet_operation",
            "method": "wallet_switchEthereumChain",
            "params": {"chainId": chain_id},
            "fallback": {
                "method": "wallet_addEthereumChain",
                "params": {
                    "chainId": chain_id,
                    "chainName": network["name"],
                    "rpcUrls": [network["rpcUrl"]],
                    "nativeCurrency": network["nativeCurrency"],
                },
            },
        },
        "message": f"Switching to {network['name']} ({network['type']})",
    }


SWITCH_NETWORK_TOOL = ToolDef(
    name="switch_network",
    description=(
        "Ask the user's wallet to switch to another supported EVM network. "
        "Returns the wallet request for the client to execute."
    ),
    input_model=SwitchNetworkInput,
    handler=_switch_network_handler,
    requires_wallet=True,
)


# ---------------------------------------------------------------------------
# Chain-backed tools
# ---------------------------------------------------------------------------

class QueryBlockchainInput(BaseModel):
    action: Literal["eth_balance", "erc20_balance", "sol_balance"]
    address: str | None = Field(default=None, description="Defaults to the connected wallet")
    token_address: str | None = Field(default=None, description="ERC-20 contract, for erc20_balance")


class TransactionStatusInput(BaseModel):
    tx_hash: str
    chain: str = "ethereum"

    @field_validator("chain")
    @classmethod
    def _known_chain(cls, v: str) -> str:
        return Chain.parse(v).value


class BuildTransactionInput(BaseModel):
    to: str
    value_eth: Decimal = Field(gt=0)


class BroadcastTransactionInput(BaseModel):
    signed_tx: str = Field(min_length=1, description="Signed transaction: 0x-hex for Ethereum, base64 for Solana")
    chain: str = "ethereum"

    @field_validator("chain")
    @classmethod
    def _known_chain(cls, v: str) -> str:
        return Chain.parse(v).value


class CurrentNetworkInput(BaseModel):
    pass


def make_chain_tools(chain: ChainAdapter) -> list[ToolDef]:
    """Create the tools that read from, prepare writes for, or broadcast to a chain."""

    async def _query_handler(inp: QueryBlockchainInput, context: AgentContext) -> dict:
        address = inp.address or context.wallet_address
        if not address:
            raise InvalidToolArgs("address is required when no wallet is connected")

        if inp.action == "eth_balance":
            wei = await chain.eth_balance(address)
            return {"action": inp.action, "address": address, "raw": str(wei),
                    "balance": _fmt(wei, WEI_PER_ETH, "ETH")}
        if inp.action == "erc20_balance":
            if not inp.token_address:
                raise InvalidToolArgs("token_address is required for erc20_balance")
            raw = await chain.erc20_balance(inp.token_address, address)
            return {"action": inp.action, "address": address, "token_address": inp.token_address,
                    "raw": str(raw), "balance": str(raw)}
        lamports = await chain.sol_balance(address)
        return {"action": inp.action, "address": address, "raw": str(lamports),
                "balance": _fmt(lamports, LAMPORTS_PER_SOL, "SOL")}

    async def _status_handler(inp: TransactionStatusInput, context: AgentContext) -> dict:
        if Chain(inp.chain) is Chain.SOLANA:
            return await chain.sol_transaction_status(inp.tx_hash)
        return await chain.eth_transaction_status(inp.tx_hash)

    async def _build_handler(inp: BuildTransactionInput, context: AgentContext) -> dict:
        if context.chain is not None and not context.chain.is_evm:
            raise InvalidToolArgs("build_transaction supports EVM wallets only")
        sender = context.wallet_address
        nonce = await chain.eth_nonce(sender)
        gas_price = await chain.eth_gas_price()
        chain_id = await chain.eth_chain_id()
        return {
            "from": sender,
            "to": inp.to,
            "value": hex(int(inp.value_eth * WEI_PER_ETH)),
            "gas": hex(SIMPLE_TRANSFER_GAS),
            "gasPrice": hex(gas_price),
            "nonce": hex(nonce),
            "chainId": hex(chain_id),
            "note": "Unsigned transaction. Sign and broadcast it from your wallet.",
        }

    async def _broadcast_handler(inp: BroadcastTransactionInput, context: AgentContext) -> dict:
        target = Chain(inp.chain)
        if context.chain is not None and context.chain is not target:
            raise InvalidToolArgs(
                f"Wallet is on {context.chain.value}; cannot broadcast a {target.value} transaction"
            )
        if target is Chain.SOLANA:
            tx_hash = await chain.sol_send(inp.signed_tx)
        else:
            tx_hash = await chain.eth_send_raw(inp.signed_tx)
        return {
            "tx_hash": tx_hash,
            "chain": target.value,
            "status": "submitted",
            "message": "Transaction broadcast. Use get_transaction_status to follow it.",
        }

    async def _current_network_handler(inp: CurrentNetworkInput, context: AgentContext) -> dict:
        chain_id = hex(await chain.eth_chain_id())
        network = find_network(chain_id)
        return {
            "chainId": chain_id,
            "network": dict(network) if network else None,
            "message": f"Connected to {network['name']}" if network else f"Connected to chain {chain_id}",
        }

    return [
        ToolDef(
            name="query_blockchain",
            description=(
                "Query blockchain data: native ETH balance, ERC-20 token balance, "
                "or Solana balance. The address defaults to the connected wallet."
            ),
            input_model=QueryBlockchainInput,
            handler=_query_handler,
        ),
        ToolDef(
            name="get_transaction_status",
            description="Look up whether an Ethereum or Solana transaction succeeded, failed, or is pending.",
            input_model=TransactionStatusInput,
            handler=_status_handler,
        ),
        ToolDef(
            name="build_transaction",
            description="Build an unsigned native ETH transfer from the connected wallet for the user to sign.",
            input_model=BuildTransactionInput,
            handler=_build_handler,
            requires_wallet=True,
        ),
        ToolDef(
            name="broadcast_transaction",
            description=(
                "Broadcast a transaction the user has already signed, on Ethereum or Solana. "
                "Returns the transaction hash."
            ),
            input_model=BroadcastTransactionInput,
            handler=_broadcast_handler,
            requires_wallet=True,
        ),
        ToolDef(
            name="get_current_network",
            description="Report which EVM network the agent's RPC endpoint is connected to.",
            input_model=CurrentNetworkInput,
            handler=_current_network_handler,
        ),
    ]


def make_builtin_tools(chain: ChainAdapter) -> list[ToolDef]:
    return [ECHO_TOOL, LIST_NETWORKS_TOOL, WALLET_INFO_TOOL, SWITCH_NETWORK_TOOL, *make_chain_tools(chain)]
