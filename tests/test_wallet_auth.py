"""Tests for WalletAuthService — single-use nonces, EVM + Solana verification, tokens."""

from __future__ import annotations

import asyncio
import base64
import time

import jwt
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from nacl.signing import SigningKey

from chain_agent.auth.models import AuthError, InvalidSignature, InvalidToken, NonceExpired, TokenExpired
from chain_agent.auth.service import WalletAuthService
from chain_agent.auth.signatures import base58_encode
from chain_agent.engine.agent import AgentEngine
from chain_agent.engine.llm import LLMClient
from chain_agent.engine.models import Chain, LLMResult
from chain_agent.errors import UnsupportedChain

from conftest import FakeClock

SECRET = "test-secret"


def _evm_sign(account, message: str) -> str:
    signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
    return "0x" + signed.signature.hex().removeprefix("0x")


@pytest.fixture
def auth(kv, ses_store, clock):
    return WalletAuthService(kv, ses_store, secret=SECRET, clock=clock)


@pytest.fixture
def account():
    return Account.create()


class TestNonce:
    async def test_nonce_shape_and_storage(self, auth, kv, account):
        nonce = await auth.request_nonce(account.address)

        assert len(nonce.nonce) == 64
        int(nonce.nonce, 16)
        assert nonce.address == account.address.lower()
        assert nonce.expires_at - nonce.created_at == 300
        assert nonce.nonce in nonce.message
        assert await kv.get(f"nonce:{account.address.lower()}") is not None

    async def test_new_nonce_replaces_old(self, auth, account):
        first = await auth.request_nonce(account.address)
        second = await auth.request_nonce(account.address)
        assert first.nonce != second.nonce

        with pytest.raises(NonceExpired):
            await auth.verify(account.address, _evm_sign(account, first.message), first.message, "ethereum")
        # the attempt consumed the live nonce as well
        with pytest.raises(NonceExpired):
            await auth.verify(account.address, _evm_sign(account, second.message), second.message, "ethereum")

    async def test_empty_address_rejected(self, auth):
        with pytest.raises(AuthError):
            await auth.request_nonce("  ")


class TestEvmVerify:
    async def test_valid_signature_issues_token_and_session(self, auth, ses_store, account):
        nonce = await auth.request_nonce(account.address)
        token = await auth.verify(account.address, _evm_sign(account, nonce.message), nonce.message, "eth")

        claims = auth.validate_token(token.token)
        assert claims.sub == account.address.lower()
        assert claims.chain is Chain.ETHEREUM
        assert claims.exp - claims.iat == 24 * 60 * 60
        session = await ses_store.get(token.session_id)
        assert session.wallet_address == account.address.lower()
        assert session.chain is Chain.ETHEREUM

    async def test_nonce_consumed_exactly_once(self, auth, account):
        nonce = await auth.request_nonce(account.address)
        signature = _evm_sign(account, nonce.message)

        await auth.verify(account.address, signature, nonce.message, "ethereum")
        with pytest.raises(NonceExpired):
            await auth.verify(account.address, signature, nonce.message, "ethereum")

    async def test_wrong_key_burns_nonce(self, auth, account):
        nonce = await auth.request_nonce(account.address)
        impostor = Account.create()

        with pytest.raises(InvalidSignature):
            await auth.verify(account.address, _evm_sign(impostor, nonce.message), nonce.message, "ethereum")
        # the correctly signed retry fails too: the nonce is gone
        with pytest.raises(NonceExpired):
            await auth.verify(account.address, _evm_sign(account, nonce.message), nonce.message, "ethereum")

    async def test_literal_short_address_flow(self, auth):
        nonce = await auth.request_nonce("0xABC")
        signer = Account.create()
        signature = _evm_sign(signer, nonce.message)

        with pytest.raises(InvalidSignature):
            await auth.verify("0xabc", signature, nonce.message, "ethereum")
        with pytest.raises(NonceExpired):
            await auth.verify("0xabc", signature, nonce.message, "ethereum")

    async def test_concurrent_verifies_consume_once(self, auth, account):
        nonce = await auth.request_nonce(account.address)
        signature = _evm_sign(account, nonce.message)

        results = await asyncio.gather(
            *(auth.verify(account.address, signature, nonce.message, "ethereum") for _ in range(3)),
            return_exceptions=True,
        )
        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert sum(isinstance(r, NonceExpired) for r in results) == 2

    async def test_expired_nonce(self, auth, account, clock):
        nonce = await auth.request_nonce(account.address)
        clock.advance(301)
        with pytest.raises(NonceExpired):
            await auth.verify(account.address, _evm_sign(account, nonce.message), nonce.message, "ethereum")

    async def test_message_must_carry_nonce(self, auth, account):
        await auth.request_nonce(account.address)
        message = "Sign this message to authenticate: something-else"
        with pytest.raises(NonceExpired, match="current nonce"):
            await auth.verify(account.address, _evm_sign(account, message), message, "ethereum")

    async def test_malformed_signature(self, auth, account):
        nonce = await auth.request_nonce(account.address)
        with pytest.raises(InvalidSignature):
            await auth.verify(account.address, "0xdeadbeef", nonce.message, "ethereum")

    async def test_unknown_chain(self, auth, account):
        with pytest.raises(UnsupportedChain):
            await auth.verify(account.address, "0x00", "msg", "bitcoin")

    async def test_binds_existing_session(self, auth, ses_store, account):
        existing = await ses_store.create()
        nonce = await auth.request_nonce(account.address)
        token = await auth.verify(
            account.address, _evm_sign(account, nonce.message), nonce.message, "ethereum",
            session_id=existing.session_id,
        )
        assert token.session_id == existing.session_id
        assert (await ses_store.get(existing.session_id)).wallet_address == account.address.lower()

    async def test_binding_waits_for_in_flight_turn(self, auth, ses_store, tool_registry, executor, account):
        existing = await ses_store.create()
        started = asyncio.Event()
        release = asyncio.Event()

        class Gated(LLMClient):
            async def generate(self, messages, tools=None):
                started.set()
                await release.wait()
                return LLMResult(content="done")

        engine = AgentEngine(ses_store, tool_registry, executor, Gated())
        turn = asyncio.create_task(engine.handle(existing.session_id, "hi"))
        await started.wait()

        nonce = await auth.request_nonce(account.address)
        binding = asyncio.create_task(auth.verify(
            account.address, _evm_sign(account, nonce.message), nonce.message, "ethereum",
            session_id=existing.session_id,
        ))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not binding.done()

        release.set()
        await turn
        await binding

        stored = await ses_store.get(existing.session_id)
        assert stored.wallet_address == account.address.lower()
        assert [m.content for m in stored.messages] == ["hi", "done"]


class TestSolanaVerify:
    async def test_valid_base58_signature(self, auth):
        key = SigningKey.generate()
        address = base58_encode(bytes(key.verify_key))
        nonce = await auth.request_nonce(address)
        signature = base58_encode(key.sign(nonce.message.encode()).signature)

        token = await auth.verify(address, signature, nonce.message, "sol")

        claims = auth.validate_token(token.token)
        assert claims.sub == address
        assert claims.chain is Chain.SOLANA

    async def test_base64_signature_accepted(self, auth):
        key = SigningKey.generate()
        address = base58_encode(bytes(key.verify_key))
        nonce = await auth.request_nonce(address)
        signature = base64.b64encode(key.sign(nonce.message.encode()).signature).decode()

        token = await auth.verify(address, signature, nonce.message, "solana")
        assert token.chain is Chain.SOLANA

    async def test_wrong_key(self, auth):
        key = SigningKey.generate()
        other = SigningKey.generate()
        address = base58_encode(bytes(key.verify_key))
        nonce = await auth.request_nonce(address)
        signature = base58_encode(other.sign(nonce.message.encode()).signature)

        with pytest.raises(InvalidSignature):
            await auth.verify(address, signature, nonce.message, "solana")


class TestTokens:
    def test_expired_token(self, kv, ses_store):
        two_days_ago = FakeClock(time.time() - 2 * 24 * 60 * 60)
        auth = WalletAuthService(kv, ses_store, secret=SECRET, clock=two_days_ago)
        token = auth.issue_token("0xabc", Chain.ETHEREUM, "s-1")
        with pytest.raises(TokenExpired):
            auth.validate_token(token.token)

    def test_wrong_secret(self, auth, kv, ses_store):
        other = WalletAuthService(kv, ses_store, secret="other-secret")
        token = other.issue_token("0xabc", Chain.ETHEREUM, "s-1")
        with pytest.raises(InvalidToken):
            auth.validate_token(token.token)

    def test_garbage_token(self, auth):
        with pytest.raises(InvalidToken):
            auth.validate_token("not-a-jwt")

    def test_missing_claims(self, auth):
        token = jwt.encode({"sub": "0xabc", "exp": 9_999_999_999, "iat": 1}, SECRET, algorithm="HS256")
        with pytest.raises(InvalidToken):
            auth.validate_token(token)

    def test_context_for_claims(self, auth):
        token = auth.issue_token("0xabc", Chain.ETHEREUM, "s-1")
        ctx = auth.context_for(auth.validate_token(token.token))
        assert ctx.wallet_address == "0xabc"
        assert ctx.chain is Chain.ETHEREUM
        assert ctx.session_id == "s-1"

    def test_random_secret_when_unset(self, kv, ses_store):
        a = WalletAuthService(kv, ses_store)
        b = WalletAuthService(kv, ses_store)
        token = a.issue_token("0xabc", Chain.ETHEREUM, "s-1")
        assert a.validate_token(token.token).sub == "0xabc"
        with pytest.raises(InvalidToken):
            b.validate_token(token.token)
