"""Wallet authentication: nonce issue, signature verification, JWT credentials.

Flow:
1. Client requests a nonce via GET /wallet/nonce/{address}
2. Client signs the returned message with the wallet
3. Client posts address + message + signature + chain to POST /wallet/verify
4. Server consumes the nonce, verifies, binds the wallet to a session and
   returns an HS256 JWT
5. Client sends the JWT as a bearer token on later requests
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable

import jwt
from pydantic import ValidationError

from chain_agent.auth.models import (
    AuthError,
    AuthNonce,
    AuthToken,
    InvalidSignature,
    InvalidToken,
    NonceExpired,
    TokenExpired,
    WalletClaims,
)
from chain_agent.auth.signatures import verify_evm_signature, verify_solana_signature
from chain_agent.engine.models import AgentContext, Chain, Session
from chain_agent.engine.session import SessionStore
from chain_agent.errors import SessionNotFound
from chain_agent.storage.kv import KVStore

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
NONCE_TTL_SECONDS = 300
TOKEN_TTL_SECONDS = 24 * 60 * 60


class WalletAuthService:
    """Nonce → signature → credential state machine.

    A nonce is single-use: ``verify`` removes it from the store before
    checking anything else, so a failed attempt burns it too.
    """

    def __init__(
        self,
        nonce_store: KVStore,
        sessions: SessionStore,
        secret: str | None = None,
        nonce_ttl: int = NONCE_TTL_SECONDS,
        token_ttl: int = TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            logger.warning("AUTH_SECRET is not set; using a random per-process secret")
            secret = secrets.token_urlsafe(32)
        self._nonces = nonce_store
        self._sessions = sessions
        self._secret = secret
        self._nonce_ttl = nonce_ttl
        self._token_ttl = token_ttl
        self._clock = clock

    @staticmethod
    def normalize_address(address: str) -> str:
        address = (address or "").strip()
        if address[:2].lower() == "0x":
            return address.lower()
        return address

    @staticmethod
    def _nonce_key(address: str) -> str:
        return f"nonce:{address}"

    # -- nonce --------------------------------------------------------------

    async def request_nonce(self, address: str) -> AuthNonce:
        address = self.normalize_address(address)
        if not address:
            raise AuthError("Wallet address is required")

        now = int(self._clock())
        nonce = AuthNonce(
            address=address,
            nonce=secrets.token_hex(32),
            created_at=now,
            expires_at=now + self._nonce_ttl,
        )
        await self._nonces.put(self._nonce_key(address), nonce.model_dump(), ttl=self._nonce_ttl)
        logger.info("Issued nonce for %s", address)
        return nonce

    # -- verification -------------------------------------------------------

    async def verify(
        self,
        address: str,
        signature: str,
        message: str,
        chain: str | Chain,
        session_id: str | None = None,
    ) -> AuthToken:
        chain = Chain.parse(chain)
        address = self.normalize_address(address)

        record = await self._nonces.take(self._nonce_key(address))
        if record is None:
            logger.warning("No live nonce for %s", address)
            raise NonceExpired("Nonce not found or expired")
        nonce = AuthNonce.model_validate(record)
        if self._clock() >= nonce.expires_at:
            logger.warning("Expired nonce for %s", address)
            raise NonceExpired("Nonce expired")

        if nonce.nonce not in message:
            logger.warning("Signed message for %s does not carry the live nonce", address)
            raise NonceExpired("Signed message does not carry the current nonce")

        try:
            if chain.is_evm:
                verify_evm_signature(message, signature, address)
            else:
                verify_solana_signature(message, signature, address)
        except InvalidSignature:
            logger.warning("Rejected signature for %s (chain=%s)", address, chain.value)
            raise

        session = await self._bind_session(session_id, address, chain)
        token = self.issue_token(address, chain, session.session_id)
        logger.info("Verified wallet %s (chain=%s, session=%s)", address, chain.value, session.session_id)
        return token

    async def _bind_session(self, session_id: str | None, address: str, chain: Chain) -> Session:
        if session_id:
            async with self._sessions.lock(session_id):
                try:
                    session = await self._sessions.get(session_id)
                except SessionNotFound:
                    logger.info("Session %s not found; creating a new one for %s", session_id, address)
                else:
                    session.wallet_address = address
                    session.chain = chain
                    await self._sessions.save(session)
                    return session
        return await self._sessions.create(wallet_address=address, chain=chain)

    # -- tokens -------------------------------------------------------------

    def issue_token(self, address: str, chain: Chain, session_id: str) -> AuthToken:
        now = int(self._clock())
        claims = WalletClaims(
            sub=address,
            chain=chain,
            session_id=session_id,
            iat=now,
            exp=now + self._token_ttl,
        )
        token = jwt.encode(claims.model_dump(mode="json"), self._secret, algorithm=JWT_ALGORITHM)
        return AuthToken(
            token=token,
            expires_at=claims.exp,
            session_id=session_id,
            address=address,
            chain=chain,
        )

    def validate_token(self, token: str) -> WalletClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidToken(f"Invalid token: {exc}") from exc

        try:
            return WalletClaims.model_validate(payload)
        except ValidationError as exc:
            raise InvalidToken("Malformed token claims") from exc

    @staticmethod
    def context_for(claims: WalletClaims) -> AgentContext:
        return AgentContext(session_id=claims.session_id, wallet_address=claims.sub, chain=claims.chain)
