"""Wallet-auth models and exceptions."""

from __future__ import annotations

from pydantic import BaseModel

from chain_agent.engine.models import Chain


class AuthError(Exception):
    """Base authentication error. Never retried; surfaces as HTTP 401."""


class NonceExpired(AuthError):
    """No live nonce for the address: never issued, already consumed, or timed out."""


class InvalidSignature(AuthError):
    pass


class TokenExpired(AuthError):
    pass


class InvalidToken(AuthError):
    pass


class AuthNonce(BaseModel):
    address: str
    nonce: str
    created_at: int
    expires_at: int

    @property
    def message(self) -> str:
        return sign_in_message(self.nonce)


class WalletClaims(BaseModel):
    """JWT token payload."""
    sub: str  # wallet address
    chain: Chain
    session_id: str
    iat: int
    exp: int


class AuthToken(BaseModel):
    token: str
    expires_at: int
    session_id: str
    address: str
    chain: Chain


def sign_in_message(nonce: str) -> str:
    return f"Sign this message to authenticate: {nonce}"
