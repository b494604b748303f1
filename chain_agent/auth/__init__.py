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
from chain_agent.auth.service import WalletAuthService

__all__ = [
    "AuthError",
    "AuthNonce",
    "AuthToken",
    "InvalidSignature",
    "InvalidToken",
    "NonceExpired",
    "TokenExpired",
    "WalletAuthService",
    "WalletClaims",
]
