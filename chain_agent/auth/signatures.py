"""Wallet signature verification: EVM personal_sign and Solana signMessage."""

from __future__ import annotations

import base64
import binascii

from eth_account import Account
from eth_account.messages import encode_defunct
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from chain_agent.auth.models import InvalidSignature

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {char: index for index, char in enumerate(_BASE58_ALPHABET)}


def verify_evm_signature(message: str, signature: str, address: str) -> None:
    """Raise ``InvalidSignature`` unless *address* signed *message* (EIP-191)."""
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as exc:
        raise InvalidSignature(f"Malformed EVM signature: {exc}") from exc
    if recovered.lower() != address.lower():
        raise InvalidSignature("Signature does not match address")


def verify_solana_signature(message: str, signature: str, address: str) -> None:
    """Raise ``InvalidSignature`` unless the ed25519 key *address* signed *message*."""
    try:
        public_key = base58_decode(address)
        signature_bytes = _decode_signature(signature)
    except ValueError as exc:
        raise InvalidSignature(str(exc)) from exc
    if len(public_key) != 32:
        raise InvalidSignature("Invalid Solana public key length")
    if len(signature_bytes) != 64:
        raise InvalidSignature("Invalid Solana signature length")

    try:
        VerifyKey(public_key).verify(message.encode("utf-8"), signature_bytes)
    except BadSignatureError as exc:
        raise InvalidSignature("Invalid Solana signature") from exc


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------

def base58_decode(value: str) -> bytes:
    if not value:
        return b""
    num = 0
    for char in value:
        if char not in _BASE58_INDEX:
            raise ValueError("Invalid base58 character")
        num = num * 58 + _BASE58_INDEX[char]
    combined = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    pad = len(value) - len(value.lstrip("1"))
    return b"\x00" * pad + combined


def base58_encode(data: bytes) -> str:
    if not data:
        return ""
    num = int.from_bytes(data, "big")
    encoded = ""
    while num > 0:
        num, rem = divmod(num, 58)
        encoded = _BASE58_ALPHABET[rem] + encoded
    pad = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad + encoded


def _decode_signature(signature: str) -> bytes:
    candidate = signature.strip()
    if not candidate:
        raise ValueError("Signature is empty")

    if all(char in _BASE58_INDEX for char in candidate):
        decoded = base58_decode(candidate)
        if len(decoded) == 64:
            return decoded

    try:
        return base64.b64decode(candidate, validate=True)
    except (ValueError, binascii.Error) as exc:
        raise ValueError("Unsupported signature encoding") from exc
