"""
Cryptographic helpers for SwineStake identities.

  - SHA-256 / RIPEMD-160 / Hash160
  - Base58 and Base58Check encoding
  - secp256k1 key-pair generation, signing and verification (``ecdsa``)
  - Address derivation: ``"s" + Base58Check(Hash160(public_key))``
"""

from __future__ import annotations

import hashlib

from Crypto.Hash import RIPEMD160
from ecdsa import (
    BadSignatureError,
    MalformedPointError,
    SECP256k1,
    SigningKey,
    VerifyingKey,
)

ADDRESS_PREFIX = "s"
BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


# ── hashing ─────────────────────────────────────────────────────────────

def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def ripemd160(data: bytes) -> bytes:
    return RIPEMD160.new(data).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD-160 of SHA-256, as used for address derivation."""
    return ripemd160(sha256(data))


# ── Base58 ──────────────────────────────────────────────────────────────

def base58_encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    out = []
    while n > 0:
        n, rem = divmod(n, 58)
        out.append(BASE58_ALPHABET[rem])
    # leading zero bytes map to the first alphabet character
    pad = len(data) - len(data.lstrip(b"\x00"))
    return BASE58_ALPHABET[0] * pad + "".join(reversed(out))


def base58_decode(text: str) -> bytes:
    n = 0
    for ch in text:
        idx = BASE58_ALPHABET.find(ch)
        if idx < 0:
            raise ValueError(f"Invalid Base58 character {ch!r}")
        n = n * 58 + idx
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    pad = len(text) - len(text.lstrip(BASE58_ALPHABET[0]))
    return b"\x00" * pad + body


def base58check_encode(payload: bytes) -> str:
    checksum = sha256(sha256(payload))[:4]
    return base58_encode(payload + checksum)


def base58check_decode(text: str) -> bytes:
    raw = base58_decode(text)
    if len(raw) < 4:
        raise ValueError("Base58Check string too short")
    payload, checksum = raw[:-4], raw[-4:]
    if sha256(sha256(payload))[:4] != checksum:
        raise ValueError("Base58Check checksum mismatch")
    return payload


# ── keys & signatures ───────────────────────────────────────────────────

def generate_keypair() -> tuple[bytes, bytes]:
    """Return ``(private_key, public_key)``; the public key is 65-byte uncompressed."""
    sk = SigningKey.generate(curve=SECP256k1)
    return sk.to_string(), b"\x04" + sk.get_verifying_key().to_string()


def public_key_from_private(private_key: bytes) -> bytes:
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return b"\x04" + sk.get_verifying_key().to_string()


def sign(private_key: bytes, message: bytes) -> bytes:
    """Deterministic (RFC 6979) secp256k1 signature over SHA-256(message)."""
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return sk.sign_deterministic(message, hashfunc=hashlib.sha256)


def verify(public_key: bytes, message: bytes, signature: bytes) -> bool:
    try:
        vk = VerifyingKey.from_string(public_key, curve=SECP256k1)
        return vk.verify(signature, message, hashfunc=hashlib.sha256)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False


def derive_address(public_key: bytes) -> str:
    return ADDRESS_PREFIX + base58check_encode(hash160(public_key))


def is_valid_address(address: str) -> bool:
    if not address.startswith(ADDRESS_PREFIX):
        return False
    try:
        return len(base58check_decode(address[len(ADDRESS_PREFIX):])) == 20
    except ValueError:
        return False
