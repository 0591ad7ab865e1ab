"""
Wallet management for SwineStake participants.

A wallet wraps a secp256k1 key-pair and provides:
  - Address derivation
  - Deterministic derivation from a seed phrase
  - Signed request envelopes for the HTTP API

Envelope format::

    {
        "payload":    {"op": "fixed/open", "amount": 1000, "nonce": 7},
        "public_key": "<hex>",
        "signature":  "<hex>"
    }

The signature covers the canonical JSON of ``payload`` (sorted keys, no
whitespace).  The caller address is derived from ``public_key``, never
taken from the payload.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from swinestake_core.crypto_utils import (
    derive_address,
    generate_keypair,
    public_key_from_private,
    sign,
    verify,
)

_SEED_ITERATIONS = 100_000
_SEED_SALT = b"SwineStake/seed/v1"


def canonical_json(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


class Wallet:
    """Key-pair plus derived address."""

    def __init__(self, private_key: bytes, public_key: bytes | None = None):
        self.private_key = private_key
        self.public_key = public_key or public_key_from_private(private_key)
        self.address = derive_address(self.public_key)
        self._nonce: int = 0

    # ---- factory methods ----

    @classmethod
    def create(cls) -> Wallet:
        priv, pub = generate_keypair()
        return cls(priv, pub)

    @classmethod
    def from_seed(cls, seed: str) -> Wallet:
        """Derive a wallet deterministically from a seed phrase (PBKDF2-HMAC-SHA256)."""
        priv = hashlib.pbkdf2_hmac(
            "sha256", seed.encode("utf-8"), _SEED_SALT, _SEED_ITERATIONS,
        )
        return cls(priv)

    # ---- signing ----

    def next_nonce(self) -> int:
        self._nonce += 1
        return self._nonce

    def sign_request(self, op: str, **fields: Any) -> dict[str, Any]:
        """Build a signed envelope for operation *op* with a fresh nonce."""
        payload = {"op": op, "nonce": self.next_nonce(), **fields}
        signature = sign(self.private_key, canonical_json(payload))
        return {
            "payload": payload,
            "public_key": self.public_key.hex(),
            "signature": signature.hex(),
        }

    def __repr__(self) -> str:
        return f"Wallet({self.address})"


def verify_request(envelope: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """
    Check a signed envelope.

    Returns ``(caller_address, payload)``; raises ``ValueError`` when the
    envelope is malformed or the signature does not match.
    """
    try:
        payload = envelope["payload"]
        public_key = bytes.fromhex(envelope["public_key"])
        signature = bytes.fromhex(envelope["signature"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError("Malformed signed request") from exc
    if not isinstance(payload, dict):
        raise ValueError("payload must be an object")
    if not verify(public_key, canonical_json(payload), signature):
        raise ValueError("Signature verification failed")
    return derive_address(public_key), payload
