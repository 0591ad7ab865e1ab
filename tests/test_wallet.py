"""
Tests for wallets and signed request envelopes.
"""

import pytest

from swinestake_core.crypto_utils import is_valid_address
from swinestake_core.wallet import Wallet, canonical_json, verify_request


@pytest.fixture
def alice_wallet():
    """Deterministic wallet for Alice."""
    return Wallet.from_seed("alice-fixture-seed")


class TestWallet:
    def test_create(self):
        w = Wallet.create()
        assert is_valid_address(w.address)

    def test_seed_is_deterministic(self, alice_wallet):
        assert Wallet.from_seed("alice-fixture-seed").address == alice_wallet.address
        assert Wallet.from_seed("bob-fixture-seed").address != alice_wallet.address

    def test_nonces_increase(self, alice_wallet):
        first = alice_wallet.sign_request("flexible/claim")["payload"]["nonce"]
        second = alice_wallet.sign_request("flexible/claim")["payload"]["nonce"]
        assert second == first + 1


class TestEnvelopes:
    def test_round_trip(self, alice_wallet):
        env = alice_wallet.sign_request("fixed/open", amount=1000)
        caller, payload = verify_request(env)
        assert caller == alice_wallet.address
        assert payload["op"] == "fixed/open"
        assert payload["amount"] == 1000

    def test_tampered_payload(self, alice_wallet):
        env = alice_wallet.sign_request("fixed/open", amount=1000)
        env["payload"]["amount"] = 1_000_000
        with pytest.raises(ValueError):
            verify_request(env)

    def test_swapped_public_key(self, alice_wallet):
        env = alice_wallet.sign_request("fixed/open", amount=1000)
        env["public_key"] = Wallet.create().public_key.hex()
        with pytest.raises(ValueError):
            verify_request(env)

    @pytest.mark.parametrize("env", [
        {},
        {"payload": {}, "public_key": "zz", "signature": "00"},
        {"payload": [], "public_key": "04", "signature": "00"},
        {"payload": {"op": "x"}, "public_key": None, "signature": "00"},
    ])
    def test_malformed(self, env):
        with pytest.raises(ValueError):
            verify_request(env)

    def test_canonical_json_is_key_order_independent(self):
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})
        assert canonical_json({"a": 1}) == b'{"a":1}'
