"""
Tests for the SwineStake REST API.

Covers:
  - Read endpoints (health, parameters, pool, stakes, participants, events)
  - Signed staking requests and error-code to HTTP status mapping
  - Envelope verification: bad signature, wrong op, replayed nonce
  - Owner-only administration
  - Middleware: API key, rate limiting, CORS, body size cap
"""

from __future__ import annotations

import pytest
from aiohttp.test_utils import TestClient, TestServer

from swinestake_core.api import APIServer, _NonceTracker, _TokenBucket
from swinestake_core.assets import PromiseToken, TokenLedger
from swinestake_core.config import APIConfig
from swinestake_core.settlement import SwineStake
from swinestake_core.wallet import Wallet

VAULT = "sVault"
T0 = 1_700_000_000
LOCK = 30 * 86_400
INTERVAL = 21_600

OWNER_WALLET = Wallet.from_seed("api-owner-seed")
ALICE_WALLET = Wallet.from_seed("api-alice-seed")


class _Clock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> float:
        return float(self.now)


class _Fixture:
    """Engine plus in-memory assets wired for API tests."""

    def __init__(self, approve: bool = True):
        self.staking = TokenLedger("SWINE")
        self.reward = TokenLedger("OINK")
        self.promise = PromiseToken(minter=VAULT)
        self.staking.credit(ALICE_WALLET.address, 5_000_000)
        self.reward.credit(VAULT, 1_000_000)
        if approve:
            self.staking.approve(ALICE_WALLET.address, VAULT, 5_000_000)
        self.engine = SwineStake(
            owner=OWNER_WALLET.address,
            vault=VAULT,
            staking_asset=self.staking.connect(VAULT),
            reward_asset=self.reward.connect(VAULT),
            promise_token=self.promise.connect(VAULT),
            check_invariants=True,
        )
        self.clock = _Clock()


def _make_test_client(
    fx: _Fixture, api_config: APIConfig | None = None, with_ledger: bool = False,
) -> TestClient:
    api = APIServer(
        fx.engine,
        host="127.0.0.1",
        port=0,
        api_config=api_config,
        token_ledger=fx.staking if with_ledger else None,
        clock=fx.clock,
    )
    return TestClient(TestServer(api.build_app()))


def _api_config(**overrides) -> APIConfig:
    defaults = {"rate_limit_rpm": 0, "cors_origins": [], "api_key": ""}
    defaults.update(overrides)
    return APIConfig(**defaults)


# ═══════════════════════════════════════════════════════════════════
#  Read endpoints
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestReadEndpoints:
    async def test_health(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            data = await resp.json()
            assert data["ok"] is True
            assert data["events"] == 0

    async def test_parameters(self):
        async with _make_test_client(_Fixture()) as client:
            data = await (await client.get("/parameters")).json()
            assert data["fixed_rate_bps"] == 3000
            assert data["flexible_interval_seconds"] == INTERVAL

    async def test_pool(self):
        fx = _Fixture()
        async with _make_test_client(fx) as client:
            data = await (await client.get("/pool")).json()
            assert data["owner"] == OWNER_WALLET.address
            assert data["vault"] == VAULT
            assert data["total_fixed_locked"] == 0

    async def test_unknown_stake(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.get("/stakes/fixed/42")
            assert resp.status == 404
            assert (await resp.json())["error"] == "NotFound"

    async def test_bad_stake_id(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.get("/stakes/fixed/abc")
            assert resp.status == 400

    async def test_balances(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.get(f"/participants/{ALICE_WALLET.address}/balances")
            data = await resp.json()
            assert data == {
                "address": ALICE_WALLET.address,
                "staking": 5_000_000,
                "reward": 0,
                "promise": 0,
            }

    async def test_flexible_for_unknown_participant(self):
        async with _make_test_client(_Fixture()) as client:
            data = await (await client.get("/participants/sNobody/flexible")).json()
            assert data["exists"] is False
            assert data["pending_reward"] == 0


# ═══════════════════════════════════════════════════════════════════
#  Signed staking requests
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestFixedRoutes:
    async def test_open_and_close(self):
        fx = _Fixture()
        async with _make_test_client(fx) as client:
            resp = await client.post(
                "/fixed/open", json=ALICE_WALLET.sign_request("fixed/open", amount=1000),
            )
            assert resp.status == 200
            data = await resp.json()
            assert data["stake_id"] == 1
            assert data["expected_reward"] == 24
            assert data["status"] == "opened"

            stake = await (await client.get("/stakes/fixed/1")).json()
            assert stake["owner"] == ALICE_WALLET.address
            assert stake["unlock_time"] == T0 + LOCK

            resp = await client.post(
                "/fixed/close", json=ALICE_WALLET.sign_request("fixed/close", stake_id=1),
            )
            assert resp.status == 409
            assert (await resp.json())["error"] == "LockNotElapsed"

            fx.clock.now = T0 + LOCK
            resp = await client.post(
                "/fixed/close", json=ALICE_WALLET.sign_request("fixed/close", stake_id=1),
            )
            assert resp.status == 200
            data = await resp.json()
            assert (data["amount"], data["reward"]) == (1000, 24)

            listing = await (
                await client.get(f"/participants/{ALICE_WALLET.address}/fixed")
            ).json()
            assert listing["stake_ids"] == [1]
            assert listing["stakes"][0]["status"] == "Closed"

    async def test_other_participant_cannot_close(self):
        fx = _Fixture()
        intruder = Wallet.create()
        async with _make_test_client(fx) as client:
            await client.post(
                "/fixed/open", json=ALICE_WALLET.sign_request("fixed/open", amount=1000),
            )
            fx.clock.now = T0 + LOCK
            resp = await client.post(
                "/fixed/close", json=intruder.sign_request("fixed/close", stake_id=1),
            )
            assert resp.status == 403
            assert (await resp.json())["error"] == "NotOwner"

    async def test_zero_amount(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.post(
                "/fixed/open", json=ALICE_WALLET.sign_request("fixed/open", amount=0),
            )
            assert resp.status == 400
            assert (await resp.json())["error"] == "InvalidAmount"

    async def test_float_amount_rejected(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.post(
                "/fixed/open", json=ALICE_WALLET.sign_request("fixed/open", amount=1.5),
            )
            assert resp.status == 400

    async def test_missing_allowance_is_bad_gateway(self):
        async with _make_test_client(_Fixture(approve=False)) as client:
            resp = await client.post(
                "/fixed/open", json=ALICE_WALLET.sign_request("fixed/open", amount=1000),
            )
            assert resp.status == 502
            assert (await resp.json())["error"] == "ExternalTransferFailed"

    async def test_approve_route(self):
        fx = _Fixture(approve=False)
        async with _make_test_client(fx, with_ledger=True) as client:
            resp = await client.post(
                "/assets/approve", json=ALICE_WALLET.sign_request("assets/approve", amount=1000),
            )
            assert resp.status == 200
            assert fx.staking.allowance(ALICE_WALLET.address, VAULT) == 1000
            resp = await client.post(
                "/fixed/open", json=ALICE_WALLET.sign_request("fixed/open", amount=1000),
            )
            assert resp.status == 200

    async def test_approve_route_absent_without_ledger(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.post(
                "/assets/approve", json=ALICE_WALLET.sign_request("assets/approve", amount=1),
            )
            assert resp.status == 404


@pytest.mark.asyncio
class TestFlexibleRoutes:
    async def test_deposit_claim_withdraw(self):
        fx = _Fixture()
        async with _make_test_client(fx) as client:
            resp = await client.post(
                "/flexible/deposit",
                json=ALICE_WALLET.sign_request("flexible/deposit", amount=1_000_000),
            )
            assert resp.status == 200
            assert (await resp.json())["balance"] == 1_000_000

            resp = await client.post(
                "/flexible/claim", json=ALICE_WALLET.sign_request("flexible/claim"),
            )
            assert resp.status == 409
            assert (await resp.json())["error"] == "TooEarly"

            fx.clock.now = T0 + INTERVAL
            flex = await (
                await client.get(f"/participants/{ALICE_WALLET.address}/flexible")
            ).json()
            assert flex["pending_reward"] == 68

            resp = await client.post(
                "/flexible/claim", json=ALICE_WALLET.sign_request("flexible/claim"),
            )
            assert (await resp.json())["reward"] == 68

            fx.clock.now = T0 + 2 * INTERVAL
            resp = await client.post(
                "/flexible/withdraw",
                json=ALICE_WALLET.sign_request("flexible/withdraw", amount=1_000_000),
            )
            data = await resp.json()
            assert (data["reward"], data["balance"]) == (68, 0)
            assert fx.reward.balance_of(ALICE_WALLET.address) == 136

            events = await (await client.get("/events?since=1")).json()
            assert events["count"] == 2
            assert events["events"][0]["kind"] == "FlexibleRewardClaimed"

    async def test_claim_without_stake(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.post(
                "/flexible/claim", json=ALICE_WALLET.sign_request("flexible/claim"),
            )
            assert resp.status == 404
            assert (await resp.json())["error"] == "NoStake"


# ═══════════════════════════════════════════════════════════════════
#  Envelope verification
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestEnvelopes:
    async def test_tampered_signature(self):
        async with _make_test_client(_Fixture()) as client:
            env = ALICE_WALLET.sign_request("fixed/open", amount=1000)
            env["payload"]["amount"] = 2000
            resp = await client.post("/fixed/open", json=env)
            assert resp.status == 401

    async def test_wrong_op(self):
        async with _make_test_client(_Fixture()) as client:
            env = ALICE_WALLET.sign_request("flexible/deposit", amount=1000)
            resp = await client.post("/fixed/open", json=env)
            assert resp.status == 400

    async def test_replay_rejected(self):
        fx = _Fixture()
        async with _make_test_client(fx) as client:
            env = ALICE_WALLET.sign_request("fixed/open", amount=1000)
            assert (await client.post("/fixed/open", json=env)).status == 200
            assert (await client.post("/fixed/open", json=env)).status == 409
            assert fx.engine.fixed.next_id == 2

    async def test_invalid_json(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.post("/fixed/open", data=b"{not json")
            assert resp.status == 400

    async def test_body_must_be_object(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.post("/fixed/open", json=[1, 2, 3])
            assert resp.status == 400


# ═══════════════════════════════════════════════════════════════════
#  Administration
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestAdminRoutes:
    async def test_owner_sets_rates(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.post(
                "/admin/rates",
                json=OWNER_WALLET.sign_request("admin/rates", fixed_bps=500, flexible_bps=50),
            )
            assert resp.status == 200
            data = await resp.json()
            assert (data["fixed_rate_bps"], data["flexible_rate_bps"]) == (500, 50)

    async def test_non_owner_forbidden(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.post(
                "/admin/fixed_lock",
                json=ALICE_WALLET.sign_request("admin/fixed_lock", seconds=1),
            )
            assert resp.status == 403
            assert (await resp.json())["error"] == "NotOwner"

    async def test_zero_interval(self):
        async with _make_test_client(_Fixture()) as client:
            resp = await client.post(
                "/admin/flexible_interval",
                json=OWNER_WALLET.sign_request("admin/flexible_interval", seconds=0),
            )
            assert resp.status == 400
            assert (await resp.json())["error"] == "InvalidParameter"

    async def test_rescue(self):
        fx = _Fixture()
        async with _make_test_client(fx) as client:
            resp = await client.post(
                "/admin/rescue",
                json=OWNER_WALLET.sign_request(
                    "admin/rescue", asset="reward", recipient="sTreasury", amount=10,
                ),
            )
            assert resp.status == 200
            assert fx.reward.balance_of("sTreasury") == 10


# ═══════════════════════════════════════════════════════════════════
#  Middleware
# ═══════════════════════════════════════════════════════════════════

class TestTokenBucket:
    def test_unlimited_always_allows(self):
        bucket = _TokenBucket(0)
        for _ in range(100):
            assert bucket.allow("1.2.3.4")

    def test_allows_up_to_limit(self):
        bucket = _TokenBucket(3)
        for _ in range(3):
            assert bucket.allow("1.2.3.4")
        assert not bucket.allow("1.2.3.4")
        assert bucket.allow("5.6.7.8")

    def test_tokens_refill_over_time(self):
        bucket = _TokenBucket(60)
        for _ in range(60):
            bucket.allow("x")
        assert not bucket.allow("x")
        bucket._buckets["x"][1] -= 2.0
        assert bucket.allow("x")


class TestNonceTracker:
    def test_strictly_increasing_per_address(self):
        tracker = _NonceTracker()
        assert tracker.accept("sA", 1)
        assert not tracker.accept("sA", 1)
        assert tracker.accept("sA", 5)
        assert not tracker.accept("sA", 4)
        assert tracker.accept("sB", 1)

    def test_zero_nonce_rejected(self):
        assert not _NonceTracker().accept("sA", 0)


@pytest.mark.asyncio
class TestMiddleware:
    async def test_api_key_required_on_post(self):
        cfg = _api_config(api_key="s3cret")
        async with _make_test_client(_Fixture(), cfg) as client:
            assert (await client.get("/health")).status == 200
            env = ALICE_WALLET.sign_request("fixed/open", amount=1000)
            assert (await client.post("/fixed/open", json=env)).status == 401
            resp = await client.post("/fixed/open", json=env, headers={"X-API-Key": "s3cret"})
            assert resp.status == 200

    async def test_rate_limit(self):
        cfg = _api_config(rate_limit_rpm=2)
        async with _make_test_client(_Fixture(), cfg) as client:
            assert (await client.get("/parameters")).status == 200
            assert (await client.get("/parameters")).status == 200
            assert (await client.get("/parameters")).status == 429

    async def test_cors_allow_list(self):
        cfg = _api_config(cors_origins=["https://app.example", "*"])
        async with _make_test_client(_Fixture(), cfg) as client:
            resp = await client.get("/parameters", headers={"Origin": "https://app.example"})
            assert resp.headers["Access-Control-Allow-Origin"] == "https://app.example"
            resp = await client.get("/parameters", headers={"Origin": "https://evil.example"})
            assert "Access-Control-Allow-Origin" not in resp.headers

    async def test_body_size_cap(self):
        cfg = _api_config(max_body_bytes=256)
        async with _make_test_client(_Fixture(), cfg) as client:
            env = ALICE_WALLET.sign_request("fixed/open", amount=1000, memo="x" * 1024)
            resp = await client.post("/fixed/open", json=env)
            assert resp.status == 413
