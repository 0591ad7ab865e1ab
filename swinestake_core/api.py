"""
REST / HTTP API server for SwineStake.

Built on ``aiohttp``.

Endpoints
---------
GET  /health                              Invariant check + event count
GET  /parameters                          Current rates and durations
GET  /pool                                Engine-wide totals
GET  /events?since=N                      Event history after sequence N
GET  /stakes/fixed/{stake_id}             One fixed stake
GET  /participants/{address}/fixed        Fixed stake ids and records
GET  /participants/{address}/flexible     Flexible balance + pending reward
GET  /participants/{address}/balances     Collaborator balances
POST /fixed/open                          {"amount"}
POST /fixed/close                         {"stake_id"}
POST /flexible/deposit                    {"amount"}
POST /flexible/withdraw                   {"amount"}
POST /flexible/claim                      {}
POST /admin/rates                         {"fixed_bps", "flexible_bps"}
POST /admin/fixed_lock                    {"seconds"}
POST /admin/flexible_interval             {"seconds"}
POST /admin/rescue                        {"asset", "recipient", "amount"}
POST /assets/approve                      {"amount"}  (in-memory assets only)

Every POST body is a signed envelope (see :mod:`swinestake_core.wallet`).
The caller address comes from the envelope's public key; the payload's
``op`` must name the route and its ``nonce`` must exceed the last nonce
accepted from that address.

Security
--------
- Per-IP token-bucket rate limiter (configurable RPM).
- Optional API key on POST endpoints via ``X-API-Key`` (timing-safe).
- CORS allow-list (no wildcard).
- Request body size cap.
- Staking errors map to JSON ``{"error": code, "message": ...}`` with a
  status chosen per error kind.

Usage:
    api = APIServer(engine, host="127.0.0.1", port=8080)
    await api.start()
    ...
    await api.stop()
"""

from __future__ import annotations

import functools
import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable, Optional

from aiohttp import web

from swinestake_core.context import CallContext
from swinestake_core.errors import StakingError
from swinestake_core.invariants import InvariantChecker
from swinestake_core.wallet import verify_request

if TYPE_CHECKING:
    from swinestake_core.assets import TokenLedger
    from swinestake_core.config import APIConfig
    from swinestake_core.settlement import SwineStake

logger = logging.getLogger("swinestake_api")

_json_dumps = functools.partial(json.dumps, default=str)

_ERROR_STATUS: dict[str, int] = {
    "NotOwner": 403,
    "NotFound": 404,
    "NoStake": 404,
    "AlreadyClosed": 409,
    "LockNotElapsed": 409,
    "TooEarly": 409,
    "NothingToClaim": 409,
    "ExternalTransferFailed": 502,
}


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_uint(value: Any, name: str = "value") -> int:
    """Accept a non-negative int or decimal-digit string; reject floats and bools."""
    if isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.isdigit():
        result = int(value)
    else:
        raise web.HTTPBadRequest(text=f"{name} must be a non-negative integer")
    if result < 0:
        raise web.HTTPBadRequest(text=f"{name} must be a non-negative integer")
    return result


def _error_body(exc: StakingError) -> web.Response:
    return web.json_response(
        {"error": exc.code, "message": str(exc)},
        status=_ERROR_STATUS.get(exc.code, 400),
    )


# ═══════════════════════════════════════════════════════════════════
#  Rate limiter and replay protection
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(
            lambda: [float(rpm), time.monotonic()]
        )

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        elapsed = now - bucket[1]
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


class _NonceTracker:
    """Highest accepted nonce per caller address."""

    def __init__(self) -> None:
        self._last: dict[str, int] = {}

    def accept(self, address: str, nonce: int) -> bool:
        if nonce <= self._last.get(address, 0):
            return False
        self._last[address] = nonce
        return True


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

@web.middleware
async def staking_error_middleware(request: web.Request, handler):
    """Turn engine exceptions into JSON error responses."""
    try:
        return await handler(request)
    except StakingError as exc:
        logger.info(f"{request.method} {request.path} -> {exc.code}: {exc}")
        return _error_body(exc)


def _make_rate_limit_middleware(bucket: _TokenBucket):
    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """Require ``X-API-Key`` on POST/PUT/DELETE (header only, never query)."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """Add CORS headers for explicitly listed origins; ``*`` is ignored."""

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


def build_middlewares(api_config: Optional[APIConfig]) -> list:
    middlewares: list = []
    if api_config is not None:
        if api_config.rate_limit_rpm > 0:
            middlewares.append(_make_rate_limit_middleware(_TokenBucket(api_config.rate_limit_rpm)))
        if api_config.cors_origins:
            middlewares.append(_make_cors_middleware(api_config.cors_origins))
        if api_config.api_key:
            middlewares.append(_make_api_key_middleware(api_config.api_key))
    middlewares.append(staking_error_middleware)
    return middlewares


class APIServer:
    """Thin aiohttp wrapper around a :class:`SwineStake` engine."""

    def __init__(
        self,
        engine: SwineStake,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
        token_ledger: TokenLedger | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.engine = engine
        self.host = host
        self.port = port
        self._api_config = api_config
        self._token_ledger = token_ledger
        self._clock = clock or time.time
        self._nonces = _NonceTracker()
        self._checker = InvariantChecker()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        max_body = self._api_config.max_body_bytes if self._api_config else 65_536
        app = web.Application(
            middlewares=build_middlewares(self._api_config),
            client_max_size=max_body,
        )
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/parameters", self._parameters)
        app.router.add_get("/pool", self._pool)
        app.router.add_get("/events", self._events)
        app.router.add_get("/stakes/fixed/{stake_id}", self._fixed_stake)
        app.router.add_get("/participants/{address}/fixed", self._participant_fixed)
        app.router.add_get("/participants/{address}/flexible", self._participant_flexible)
        app.router.add_get("/participants/{address}/balances", self._participant_balances)
        # Staking
        app.router.add_post("/fixed/open", self._open_fixed)
        app.router.add_post("/fixed/close", self._close_fixed)
        app.router.add_post("/flexible/deposit", self._deposit_flexible)
        app.router.add_post("/flexible/withdraw", self._withdraw_flexible)
        app.router.add_post("/flexible/claim", self._claim_flexible)
        # Owner only
        app.router.add_post("/admin/rates", self._set_rates)
        app.router.add_post("/admin/fixed_lock", self._set_fixed_lock)
        app.router.add_post("/admin/flexible_interval", self._set_flexible_interval)
        app.router.add_post("/admin/rescue", self._rescue)
        if self._token_ledger is not None:
            app.router.add_post("/assets/approve", self._approve)

    def _now(self) -> int:
        return int(self._clock())

    async def _signed(self, request: web.Request, op: str) -> tuple[CallContext, dict]:
        """Verify the signed envelope and return the call context and payload."""
        try:
            body = await request.json()
        except ValueError as exc:
            raise web.HTTPBadRequest(text="Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="Body must be a signed envelope")
        try:
            caller, payload = verify_request(body)
        except ValueError as exc:
            raise web.HTTPUnauthorized(text=str(exc)) from exc
        if payload.get("op") != op:
            raise web.HTTPBadRequest(text=f"Envelope op must be {op!r}")
        nonce = _safe_uint(payload.get("nonce"), "nonce")
        if not self._nonces.accept(caller, nonce):
            raise web.HTTPConflict(text="Stale or replayed nonce")
        return CallContext.at(caller, self._now()), payload

    # ── read handlers ────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        ok, msg = self._checker.verify(self.engine)
        return web.json_response({
            "ok": ok,
            "invariants": msg or "ok",
            "events": len(self.engine.events),
        }, status=200 if ok else 503)

    async def _parameters(self, _request: web.Request) -> web.Response:
        return web.json_response(self.engine.parameters.to_dict())

    async def _pool(self, _request: web.Request) -> web.Response:
        return web.json_response(self.engine.summary(self._now()), dumps=_json_dumps)

    async def _events(self, request: web.Request) -> web.Response:
        since = _safe_uint(request.query.get("since", "0"), "since")
        events = [e.to_dict() for e in self.engine.events.since(since)]
        return web.json_response({"events": events, "count": len(events)}, dumps=_json_dumps)

    async def _fixed_stake(self, request: web.Request) -> web.Response:
        stake_id = _safe_uint(request.match_info["stake_id"], "stake_id")
        stake = self.engine.get_fixed_stake(stake_id)
        return web.json_response(
            stake.to_dict(self.engine.parameters, self._now()), dumps=_json_dumps,
        )

    async def _participant_fixed(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        params, now = self.engine.parameters, self._now()
        ids = self.engine.get_fixed_stake_ids(address)
        stakes = [self.engine.get_fixed_stake(sid).to_dict(params, now) for sid in ids]
        return web.json_response(
            {"address": address, "stake_ids": ids, "stakes": stakes}, dumps=_json_dumps,
        )

    async def _participant_flexible(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        stake = self.engine.get_flexible_stake(address)
        return web.json_response({
            "address": address,
            "exists": stake is not None,
            "amount": stake.amount if stake else 0,
            "last_settle_time": stake.last_settle_time if stake else 0,
            "pending_reward": self.engine.pending_flexible_reward(address, self._now()),
        }, dumps=_json_dumps)

    async def _participant_balances(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        return web.json_response({
            "address": address,
            "staking": self.engine.staking_asset.balance_of(address),
            "reward": self.engine.reward_asset.balance_of(address),
            "promise": self.engine.promise_token.balance_of(address),
        }, dumps=_json_dumps)

    # ── staking handlers ─────────────────────────────────────────

    async def _open_fixed(self, request: web.Request) -> web.Response:
        ctx, payload = await self._signed(request, "fixed/open")
        amount = _safe_uint(payload.get("amount"), "amount")
        stake = self.engine.open_fixed(ctx, amount)
        return web.json_response(
            {"status": "opened", **stake.to_dict(self.engine.parameters, ctx.now)},
            dumps=_json_dumps,
        )

    async def _close_fixed(self, request: web.Request) -> web.Response:
        ctx, payload = await self._signed(request, "fixed/close")
        stake_id = _safe_uint(payload.get("stake_id"), "stake_id")
        amount, reward = self.engine.close_fixed(ctx, stake_id)
        return web.json_response(
            {"status": "closed", "stake_id": stake_id, "amount": amount, "reward": reward},
            dumps=_json_dumps,
        )

    async def _deposit_flexible(self, request: web.Request) -> web.Response:
        ctx, payload = await self._signed(request, "flexible/deposit")
        amount = _safe_uint(payload.get("amount"), "amount")
        reward = self.engine.deposit_flexible(ctx, amount)
        return self._flexible_response("deposited", ctx, reward)

    async def _withdraw_flexible(self, request: web.Request) -> web.Response:
        ctx, payload = await self._signed(request, "flexible/withdraw")
        amount = _safe_uint(payload.get("amount"), "amount")
        reward = self.engine.withdraw_flexible(ctx, amount)
        return self._flexible_response("withdrawn", ctx, reward)

    async def _claim_flexible(self, request: web.Request) -> web.Response:
        ctx, _payload = await self._signed(request, "flexible/claim")
        reward = self.engine.claim_flexible(ctx)
        return self._flexible_response("claimed", ctx, reward)

    def _flexible_response(self, status: str, ctx: CallContext, reward: int) -> web.Response:
        stake = self.engine.get_flexible_stake(ctx.caller)
        return web.json_response({
            "status": status,
            "reward": reward,
            "balance": stake.amount if stake else 0,
            "last_settle_time": stake.last_settle_time if stake else 0,
        }, dumps=_json_dumps)

    # ── owner handlers ───────────────────────────────────────────

    async def _set_rates(self, request: web.Request) -> web.Response:
        ctx, payload = await self._signed(request, "admin/rates")
        params = self.engine.set_rates(
            ctx,
            _safe_uint(payload.get("fixed_bps"), "fixed_bps"),
            _safe_uint(payload.get("flexible_bps"), "flexible_bps"),
        )
        return web.json_response(params.to_dict())

    async def _set_fixed_lock(self, request: web.Request) -> web.Response:
        ctx, payload = await self._signed(request, "admin/fixed_lock")
        params = self.engine.set_fixed_lock(ctx, _safe_uint(payload.get("seconds"), "seconds"))
        return web.json_response(params.to_dict())

    async def _set_flexible_interval(self, request: web.Request) -> web.Response:
        ctx, payload = await self._signed(request, "admin/flexible_interval")
        params = self.engine.set_flexible_interval(
            ctx, _safe_uint(payload.get("seconds"), "seconds"),
        )
        return web.json_response(params.to_dict())

    async def _rescue(self, request: web.Request) -> web.Response:
        ctx, payload = await self._signed(request, "admin/rescue")
        asset = payload.get("asset", "")
        recipient = payload.get("recipient", "")
        if not isinstance(asset, str) or not isinstance(recipient, str):
            raise web.HTTPBadRequest(text="asset and recipient must be strings")
        amount = _safe_uint(payload.get("amount"), "amount")
        self.engine.rescue(ctx, asset, recipient, amount)
        return web.json_response(
            {"status": "rescued", "asset": asset, "recipient": recipient, "amount": amount},
            dumps=_json_dumps,
        )

    # ── in-memory asset helper ───────────────────────────────────

    async def _approve(self, request: web.Request) -> web.Response:
        """Let the caller grant the vault an allowance on the staking asset."""
        ctx, payload = await self._signed(request, "assets/approve")
        amount = _safe_uint(payload.get("amount"), "amount")
        self._token_ledger.approve(ctx.caller, self.engine.address, amount)
        return web.json_response({
            "status": "approved",
            "owner": ctx.caller,
            "spender": self.engine.address,
            "amount": amount,
        }, dumps=_json_dumps)
