#!/usr/bin/env python3
"""
SwineStake Server Runner - starts a staking engine with:
  - In-memory staking, reward and promise assets funded from genesis
  - Optional SQLite event persistence
  - REST API for signed staking requests

Usage:
    python run_server.py --config swinestake.toml --port 8080

Environment variables (alternative to flags):
    SWINESTAKE_HOST, SWINESTAKE_PORT, SWINESTAKE_OWNER, SWINESTAKE_OWNER_SEED,
    SWINESTAKE_DB_PATH, SWINESTAKE_LOG_LEVEL
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from swinestake_core.api import APIServer  # noqa: E402
from swinestake_core.assets import PromiseToken, TokenLedger  # noqa: E402
from swinestake_core.config import SwineStakeConfig, load_config  # noqa: E402
from swinestake_core.logging_config import setup_logging  # noqa: E402
from swinestake_core.settlement import SwineStake  # noqa: E402
from swinestake_core.storage import EventStore  # noqa: E402
from swinestake_core.wallet import Wallet  # noqa: E402

logger = logging.getLogger("server")


# ===================================================================
#  Assembly
# ===================================================================

def resolve_owner(cfg: SwineStakeConfig) -> str:
    """Owner address from config, else from the seed, else an ephemeral wallet."""
    if cfg.staking.owner_address:
        return cfg.staking.owner_address
    if cfg.staking.owner_seed:
        return Wallet.from_seed(cfg.staking.owner_seed).address
    wallet = Wallet.create()
    logger.warning(
        f"No owner configured; using ephemeral owner {wallet.address}. "
        "Admin calls will be impossible after restart."
    )
    return wallet.address


def build_engine(cfg: SwineStakeConfig) -> tuple[SwineStake, TokenLedger]:
    """Create the assets, fund genesis balances and wire up the engine."""
    vault = cfg.staking.vault_address
    staking = TokenLedger(cfg.assets.staking_symbol)
    reward = staking if cfg.assets.shared else TokenLedger(cfg.assets.reward_symbol)
    promise = PromiseToken(minter=vault, symbol=cfg.assets.promise_symbol)

    for address, amount in cfg.genesis.balances.items():
        staking.credit(address, int(amount))
        logger.info(f"Genesis: {address} <- {amount} {staking.symbol}")
    if cfg.genesis.reward_pool:
        reward.credit(vault, int(cfg.genesis.reward_pool))
        logger.info(f"Genesis: reward pool {cfg.genesis.reward_pool} {reward.symbol}")

    staking_handle = staking.connect(vault)
    # Shared mode pays rewards from the same vault balance as principal
    reward_handle = staking_handle if cfg.assets.shared else reward.connect(vault)

    engine = SwineStake(
        owner=resolve_owner(cfg),
        vault=vault,
        staking_asset=staking_handle,
        reward_asset=reward_handle,
        promise_token=promise.connect(vault),
        parameters=cfg.staking.to_parameters(),
        check_invariants=cfg.staking.check_invariants,
    )
    return engine, staking


# ===================================================================
#  Main entry point
# ===================================================================

def parse_args():
    p = argparse.ArgumentParser(description="SwineStake Server")
    p.add_argument("--config", default=None, help="Path to swinestake.toml config file")
    p.add_argument("--host", default=None, help="Listen host")
    p.add_argument("--port", type=int, default=None, help="Listen port")
    p.add_argument("--log-level", default=None,
                   help="DEBUG, INFO, WARNING, ERROR or CRITICAL")
    return p.parse_args()


async def main():
    args = parse_args()

    # Load config (TOML + env overrides)
    cfg = load_config(args.config)

    # CLI flags override config
    if args.host:
        cfg.api.host = args.host
    if args.port is not None:
        cfg.api.port = args.port
    if args.log_level:
        cfg.logging.level = args.log_level.upper()

    setup_logging(
        cfg.logging.level,
        cfg.logging.format,
        cfg.logging.file,
        event_file=cfg.logging.event_file,
        levels=cfg.logging.levels,
    )

    engine, staking_ledger = build_engine(cfg)
    logger.info(
        f"Engine ready: owner={engine.owner} vault={engine.address} "
        f"params={engine.parameters.to_dict()}"
    )

    store = None
    if cfg.storage.enabled:
        store = EventStore(cfg.storage.path)
        engine.events.resume(store.last_sequence())
        engine.events.subscribe(store.save_event)

    api = None
    if cfg.api.enabled:
        api = APIServer(
            engine,
            host=cfg.api.host,
            port=cfg.api.port,
            api_config=cfg.api,
            token_ledger=staking_ledger,
        )
        await api.start()
    else:
        logger.warning("API disabled; nothing to serve")

    try:
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        if api is not None:
            await api.stop()
        if store is not None:
            store.close()
        logger.info("Server stopped")


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
