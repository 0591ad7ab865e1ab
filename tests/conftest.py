"""
Shared pytest fixtures for the SwineStake test suite.
"""

import os
import sys

import pytest

# Project root on sys.path so run_server imports without installation
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from swinestake_core.assets import PromiseToken, TokenLedger  # noqa: E402
from swinestake_core.context import CallContext  # noqa: E402
from swinestake_core.params import StakingParameters  # noqa: E402
from swinestake_core.settlement import SwineStake  # noqa: E402

OWNER = "sOwner"
VAULT = "sVault"
ALICE = "sAlice"
BOB = "sBob"

T0 = 1_700_000_000
DAY = 86_400


@pytest.fixture
def params():
    """Default parameters: 3000 / 1000 bps, 30-day lock, 6-hour interval."""
    return StakingParameters()


@pytest.fixture
def staking_ledger():
    """SWINE ledger with funded participants who approved the vault."""
    ledger = TokenLedger("SWINE")
    for who in (ALICE, BOB):
        ledger.credit(who, 10_000_000)
        ledger.approve(who, VAULT, 10_000_000)
    return ledger


@pytest.fixture
def reward_ledger():
    """OINK ledger with a funded reward pool in the vault."""
    ledger = TokenLedger("OINK")
    ledger.credit(VAULT, 1_000_000)
    return ledger


@pytest.fixture
def promise_token():
    return PromiseToken(minter=VAULT)


@pytest.fixture
def engine(staking_ledger, reward_ledger, promise_token):
    """Engine bound to the in-memory assets with invariant auditing on."""
    return SwineStake(
        owner=OWNER,
        vault=VAULT,
        staking_asset=staking_ledger.connect(VAULT),
        reward_asset=reward_ledger.connect(VAULT),
        promise_token=promise_token.connect(VAULT),
        check_invariants=True,
    )


def at(caller: str, now: int) -> CallContext:
    return CallContext(caller=caller, now=now)
