"""
Fixed-stake ledger for SwineStake.

A fixed stake locks principal for ``fixed_lock_seconds`` and earns a
reward quoted once, at creation, from the rate in force at that moment.

State machine
─────────────
    Open ──close()──▶ Closed        (terminal, record kept forever)

There is no partial close and no early exit: closing before
``start_time + fixed_lock_seconds`` is refused.  Stake ids come from a
private counter starting at 1 and are never reused.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from swinestake_core.errors import (
    AlreadyClosed,
    InvalidAmount,
    LockNotElapsed,
    NotFound,
    NotOwner,
)
from swinestake_core.params import StakingParameters
from swinestake_core.rewards import checked_add, fixed_reward, require_uint


@dataclass
class FixedStake:
    """A single locked position."""
    stake_id: int
    owner: str
    amount: int              # principal locked
    start_time: int          # Unix seconds
    expected_reward: int     # frozen at creation
    closed: bool = False

    def unlock_time(self, params: StakingParameters) -> int:
        return self.start_time + params.fixed_lock_seconds

    def is_unlockable(self, params: StakingParameters, now: int) -> bool:
        return not self.closed and now >= self.unlock_time(params)

    def to_dict(
        self,
        params: Optional[StakingParameters] = None,
        now: Optional[int] = None,
    ) -> dict:
        d = {
            "stake_id": self.stake_id,
            "owner": self.owner,
            "amount": self.amount,
            "start_time": self.start_time,
            "expected_reward": self.expected_reward,
            "closed": self.closed,
        }
        if params is not None:
            d["unlock_time"] = self.unlock_time(params)
            if self.closed:
                d["status"] = "Closed"
            elif now is not None and self.is_unlockable(params, now):
                d["status"] = "Unlockable"
            else:
                d["status"] = "Open"
        return d


class FixedStakeLedger:
    """Creates, tracks and closes fixed stakes."""

    def __init__(self) -> None:
        self.stakes: dict[int, FixedStake] = {}
        self.stakes_by_owner: dict[str, list[int]] = {}
        self.total_locked: int = 0
        self._next_id: int = 1

    # ── validation (no mutation) ────────────────────────────────────

    def quote(self, amount: int, params: StakingParameters) -> int:
        """Validate *amount* and return the reward a new stake would lock in."""
        require_uint(amount, "amount")
        if amount == 0:
            raise InvalidAmount("amount must be positive")
        return fixed_reward(amount, params.fixed_rate_bps, params.fixed_lock_seconds)

    def check_close(
        self,
        participant: str,
        stake_id: int,
        params: StakingParameters,
        now: int,
    ) -> FixedStake:
        """Return the stake if *participant* may close it at *now*."""
        stake = self.stakes.get(stake_id)
        # An unknown id has no owner, so it fails the ownership check
        if stake is None or stake.owner != participant:
            raise NotOwner(f"Fixed stake {stake_id} is not owned by {participant}")
        if stake.amount == 0:
            raise NotFound(f"Fixed stake {stake_id} holds no principal")
        if stake.closed:
            raise AlreadyClosed(f"Fixed stake {stake_id} already closed")
        if now < stake.unlock_time(params):
            raise LockNotElapsed(
                f"Fixed stake {stake_id} unlocks at {stake.unlock_time(params)}"
            )
        return stake

    # ── transitions ─────────────────────────────────────────────────

    def open(
        self,
        participant: str,
        amount: int,
        params: StakingParameters,
        now: int,
    ) -> FixedStake:
        reward = self.quote(amount, params)
        total = checked_add(self.total_locked, amount)

        stake = FixedStake(
            stake_id=self._next_id,
            owner=participant,
            amount=amount,
            start_time=now,
            expected_reward=reward,
        )
        self._next_id += 1
        self.stakes[stake.stake_id] = stake
        self.stakes_by_owner.setdefault(participant, []).append(stake.stake_id)
        self.total_locked = total
        return stake

    def close(
        self,
        participant: str,
        stake_id: int,
        params: StakingParameters,
        now: int,
    ) -> tuple[int, int]:
        """Close the stake; returns ``(principal, expected_reward)`` to settle."""
        stake = self.check_close(participant, stake_id, params, now)
        stake.closed = True
        self.total_locked -= stake.amount
        return stake.amount, stake.expected_reward

    # ── queries ─────────────────────────────────────────────────────

    @property
    def next_id(self) -> int:
        return self._next_id

    def get_stake(self, stake_id: int) -> FixedStake | None:
        return self.stakes.get(stake_id)

    def get_stake_ids(self, owner: str) -> list[int]:
        return list(self.stakes_by_owner.get(owner, []))

    def get_stakes(self, owner: str) -> list[FixedStake]:
        return [self.stakes[sid] for sid in self.stakes_by_owner.get(owner, [])]

    def get_open_stakes(self, owner: str) -> list[FixedStake]:
        return [s for s in self.get_stakes(owner) if not s.closed]

    def open_count(self) -> int:
        return sum(1 for s in self.stakes.values() if not s.closed)

    def owners(self) -> list[str]:
        return list(self.stakes_by_owner)
