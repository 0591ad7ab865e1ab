"""
Flexible-stake ledger for SwineStake.

Each participant has at most one running balance and one accrual
checkpoint (``last_settle_time``).  Reward accrues in whole
``flexible_interval_seconds`` steps at the *current* flexible rate.

Every deposit, withdraw and claim moves the checkpoint to ``now``; time
since the previous checkpoint that does not fill a whole interval is
forfeited, never carried forward.  A record whose balance has dropped to
zero is kept and behaves exactly like a fresh one.

Each operation has a ``quote_*`` twin that runs the same validation and
reward math without touching state, so the settlement layer can finish
its external transfers before committing.
"""

from __future__ import annotations

from dataclasses import dataclass

from swinestake_core.errors import (
    InvalidAmount,
    NoStake,
    NothingToClaim,
    TooEarly,
)
from swinestake_core.params import StakingParameters
from swinestake_core.rewards import (
    checked_add,
    flexible_reward,
    intervals_elapsed,
    require_uint,
)


@dataclass
class FlexibleStake:
    amount: int = 0
    last_settle_time: int = 0

    def elapsed(self, now: int) -> int:
        return max(0, now - self.last_settle_time)

    def checkpoint(self, now: int) -> None:
        # never moves backwards, even if the clock does
        self.last_settle_time = max(self.last_settle_time, now)

    def to_dict(self) -> dict:
        return {"amount": self.amount, "last_settle_time": self.last_settle_time}


class FlexibleStakeLedger:
    """Running balances and accrual checkpoints, one per participant."""

    def __init__(self) -> None:
        self.stakes: dict[str, FlexibleStake] = {}
        self.total_staked: int = 0

    # ── reward helpers ──────────────────────────────────────────────

    def _accrued(self, stake: FlexibleStake, params: StakingParameters, now: int) -> int:
        if stake.amount == 0:
            return 0
        return flexible_reward(
            stake.amount,
            params.flexible_rate_bps,
            params.flexible_interval_seconds,
            stake.elapsed(now),
        )

    def pending_reward(
        self, participant: str, params: StakingParameters, now: int,
    ) -> int:
        """Reward a claim or withdraw would realize at *now*."""
        stake = self.stakes.get(participant)
        if stake is None:
            return 0
        return self._accrued(stake, params, now)

    # ── quotes (no mutation) ────────────────────────────────────────

    def quote_deposit(
        self, participant: str, amount: int, params: StakingParameters, now: int,
    ) -> int:
        require_uint(amount, "amount")
        if amount == 0:
            raise InvalidAmount("amount must be positive")
        stake = self.stakes.get(participant) or FlexibleStake()
        checked_add(stake.amount, amount)
        checked_add(self.total_staked, amount)
        return self._accrued(stake, params, now)

    def quote_withdraw(
        self, participant: str, amount: int, params: StakingParameters, now: int,
    ) -> int:
        require_uint(amount, "amount")
        stake = self.stakes.get(participant) or FlexibleStake()
        if amount == 0:
            raise InvalidAmount("amount must be positive")
        if amount > stake.amount:
            raise InvalidAmount(
                f"Cannot withdraw {amount}: staked balance is {stake.amount}"
            )
        return self._accrued(stake, params, now)

    def quote_claim(
        self, participant: str, params: StakingParameters, now: int,
    ) -> int:
        stake = self.stakes.get(participant)
        if stake is None or stake.amount == 0:
            raise NoStake(f"{participant} has no flexible stake")
        if intervals_elapsed(params.flexible_interval_seconds, stake.elapsed(now)) == 0:
            raise TooEarly(
                f"Next reward interval ends at "
                f"{stake.last_settle_time + params.flexible_interval_seconds}"
            )
        reward = self._accrued(stake, params, now)
        if reward == 0:
            raise NothingToClaim(f"No reward accrued for {participant}")
        return reward

    # ── transitions ─────────────────────────────────────────────────

    def deposit(
        self, participant: str, amount: int, params: StakingParameters, now: int,
    ) -> int:
        """Add *amount*; returns the reward realized on the prior balance."""
        reward = self.quote_deposit(participant, amount, params, now)
        stake = self.stakes.setdefault(participant, FlexibleStake())
        stake.checkpoint(now)
        stake.amount += amount
        self.total_staked += amount
        return reward

    def withdraw(
        self, participant: str, amount: int, params: StakingParameters, now: int,
    ) -> int:
        """Remove *amount*; returns the reward for whole intervals since the checkpoint."""
        reward = self.quote_withdraw(participant, amount, params, now)
        stake = self.stakes[participant]
        stake.checkpoint(now)
        stake.amount -= amount
        self.total_staked -= amount
        return reward

    def claim(self, participant: str, params: StakingParameters, now: int) -> int:
        reward = self.quote_claim(participant, params, now)
        self.stakes[participant].checkpoint(now)
        return reward

    # ── queries ─────────────────────────────────────────────────────

    def get_stake(self, participant: str) -> FlexibleStake | None:
        return self.stakes.get(participant)

    def participants(self) -> list[str]:
        return list(self.stakes)

    def active_count(self) -> int:
        return sum(1 for s in self.stakes.values() if s.amount > 0)
