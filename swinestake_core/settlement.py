"""
Settlement coordinator for SwineStake.

:class:`SwineStake` is the facade callers use.  It is the only component
that talks to the collaborators (staking asset, reward asset, promise
token); the ledgers never see them.

Each operation runs as one settlement unit:

  1. validate against the ledgers without mutating them
     (a validation error makes no external call at all);
  2. pre-flight the vault balances every push will need;
  3. perform the external calls in the order pull → mint/burn → pushes,
     registering a compensation for each reversible call
     (pull ↔ refund, mint ↔ burn, burn ↔ mint);
  4. commit the ledger mutation last;
  5. emit the event.

If any step after (1) fails, the registered compensations run in reverse
order and the error is re-raised; collaborator failures surface as
:class:`ExternalTransferFailed`.  A push that already left the vault
cannot be recalled and is logged at CRITICAL.
"""

from __future__ import annotations

import contextlib
import logging
import time
from typing import Any, Callable, Iterator, Optional, Union

from swinestake_core.assets import FungibleAsset, ReceiptToken, validate_positive
from swinestake_core.context import CallContext, OwnerRole
from swinestake_core.errors import (
    ExternalTransferFailed,
    InvalidParameter,
    NotFound,
)
from swinestake_core.events import EventKind, EventLog
from swinestake_core.fixed_stake import FixedStake, FixedStakeLedger
from swinestake_core.flexible_stake import FlexibleStake, FlexibleStakeLedger
from swinestake_core.invariants import InvariantChecker
from swinestake_core.params import ParameterChange, ParameterStore, StakingParameters

logger = logging.getLogger("swinestake_settlement")


def _backing(asset: FungibleAsset) -> Any:
    """The ledger behind a token handle, or the asset itself."""
    return getattr(asset, "ledger", asset)


class _Settlement:
    """Journal of external calls made during one operation."""

    def __init__(self, operation: str):
        self.operation = operation
        self._compensations: list[tuple[str, Callable[[], Any]]] = []
        self._irreversible: list[str] = []

    def require_funds(self, holder: str, needs: list[tuple[FungibleAsset, int]]) -> None:
        """Fail before any call if *holder* cannot cover the pushes in *needs*.

        Needs are summed per backing ledger, so two handles over one token
        are checked against the combined amount.
        """
        totals: dict[int, list] = {}
        for asset, amount in needs:
            if amount <= 0:
                continue
            entry = totals.setdefault(id(_backing(asset)), [asset, 0])
            entry[1] += amount
        for asset, amount in totals.values():
            held = asset.balance_of(holder)
            if held < amount:
                raise ExternalTransferFailed(
                    f"{self.operation}: vault holds {held}, needs {amount}"
                )

    def call(
        self,
        label: str,
        fn: Callable[..., Any],
        *args: Any,
        undo: Optional[Callable[[], Any]] = None,
    ) -> None:
        try:
            result = fn(*args)
        except Exception as exc:
            raise ExternalTransferFailed(f"{self.operation}: {label} failed: {exc}") from exc
        if result is False:
            raise ExternalTransferFailed(f"{self.operation}: {label} was refused")
        if undo is not None:
            self._compensations.append((label, undo))
        else:
            self._irreversible.append(label)

    def rollback(self) -> None:
        for label in self._irreversible:
            logger.critical(f"{self.operation}: cannot reverse completed '{label}'")
        for label, undo in reversed(self._compensations):
            try:
                result = undo()
            except Exception:
                logger.critical(
                    f"{self.operation}: compensation for '{label}' raised",
                    exc_info=True,
                )
                continue
            if result is False:
                logger.critical(f"{self.operation}: compensation for '{label}' refused")


class SwineStake:
    """
    Dual-mode staking engine.

    ``vault`` is the address that holds staked principal and the reward
    pool; the asset and promise-token handles must send as that address.
    """

    def __init__(
        self,
        owner: str,
        vault: str,
        staking_asset: FungibleAsset,
        reward_asset: FungibleAsset,
        promise_token: ReceiptToken,
        parameters: Optional[StakingParameters] = None,
        *,
        check_invariants: bool = False,
    ) -> None:
        self.owner_role = OwnerRole(owner)
        self.address = vault
        self.staking_asset = staking_asset
        self.reward_asset = reward_asset
        self.promise_token = promise_token
        self.params = ParameterStore(self.owner_role, parameters)
        self.fixed = FixedStakeLedger()
        self.flexible = FlexibleStakeLedger()
        self.events = EventLog()
        self.total_rewards_paid: int = 0
        self._checker = InvariantChecker() if check_invariants else None

    @property
    def owner(self) -> str:
        return self.owner_role.owner

    @property
    def parameters(self) -> StakingParameters:
        return self.params.current

    @property
    def assets(self) -> dict[str, FungibleAsset]:
        return {"staking": self.staking_asset, "reward": self.reward_asset}

    # ── settlement plumbing ─────────────────────────────────────────

    @contextlib.contextmanager
    def _settlement(self, operation: str, ctx: CallContext) -> Iterator[_Settlement]:
        unit = _Settlement(operation)
        try:
            yield unit
        except Exception as exc:
            unit.rollback()
            logger.warning(f"{operation} by {ctx.caller} rolled back: {exc}")
            raise

    def _payout_needs(self, principal: int, reward: int) -> list[tuple[FungibleAsset, int]]:
        needs = [(self.staking_asset, principal), (self.reward_asset, reward)]
        if reward > 0 and _backing(self.reward_asset) is _backing(self.staking_asset):
            # Shared token: rewards may not dip into other participants' principal
            owed = self.fixed.total_locked + self.flexible.total_staked
            needs.append((self.staking_asset, owed - principal))
        return needs

    def _pay_reward(self, unit: _Settlement, recipient: str, reward: int) -> None:
        if reward > 0:
            unit.call(f"pay reward {reward}", self.reward_asset.transfer, recipient, reward)

    def _audit(self, operation: str) -> None:
        if self._checker is None:
            return
        ok, msg = self._checker.verify(self)
        if not ok:
            logger.error(f"Invariant violation after {operation}: {msg}")

    # ── fixed stakes ────────────────────────────────────────────────

    def open_fixed(self, ctx: CallContext, amount: int) -> FixedStake:
        """Lock *amount* for the current lock period at the current fixed rate."""
        params = self.parameters
        reward = self.fixed.quote(amount, params)
        caller = ctx.caller

        with self._settlement("open_fixed", ctx) as unit:
            unit.call(
                f"pull {amount} from {caller}",
                self.staking_asset.transfer_from, caller, self.address, amount,
                undo=lambda: self.staking_asset.transfer(caller, amount),
            )
            if reward > 0:
                unit.call(
                    f"mint {reward} promise",
                    self.promise_token.mint, caller, reward,
                    undo=lambda: self.promise_token.burn(caller, reward),
                )
            stake = self.fixed.open(caller, amount, params, ctx.now)

        self.events.emit(
            EventKind.FIXED_OPENED, caller, ctx.now,
            stake_id=stake.stake_id, amount=amount, expected_reward=reward,
        )
        self._audit("open_fixed")
        return stake

    def close_fixed(self, ctx: CallContext, stake_id: int) -> tuple[int, int]:
        """Unlock a matured stake; returns ``(principal, reward)`` paid out."""
        params = self.parameters
        stake = self.fixed.check_close(ctx.caller, stake_id, params, ctx.now)
        amount, reward = stake.amount, stake.expected_reward
        caller = ctx.caller

        with self._settlement("close_fixed", ctx) as unit:
            unit.require_funds(self.address, self._payout_needs(amount, reward))
            if reward > 0:
                unit.call(
                    f"burn {reward} promise",
                    self.promise_token.burn, caller, reward,
                    undo=lambda: self.promise_token.mint(caller, reward),
                )
            unit.call(
                f"return principal {amount}",
                self.staking_asset.transfer, caller, amount,
            )
            self._pay_reward(unit, caller, reward)
            self.fixed.close(caller, stake_id, params, ctx.now)

        self.total_rewards_paid += reward
        self.events.emit(
            EventKind.FIXED_CLOSED, caller, ctx.now,
            stake_id=stake_id, amount=amount, reward=reward,
        )
        self._audit("close_fixed")
        return amount, reward

    # ── flexible stakes ─────────────────────────────────────────────

    def deposit_flexible(self, ctx: CallContext, amount: int) -> int:
        """Add to the flexible balance; returns the reward paid on the prior balance."""
        params = self.parameters
        caller = ctx.caller
        reward = self.flexible.quote_deposit(caller, amount, params, ctx.now)

        with self._settlement("deposit_flexible", ctx) as unit:
            unit.require_funds(self.address, self._payout_needs(0, reward))
            unit.call(
                f"pull {amount} from {caller}",
                self.staking_asset.transfer_from, caller, self.address, amount,
                undo=lambda: self.staking_asset.transfer(caller, amount),
            )
            self._pay_reward(unit, caller, reward)
            self.flexible.deposit(caller, amount, params, ctx.now)

        self.total_rewards_paid += reward
        self.events.emit(
            EventKind.FLEXIBLE_DEPOSITED, caller, ctx.now,
            amount=amount, reward=reward, balance=self.flexible.stakes[caller].amount,
        )
        self._audit("deposit_flexible")
        return reward

    def withdraw_flexible(self, ctx: CallContext, amount: int) -> int:
        """Withdraw part or all of the flexible balance; returns the reward paid."""
        params = self.parameters
        caller = ctx.caller
        reward = self.flexible.quote_withdraw(caller, amount, params, ctx.now)

        with self._settlement("withdraw_flexible", ctx) as unit:
            unit.require_funds(self.address, self._payout_needs(amount, reward))
            unit.call(
                f"return principal {amount}",
                self.staking_asset.transfer, caller, amount,
            )
            self._pay_reward(unit, caller, reward)
            self.flexible.withdraw(caller, amount, params, ctx.now)

        self.total_rewards_paid += reward
        self.events.emit(
            EventKind.FLEXIBLE_WITHDRAWN, caller, ctx.now,
            amount=amount, reward=reward, balance=self.flexible.stakes[caller].amount,
        )
        self._audit("withdraw_flexible")
        return reward

    def claim_flexible(self, ctx: CallContext) -> int:
        params = self.parameters
        caller = ctx.caller
        reward = self.flexible.quote_claim(caller, params, ctx.now)

        with self._settlement("claim_flexible", ctx) as unit:
            unit.require_funds(self.address, self._payout_needs(0, reward))
            self._pay_reward(unit, caller, reward)
            self.flexible.claim(caller, params, ctx.now)

        self.total_rewards_paid += reward
        self.events.emit(EventKind.FLEXIBLE_CLAIMED, caller, ctx.now, reward=reward)
        self._audit("claim_flexible")
        return reward

    # ── administration ──────────────────────────────────────────────

    def _emit_changes(
        self, kind: EventKind, ctx: CallContext, changes: list[ParameterChange],
    ) -> None:
        amounts: dict[str, int] = {}
        for change in changes:
            amounts[f"old_{change.name}"] = change.old
            amounts[f"new_{change.name}"] = change.new
        self.events.emit(kind, ctx.caller, ctx.now, **amounts)

    def set_rates(
        self, ctx: CallContext, fixed_bps: int, flexible_bps: int,
    ) -> StakingParameters:
        changes = self.params.set_rates(ctx, fixed_bps, flexible_bps)
        self._emit_changes(EventKind.RATES_UPDATED, ctx, changes)
        return self.parameters

    def set_fixed_lock(self, ctx: CallContext, seconds: int) -> StakingParameters:
        changes = self.params.set_fixed_lock(ctx, seconds)
        self._emit_changes(EventKind.FIXED_LOCK_UPDATED, ctx, changes)
        return self.parameters

    def set_flexible_interval(self, ctx: CallContext, seconds: int) -> StakingParameters:
        changes = self.params.set_flexible_interval(ctx, seconds)
        self._emit_changes(EventKind.FLEXIBLE_INTERVAL_UPDATED, ctx, changes)
        return self.parameters

    def rescue(
        self,
        ctx: CallContext,
        asset: Union[str, FungibleAsset],
        recipient: str,
        amount: int,
    ) -> None:
        """Owner-only push of any vault-held asset, outside the staking books."""
        self.owner_role.authorize(ctx)
        validate_positive(amount)
        if not recipient:
            raise InvalidParameter("recipient required")
        if isinstance(asset, str):
            if asset not in self.assets:
                raise InvalidParameter(f"Unknown asset {asset!r}")
            label, handle = asset, self.assets[asset]
        else:
            label, handle = getattr(asset, "symbol", type(asset).__name__), asset

        with self._settlement("rescue", ctx) as unit:
            unit.call(f"rescue {amount} to {recipient}", handle.transfer, recipient, amount)

        self.events.emit(
            EventKind.RESCUED, ctx.caller, ctx.now,
            detail={"asset": label, "recipient": recipient}, amount=amount,
        )
        self._audit("rescue")

    # ── read-only accessors ─────────────────────────────────────────

    def get_fixed_stake_ids(self, participant: str) -> list[int]:
        return self.fixed.get_stake_ids(participant)

    def get_fixed_stake(self, stake_id: int) -> FixedStake:
        stake = self.fixed.get_stake(stake_id)
        if stake is None:
            raise NotFound(f"Fixed stake {stake_id} not found")
        return stake

    def get_flexible_stake(self, participant: str) -> FlexibleStake | None:
        return self.flexible.get_stake(participant)

    def pending_flexible_reward(self, participant: str, now: Optional[int] = None) -> int:
        if now is None:
            now = int(time.time())
        return self.flexible.pending_reward(participant, self.parameters, now)

    def summary(self, now: Optional[int] = None) -> dict:
        if now is None:
            now = int(time.time())
        params = self.parameters
        pending = sum(
            self.flexible.pending_reward(p, params, now)
            for p in self.flexible.participants()
        )
        promised = sum(
            s.expected_reward for s in self.fixed.stakes.values() if not s.closed
        )
        return {
            "owner": self.owner,
            "vault": self.address,
            "parameters": params.to_dict(),
            "total_fixed_locked": self.fixed.total_locked,
            "total_flexible_staked": self.flexible.total_staked,
            "open_fixed_stakes": self.fixed.open_count(),
            "total_fixed_stakes": len(self.fixed.stakes),
            "active_flexible_stakes": self.flexible.active_count(),
            "promised_fixed_rewards": promised,
            "pending_flexible_rewards": pending,
            "total_rewards_paid": self.total_rewards_paid,
            "event_count": len(self.events),
        }
