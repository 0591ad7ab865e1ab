"""
Post-operation invariant checks for SwineStake.

  - Each participant's promise-token balance equals the sum of
    ``expected_reward`` over that participant's open fixed stakes
  - The vault's staking-asset holdings cover open fixed principal plus
    all flexible balances
  - Ledger running totals equal the sum of their records
  - No flexible balance is negative
  - Fixed-stake ids are strictly increasing per owner and below the
    ledger's next id

The checker only reads state.  The engine runs it after every operation
when ``check_invariants`` is enabled and logs any violation.
"""

from __future__ import annotations


class InvariantChecker:
    """Validates the cross-ledger invariants of a ``SwineStake`` engine."""

    def verify(self, engine) -> tuple[bool, str]:
        """
        Verify all invariants against the current engine state.
        Returns (passed, error_message).
        """
        errors: list[str] = []

        for check in (
            self._check_promise_balances,
            self._check_vault_coverage,
            self._check_totals,
            self._check_no_negative_balances,
            self._check_stake_ids,
        ):
            ok, msg = check(engine)
            if not ok:
                errors.append(msg)

        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _check_promise_balances(self, engine) -> tuple[bool, str]:
        promised: dict[str, int] = {}
        for stake in engine.fixed.stakes.values():
            if not stake.closed:
                promised[stake.owner] = promised.get(stake.owner, 0) + stake.expected_reward
        for owner in engine.fixed.owners():
            expected = promised.get(owner, 0)
            held = engine.promise_token.balance_of(owner)
            if held != expected:
                return False, (
                    f"Promise balance of {owner} is {held}, "
                    f"open fixed rewards total {expected}"
                )
        return True, ""

    def _check_vault_coverage(self, engine) -> tuple[bool, str]:
        owed = engine.fixed.total_locked + engine.flexible.total_staked
        held = engine.staking_asset.balance_of(engine.address)
        if held < owed:
            return False, f"Vault holds {held} staking units but owes {owed}"
        return True, ""

    def _check_totals(self, engine) -> tuple[bool, str]:
        locked = sum(s.amount for s in engine.fixed.stakes.values() if not s.closed)
        if locked != engine.fixed.total_locked:
            return False, (
                f"Fixed total {engine.fixed.total_locked} != open principal {locked}"
            )
        staked = sum(s.amount for s in engine.flexible.stakes.values())
        if staked != engine.flexible.total_staked:
            return False, (
                f"Flexible total {engine.flexible.total_staked} != balances {staked}"
            )
        return True, ""

    def _check_no_negative_balances(self, engine) -> tuple[bool, str]:
        for participant, stake in engine.flexible.stakes.items():
            if stake.amount < 0:
                return False, f"Flexible balance of {participant} is negative"
        return True, ""

    def _check_stake_ids(self, engine) -> tuple[bool, str]:
        next_id = engine.fixed.next_id
        for owner, ids in engine.fixed.stakes_by_owner.items():
            if any(b <= a for a, b in zip(ids, ids[1:])):
                return False, f"Fixed stake ids of {owner} are not increasing"
            if ids and ids[-1] >= next_id:
                return False, f"Fixed stake id {ids[-1]} not below next id {next_id}"
        return True, ""
