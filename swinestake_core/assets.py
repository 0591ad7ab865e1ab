"""
Collaborator interfaces and in-memory reference collaborators.

The engine talks to value ledgers only through two small protocols:

  - :class:`FungibleAsset`: ``transfer_from`` / ``transfer`` /
    ``balance_of``; ``transfer`` is sent *from* the engine vault.
    Failures are reported by returning ``False``.
  - :class:`ReceiptToken`: ``mint`` / ``burn`` / ``balance_of`` for
    promise tokens; failures raise.

:class:`TokenLedger` and :class:`PromiseToken` implement them in memory
for the test suite and the demo server.  ``connect(caller)`` returns a
handle whose implicit sender is *caller*, which is how the engine vault
address is bound to its collaborators.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from swinestake_core.errors import InsufficientBalance, InvalidAmount, NotOwner
from swinestake_core.rewards import checked_add, require_uint

logger = logging.getLogger("swinestake_assets")


@runtime_checkable
class FungibleAsset(Protocol):
    def transfer_from(self, source: str, destination: str, amount: int) -> bool: ...

    def transfer(self, destination: str, amount: int) -> bool: ...

    def balance_of(self, account: str) -> int: ...


@runtime_checkable
class ReceiptToken(Protocol):
    def mint(self, account: str, amount: int) -> None: ...

    def burn(self, account: str, amount: int) -> None: ...

    def balance_of(self, account: str) -> int: ...


# ═══════════════════════════════════════════════════════════════════
#  Fungible token ledger
# ═══════════════════════════════════════════════════════════════════

class TokenLedger:
    """Balances and allowances for one fungible asset."""

    def __init__(self, symbol: str, name: str = ""):
        self.symbol = symbol
        self.name = name or symbol
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.total_supply: int = 0

    def credit(self, account: str, amount: int) -> None:
        """Issue new units to *account* (genesis funding, tests)."""
        require_uint(amount)
        self.balances[account] = checked_add(self.balances.get(account, 0), amount)
        self.total_supply = checked_add(self.total_supply, amount)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        require_uint(amount)
        self.allowances[(owner, spender)] = amount

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def transfer(self, sender: str, destination: str, amount: int) -> bool:
        require_uint(amount)
        if self.balances.get(sender, 0) < amount:
            logger.debug(f"{self.symbol}: {sender} cannot send {amount}")
            return False
        self.balances[sender] -= amount
        self.balances[destination] = self.balances.get(destination, 0) + amount
        return True

    def transfer_from(
        self, spender: str, source: str, destination: str, amount: int,
    ) -> bool:
        require_uint(amount)
        allowed = self.allowance(source, spender)
        if allowed < amount:
            logger.debug(f"{self.symbol}: allowance {allowed} < {amount} for {spender}")
            return False
        if not self.transfer(source, destination, amount):
            return False
        self.allowances[(source, spender)] = allowed - amount
        return True

    def connect(self, caller: str) -> TokenHandle:
        return TokenHandle(self, caller)


class TokenHandle:
    """A :class:`FungibleAsset` view of a ledger with a fixed sender."""

    def __init__(self, ledger: TokenLedger, caller: str):
        self.ledger = ledger
        self.caller = caller

    @property
    def symbol(self) -> str:
        return self.ledger.symbol

    def transfer_from(self, source: str, destination: str, amount: int) -> bool:
        return self.ledger.transfer_from(self.caller, source, destination, amount)

    def transfer(self, destination: str, amount: int) -> bool:
        return self.ledger.transfer(self.caller, destination, amount)

    def balance_of(self, account: str) -> int:
        return self.ledger.balance_of(account)

    def __repr__(self) -> str:
        return f"TokenHandle({self.ledger.symbol} as {self.caller})"


# ═══════════════════════════════════════════════════════════════════
#  Promise (receipt) token
# ═══════════════════════════════════════════════════════════════════

class PromiseToken:
    """Non-transferable receipt token with a single authorised minter."""

    def __init__(self, minter: str, symbol: str = "pSWINE"):
        self.minter = minter
        self.symbol = symbol
        self.balances: dict[str, int] = {}
        self.total_supply: int = 0

    def _authorize(self, caller: str) -> None:
        if caller != self.minter:
            raise NotOwner(f"{caller} may not mint or burn {self.symbol}")

    def mint(self, caller: str, account: str, amount: int) -> None:
        self._authorize(caller)
        require_uint(amount)
        self.balances[account] = checked_add(self.balances.get(account, 0), amount)
        self.total_supply = checked_add(self.total_supply, amount)

    def burn(self, caller: str, account: str, amount: int) -> None:
        self._authorize(caller)
        require_uint(amount)
        held = self.balances.get(account, 0)
        if held < amount:
            raise InsufficientBalance(
                f"{account} holds {held} {self.symbol}, cannot burn {amount}"
            )
        self.balances[account] = held - amount
        self.total_supply -= amount

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def connect(self, caller: str) -> PromiseTokenHandle:
        return PromiseTokenHandle(self, caller)


class PromiseTokenHandle:
    """A :class:`ReceiptToken` view of a promise token bound to one caller."""

    def __init__(self, token: PromiseToken, caller: str):
        self.token = token
        self.caller = caller

    def mint(self, account: str, amount: int) -> None:
        self.token.mint(self.caller, account, amount)

    def burn(self, account: str, amount: int) -> None:
        self.token.burn(self.caller, account, amount)

    def balance_of(self, account: str) -> int:
        return self.token.balance_of(account)


def validate_positive(amount: int) -> int:
    require_uint(amount)
    if amount == 0:
        raise InvalidAmount("amount must be positive")
    return amount
