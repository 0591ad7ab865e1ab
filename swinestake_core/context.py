"""
Call context and the owner role.

Every engine call receives a :class:`CallContext` naming the caller and
the single clock reading used for the whole operation.  Privileged calls
check the context against an :class:`OwnerRole` capability instead of
inheriting access-control behaviour.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from swinestake_core.errors import NotOwner


@dataclass(frozen=True)
class CallContext:
    """Who is calling, and when (integer Unix seconds)."""
    caller: str
    now: int

    @classmethod
    def at(cls, caller: str, now: int | None = None) -> CallContext:
        """Build a context, reading the wall clock once when *now* is omitted."""
        if now is None:
            now = int(time.time())
        return cls(caller=caller, now=int(now))


class OwnerRole:
    """The single administrative role of an engine instance."""

    def __init__(self, owner: str):
        if not owner:
            raise ValueError("owner address required")
        self.owner = owner

    def holds(self, ctx: CallContext) -> bool:
        return ctx.caller == self.owner

    def authorize(self, ctx: CallContext) -> None:
        if not self.holds(ctx):
            raise NotOwner(f"{ctx.caller} is not the owner")
