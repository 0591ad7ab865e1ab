"""
Structured event records for SwineStake.

Every state-changing engine operation appends one :class:`StakingEvent`
to the :class:`EventLog`.  Events carry enough detail (participant,
stake id, principal, reward, resulting balance) that
:func:`rebuild_positions` can reconstruct each participant's positions
from the log alone, without reading live ledger state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

logger = logging.getLogger("swinestake_events")


class EventKind(Enum):
    FIXED_OPENED = "FixedStakeOpened"
    FIXED_CLOSED = "FixedStakeClosed"
    FLEXIBLE_DEPOSITED = "FlexibleDeposited"
    FLEXIBLE_WITHDRAWN = "FlexibleWithdrawn"
    FLEXIBLE_CLAIMED = "FlexibleRewardClaimed"
    RATES_UPDATED = "RatesUpdated"
    FIXED_LOCK_UPDATED = "FixedLockUpdated"
    FLEXIBLE_INTERVAL_UPDATED = "FlexibleIntervalUpdated"
    RESCUED = "AssetRescued"


@dataclass(frozen=True)
class StakingEvent:
    sequence: int
    kind: EventKind
    participant: str
    timestamp: int
    stake_id: Optional[int] = None
    amounts: dict[str, int] = field(default_factory=dict)
    detail: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {
            "sequence": self.sequence,
            "kind": self.kind.value,
            "participant": self.participant,
            "timestamp": self.timestamp,
            "amounts": dict(self.amounts),
        }
        if self.stake_id is not None:
            d["stake_id"] = self.stake_id
        if self.detail:
            d["detail"] = dict(self.detail)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> StakingEvent:
        return cls(
            sequence=int(data["sequence"]),
            kind=EventKind(data["kind"]),
            participant=data["participant"],
            timestamp=int(data["timestamp"]),
            stake_id=data.get("stake_id"),
            amounts={k: int(v) for k, v in data.get("amounts", {}).items()},
            detail=dict(data.get("detail", {})),
        )


class EventLog:
    """Append-only, sequence-numbered event history with listeners."""

    def __init__(self, last_sequence: int = 0) -> None:
        self.events: list[StakingEvent] = []
        self.last_sequence = last_sequence
        self._listeners: list[Callable[[StakingEvent], None]] = []

    def resume(self, last_sequence: int) -> None:
        """Continue numbering after *last_sequence* (e.g. from a persisted store)."""
        if last_sequence < self.last_sequence:
            raise ValueError(
                f"Cannot rewind event sequence from {self.last_sequence} to {last_sequence}"
            )
        self.last_sequence = last_sequence
        logger.info(f"Event numbering resumes after #{last_sequence}")

    def subscribe(self, listener: Callable[[StakingEvent], None]) -> None:
        self._listeners.append(listener)

    def emit(
        self,
        kind: EventKind,
        participant: str,
        timestamp: int,
        stake_id: Optional[int] = None,
        detail: Optional[dict[str, str]] = None,
        **amounts: int,
    ) -> StakingEvent:
        event = StakingEvent(
            sequence=self.last_sequence + 1,
            kind=kind,
            participant=participant,
            timestamp=timestamp,
            stake_id=stake_id,
            amounts=amounts,
            detail=detail or {},
        )
        self.events.append(event)
        self.last_sequence = event.sequence
        logger.info(
            f"{kind.value} #{event.sequence} {participant} {amounts}",
            extra={"event": event.to_dict()},
        )
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                # The operation is already committed; a listener cannot undo it
                logger.exception(f"Event listener {listener!r} failed on #{event.sequence}")
        return event

    def since(self, sequence: int = 0) -> list[StakingEvent]:
        """Events with a sequence number greater than *sequence*."""
        return [e for e in self.events if e.sequence > sequence]

    def for_participant(self, participant: str) -> list[StakingEvent]:
        return [e for e in self.events if e.participant == participant]

    def __len__(self) -> int:
        return len(self.events)


# ── history reconstruction ──────────────────────────────────────────────

@dataclass
class ParticipantHistory:
    open_fixed: dict[int, tuple[int, int]] = field(default_factory=dict)   # id → (amount, reward)
    closed_fixed: list[int] = field(default_factory=list)
    flexible_balance: int = 0
    rewards_paid: int = 0

    @property
    def promised_reward(self) -> int:
        return sum(reward for _amount, reward in self.open_fixed.values())


def rebuild_positions(events: Iterable[StakingEvent]) -> dict[str, ParticipantHistory]:
    """Replay *events* and return each participant's positions."""
    history: dict[str, ParticipantHistory] = {}
    for ev in events:
        if ev.kind in (EventKind.RATES_UPDATED, EventKind.FIXED_LOCK_UPDATED,
                       EventKind.FLEXIBLE_INTERVAL_UPDATED, EventKind.RESCUED):
            continue
        h = history.setdefault(ev.participant, ParticipantHistory())
        if ev.kind == EventKind.FIXED_OPENED:
            h.open_fixed[ev.stake_id] = (ev.amounts["amount"], ev.amounts["expected_reward"])
        elif ev.kind == EventKind.FIXED_CLOSED:
            h.open_fixed.pop(ev.stake_id, None)
            h.closed_fixed.append(ev.stake_id)
            h.rewards_paid += ev.amounts.get("reward", 0)
        elif ev.kind in (EventKind.FLEXIBLE_DEPOSITED, EventKind.FLEXIBLE_WITHDRAWN):
            h.flexible_balance = ev.amounts["balance"]
            h.rewards_paid += ev.amounts.get("reward", 0)
        elif ev.kind == EventKind.FLEXIBLE_CLAIMED:
            h.rewards_paid += ev.amounts.get("reward", 0)
    return history
