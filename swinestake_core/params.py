"""
Parameter store for SwineStake.

Holds the yield rates (basis points, 10 000 = 100 %), the fixed-stake
lock duration and the flexible-stake reward interval.  Only the owner
may change them.  A change affects future quotes only: every open fixed
stake keeps the reward frozen at its creation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from swinestake_core.context import CallContext, OwnerRole
from swinestake_core.errors import InvalidParameter
from swinestake_core.rewards import require_uint

DEFAULT_FIXED_RATE_BPS: int = 3_000
DEFAULT_FLEXIBLE_RATE_BPS: int = 1_000
DEFAULT_FIXED_LOCK_SECONDS: int = 30 * 86_400
DEFAULT_FLEXIBLE_INTERVAL_SECONDS: int = 6 * 3_600


@dataclass(frozen=True)
class StakingParameters:
    fixed_rate_bps: int = DEFAULT_FIXED_RATE_BPS
    flexible_rate_bps: int = DEFAULT_FLEXIBLE_RATE_BPS
    fixed_lock_seconds: int = DEFAULT_FIXED_LOCK_SECONDS
    flexible_interval_seconds: int = DEFAULT_FLEXIBLE_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        require_uint(self.fixed_rate_bps, "fixed_rate_bps", InvalidParameter)
        require_uint(self.flexible_rate_bps, "flexible_rate_bps", InvalidParameter)
        _require_duration(self.fixed_lock_seconds, "fixed_lock_seconds")
        _require_duration(self.flexible_interval_seconds, "flexible_interval_seconds")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ParameterChange:
    """One parameter moving from *old* to *new*."""
    name: str
    old: int
    new: int


def _require_duration(seconds: int, name: str) -> int:
    require_uint(seconds, name, InvalidParameter)
    if seconds == 0:
        raise InvalidParameter(f"{name} must be positive")
    return seconds


class ParameterStore:
    """Owner-writable singleton of :class:`StakingParameters`."""

    def __init__(self, role: OwnerRole, initial: StakingParameters | None = None):
        self._role = role
        self._current = initial or StakingParameters()

    @property
    def current(self) -> StakingParameters:
        return self._current

    def set_rates(
        self, ctx: CallContext, fixed_bps: int, flexible_bps: int,
    ) -> list[ParameterChange]:
        self._role.authorize(ctx)
        require_uint(fixed_bps, "fixed_bps", InvalidParameter)
        require_uint(flexible_bps, "flexible_bps", InvalidParameter)
        return self._replace(fixed_rate_bps=fixed_bps, flexible_rate_bps=flexible_bps)

    def set_fixed_lock(self, ctx: CallContext, seconds: int) -> list[ParameterChange]:
        self._role.authorize(ctx)
        _require_duration(seconds, "fixed_lock_seconds")
        return self._replace(fixed_lock_seconds=seconds)

    def set_flexible_interval(
        self, ctx: CallContext, seconds: int,
    ) -> list[ParameterChange]:
        self._role.authorize(ctx)
        _require_duration(seconds, "flexible_interval_seconds")
        return self._replace(flexible_interval_seconds=seconds)

    def _replace(self, **updates: int) -> list[ParameterChange]:
        old = self._current.to_dict()
        self._current = StakingParameters(**{**old, **updates})
        return [ParameterChange(name, old[name], value) for name, value in updates.items()]
