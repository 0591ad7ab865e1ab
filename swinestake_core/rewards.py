"""
Reward calculator for SwineStake.

Pure, stateless integer math shared by the fixed and flexible ledgers.
All quantities are unsigned integers in the asset's smallest unit.

Fixed reward (quoted once, at open time)
────────────────────────────────────────
    annual = floor(amount × rate_bps / 10 000)
    reward = floor(annual × lock_seconds / SECONDS_PER_YEAR)

The two truncations are applied in that order; folding them into one
fraction changes the result for some inputs.

Flexible reward (whole intervals only)
──────────────────────────────────────
    intervals    = floor(elapsed / interval)
    per_interval = floor(amount × rate_bps × interval / (10 000 × SECONDS_PER_YEAR))
    reward       = intervals × per_interval

Any time short of a full interval earns nothing.

A year is a flat 365 days.  Every intermediate product is bounded by
``UINT256_MAX``; exceeding it raises :class:`ArithmeticOverflow`.
"""

from __future__ import annotations

from swinestake_core.errors import (
    ArithmeticOverflow,
    InvalidAmount,
    InvalidParameter,
)

SECONDS_PER_YEAR: int = 365 * 86_400   # 31 536 000
BPS_DENOMINATOR: int = 10_000
UINT256_MAX: int = 2 ** 256 - 1


# ── unsigned helpers ────────────────────────────────────────────────────

def require_uint(
    value: int,
    name: str = "amount",
    error: type[Exception] = InvalidAmount,
) -> int:
    """Return *value* if it is a non-negative int within 256 bits."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise error(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise error(f"{name} must be non-negative, got {value}")
    if value > UINT256_MAX:
        raise ArithmeticOverflow(f"{name} exceeds 256 bits")
    return value


def checked_add(a: int, b: int) -> int:
    result = a + b
    if result > UINT256_MAX:
        raise ArithmeticOverflow(f"{a} + {b} overflows 256 bits")
    return result


def checked_mul(a: int, b: int) -> int:
    result = a * b
    if result > UINT256_MAX:
        raise ArithmeticOverflow(f"{a} * {b} overflows 256 bits")
    return result


# ── reward formulas ─────────────────────────────────────────────────────

def fixed_reward(amount: int, rate_bps: int, lock_seconds: int) -> int:
    """Reward owed on a fixed stake held for the full *lock_seconds*."""
    require_uint(amount, "amount")
    require_uint(rate_bps, "rate_bps", InvalidParameter)
    require_uint(lock_seconds, "lock_seconds", InvalidParameter)
    annual = checked_mul(amount, rate_bps) // BPS_DENOMINATOR
    return checked_mul(annual, lock_seconds) // SECONDS_PER_YEAR


def intervals_elapsed(interval_seconds: int, elapsed_seconds: int) -> int:
    """Number of whole intervals contained in *elapsed_seconds*."""
    require_uint(interval_seconds, "interval_seconds", InvalidParameter)
    require_uint(elapsed_seconds, "elapsed_seconds", InvalidParameter)
    if interval_seconds == 0:
        raise InvalidParameter("interval_seconds must be positive")
    return elapsed_seconds // interval_seconds


def flexible_reward(
    amount: int,
    rate_bps: int,
    interval_seconds: int,
    elapsed_seconds: int,
) -> int:
    """Reward for the whole intervals of *elapsed_seconds*; partial intervals earn 0."""
    require_uint(amount, "amount")
    require_uint(rate_bps, "rate_bps", InvalidParameter)
    intervals = intervals_elapsed(interval_seconds, elapsed_seconds)
    if intervals == 0:
        return 0
    numerator = checked_mul(checked_mul(amount, rate_bps), interval_seconds)
    per_interval = numerator // (BPS_DENOMINATOR * SECONDS_PER_YEAR)
    return checked_mul(intervals, per_interval)
