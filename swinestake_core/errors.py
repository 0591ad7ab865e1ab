"""
Error taxonomy for the SwineStake engine.

Every failure surfaces as a distinct exception class carrying a stable
``code`` so that API clients and tests can assert on the cause rather
than on message text.  Where a built-in exception already describes the
category (``ValueError``, ``LookupError``, ``OverflowError``) the class
also derives from it.
"""

from __future__ import annotations


class StakingError(Exception):
    """Base exception for all staking-engine errors."""
    code = "StakingError"


class InvalidAmount(StakingError, ValueError):
    """Raised for a zero, negative or out-of-range amount."""
    code = "InvalidAmount"


class InvalidParameter(StakingError, ValueError):
    """Raised when a rate or duration parameter is unusable (e.g. zero duration)."""
    code = "InvalidParameter"


class NotOwner(StakingError):
    """Raised when the caller lacks the owner role or does not own the stake."""
    code = "NotOwner"


class NotFound(StakingError, LookupError):
    """Raised when a referenced fixed stake does not exist."""
    code = "NotFound"


class NoStake(StakingError, LookupError):
    """Raised when a participant has no flexible balance to act on."""
    code = "NoStake"


class AlreadyClosed(StakingError):
    """Raised when a closed fixed stake is closed again."""
    code = "AlreadyClosed"


class LockNotElapsed(StakingError):
    """Raised when a fixed stake is closed before its lock period ends."""
    code = "LockNotElapsed"


class TooEarly(StakingError):
    """Raised when a flexible claim is attempted inside the first interval."""
    code = "TooEarly"


class NothingToClaim(StakingError):
    """Raised when a flexible claim would pay a zero reward."""
    code = "NothingToClaim"


class ArithmeticOverflow(StakingError, OverflowError):
    """Raised when unsigned reward or balance arithmetic exceeds 256 bits."""
    code = "ArithmeticOverflow"


class ExternalTransferFailed(StakingError):
    """Raised when a collaborator call returns failure or raises."""
    code = "ExternalTransferFailed"


class InsufficientBalance(StakingError):
    """Raised by a receipt collaborator when a burn exceeds the tracked balance."""
    code = "InsufficientBalance"


ERROR_CLASSES: dict[str, type[StakingError]] = {
    cls.code: cls
    for cls in (
        InvalidAmount,
        InvalidParameter,
        NotOwner,
        NotFound,
        NoStake,
        AlreadyClosed,
        LockNotElapsed,
        TooEarly,
        NothingToClaim,
        ArithmeticOverflow,
        ExternalTransferFailed,
        InsufficientBalance,
    )
}
