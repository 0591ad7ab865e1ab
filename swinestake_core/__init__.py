"""
SwineStake - dual-mode staking engine with fixed and flexible positions.

Key features:
- Fixed stakes: principal locked for a set period, reward frozen at open
  and mirrored by a promise (receipt) token
- Flexible stakes: one running balance per participant, rewards accrue in
  whole intervals at the current rate
- Owner-controlled rates and durations
- Compensated settlement against pluggable asset collaborators
- Event log with SQLite persistence and position replay
- Signed-request HTTP API (aiohttp)
"""

__version__ = "1.0.0"
__all__ = [
    "errors",
    "rewards",
    "context",
    "params",
    "fixed_stake",
    "flexible_stake",
    "assets",
    "events",
    "settlement",
    "invariants",
    "storage",
    "crypto_utils",
    "wallet",
    "config",
    "logging_config",
    "api",
]
