"""
Logging setup for SwineStake.

Each engine layer logs under a fixed name (see :data:`STAKING_LOGGERS`) so
operators can tune them separately, e.g. quiet the API while keeping
settlement at DEBUG:

    [logging]
    level = "INFO"
    levels = { swinestake_api = "WARNING", swinestake_settlement = "DEBUG" }

Staking events reach the log as records carrying ``extra={"event": ...}``.
The JSON formatter lifts their fields (kind, sequence, participant,
stake id, amounts) to top-level keys, and ``event_file`` writes those
records alone to a newline-delimited audit trail.

Usage:
    from swinestake_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", event_file="data/events.ndjson")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

STAKING_LOGGERS = (
    "swinestake_settlement",
    "swinestake_events",
    "swinestake_assets",
    "swinestake_storage",
    "swinestake_api",
    "server",
)

# Event keys copied to the top level of a JSON log line
_EVENT_FIELDS = ("kind", "sequence", "participant", "stake_id", "amounts", "detail")


def _event_of(record: logging.LogRecord) -> Optional[dict]:
    return getattr(record, "event", None)


class _EventRecordFilter(logging.Filter):
    """Pass only records that carry a staking event."""

    def filter(self, record: logging.LogRecord) -> bool:
        return _event_of(record) is not None


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        event = _event_of(record)
        if event is not None:
            for key in _EVENT_FIELDS:
                if key in event:
                    log_obj[key] = event[key]
            # ledger time, distinct from the wall-clock "ts"
            log_obj["event_time"] = event.get("timestamp")
        if record.exc_info and record.exc_info[1]:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


class _HumanFormatter(logging.Formatter):
    """Single coloured line; event records are rendered from their fields."""

    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _short_name(name: str) -> str:
        return name[len("swinestake_"):] if name.startswith("swinestake_") else name

    @staticmethod
    def _describe(event: dict) -> str:
        parts = [f"{event.get('kind')} #{event.get('sequence')}", str(event.get("participant"))]
        if event.get("stake_id") is not None:
            parts.append(f"stake={event['stake_id']}")
        parts.extend(f"{k}={v}" for k, v in sorted(event.get("amounts", {}).items()))
        return " ".join(parts)

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        event = _event_of(record)
        text = self._describe(event) if event is not None else record.getMessage()
        line = (
            f"{colour}{ts} {record.levelname[0]}{self.RESET} "
            f"{self._short_name(record.name):<10} {text}"
        )
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _level(name: str) -> int:
    value = logging.getLevelName(name.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level {name!r}")
    return value


def _file_handler(path_str: str) -> logging.FileHandler:
    path = Path(path_str)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(path))
    handler.setFormatter(_JSONFormatter())
    return handler


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
    event_file: Optional[str] = None,
    levels: Optional[dict[str, str]] = None,
) -> None:
    """
    Configure the root logger and the staking loggers.

    Parameters
    ----------
    level : str
        Root level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
    fmt : str
        Console format, ``"human"`` or ``"json"``.
    log_file : str, optional
        Every record is also appended here as JSON.
    event_file : str, optional
        Only staking events are appended here, one JSON object per line.
    levels : dict, optional
        Per-logger overrides, e.g. ``{"swinestake_api": "WARNING"}``.
    """
    root = logging.getLogger()
    root.setLevel(_level(level))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_JSONFormatter() if fmt == "json" else _HumanFormatter())
    root.addHandler(console)

    if log_file:
        root.addHandler(_file_handler(log_file))

    if event_file:
        audit = _file_handler(event_file)
        audit.addFilter(_EventRecordFilter())
        root.addHandler(audit)

    # Drop overrides from an earlier call before applying new ones
    for name in STAKING_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)
    for name, name_level in (levels or {}).items():
        logging.getLogger(name).setLevel(_level(name_level))
