"""Time sources and timestamp parsing.

Config files carry timestamps in two formats:
- ISO8601 strings: "2019-06-01T00:00:00Z" or "2019-06-01T00:00:00.000Z"
- Unix seconds (or milliseconds, for values above 1e12)
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable

Clock = Callable[[], int]


def wall_clock() -> int:
    """Return the current Unix time in whole seconds."""
    return int(time.time())


def parse_timestamp(value: Any) -> int:
    """Parse a config timestamp into Unix seconds.

    Raises:
        ValueError: if the value is empty or not a recognised format
    """
    if value is None or value == "" or isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")

    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())

    if isinstance(value, (int, float)):
        return _normalize_epoch(value)

    if isinstance(value, str):
        text = value.strip()
        try:
            return _normalize_epoch(float(text))
        except ValueError:
            pass
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())

    raise ValueError(f"Invalid timestamp: {value!r}")


def format_timestamp_iso(timestamp: int) -> str:
    """Format Unix seconds as an ISO8601 UTC string (e.g. "2019-06-01T00:00:00Z")."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime(
        "%Y-%m-%dT%H:%M:%SZ"
    )


def _normalize_epoch(value: float) -> int:
    if value > 1e12:
        value /= 1000.0
    return int(value)


class ManualClock:
    """Deterministic clock for tests and scripted replays."""

    def __init__(self, now: int = 0) -> None:
        self._now = int(now)

    def __call__(self) -> int:
        return self._now

    @property
    def now(self) -> int:
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = int(timestamp)

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += int(seconds)
        return self._now
