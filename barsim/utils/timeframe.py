"""
Timeframe Module
================

Interval parsing and bucket math shared by the resampler, the
confirmed-bar selector and the live scheduler.

- TimeframeSpec: parsed interval ('15m', '4h', '1d', '1w')
- parse_interval_ms(): single conversion point, string -> milliseconds
- floor_to_interval(): bucket start for a timestamp

Usage:
    from barsim.utils.timeframe import parse_interval_ms, floor_to_interval

    ms = parse_interval_ms("15m")                       # -> 900000
    bucket = floor_to_interval(1_700_000_123_456, ms)   # -> 1699999200000

All timestamps are epoch milliseconds (UTC).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict
import re

from ..errors import InvalidIntervalFormat


MS_PER_MINUTE = 60_000

# Minutes per unit suffix
UNIT_MINUTES: Dict[str, int] = {
    'm': 1,
    'h': 60,
    'd': 1440,
    'w': 10080,
}


_INTERVAL_RE = re.compile(r'^(\d+)\s*([mhdw])$')


@dataclass(frozen=True)
class TimeframeSpec:
    """Immutable parsed timeframe."""
    name: str
    minutes: int

    @classmethod
    def from_string(cls, tf: str) -> TimeframeSpec:
        """
        Parse timeframe string like '15m', '1h', '1d'.

        Args:
            tf: Timeframe string (e.g., '15m', '1h', '4h', '1d', '1w')

        Returns:
            TimeframeSpec instance

        Raises:
            InvalidIntervalFormat: If the unit is not m/h/d/w or the count
                is not a positive integer
        """
        if not isinstance(tf, str):
            raise InvalidIntervalFormat(f"Unknown interval format: {tf!r}")
        match = _INTERVAL_RE.match(tf.strip())
        if not match:
            raise InvalidIntervalFormat(
                f"Unknown interval format: '{tf}'. "
                "Expected format: '15m', '4h', '1d', '1w', etc."
            )
        value = int(match.group(1))
        if value <= 0:
            raise InvalidIntervalFormat(f"Interval must be positive: '{tf}'")
        unit = match.group(2)
        return cls(name=f"{value}{unit}", minutes=value * UNIT_MINUTES[unit])

    @property
    def ms(self) -> int:
        """Bar duration in milliseconds."""
        return self.minutes * MS_PER_MINUTE

    def __str__(self) -> str:
        return self.name


def parse_interval_ms(interval: str) -> int:
    """
    Convert an interval string to milliseconds.

    Examples:
        >>> parse_interval_ms("15m")
        900000
        >>> parse_interval_ms("4h")
        14400000
        >>> parse_interval_ms("1w")
        604800000

    Raises:
        InvalidIntervalFormat: If the string is not '<n>m|h|d|w'
    """
    return TimeframeSpec.from_string(interval).ms


def floor_to_interval(timestamp_ms: int, interval_ms: int) -> int:
    """Start of the interval bucket containing timestamp_ms."""
    if interval_ms <= 0:
        raise InvalidIntervalFormat(f"Interval must be positive, got {interval_ms}")
    return (int(timestamp_ms) // interval_ms) * interval_ms


# ============================================================
# Timeframe Hierarchy (default context / trend selection)
# ============================================================
# Ordered from highest (1w) to lowest (1m)
TF_HIERARCHY: list[str] = ['1w', '1d', '4h', '1h', '15m', '5m', '1m']


def get_higher_timeframe(tf: str) -> str | None:
    """
    Get the next higher timeframe in the hierarchy.

    Args:
        tf: Current timeframe string (e.g., '15m', '1h', '4h')

    Returns:
        Next higher timeframe string, or None if already at highest (1w)

    Examples:
        >>> get_higher_timeframe('15m')
        '1h'
        >>> get_higher_timeframe('1h')
        '4h'
        >>> get_higher_timeframe('1w')
        None
    """
    tf_lower = tf.lower().strip()
    if tf_lower not in TF_HIERARCHY:
        raise InvalidIntervalFormat(f"Unknown timeframe: '{tf}'. Valid: {TF_HIERARCHY}")

    idx = TF_HIERARCHY.index(tf_lower)
    if idx <= 0:
        return None  # Already at highest (1w)
    return TF_HIERARCHY[idx - 1]
