"""
Confirmed-Bar Selector
======================

Decides which trailing bars of a raw exchange feed are guaranteed closed
relative to a wall-clock reference time.

Taking "the last N bars from the API" risks analysing a bar that is still
accumulating ticks. With

    current_slot_start = floor(now_ms / interval_ms) * interval_ms

the last raw bar is classified as:

    ROLLED_OVER  last.timestamp >= current_slot_start
                 -> feed already shows the in-progress bar (or a later one
                    from a clock running ahead), drop every such bar
    CURRENT      last.timestamp == current_slot_start - interval_ms
                 -> its close (timestamp + interval) <= now, keep everything
    STALE        anything older
                 -> keep what is there, emit StaleFeedWarning

The same bucket math (without the staleness logic) selects closed
higher-timeframe buckets for the backtest driver: closed_before().
"""
from __future__ import annotations

import bisect
import logging
import warnings
from enum import Enum
from typing import List, Sequence

from ..errors import InsufficientData, StaleFeedWarning
from ..models import Bar
from ..utils.timeframe import floor_to_interval

logger = logging.getLogger(__name__)


class FeedStatus(str, Enum):
    ROLLED_OVER = "rolled_over"
    CURRENT = "current"
    STALE = "stale"


def classify_feed(raw_bars: Sequence[Bar], interval_ms: int, now_ms: int) -> FeedStatus:
    """Classify the last raw bar against the current slot."""
    if not raw_bars:
        raise InsufficientData("No bars to classify")
    current_slot_start = floor_to_interval(now_ms, interval_ms)
    last_ts = raw_bars[-1].timestamp
    if last_ts >= current_slot_start:
        return FeedStatus.ROLLED_OVER
    if last_ts == current_slot_start - interval_ms:
        return FeedStatus.CURRENT
    return FeedStatus.STALE


def select_confirmed(
    raw_bars: Sequence[Bar],
    interval_ms: int,
    now_ms: int,
    lookback: int,
) -> List[Bar]:
    """
    Return the last `lookback` bars guaranteed closed at now_ms.

    Every trailing bar at or after the current slot is dropped, including
    bars from an exchange clock running ahead of now_ms.

    Args:
        raw_bars: Raw feed, ascending by timestamp
        interval_ms: Bar width in milliseconds
        now_ms: Wall-clock reference (exchange time preferred)
        lookback: Max number of bars to return

    Returns:
        Confirmed bars, oldest first

    Raises:
        InsufficientData: If fewer than 2 raw bars are supplied

    Warns:
        StaleFeedWarning: If the newest confirmed bar lags more than one interval
    """
    if len(raw_bars) < 2:
        raise InsufficientData(f"Need at least 2 raw bars, got {len(raw_bars)}")

    current_slot_start = floor_to_interval(now_ms, interval_ms)
    end = len(raw_bars)
    while end > 0 and raw_bars[end - 1].timestamp >= current_slot_start:
        end -= 1
    if len(raw_bars) - end > 1:
        logger.warning(
            f"Dropped {len(raw_bars) - end} bars at or after slot {current_slot_start} "
            f"(now={now_ms}), feed clock ahead"
        )
    confirmed = list(raw_bars[:end])

    if confirmed and classify_feed(confirmed, interval_ms, now_ms) == FeedStatus.STALE:
        lag_bars = (current_slot_start - confirmed[-1].timestamp) // interval_ms - 1
        msg = (
            f"Stale feed: last bar {confirmed[-1].timestamp} is {lag_bars} "
            f"interval(s) behind the latest closed slot (now={now_ms})"
        )
        logger.warning(msg)
        warnings.warn(msg, StaleFeedWarning, stacklevel=2)

    if lookback <= 0:
        return []
    return confirmed[-lookback:]


def closed_before(bars: Sequence[Bar], bucket_start: int, limit: int) -> List[Bar]:
    """
    Last `limit` bars whose timestamp is strictly before bucket_start.

    Used for resampled context/trend windows: the bucket that contains the
    current trading bar is still forming, so only earlier buckets count.
    Binary search, bars must be ascending.
    """
    end = bisect.bisect_left(bars, bucket_start, key=lambda b: b.timestamp)
    if end == 0 or limit <= 0:
        return []
    return list(bars[max(0, end - limit):end])
