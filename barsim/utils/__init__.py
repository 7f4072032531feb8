"""
Utils Package
=============

Utility modules for barsim.
"""
from .timeframe import (
    TimeframeSpec,
    parse_interval_ms,
    floor_to_interval,
    get_higher_timeframe,
    MS_PER_MINUTE,
    TF_HIERARCHY,
)
from .indicators import calc_ema
from .log import setup_logging

__all__ = [
    'TimeframeSpec',
    'parse_interval_ms',
    'floor_to_interval',
    'get_higher_timeframe',
    'MS_PER_MINUTE',
    'TF_HIERARCHY',
    'calc_ema',
    'setup_logging',
]
