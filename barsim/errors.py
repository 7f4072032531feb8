"""
Errors
======

Exception taxonomy for barsim.

- InvalidIntervalFormat: unparseable timeframe string (fatal to that call)
- InsufficientData: not enough bars for alignment / warmup
- OracleError: decision call failed (driver recovers as HOLD)
- InvalidOrder: rejected at order creation
- StaleFeedWarning: feed lag detected by the confirmed-bar selector
"""


class BarsimError(Exception):
    """Base class for barsim errors."""


class InvalidIntervalFormat(BarsimError, ValueError):
    """Timeframe string such as '15m' / '4h' could not be parsed."""


class InsufficientData(BarsimError):
    """Too few bars to align or to warm up a run."""


class OracleError(BarsimError):
    """The external decision oracle failed to produce a decision."""


class InvalidOrder(BarsimError, ValueError):
    """Order rejected at creation (non-positive amount, missing price)."""


class StaleFeedWarning(UserWarning):
    """Raw bar feed lags more than one interval behind the wall clock."""
