"""Technical indicators used by the reference oracle."""
from __future__ import annotations

from typing import Sequence

import numpy as np


def calc_ema(values: Sequence[float], period: int) -> np.ndarray:
    """
    EMA seeded with the SMA of the first `period` values.

    Returns an array the same length as `values`; the first period-1
    entries are NaN. If there are fewer than `period` values, all NaN.
    """
    arr = np.asarray(values, dtype=float)
    out = np.full(arr.shape, np.nan)
    if period <= 0 or len(arr) < period:
        return out

    k = 2.0 / (period + 1)
    out[period - 1] = arr[:period].mean()
    for i in range(period, len(arr)):
        out[i] = arr[i] * k + out[i - 1] * (1 - k)
    return out
