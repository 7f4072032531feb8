"""
Resampler
=========

작은 타임프레임 봉을 큰 타임프레임 봉으로 집계.

Bucket 규칙 (epoch 기준 정렬):
    bucket_start = floor(timestamp / target_ms) * target_ms

같은 bucket의 연속 봉 병합:
    open = 첫 봉 open, close = 마지막 봉 close,
    high = max, low = min, volume = sum, timestamp = bucket_start

마지막 bucket은 미완성이어도 항상 포함 (사용 여부는 호출자가 판단).
"""
from __future__ import annotations

from typing import List, Sequence

import pandas as pd

from ..errors import InvalidIntervalFormat
from ..models import Bar
from ..utils.timeframe import TimeframeSpec, floor_to_interval


def resample(bars: Sequence[Bar], target_interval_ms: int) -> List[Bar]:
    """
    Resample sorted bars into fixed-width buckets.

    Args:
        bars: Source bars, ascending by timestamp (caller guarantees order)
        target_interval_ms: Target bucket width in milliseconds

    Returns:
        Aggregated bars, one per non-empty bucket

    Raises:
        InvalidIntervalFormat: If target_interval_ms <= 0
    """
    if target_interval_ms <= 0:
        raise InvalidIntervalFormat(f"Interval must be positive, got {target_interval_ms}")
    if not bars:
        return []

    resampled: List[Bar] = []
    bucket: List[Bar] = []
    bucket_start = None

    for bar in bars:
        start = floor_to_interval(bar.timestamp, target_interval_ms)
        if start != bucket_start:
            if bucket:
                resampled.append(_aggregate(bucket, bucket_start))
            bucket_start = start
            bucket = [bar]
        else:
            bucket.append(bar)

    if bucket:
        resampled.append(_aggregate(bucket, bucket_start))

    return resampled


def _aggregate(bucket: List[Bar], timestamp: int) -> Bar:
    return Bar(
        timestamp=timestamp,
        open=bucket[0].open,
        high=max(b.high for b in bucket),
        low=min(b.low for b in bucket),
        close=bucket[-1].close,
        volume=sum(b.volume for b in bucket),
    )


def resample_frame(df: pd.DataFrame, interval: str) -> pd.DataFrame:
    """
    DataFrame 버전 리샘플링 (index = UTC DatetimeIndex).

    bucket은 epoch 기준으로 정렬되므로 resample()과 같은 경계를 쓴다.
    빈 bucket은 제거.
    """
    spec = TimeframeSpec.from_string(interval)
    return df.resample(f"{spec.minutes}min", origin='epoch', label='left', closed='left').agg({
        'open': 'first',
        'high': 'max',
        'low': 'min',
        'close': 'last',
        'volume': 'sum',
    }).dropna(subset=['open', 'close'])
