"""
Historical Bar Loader
=====================

CSV / DataFrame <-> Bar 변환.

CSV 형식 (header 필수):
    timestamp,open,high,low,close,volume

timestamp는 epoch ms 정수 또는 ISO 날짜 문자열 (UTC로 해석).
숫자로 변환할 수 없는 행은 버린다 (fatal 아님).
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..models import Bar
from .resampler import resample_frame

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ['open', 'high', 'low', 'close', 'volume']
EPOCH = pd.Timestamp(0, tz='UTC')


def _to_epoch_ms(ts: pd.Series) -> pd.Series:
    numeric = pd.to_numeric(ts, errors='coerce')
    if numeric.notna().all():
        return numeric
    # 날짜 문자열 혼재 시 개별 파싱
    parsed = pd.to_datetime(ts.where(numeric.isna()), errors='coerce', utc=True)
    as_ms = pd.Series(np.nan, index=ts.index, dtype='float64')
    ok = parsed.notna()
    as_ms[ok] = (parsed[ok] - EPOCH) // pd.Timedelta(milliseconds=1)
    return numeric.fillna(as_ms)


def frame_to_bars(df: pd.DataFrame) -> List[Bar]:
    """
    OHLCV DataFrame -> Bar 리스트.

    'timestamp' 컬럼이 없으면 DatetimeIndex를 사용한다.
    잘못된 행은 버리고, timestamp 기준 정렬 + 중복 제거.
    """
    frame = df.copy()
    frame.columns = [str(c).strip().lower() for c in frame.columns]

    if 'timestamp' not in frame.columns:
        if not isinstance(frame.index, pd.DatetimeIndex):
            raise ValueError("Missing column: timestamp")
        idx = frame.index.tz_localize('UTC') if frame.index.tz is None else frame.index
        frame['timestamp'] = (idx - EPOCH) // pd.Timedelta(milliseconds=1)

    missing = [c for c in OHLCV_COLUMNS if c not in frame.columns and c != 'volume']
    if missing:
        raise ValueError(f"Missing column: {missing[0]}")
    if 'volume' not in frame.columns:
        frame['volume'] = 0.0

    frame['timestamp'] = _to_epoch_ms(frame['timestamp'])
    for col in OHLCV_COLUMNS:
        frame[col] = pd.to_numeric(frame[col], errors='coerce')
    frame['volume'] = frame['volume'].fillna(0.0)

    before = len(frame)
    frame = frame.dropna(subset=['timestamp', 'open', 'high', 'low', 'close'])
    dropped = before - len(frame)
    if dropped:
        logger.warning(f"Dropped {dropped} malformed rows")

    frame = frame.sort_values('timestamp').drop_duplicates('timestamp', keep='last')

    return [
        Bar(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in frame[['timestamp'] + OHLCV_COLUMNS].itertuples(index=False)
    ]


def bars_to_frame(bars: Sequence[Bar]) -> pd.DataFrame:
    """Bar 리스트 -> DataFrame (index = UTC DatetimeIndex)"""
    df = pd.DataFrame(
        [b.to_dict() for b in bars],
        columns=['timestamp'] + OHLCV_COLUMNS,
    )
    df.index = pd.to_datetime(df['timestamp'], unit='ms', utc=True)
    df.index.name = None
    return df.drop(columns=['timestamp'])


def load_bars_csv(path: Union[str, Path], interval: Optional[str] = None) -> List[Bar]:
    """
    CSV 파일에서 Bar 로드.

    Args:
        path: CSV 경로
        interval: 지정 시 해당 타임프레임으로 리샘플 (예: 1m CSV -> "15m")

    Raises:
        FileNotFoundError: 파일이 없을 때
        InvalidIntervalFormat: interval 파싱 실패
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    logger.info(f"Loading bars from {path}")
    df = pd.read_csv(path, dtype=str, skipinitialspace=True)
    bars = frame_to_bars(df)
    logger.info(f"Loaded {len(bars)} bars")

    if interval is not None and bars:
        bars = frame_to_bars(resample_frame(bars_to_frame(bars), interval))
        logger.info(f"Resampled to {len(bars)} {interval} bars")
    return bars
