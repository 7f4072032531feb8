"""
Market Package
==============

확정 봉 선택 + 봉 마감 스케줄러 + 라이브 거래소 어댑터.
"""
from .confirmed import FeedStatus, classify_feed, select_confirmed, closed_before
from .scheduler import CandleScheduler, next_close_delay_ms
from .exchange import ExchangeClient, ConfirmedBarFeed, LiveTrader, create_ccxt_client, rows_to_bars

__all__ = [
    'FeedStatus',
    'classify_feed',
    'select_confirmed',
    'closed_before',
    'CandleScheduler',
    'next_close_delay_ms',
    'ExchangeClient',
    'ConfirmedBarFeed',
    'LiveTrader',
    'create_ccxt_client',
    'rows_to_bars',
]
