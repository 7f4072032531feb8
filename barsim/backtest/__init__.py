"""
Backtest Package
================

가상 거래소 + 시뮬레이션 드라이버 + 리포트.
"""
from .virtual_exchange import VirtualExchange, NettingOutcome, classify_netting, match_price, exit_level
from .engine import BacktestEngine, BacktestState
from .report import BacktestReport, build_report, save_report, print_report, format_report

__all__ = [
    'VirtualExchange',
    'NettingOutcome',
    'classify_netting',
    'match_price',
    'exit_level',
    'BacktestEngine',
    'BacktestState',
    'BacktestReport',
    'build_report',
    'save_report',
    'print_report',
    'format_report',
]
