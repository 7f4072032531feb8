"""
Config Module
=============

시뮬레이션 / 라이브 파라미터 관리.
YAML 파일에서 설정 로드 + 환경변수 오버라이드.
"""

from .loader import (
    load_config,
    load_symbol_config,
    load_backtest_config,
    load_live_config,
    list_symbols,
    ExchangeConfig,
    TimeframeConfig,
    BacktestConfig,
    LiveConfig,
)
from ..risk.sizing import RiskConfig

__all__ = [
    'load_config',
    'load_symbol_config',
    'load_backtest_config',
    'load_live_config',
    'list_symbols',
    'ExchangeConfig',
    'TimeframeConfig',
    'BacktestConfig',
    'LiveConfig',
    'RiskConfig',
]
