"""
Oracle Package
==============

매매 결정 oracle 인터페이스 + 참조 구현.
"""
from .base import (
    DecisionOracle,
    MarketContext,
    Decision,
    DecisionAction,
    TradeDirection,
    PendingVerdict,
    PendingAction,
    PositionStatus,
    request_decision,
    request_pending_verdict,
)
from .ema_crossover import EmaCrossoverOracle

__all__ = [
    'DecisionOracle',
    'MarketContext',
    'Decision',
    'DecisionAction',
    'TradeDirection',
    'PendingVerdict',
    'PendingAction',
    'PositionStatus',
    'request_decision',
    'request_pending_verdict',
    'EmaCrossoverOracle',
]
