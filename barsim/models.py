# -*- coding: utf-8 -*-
"""
Data Model
==========

시뮬레이션 공통 데이터 모델.

- Bar: 하나의 닫힌 OHLCV 구간 (timestamp = 시작 시각, epoch ms)
- Account: 실현 잔고 + 평가 손익 = equity
- Order: 가상 거래소 주문 (open -> filled | canceled, 한 번만 전이)
- Position: 심볼당 최대 1개 (netting)
- Trade: 청산 기록 (append-only)
- EquityPoint: 봉마다 1개, equity curve / drawdown 재구성용
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderKind(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"


class OrderStatus(str, Enum):
    OPEN = "open"
    FILLED = "filled"
    CANCELED = "canceled"


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @classmethod
    def from_order_side(cls, side: OrderSide) -> PositionSide:
        return cls.LONG if side == OrderSide.BUY else cls.SHORT


class ExitReason(str, Enum):
    """청산 사유 (Trade.reason)"""
    STOP_LOSS = "Stop Loss"
    TAKE_PROFIT = "Take Profit"
    MARKET_CLOSE = "Market Close"
    FLIP = "Market Reverse (Flip)"
    PARTIAL_CLOSE = "Partial Close"
    END_OF_DATA = "End Of Data"


@dataclass(frozen=True)
class Bar:
    """닫힌 OHLCV 봉 (immutable)"""
    timestamp: int  # 구간 시작 시각 (epoch ms)
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def close_time(self, interval_ms: int) -> int:
        """구간 종료 시각"""
        return self.timestamp + interval_ms

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Account:
    """가상 계좌"""
    balance: float          # 실현 잔고 (수수료/실현 손익 반영)
    equity: float           # balance + 평가 손익, 매 봉 재계산
    initial_balance: float


@dataclass
class Order:
    """가상 주문"""
    id: str
    symbol: str
    side: OrderSide
    kind: OrderKind
    amount: float
    created_at: int
    limit_price: Optional[float] = None
    trigger_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    status: OrderStatus = OrderStatus.OPEN
    filled_at: Optional[int] = None
    fill_price: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.status == OrderStatus.OPEN

    @property
    def reference_price(self) -> Optional[float]:
        """로그/사이징용 기준가 (stop이면 trigger, limit이면 limit)"""
        if self.kind == OrderKind.STOP:
            return self.trigger_price
        return self.limit_price


@dataclass
class Position:
    """오픈 포지션 (심볼당 1개)"""
    id: str
    symbol: str
    side: PositionSide
    entry_price: float
    quantity: float
    entry_time: int
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    unrealized_pnl: float = 0.0

    def pnl_at(self, price: float, quantity: Optional[float] = None) -> float:
        """주어진 가격에서의 gross PnL (quantity 미지정 시 전량)"""
        qty = self.quantity if quantity is None else quantity
        if self.side == PositionSide.LONG:
            return (price - self.entry_price) * qty
        return (self.entry_price - price) * qty


@dataclass
class Trade:
    """청산 거래 기록 (전량/부분 청산마다 1건)"""
    id: str
    entry_time: int
    exit_time: int
    side: PositionSide
    entry_price: float
    exit_price: float
    quantity: float
    realized_pnl: float
    return_pct: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['side'] = self.side.value
        return d


@dataclass
class EquityPoint:
    """봉 단위 equity 기록"""
    timestamp: int
    equity: float
    drawdown_pct: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AccountSnapshot:
    """가상 거래소 상태 복사본 (외부 노출용)"""
    balance: float
    equity: float
    initial_balance: float
    orders: list = field(default_factory=list)
    positions: list = field(default_factory=list)
    trade_history: list = field(default_factory=list)
