# -*- coding: utf-8 -*-
"""
Decision Oracle Interface
=========================

시장 컨텍스트 -> 매매 결정. 엔진은 결정이 어떻게 만들어지는지 모른다 (black box).

- analyze(context) -> Decision: APPROVE (방향/진입/SL/TP) 또는 REJECT / HOLD
- check_pending(order, context) -> PendingVerdict: 미체결 주문 KEEP / CANCEL

oracle 호출 실패는 request_decision() / request_pending_verdict()에서
HOLD / KEEP으로 변환 (로그만 남기고 run은 계속).
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, runtime_checkable

from ..errors import OracleError
from ..models import Bar, Order, OrderKind, Position, PositionSide

logger = logging.getLogger(__name__)


class PositionStatus(str, Enum):
    NO_POSITION = "NO_POSITION"
    LONG_POSITION = "LONG_POSITION"
    SHORT_POSITION = "SHORT_POSITION"

    @classmethod
    def from_position(cls, position: Optional[Position]) -> PositionStatus:
        if position is None:
            return cls.NO_POSITION
        if position.side == PositionSide.LONG:
            return cls.LONG_POSITION
        return cls.SHORT_POSITION


class DecisionAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    HOLD = "HOLD"


class TradeDirection(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class PendingAction(str, Enum):
    KEEP = "KEEP"
    CANCEL = "CANCEL"


@dataclass
class MarketContext:
    """oracle 입력"""
    symbol: str
    trading: List[Bar]                      # 거래 타임프레임 (확정 봉)
    context: List[Bar] = field(default_factory=list)   # 상위 TF (닫힌 bucket)
    trend: List[Bar] = field(default_factory=list)     # 추세 TF (닫힌 bucket)
    equity: float = 0.0
    risk_fraction: float = 0.01
    position_status: PositionStatus = PositionStatus.NO_POSITION
    timestamp: int = 0

    @property
    def last_close(self) -> Optional[float]:
        return self.trading[-1].close if self.trading else None


@dataclass
class Decision:
    """oracle 출력 (신규 진입)"""
    action: DecisionAction
    reason: str = ""
    direction: Optional[TradeDirection] = None
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    order_kind: OrderKind = OrderKind.STOP

    @property
    def approved(self) -> bool:
        return (
            self.action == DecisionAction.APPROVE
            and self.direction is not None
            and self.entry_price is not None
            and self.stop_loss is not None
        )

    def price_problem(self) -> Optional[str]:
        """
        승인 가격 검증. 문제 없으면 None, 있으면 사유.

        - 모든 가격은 유한한 양수
        - BUY: SL < entry < TP
        - SELL: TP < entry < SL
        """
        prices = [self.entry_price, self.stop_loss]
        if self.take_profit is not None:
            prices.append(self.take_profit)
        for price in prices:
            if price is None or not math.isfinite(price) or price <= 0:
                return f"non-positive or non-finite price {price}"

        entry, sl, tp = self.entry_price, self.stop_loss, self.take_profit
        if self.direction == TradeDirection.BUY:
            if not sl < entry or (tp is not None and not entry < tp):
                return f"BUY needs SL < entry < TP (SL={sl}, entry={entry}, TP={tp})"
        elif not entry < sl or (tp is not None and not tp < entry):
            return f"SELL needs TP < entry < SL (TP={tp}, entry={entry}, SL={sl})"
        return None

    @classmethod
    def hold(cls, reason: str) -> Decision:
        return cls(action=DecisionAction.HOLD, reason=reason)

    @classmethod
    def reject(cls, reason: str) -> Decision:
        return cls(action=DecisionAction.REJECT, reason=reason)


@dataclass
class PendingVerdict:
    """oracle 출력 (미체결 주문 유지/취소)"""
    decision: PendingAction
    reason: str = ""

    @classmethod
    def keep(cls, reason: str = "") -> PendingVerdict:
        return cls(decision=PendingAction.KEEP, reason=reason)

    @classmethod
    def cancel(cls, reason: str = "") -> PendingVerdict:
        return cls(decision=PendingAction.CANCEL, reason=reason)


@runtime_checkable
class DecisionOracle(Protocol):
    """결정 oracle 프로토콜"""

    async def analyze(self, context: MarketContext) -> Decision:
        ...

    async def check_pending(self, order: Order, context: MarketContext) -> PendingVerdict:
        ...


async def request_decision(oracle: DecisionOracle, context: MarketContext) -> Decision:
    """
    oracle.analyze() 호출. 실패 시 HOLD.
    """
    try:
        decision = await oracle.analyze(context)
        if not isinstance(decision, Decision):
            raise OracleError(f"Oracle returned {type(decision).__name__}, expected Decision")
        return decision
    except Exception as e:
        logger.error(f"Oracle analysis failed: {e}")
        return Decision.hold(f"Oracle error: {e}")


async def request_pending_verdict(
    oracle: DecisionOracle,
    order: Order,
    context: MarketContext,
) -> PendingVerdict:
    """
    oracle.check_pending() 호출. 실패 시 KEEP.
    """
    try:
        verdict = await oracle.check_pending(order, context)
        if not isinstance(verdict, PendingVerdict):
            raise OracleError(f"Oracle returned {type(verdict).__name__}, expected PendingVerdict")
        return verdict
    except Exception as e:
        logger.error(f"Oracle pending check failed: {e}")
        return PendingVerdict.keep(f"Oracle error: {e}")
