# -*- coding: utf-8 -*-
"""
EMA Crossover Oracle
====================

규칙 기반 참조 oracle (외부 API 없음, 결정적).

진입 조건 (거래 TF 윈도우):
- 상향 돌파: prev_close <= prev_ema and close > ema -> BUY
- 하향 돌파: prev_close >= prev_ema and close < ema -> SELL

주문 파라미터:
- BUY:  entry = 돌파 봉 high (buy-stop), SL = 돌파 봉 low
- SELL: entry = 돌파 봉 low (sell-stop), SL = 돌파 봉 high
- TP = entry ± reward_ratio * |entry - SL|

use_context_filter=True면 상위 TF 종가가 상위 TF EMA와 같은 쪽일 때만 승인.

미체결 주문: 최신 종가가 EMA 반대편으로 넘어가면 CANCEL, 아니면 KEEP.
"""
from __future__ import annotations

import logging
import math
from typing import List

from ..models import Bar, Order, OrderSide
from ..utils.indicators import calc_ema
from .base import (
    Decision,
    DecisionAction,
    MarketContext,
    PendingVerdict,
    PositionStatus,
    TradeDirection,
)

logger = logging.getLogger(__name__)


class EmaCrossoverOracle:
    """EMA 돌파 oracle"""

    def __init__(
        self,
        period: int = 20,
        reward_ratio: float = 2.0,
        use_context_filter: bool = False,
    ):
        if period < 1:
            raise ValueError(f"EMA period must be >= 1, got {period}")
        self.period = period
        self.reward_ratio = reward_ratio
        self.use_context_filter = use_context_filter

    def _ema(self, bars: List[Bar]) -> List[float]:
        return calc_ema([b.close for b in bars], self.period).tolist()

    async def analyze(self, context: MarketContext) -> Decision:
        bars = context.trading
        if len(bars) < self.period + 1:
            return Decision.hold(f"Need {self.period + 1} bars for EMA({self.period}), got {len(bars)}")

        if context.position_status != PositionStatus.NO_POSITION:
            return Decision.hold(f"Already {context.position_status.value}")

        ema = self._ema(bars)
        prev, curr = bars[-2], bars[-1]
        prev_ema, curr_ema = ema[-2], ema[-1]

        bullish = prev.close <= prev_ema and curr.close > curr_ema
        bearish = prev.close >= prev_ema and curr.close < curr_ema
        if not bullish and not bearish:
            return Decision.hold("No EMA crossover")

        direction = TradeDirection.BUY if bullish else TradeDirection.SELL
        logger.info(f"[EMA Oracle] {direction.value} crossover at {curr.timestamp} (close={curr.close}, ema={curr_ema:.4f})")

        if self.use_context_filter and not self._context_agrees(context.context, direction):
            return Decision.reject(f"{direction.value} crossover against context EMA")

        if bullish:
            entry, stop = curr.high, curr.low
        else:
            entry, stop = curr.low, curr.high

        risk = abs(entry - stop)
        if risk <= 0:
            return Decision.reject("Crossover bar has no range")

        take_profit = entry + self.reward_ratio * risk if bullish else entry - self.reward_ratio * risk

        return Decision(
            action=DecisionAction.APPROVE,
            reason=f"EMA({self.period}) {'up' if bullish else 'down'} cross",
            direction=direction,
            entry_price=entry,
            stop_loss=stop,
            take_profit=take_profit,
        )

    def _context_agrees(self, bars: List[Bar], direction: TradeDirection) -> bool:
        if len(bars) < self.period:
            # 상위 TF 데이터 부족 시 필터 생략
            return True
        ema = self._ema(bars)[-1]
        if math.isnan(ema):
            return True
        if direction == TradeDirection.BUY:
            return bars[-1].close > ema
        return bars[-1].close < ema

    async def check_pending(self, order: Order, context: MarketContext) -> PendingVerdict:
        bars = context.trading
        if len(bars) < self.period:
            return PendingVerdict.keep("Not enough bars for EMA")

        ema = self._ema(bars)[-1]
        close = bars[-1].close
        if order.side == OrderSide.BUY and close < ema:
            return PendingVerdict.cancel(f"Close {close} fell below EMA {ema:.4f}")
        if order.side == OrderSide.SELL and close > ema:
            return PendingVerdict.cancel(f"Close {close} rose above EMA {ema:.4f}")
        return PendingVerdict.keep("Setup still valid")
