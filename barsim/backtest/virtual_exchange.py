# -*- coding: utf-8 -*-
"""
Virtual Exchange - 봉 기반 매칭 엔진
====================================

단일 계좌용 가상 거래소. OHLC 봉만으로 주문 체결 / 포지션 / 손익을 시뮬레이션.
I/O 없음, 모든 연산은 동기.

advance(bar) 처리 순서:
1. 주문 체결 (호출 시점의 open 주문 스냅샷 기준)
   - market: bar.open 체결 (다음 봉 시가 체결)
   - buy-stop:  high >= trigger -> max(open, trigger)   (갭 상승 = 불리한 가격)
   - sell-stop: low <= trigger  -> min(open, trigger)
   - buy-limit:  low <= limit   -> min(open, limit)     (갭 = 유리한 가격)
   - sell-limit: high >= limit  -> max(open, limit)
   - 체결 시 진입 수수료 = fill_price * amount * entry_fee_rate
2. 포지션 netting (심볼당 1 포지션)
   - OPEN / INCREASE(가중평균) / CLOSE / REDUCE(부분 청산) / FLIP(반전)
   - FLIP 시 새 포지션은 같은 봉에서 바로 SL/TP 체크
3. 평가 손익 + SL/TP 체크 (SL 먼저 = 보수적 가정)
   - 레벨 가격에 청산, 청산 수수료 = level * qty * exit_fee_rate
4. equity = balance + Σ unrealized_pnl (매 봉 재계산)

사용법:
```python
from barsim.backtest.virtual_exchange import VirtualExchange
from barsim.config import ExchangeConfig

ex = VirtualExchange(ExchangeConfig(initial_balance=10000))
order = ex.create_order("BTC/USDT", "buy", "stop", amount=0.1,
                        trigger_price=95000, stop_loss=94000, take_profit=98000)
for bar in bars:
    ex.advance(bar)
print(ex.account.equity, len(ex.trade_history))
```
"""
from __future__ import annotations

import copy
import itertools
import logging
import math
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from ..config.loader import ExchangeConfig
from ..errors import InvalidOrder
from ..models import (
    Account,
    AccountSnapshot,
    Bar,
    ExitReason,
    Order,
    OrderKind,
    OrderSide,
    OrderStatus,
    Position,
    PositionSide,
    Trade,
)

logger = logging.getLogger(__name__)


class NettingOutcome(str, Enum):
    """체결이 기존 포지션에 미치는 영향"""
    OPEN = "open"            # 포지션 없음 -> 신규
    INCREASE = "increase"    # 같은 방향 -> 가중평균 진입가
    REDUCE = "reduce"        # 반대 방향, amount < qty -> 부분 청산
    CLOSE = "close"          # 반대 방향, amount == qty -> 전량 청산
    FLIP = "flip"            # 반대 방향, amount > qty -> 청산 후 반대 포지션


def _same_qty(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-12)


def classify_netting(
    position: Optional[Position],
    side: PositionSide,
    amount: float,
) -> NettingOutcome:
    """
    체결 방향/수량과 기존 포지션으로 netting 케이스 결정.

    Args:
        position: 같은 심볼의 기존 포지션 (없으면 None)
        side: 체결 방향 (buy -> LONG, sell -> SHORT)
        amount: 체결 수량 (> 0)
    """
    if position is None:
        return NettingOutcome.OPEN
    if position.side == side:
        return NettingOutcome.INCREASE
    if _same_qty(amount, position.quantity):
        return NettingOutcome.CLOSE
    if amount < position.quantity:
        return NettingOutcome.REDUCE
    return NettingOutcome.FLIP


def match_price(order: Order, bar: Bar) -> Optional[float]:
    """
    주문이 이 봉에서 체결되면 체결가, 아니면 None.
    """
    if order.kind == OrderKind.MARKET:
        return bar.open

    if order.kind == OrderKind.STOP:
        trigger = order.trigger_price
        if order.side == OrderSide.BUY:
            if bar.high >= trigger:
                return max(bar.open, trigger)
        elif bar.low <= trigger:
            return min(bar.open, trigger)
        return None

    if order.kind == OrderKind.LIMIT:
        limit = order.limit_price
        if order.side == OrderSide.BUY:
            if bar.low <= limit:
                return min(bar.open, limit)
        elif bar.high >= limit:
            return max(bar.open, limit)
        return None

    return None


def exit_level(position: Position, bar: Bar) -> Tuple[Optional[float], Optional[ExitReason]]:
    """
    SL/TP 터치 여부. 같은 봉에서 둘 다 닿으면 SL 우선 (불리한 쪽이 먼저 발생했다고 가정).
    """
    sl = position.stop_loss
    tp = position.take_profit

    if position.side == PositionSide.LONG:
        if sl is not None and bar.low <= sl:
            return sl, ExitReason.STOP_LOSS
        if tp is not None and bar.high >= tp:
            return tp, ExitReason.TAKE_PROFIT
    else:
        if sl is not None and bar.high >= sl:
            return sl, ExitReason.STOP_LOSS
        if tp is not None and bar.low <= tp:
            return tp, ExitReason.TAKE_PROFIT

    return None, None


class VirtualExchange:
    """가상 거래소 (계좌 1개)"""

    def __init__(self, config: Optional[ExchangeConfig] = None):
        self.config = config or ExchangeConfig()
        self._account = Account(
            balance=self.config.initial_balance,
            equity=self.config.initial_balance,
            initial_balance=self.config.initial_balance,
        )
        self._orders: List[Order] = []              # open 주문만
        self._order_history: List[Order] = []       # filled / canceled
        self._orders_by_id: Dict[str, Order] = {}
        self._positions: Dict[str, Position] = {}   # symbol -> Position
        self._trade_history: List[Trade] = []
        self._current_bar: Optional[Bar] = None

        self._order_seq = itertools.count(1)
        self._position_seq = itertools.count(1)
        self._trade_seq = itertools.count(1)

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------
    @property
    def account(self) -> Account:
        return self._account

    @property
    def open_orders(self) -> List[Order]:
        return list(self._orders)

    @property
    def order_history(self) -> List[Order]:
        return list(self._order_history)

    @property
    def positions(self) -> List[Position]:
        return list(self._positions.values())

    @property
    def trade_history(self) -> List[Trade]:
        return list(self._trade_history)

    @property
    def current_bar(self) -> Optional[Bar]:
        return self._current_bar

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders_by_id.get(order_id)

    def get_position(self, symbol: str) -> Optional[Position]:
        return self._positions.get(symbol)

    def snapshot(self) -> AccountSnapshot:
        """상태 복사본 (외부에서 수정해도 엔진에 영향 없음)"""
        return AccountSnapshot(
            balance=self._account.balance,
            equity=self._account.equity,
            initial_balance=self._account.initial_balance,
            orders=copy.deepcopy(self._orders),
            positions=copy.deepcopy(list(self._positions.values())),
            trade_history=copy.deepcopy(self._trade_history),
        )

    # ------------------------------------------------------------------
    # 주문
    # ------------------------------------------------------------------
    def create_order(
        self,
        symbol: str,
        side: Union[OrderSide, str],
        kind: Union[OrderKind, str],
        amount: float,
        limit_price: Optional[float] = None,
        trigger_price: Optional[float] = None,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> Order:
        """
        주문 생성 (잔고 변화 없음). 체결은 다음 advance()부터.

        Raises:
            InvalidOrder: amount <= 0, limit 주문에 limit_price 없음,
                stop 주문에 trigger_price 없음, 알 수 없는 side/kind
        """
        try:
            side = OrderSide(side)
            kind = OrderKind(kind)
        except ValueError as e:
            raise InvalidOrder(str(e)) from e

        if amount is None or not amount > 0:
            raise InvalidOrder(f"Order amount must be > 0, got {amount}")
        if kind == OrderKind.LIMIT and limit_price is None:
            raise InvalidOrder("Limit order requires limit_price")
        if kind == OrderKind.STOP and trigger_price is None:
            raise InvalidOrder("Stop order requires trigger_price")

        order = Order(
            id=f"ord-{next(self._order_seq):06d}",
            symbol=symbol,
            side=side,
            kind=kind,
            amount=float(amount),
            created_at=self._current_bar.timestamp if self._current_bar else 0,
            limit_price=limit_price,
            trigger_price=trigger_price,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        self._orders.append(order)
        self._orders_by_id[order.id] = order
        logger.info(
            f"[VirtualExchange] Order Created: {order.id} {side.value} {kind.value} "
            f"{order.amount:.6f} @ {order.reference_price}"
        )
        return order

    def cancel_order(self, order_id: str) -> bool:
        """open 주문 취소. 없거나 이미 종료된 주문이면 False"""
        for i, order in enumerate(self._orders):
            if order.id == order_id:
                order.status = OrderStatus.CANCELED
                self._order_history.append(self._orders.pop(i))
                logger.info(f"[VirtualExchange] Order Canceled: {order_id}")
                return True
        return False

    def cancel_all_orders(self, symbol: Optional[str] = None) -> int:
        """open 주문 일괄 취소 (symbol 지정 시 해당 심볼만). 취소 건수 반환"""
        targets = [o.id for o in self._orders if symbol is None or o.symbol == symbol]
        for order_id in targets:
            self.cancel_order(order_id)
        return len(targets)

    # ------------------------------------------------------------------
    # 봉 처리
    # ------------------------------------------------------------------
    def advance(self, bar: Bar) -> None:
        """봉 하나만큼 시간 진행"""
        self._current_bar = bar

        # 1. 주문 체결 (스냅샷 기준, 이번 호출 중 생성된 주문은 제외)
        for order in list(self._orders):
            if not order.is_open:
                continue
            price = match_price(order, bar)
            if price is None:
                continue
            self._fill(order, price, bar)

        # 3. 평가 손익 + SL/TP
        for position in list(self._positions.values()):
            self._mark_and_check(position, bar)

        # 4. equity 재계산
        self._recompute_equity()

    def close_all_positions(self, bar: Bar, reason: ExitReason = ExitReason.END_OF_DATA) -> int:
        """모든 포지션 시장가 청산 (bar.close, 청산 수수료 적용). 청산 건수 반환"""
        self._current_bar = bar
        positions = list(self._positions.values())
        for position in positions:
            self._close_position(position, bar.close, bar.timestamp, reason, self.config.exit_fee_rate)
        self._recompute_equity()
        return len(positions)

    # ------------------------------------------------------------------
    # 내부
    # ------------------------------------------------------------------
    def _fill(self, order: Order, price: float, bar: Bar) -> NettingOutcome:
        logger.info(
            f"[VirtualExchange] Order Triggered: {order.id} {order.side.value} "
            f"{order.amount:.6f} @ {price}"
        )
        self._orders.remove(order)
        order.status = OrderStatus.FILLED
        order.filled_at = bar.timestamp
        order.fill_price = price
        self._order_history.append(order)

        fee = price * order.amount * self.config.entry_fee_rate
        self._account.balance -= fee

        return self._net(order, price, bar)

    def _net(self, order: Order, price: float, bar: Bar) -> NettingOutcome:
        side = PositionSide.from_order_side(order.side)
        existing = self._positions.get(order.symbol)
        outcome = classify_netting(existing, side, order.amount)

        if outcome == NettingOutcome.OPEN:
            self._open_position(order, side, order.amount, price, bar.timestamp)

        elif outcome == NettingOutcome.INCREASE:
            old_qty = existing.quantity
            new_qty = old_qty + order.amount
            existing.entry_price = (existing.entry_price * old_qty + price * order.amount) / new_qty
            existing.quantity = new_qty
            if order.stop_loss is not None:
                existing.stop_loss = order.stop_loss
            if order.take_profit is not None:
                existing.take_profit = order.take_profit
            logger.info(
                f"[VirtualExchange] Position Increased: {existing.side.value} "
                f"{new_qty:.6f} @ avg {existing.entry_price:.6f}"
            )

        elif outcome == NettingOutcome.CLOSE:
            # 진입 수수료로 이미 과금됨 -> 청산 수수료 없음
            self._close_position(existing, price, bar.timestamp, ExitReason.MARKET_CLOSE, 0.0)

        elif outcome == NettingOutcome.REDUCE:
            self._reduce_position(existing, order.amount, price, bar.timestamp)

        elif outcome == NettingOutcome.FLIP:
            remaining = order.amount - existing.quantity
            self._close_position(existing, price, bar.timestamp, ExitReason.FLIP, 0.0)
            flipped = self._open_position(order, side, remaining, price, bar.timestamp)
            # 반전 포지션은 같은 봉의 high/low로 바로 SL/TP 체크
            self._mark_and_check(flipped, bar)

        return outcome

    def _open_position(
        self,
        order: Order,
        side: PositionSide,
        quantity: float,
        price: float,
        timestamp: int,
    ) -> Position:
        position = Position(
            id=f"pos-{next(self._position_seq):06d}",
            symbol=order.symbol,
            side=side,
            entry_price=price,
            quantity=quantity,
            entry_time=timestamp,
            stop_loss=order.stop_loss,
            take_profit=order.take_profit,
        )
        self._positions[order.symbol] = position
        logger.info(
            f"[VirtualExchange] Position Opened: {position.id} {side.value} "
            f"{quantity:.6f} @ {price} (SL={position.stop_loss}, TP={position.take_profit})"
        )
        return position

    def _reduce_position(self, position: Position, quantity: float, price: float, timestamp: int) -> Trade:
        # 청산 구간만 손익 실현, 수수료는 진입 쪽에서 이미 과금
        pnl = position.pnl_at(price, quantity)
        self._account.balance += pnl
        trade = self._record_trade(position, quantity, price, timestamp, pnl, ExitReason.PARTIAL_CLOSE)
        position.quantity -= quantity
        position.unrealized_pnl = position.pnl_at(price)
        logger.info(
            f"[VirtualExchange] Position Reduced: {position.id} -{quantity:.6f} @ {price}, "
            f"remaining {position.quantity:.6f}, PnL {pnl:+.4f}"
        )
        return trade

    def _close_position(
        self,
        position: Position,
        price: float,
        timestamp: int,
        reason: ExitReason,
        fee_rate: float,
    ) -> Trade:
        gross = position.pnl_at(price)
        fee = price * position.quantity * fee_rate
        pnl = gross - fee
        self._account.balance += pnl

        trade = self._record_trade(position, position.quantity, price, timestamp, pnl, reason)
        self._positions.pop(position.symbol, None)
        position.unrealized_pnl = 0.0
        logger.info(
            f"[VirtualExchange] Position Closed ({reason.value}): {position.side.value} "
            f"{position.quantity:.6f} @ {price}, PnL {pnl:+.4f}"
        )
        return trade

    def _record_trade(
        self,
        position: Position,
        quantity: float,
        price: float,
        timestamp: int,
        pnl: float,
        reason: ExitReason,
    ) -> Trade:
        notional = position.entry_price * quantity
        trade = Trade(
            id=f"trd-{next(self._trade_seq):06d}",
            entry_time=position.entry_time,
            exit_time=timestamp,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=price,
            quantity=quantity,
            realized_pnl=pnl,
            return_pct=pnl / notional * 100 if notional > 0 else 0.0,
            reason=reason.value,
        )
        self._trade_history.append(trade)
        return trade

    def _mark_and_check(self, position: Position, bar: Bar) -> Optional[Trade]:
        position.unrealized_pnl = position.pnl_at(bar.close)
        level, reason = exit_level(position, bar)
        if level is None:
            return None
        return self._close_position(position, level, bar.timestamp, reason, self.config.exit_fee_rate)

    def _recompute_equity(self) -> None:
        unrealized = sum(p.unrealized_pnl for p in self._positions.values())
        self._account.equity = self._account.balance + unrealized
