# -*- coding: utf-8 -*-
"""
Backtest Engine
===============

봉 단위 시뮬레이션 드라이버.

상태 머신:
    WAITING_SIGNAL -> PENDING_ORDER -> IN_POSITION -> WAITING_SIGNAL
    PENDING_ORDER -> WAITING_SIGNAL (oracle CANCEL / 만료)

봉 하나 처리 (step):
1. exchange.advance(bar)
2. 상태 재판정 (추적 중인 주문이 사라졌으면 포지션 유무로 분기)
3. 상태별 행동
   - WAITING_SIGNAL: 윈도우 구성 -> oracle.analyze -> APPROVE면 사이징 후 진입 주문
   - PENDING_ORDER: oracle.check_pending -> CANCEL이면 취소
   - IN_POSITION: 없음 (SL/TP는 exchange가 처리)
4. equity / peak / MDD 기록

상위 TF 윈도우: 현재 봉이 속한 bucket 이전의 닫힌 bucket만 사용 (look-ahead 방지).

사용법:
```python
from barsim.backtest import BacktestEngine
from barsim.config import load_backtest_config
from barsim.oracle import EmaCrossoverOracle

engine = BacktestEngine(load_backtest_config("BTC/USDT"), EmaCrossoverOracle())
report = asyncio.run(engine.run(bars))
```
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional, Sequence

from ..config.loader import BacktestConfig
from ..data.resampler import resample
from ..errors import InsufficientData
from ..market.confirmed import closed_before
from ..models import Bar, EquityPoint, OrderKind, OrderSide
from ..oracle.base import (
    DecisionOracle,
    MarketContext,
    PendingAction,
    PositionStatus,
    TradeDirection,
    request_decision,
    request_pending_verdict,
)
from ..risk.sizing import calc_order_quantity
from ..utils.timeframe import floor_to_interval, parse_interval_ms
from .report import BacktestReport, build_report
from .virtual_exchange import VirtualExchange

logger = logging.getLogger(__name__)


class BacktestState(str, Enum):
    WAITING_SIGNAL = "WAITING_SIGNAL"
    PENDING_ORDER = "PENDING_ORDER"
    IN_POSITION = "IN_POSITION"


class BacktestEngine:
    """단일 심볼 백테스트 엔진"""

    def __init__(self, config: BacktestConfig, oracle: DecisionOracle):
        self.config = config
        self.oracle = oracle
        self._stop_requested = False
        self.reset()

    def reset(self) -> None:
        """계좌 / 상태 / 기록 초기화"""
        self.exchange = VirtualExchange(self.config.exchange)
        self.state = BacktestState.WAITING_SIGNAL
        self.pending_order_id: Optional[str] = None
        self._pending_since: Optional[int] = None

        self.equity_curve: List[EquityPoint] = []
        self.peak_equity = self.config.exchange.initial_balance
        self.max_drawdown = 0.0
        self.bankrupt = False

        self._bars: List[Bar] = []
        self._context_bars: List[Bar] = []
        self._trend_bars: List[Bar] = []
        self._context_ms = parse_interval_ms(self.config.timeframes.context)
        self._trend_ms = parse_interval_ms(self.config.timeframes.trend)

    def stop(self) -> None:
        """다음 봉 처리 전에 루프 종료"""
        self._stop_requested = True

    # ------------------------------------------------------------------
    # 실행
    # ------------------------------------------------------------------
    async def run(self, bars: Sequence[Bar]) -> BacktestReport:
        """
        백테스트 실행

        Args:
            bars: 거래 TF 봉 (timestamp 오름차순)

        Returns:
            BacktestReport (파산/중단 시에도 처리된 구간까지의 리포트)

        Raises:
            InsufficientData: warmup_bars + 1 개 미만
        """
        self.reset()
        self._stop_requested = False

        warmup = self.config.warmup_bars
        if len(bars) < warmup + 1:
            raise InsufficientData(
                f"Need at least {warmup + 1} bars (warmup {warmup}), got {len(bars)}"
            )

        self._bars = list(bars)
        self._context_bars = resample(self._bars, self._context_ms)
        self._trend_bars = resample(self._bars, self._trend_ms)
        logger.info(
            f"Data Loaded: {len(self._bars)} trading bars, "
            f"{len(self._context_bars)} context ({self.config.timeframes.context}), "
            f"{len(self._trend_bars)} trend ({self.config.timeframes.trend})"
        )

        end = len(self._bars)
        if self.config.limit is not None:
            end = min(end, warmup + self.config.limit)
        logger.info(f"Starting loop: {end - warmup} bars to process")

        if self.exchange.account.equity <= 0:
            self.bankrupt = True
            logger.error("Account has no equity, nothing to simulate")

        last_bar: Optional[Bar] = None
        for index in range(warmup, end):
            if self.bankrupt:
                break
            if self._stop_requested:
                logger.info(f"Stop requested, ending run before bar [{index}]")
                break

            bar = self._bars[index]
            await self.step(index)
            self._record_equity(bar)
            last_bar = bar

            if self.exchange.account.equity <= 0:
                self.bankrupt = True
                logger.error(f"Account Bankrupt (equity {self.exchange.account.equity:.2f}). Stopping backtest.")

        if self.config.close_at_end and last_bar is not None and self.exchange.positions:
            self.exchange.close_all_positions(last_bar)
            self.equity_curve.pop()
            self._record_equity(last_bar)

        return self._build_report()

    async def step(self, index: int) -> None:
        """봉 하나 처리"""
        bar = self._bars[index]
        self.exchange.advance(bar)
        self._sync_state()

        if self.state == BacktestState.WAITING_SIGNAL:
            await self._handle_waiting_signal(index)
        elif self.state == BacktestState.PENDING_ORDER:
            await self._handle_pending_order(index)
        # IN_POSITION: SL/TP는 exchange가 처리

    # ------------------------------------------------------------------
    # 상태
    # ------------------------------------------------------------------
    def _sync_state(self) -> None:
        position = self.exchange.get_position(self.config.symbol)

        if self.state == BacktestState.PENDING_ORDER:
            order = self.exchange.get_order(self.pending_order_id) if self.pending_order_id else None
            if order is None or not order.is_open:
                self.pending_order_id = None
                self._pending_since = None
                if position is not None:
                    self._set_state(BacktestState.IN_POSITION, "order filled")
                else:
                    self._set_state(BacktestState.WAITING_SIGNAL, "order gone")

        elif self.state == BacktestState.IN_POSITION and position is None:
            self._set_state(BacktestState.WAITING_SIGNAL, "position closed")

    def _set_state(self, state: BacktestState, reason: str) -> None:
        if state != self.state:
            logger.info(f"--> State Changed: {self.state.value} -> {state.value} ({reason})")
        self.state = state

    # ------------------------------------------------------------------
    # 윈도우
    # ------------------------------------------------------------------
    def build_context(self, index: int) -> MarketContext:
        """index 봉 시점의 oracle 입력"""
        tf = self.config.timeframes
        bar = self._bars[index]
        start = max(0, index + 1 - tf.trading_lookback)

        return MarketContext(
            symbol=self.config.symbol,
            trading=self._bars[start:index + 1],
            context=closed_before(
                self._context_bars,
                floor_to_interval(bar.timestamp, self._context_ms),
                tf.context_lookback,
            ),
            trend=closed_before(
                self._trend_bars,
                floor_to_interval(bar.timestamp, self._trend_ms),
                tf.trend_lookback,
            ),
            equity=self.exchange.account.equity,
            risk_fraction=self.config.risk.risk_fraction,
            position_status=PositionStatus.from_position(self.exchange.get_position(self.config.symbol)),
            timestamp=bar.timestamp,
        )

    # ------------------------------------------------------------------
    # 상태별 행동
    # ------------------------------------------------------------------
    async def _handle_waiting_signal(self, index: int) -> None:
        context = self.build_context(index)
        decision = await request_decision(self.oracle, context)

        if not decision.approved:
            logger.info(f"Oracle {decision.action.value}: {decision.reason}")
            return

        problem = decision.price_problem()
        if problem is not None:
            logger.warning(f"Oracle approval rejected: {problem}")
            return

        logger.info(
            f"Oracle Approved: {decision.direction.value} @ {decision.entry_price} "
            f"(SL={decision.stop_loss}, TP={decision.take_profit})"
        )

        qty = calc_order_quantity(
            equity=context.equity,
            entry_price=decision.entry_price,
            stop_loss=decision.stop_loss,
            config=self.config.risk,
        )
        if not qty > 0:
            logger.warning(
                f"Calculated quantity is {qty}, skipping signal "
                f"(equity={context.equity:.2f}, entry={decision.entry_price}, SL={decision.stop_loss})"
            )
            return

        side = OrderSide.BUY if decision.direction == TradeDirection.BUY else OrderSide.SELL
        if decision.order_kind == OrderKind.MARKET:
            order = self.exchange.create_order(
                self.config.symbol, side, OrderKind.MARKET, qty,
                stop_loss=decision.stop_loss,
                take_profit=decision.take_profit,
            )
        else:
            order = self.exchange.create_order(
                self.config.symbol, side, OrderKind.STOP, qty,
                trigger_price=decision.entry_price,
                stop_loss=decision.stop_loss,
                take_profit=decision.take_profit,
            )

        self.pending_order_id = order.id
        self._pending_since = index
        self._set_state(BacktestState.PENDING_ORDER, f"order {order.id} placed")

    async def _handle_pending_order(self, index: int) -> None:
        order = self.exchange.get_order(self.pending_order_id)
        if order is None or not order.is_open:
            return

        max_bars = self.config.pending_order_max_bars
        if max_bars > 0 and index - self._pending_since > max_bars:
            self.exchange.cancel_order(order.id)
            self.pending_order_id = None
            self._pending_since = None
            self._set_state(BacktestState.WAITING_SIGNAL, f"order expired after {max_bars} bars")
            return

        verdict = await request_pending_verdict(self.oracle, order, self.build_context(index))
        if verdict.decision == PendingAction.CANCEL:
            logger.info(f"Oracle Canceled Order {order.id}: {verdict.reason}")
            self.exchange.cancel_order(order.id)
            self.pending_order_id = None
            self._pending_since = None
            self._set_state(BacktestState.WAITING_SIGNAL, "order canceled")
        else:
            logger.info(f"Oracle Kept Order {order.id}: {verdict.reason}")

    # ------------------------------------------------------------------
    # 기록
    # ------------------------------------------------------------------
    def _record_equity(self, bar: Bar) -> None:
        equity = self.exchange.account.equity
        self.peak_equity = max(self.peak_equity, equity)
        drawdown = (self.peak_equity - equity) / self.peak_equity * 100 if self.peak_equity > 0 else 0.0
        self.max_drawdown = max(self.max_drawdown, drawdown)
        self.equity_curve.append(EquityPoint(timestamp=bar.timestamp, equity=equity, drawdown_pct=drawdown))

    def _build_report(self) -> BacktestReport:
        account = self.exchange.account
        trades = self.exchange.trade_history
        logger.info("=== Backtest Finished ===")
        logger.info(f"Final Equity: {account.equity:.2f} | Trades: {len(trades)} | MDD: {self.max_drawdown:.2f}%")
        return build_report(
            config=self.config,
            trades=trades,
            equity_curve=self.equity_curve,
            initial_balance=account.initial_balance,
            final_equity=account.equity,
            max_drawdown_pct=self.max_drawdown,
            bankrupt=self.bankrupt,
        )
