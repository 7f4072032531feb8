# -*- coding: utf-8 -*-
"""
Backtest Engine Test
====================

시뮬레이션 드라이버 단위 테스트.
"""
import asyncio
from dataclasses import replace

import numpy as np
import pytest

from barsim.backtest import BacktestEngine, BacktestState
from barsim.config import BacktestConfig, ExchangeConfig, RiskConfig, TimeframeConfig
from barsim.errors import InsufficientData
from barsim.models import Bar, ExitReason, OrderKind, OrderStatus
from barsim.oracle import (
    Decision,
    DecisionAction,
    EmaCrossoverOracle,
    PendingVerdict,
    TradeDirection,
)
from barsim.utils.timeframe import floor_to_interval

T = 15 * 60_000
H1 = 4 * T


def make_config(**overrides) -> BacktestConfig:
    cfg = BacktestConfig(
        symbol="BTC/USDT",
        exchange=ExchangeConfig(initial_balance=10000, entry_fee_rate=0.0, exit_fee_rate=0.0),
        risk=RiskConfig(risk_fraction=0.01, min_distance_pct=0.0, max_leverage=100.0),
        timeframes=TimeframeConfig(
            trading="15m", context="1h", trend="4h",
            trading_lookback=10, context_lookback=5, trend_lookback=5,
        ),
        warmup_bars=5,
    )
    return replace(cfg, **overrides)


def flat(i: int, price: float = 100.0) -> Bar:
    return Bar(i * T, price, price + 1, price - 1, price, 1.0)


def flat_bars(n: int):
    return [flat(i) for i in range(n)]


def generate_mock_bars(n: int = 400, seed: int = 42):
    """랜덤 워크 15분봉"""
    rng = np.random.default_rng(seed)
    price = 100.0
    bars = []
    for i in range(n):
        o = price
        c = o * (1 + rng.normal(0, 0.01))
        h = max(o, c) * (1 + abs(rng.normal(0, 0.004)))
        l = min(o, c) * (1 - abs(rng.normal(0, 0.004)))
        bars.append(Bar(i * T, o, h, l, c, 1.0))
        price = c
    return bars


def approve(direction=TradeDirection.BUY, entry=101.5, stop=99.5, tp=103.0, kind=OrderKind.STOP):
    return Decision(action=DecisionAction.APPROVE, direction=direction, entry_price=entry,
                    stop_loss=stop, take_profit=tp, order_kind=kind, reason="test")


class RecordingOracle:
    """호출 기록 + 스크립트 응답"""

    def __init__(self, decisions=None, verdict=None):
        self.decisions = list(decisions or [])
        self.verdict = verdict or PendingVerdict.keep("ok")
        self.contexts = []
        self.pending_calls = []

    async def analyze(self, context):
        self.contexts.append(context)
        if self.decisions:
            return self.decisions.pop(0)
        return Decision.hold("idle")

    async def check_pending(self, order, context):
        self.pending_calls.append((order.id, context.timestamp))
        return self.verdict


class FailingOracle:
    async def analyze(self, context):
        raise RuntimeError("oracle down")

    async def check_pending(self, order, context):
        raise RuntimeError("oracle down")


def entry_scenario():
    """
    idx 5: 승인 (buy-stop 101.5) / idx 6: 미체결 / idx 7: 체결 / idx 8: TP 103
    """
    bars = flat_bars(7)
    bars.append(Bar(7 * T, 100, 102, 99.8, 101.8, 1.0))
    bars.append(Bar(8 * T, 101.8, 103.5, 101.5, 103, 1.0))
    bars.append(flat(9, 103))
    return bars


class TestRunValidation:
    """입력 검증"""

    def test_insufficient_data(self):
        engine = BacktestEngine(make_config(), RecordingOracle())
        with pytest.raises(InsufficientData):
            asyncio.run(engine.run(flat_bars(5)))

    def test_minimum_bars(self):
        engine = BacktestEngine(make_config(), RecordingOracle())
        report = asyncio.run(engine.run(flat_bars(6)))
        assert report.bars_processed == 1

    def test_initialization(self):
        engine = BacktestEngine(make_config(), RecordingOracle())
        assert engine.state == BacktestState.WAITING_SIGNAL
        assert engine.exchange.account.equity == 10000
        print("[PASS] Engine initialization")


class TestRunLoop:
    """메인 루프"""

    def test_hold_only(self):
        oracle = RecordingOracle()
        engine = BacktestEngine(make_config(), oracle)
        report = asyncio.run(engine.run(flat_bars(20)))

        assert report.bars_processed == 15
        assert len(oracle.contexts) == 15
        assert report.total_trades == 0
        assert report.final_equity == 10000
        assert report.max_drawdown_pct == 0
        assert report.start_time == 5 * T
        assert report.end_time == 19 * T

    def test_limit(self):
        engine = BacktestEngine(make_config(limit=3), RecordingOracle())
        report = asyncio.run(engine.run(flat_bars(20)))
        assert report.bars_processed == 3
        assert report.end_time == 7 * T

    def test_stop_flag(self):
        engine = BacktestEngine(make_config(), None)

        class StoppingOracle(RecordingOracle):
            async def analyze(self, context):
                engine.stop()
                return await super().analyze(context)

        engine.oracle = StoppingOracle()
        report = asyncio.run(engine.run(flat_bars(20)))
        assert report.bars_processed == 1

    def test_rerun_resets_state(self):
        engine = BacktestEngine(make_config(), RecordingOracle(decisions=[approve()]))
        first = asyncio.run(engine.run(entry_scenario()))
        second = asyncio.run(engine.run(flat_bars(10)))
        assert first.total_trades == 1
        assert second.total_trades == 0
        assert second.final_equity == 10000


class TestStateMachine:
    """WAITING_SIGNAL -> PENDING_ORDER -> IN_POSITION -> WAITING_SIGNAL"""

    def test_full_cycle(self):
        oracle = RecordingOracle(decisions=[approve()])
        engine = BacktestEngine(make_config(), oracle)
        report = asyncio.run(engine.run(entry_scenario()))

        # analyze: WAITING 상태의 봉만 (5, 8, 9)
        assert [c.timestamp for c in oracle.contexts] == [5 * T, 8 * T, 9 * T]
        # check_pending: PENDING 상태 (6)
        assert [ts for _, ts in oracle.pending_calls] == [6 * T]

        assert report.total_trades == 1
        trade = report.trades[0]
        assert trade.entry_price == 101.5
        assert trade.exit_price == 103
        assert trade.reason == ExitReason.TAKE_PROFIT.value
        # qty = 100 / (101.5 - 99.5) = 50
        assert trade.quantity == pytest.approx(50)
        assert report.final_equity == pytest.approx(10075)
        assert report.wins == 1
        assert report.win_rate == 100.0
        assert report.profit_factor == float("inf")
        assert engine.state == BacktestState.WAITING_SIGNAL

    def test_entry_is_stop_order(self):
        engine = BacktestEngine(make_config(), RecordingOracle(decisions=[approve()]))
        asyncio.run(engine.run(flat_bars(7)))

        assert engine.state == BacktestState.PENDING_ORDER
        order = engine.exchange.get_order(engine.pending_order_id)
        assert order.kind == OrderKind.STOP
        assert order.trigger_price == 101.5
        assert order.stop_loss == 99.5
        assert order.take_profit == 103.0

    def test_market_entry(self):
        decision = approve(entry=100, stop=98, tp=None, kind=OrderKind.MARKET)
        engine = BacktestEngine(make_config(), RecordingOracle(decisions=[decision]))
        asyncio.run(engine.run(flat_bars(8)))

        assert engine.state == BacktestState.IN_POSITION
        pos = engine.exchange.get_position("BTC/USDT")
        assert pos.entry_price == 100
        assert pos.quantity == pytest.approx(50)

    def test_sell_entry(self):
        decision = approve(direction=TradeDirection.SELL, entry=98.5, stop=100.5, tp=97)
        bars = flat_bars(7) + [Bar(7 * T, 100, 100.2, 98, 98.2, 1.0)]
        engine = BacktestEngine(make_config(), RecordingOracle(decisions=[decision]))
        asyncio.run(engine.run(bars))

        pos = engine.exchange.get_position("BTC/USDT")
        assert pos.side.value == "short"
        assert pos.entry_price == 98.5

    def test_oracle_cancel(self):
        oracle = RecordingOracle(decisions=[approve()], verdict=PendingVerdict.cancel("invalid"))
        engine = BacktestEngine(make_config(), oracle)
        asyncio.run(engine.run(flat_bars(10)))

        # 5 승인, 6 취소, 7~9 다시 신호 탐색
        assert [c.timestamp for c in oracle.contexts] == [5 * T, 7 * T, 8 * T, 9 * T]
        assert len(oracle.pending_calls) == 1
        assert engine.state == BacktestState.WAITING_SIGNAL
        assert engine.exchange.open_orders == []
        assert engine.exchange.order_history[0].status == OrderStatus.CANCELED

    def test_pending_order_expiry(self):
        oracle = RecordingOracle(decisions=[approve()])
        engine = BacktestEngine(make_config(pending_order_max_bars=2), oracle)
        asyncio.run(engine.run(flat_bars(10)))

        # 6, 7 유지 -> 8 만료 (3 > 2) -> 9 신호 탐색
        assert [ts for _, ts in oracle.pending_calls] == [6 * T, 7 * T]
        assert [c.timestamp for c in oracle.contexts] == [5 * T, 9 * T]
        assert engine.exchange.order_history[0].status == OrderStatus.CANCELED

    def test_zero_quantity_skipped(self):
        decision = approve(entry=0.0, stop=-1.0)
        engine = BacktestEngine(make_config(), RecordingOracle(decisions=[decision]))
        asyncio.run(engine.run(flat_bars(8)))
        assert engine.state == BacktestState.WAITING_SIGNAL
        assert engine.exchange.open_orders == []
        assert engine.exchange.order_history == []

    def test_oracle_failure_is_hold(self):
        engine = BacktestEngine(make_config(), FailingOracle())
        report = asyncio.run(engine.run(flat_bars(12)))
        assert report.bars_processed == 7
        assert report.total_trades == 0
        assert engine.state == BacktestState.WAITING_SIGNAL


class TestWindows:
    """oracle 입력 윈도우"""

    def test_windows_use_only_closed_buckets(self):
        oracle = RecordingOracle()
        engine = BacktestEngine(make_config(), oracle)
        asyncio.run(engine.run(flat_bars(80)))

        for ctx in oracle.contexts:
            index = ctx.timestamp // T
            assert ctx.trading[-1].timestamp == ctx.timestamp
            assert len(ctx.trading) == min(10, index + 1)
            h1_start = floor_to_interval(ctx.timestamp, H1)
            h4_start = floor_to_interval(ctx.timestamp, 4 * H1)
            assert all(b.timestamp < h1_start for b in ctx.context)
            assert all(b.timestamp < h4_start for b in ctx.trend)
            assert len(ctx.context) <= 5
            assert len(ctx.trend) <= 5

        last = oracle.contexts[-1]
        assert len(last.context) == 5
        assert last.context[-1].timestamp == floor_to_interval(last.timestamp, H1) - H1

    def test_context_fields(self):
        oracle = RecordingOracle()
        asyncio.run(BacktestEngine(make_config(), oracle).run(flat_bars(6)))
        ctx = oracle.contexts[0]
        assert ctx.symbol == "BTC/USDT"
        assert ctx.equity == 10000
        assert ctx.risk_fraction == 0.01
        assert ctx.position_status.value == "NO_POSITION"


class TestEquityTracking:
    """equity curve / drawdown / 파산"""

    def test_drawdown_monotonic(self):
        config = make_config(
            exchange=ExchangeConfig(initial_balance=10000, entry_fee_rate=0.0006, exit_fee_rate=0.0005),
            risk=RiskConfig(risk_fraction=0.02, min_distance_pct=0.002, max_leverage=3.0),
            timeframes=TimeframeConfig(trading="15m", context="1h", trend="4h",
                                       trading_lookback=30, context_lookback=10, trend_lookback=10),
            warmup_bars=30,
        )
        engine = BacktestEngine(config, EmaCrossoverOracle(period=10))
        report = asyncio.run(engine.run(generate_mock_bars(400)))

        assert len(report.equity_curve) == report.bars_processed == 370
        running_max = 0.0
        for point in report.equity_curve:
            running_max = max(running_max, point.drawdown_pct)
            assert point.drawdown_pct >= 0
        assert report.max_drawdown_pct == pytest.approx(running_max)
        assert report.final_equity == pytest.approx(report.equity_curve[-1].equity)

    def test_bankruptcy_truncates_run(self):
        config = make_config(
            exchange=ExchangeConfig(initial_balance=1000, entry_fee_rate=0.001, exit_fee_rate=0.0),
            risk=RiskConfig(risk_fraction=1.0, min_distance_pct=0.0, max_leverage=100.0),
        )
        decision = approve(entry=100, stop=98.5, tp=None, kind=OrderKind.MARKET)
        bars = flat_bars(7) + [Bar(7 * T, 60, 60, 50, 55, 1.0)] + [flat(i) for i in range(8, 15)]
        engine = BacktestEngine(config, RecordingOracle(decisions=[decision]))
        report = asyncio.run(engine.run(bars))

        assert report.bankrupt is True
        assert report.bars_processed == 3
        assert report.end_time == 7 * T
        assert report.final_equity <= 0
        assert report.trades[0].exit_price == 98.5

    def test_close_at_end(self):
        decision = approve(entry=100, stop=90, tp=None, kind=OrderKind.MARKET)
        bars = flat_bars(7) + [flat(7, 104)]
        engine = BacktestEngine(make_config(close_at_end=True), RecordingOracle(decisions=[decision]))
        report = asyncio.run(engine.run(bars))

        assert engine.exchange.positions == []
        assert report.trades[-1].reason == ExitReason.END_OF_DATA.value
        assert report.equity_curve[-1].equity == pytest.approx(report.final_equity)
        assert len(report.equity_curve) == report.bars_processed == 3

    def test_open_position_left_without_close_at_end(self):
        decision = approve(entry=100, stop=90, tp=None, kind=OrderKind.MARKET)
        engine = BacktestEngine(make_config(), RecordingOracle(decisions=[decision]))
        report = asyncio.run(engine.run(flat_bars(7) + [flat(7, 104)]))
        assert report.total_trades == 0
        assert len(engine.exchange.positions) == 1
        # 10 qty (100 / 10) * 4 미실현
        assert report.final_equity == pytest.approx(10040)


class TestConcurrentEngines:
    """심볼별 엔진 동시 실행 (상태 공유 없음)"""

    def test_gather(self):
        async def main():
            a = BacktestEngine(make_config(symbol="BTC/USDT"), RecordingOracle(decisions=[approve()]))
            b = BacktestEngine(make_config(symbol="ETH/USDT"), RecordingOracle())
            return await asyncio.gather(a.run(entry_scenario()), b.run(flat_bars(10)))

        ra, rb = asyncio.run(main())
        assert ra.total_trades == 1
        assert rb.total_trades == 0
        assert rb.final_equity == 10000
        assert ra.symbol == "BTC/USDT" and rb.symbol == "ETH/USDT"


class TestApprovalValidation:
    """잘못된 승인 가격 -> 주문 없이 run 계속"""

    @pytest.mark.parametrize("decision", [
        approve(entry=float("nan")),
        approve(stop=float("nan")),
        approve(tp=float("inf")),
        approve(entry=101.5, stop=103.0),                                   # BUY SL 위
        approve(entry=101.5, stop=99.5, tp=100.0),                          # BUY TP 아래
        approve(direction=TradeDirection.SELL, entry=98.5, stop=97.0, tp=96.0),
        approve(direction=TradeDirection.SELL, entry=98.5, stop=100.5, tp=99.0),
        approve(entry=-1.0, stop=-2.0, tp=None),
    ])
    def test_invalid_approval_skipped(self, decision):
        oracle = RecordingOracle(decisions=[decision])
        engine = BacktestEngine(make_config(), oracle)
        report = asyncio.run(engine.run(flat_bars(20)))

        assert report.bars_processed == 15
        assert len(oracle.contexts) == 15
        assert engine.exchange.order_history == []
        assert engine.exchange.open_orders == []
        assert engine.state == BacktestState.WAITING_SIGNAL
        assert report.final_equity == 10000

    def test_valid_after_invalid(self):
        oracle = RecordingOracle(decisions=[approve(entry=float("nan")), approve()])
        engine = BacktestEngine(make_config(), oracle)
        asyncio.run(engine.run(flat_bars(8)))
        assert engine.state == BacktestState.PENDING_ORDER
        assert engine.exchange.get_order(engine.pending_order_id).trigger_price == 101.5
