# -*- coding: utf-8 -*-
"""
Live Exchange Adapter
=====================

거래소 클라이언트 프로토콜 + 확정 봉 피드 + 라이브 트레이더.

ExchangeClient는 ccxt async 클라이언트의 부분집합 (duck typing):
fetch_ohlcv 행은 [timestamp, open, high, low, close, volume].

LiveTrader.on_tick(now_ms):
1. 포지션 / 미체결 주문 있으면 skip
2. 확정 봉 조회 (lookback + 2 개 요청 -> select_confirmed)
3. oracle.analyze (실패 시 HOLD)
4. 사이징 -> stop (또는 market) 주문 (dry_run이면 주문 없이 계획만 반환)
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from ..config.loader import LiveConfig
from ..models import Bar, OrderKind
from ..oracle.base import (
    DecisionOracle,
    MarketContext,
    PositionStatus,
    TradeDirection,
    request_decision,
)
from ..risk.sizing import calc_order_quantity
from ..utils.timeframe import parse_interval_ms
from .confirmed import select_confirmed
from .scheduler import CandleScheduler

logger = logging.getLogger(__name__)


@runtime_checkable
class ExchangeClient(Protocol):
    """라이브 거래소 클라이언트 프로토콜"""

    async def fetch_ohlcv(self, symbol: str, timeframe: str, limit: Optional[int] = None) -> List[list]:
        ...

    async def fetch_time(self) -> int:
        ...

    async def create_order(
        self,
        symbol: str,
        type: str,
        side: str,
        amount: float,
        price: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        ...

    async def cancel_order(self, id: str, symbol: Optional[str] = None) -> Dict[str, Any]:
        ...

    async def fetch_open_orders(self, symbol: Optional[str] = None) -> List[Dict[str, Any]]:
        ...

    async def fetch_positions(self, symbols: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        ...

    async def fetch_balance(self) -> Dict[str, Any]:
        ...


def rows_to_bars(rows: Sequence[Sequence[float]]) -> List[Bar]:
    """ccxt OHLCV 행 -> Bar (timestamp 오름차순)"""
    bars = [
        Bar(
            timestamp=int(r[0]),
            open=float(r[1]),
            high=float(r[2]),
            low=float(r[3]),
            close=float(r[4]),
            volume=float(r[5]) if len(r) > 5 and r[5] is not None else 0.0,
        )
        for r in rows
    ]
    bars.sort(key=lambda b: b.timestamp)
    return bars


def quote_currency(symbol: str) -> str:
    """'BTC/USDT:USDT' -> 'USDT'"""
    if "/" not in symbol:
        return "USDT"
    return symbol.split("/", 1)[1].split(":", 1)[0]


def _has_position(positions: Sequence[Dict[str, Any]]) -> bool:
    for p in positions:
        size = p.get("contracts") or p.get("size") or 0
        if float(size) != 0:
            return True
    return False


def create_ccxt_client(
    exchange_id: str = "bitget",
    api_key: Optional[str] = None,
    secret: Optional[str] = None,
    password: Optional[str] = None,
    sandbox: bool = False,
) -> ExchangeClient:
    """
    ccxt async 클라이언트 생성 (선물/스왑 기본)

    Raises:
        ImportError: ccxt 미설치
        ValueError: ccxt에 없는 exchange_id
    """
    try:
        import ccxt.async_support as ccxt_async
    except ImportError:
        raise ImportError("ccxt required: pip install ccxt")

    exchange_class = getattr(ccxt_async, exchange_id, None)
    if exchange_class is None:
        raise ValueError(f"Exchange {exchange_id} not found in ccxt")

    client = exchange_class({
        'apiKey': api_key,
        'secret': secret,
        'password': password,
        'enableRateLimit': True,
        'options': {'defaultType': 'swap'},
    })
    if sandbox:
        client.set_sandbox_mode(True)
        logger.info(f"[Exchange] Sandbox mode enabled for {exchange_id}")
    return client


class ConfirmedBarFeed:
    """진행 중인 봉을 제외한 확정 봉 피드"""

    def __init__(self, client: ExchangeClient, symbol: str, timeframe: str):
        self.client = client
        self.symbol = symbol
        self.timeframe = timeframe
        self.interval_ms = parse_interval_ms(timeframe)

    async def get_confirmed_bars(self, lookback: int, now_ms: Optional[int] = None) -> List[Bar]:
        """
        확정 봉 조회

        Args:
            lookback: 반환할 봉 수
            now_ms: 기준 시각 (None이면 거래소 서버 시간)

        Raises:
            InsufficientData: 원시 봉이 2개 미만
        """
        rows = await self.client.fetch_ohlcv(self.symbol, self.timeframe, limit=lookback + 2)
        bars = rows_to_bars(rows)
        if now_ms is None:
            now_ms = await self.client.fetch_time()
        return select_confirmed(bars, self.interval_ms, now_ms, lookback)


class LiveTrader:
    """봉 마감마다 신호 탐색 -> 주문"""

    def __init__(self, client: ExchangeClient, oracle: DecisionOracle, config: LiveConfig):
        self.client = client
        self.oracle = oracle
        self.config = config
        self.feed = ConfirmedBarFeed(client, config.symbol, config.timeframe)
        self.scheduler = CandleScheduler(
            interval_ms=self.feed.interval_ms,
            callback=self.on_tick,
            buffer_ms=config.close_buffer_ms,
        )

    async def run(self, max_ticks: Optional[int] = None) -> int:
        logger.info(f"[LiveTrader] Starting loop for {self.config.symbol} ({self.config.timeframe})")
        return await self.scheduler.run(max_ticks=max_ticks)

    def stop(self) -> None:
        self.scheduler.stop()

    async def on_tick(self, now_ms: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """
        신호 탐색 1회.

        Returns:
            생성된 주문 (dry_run이면 주문 계획), 진입 없으면 None
        """
        symbol = self.config.symbol

        positions = await self.client.fetch_positions([symbol])
        if _has_position(positions):
            logger.info(f"[LiveTrader] {symbol} has an open position, skipping signal search")
            return None
        open_orders = await self.client.fetch_open_orders(symbol)
        if open_orders:
            logger.info(f"[LiveTrader] {symbol} has {len(open_orders)} open orders, skipping signal search")
            return None

        bars = await self.feed.get_confirmed_bars(self.config.lookback, now_ms)
        if not bars:
            logger.warning(f"[LiveTrader] {symbol} no confirmed bars")
            return None
        logger.info(f"[LiveTrader] {symbol} analysing bar closed at {bars[-1].close_time(self.feed.interval_ms)}")

        balance = await self.client.fetch_balance()
        equity = float(balance.get("total", {}).get(quote_currency(symbol)) or 0.0)
        if equity <= 0:
            logger.warning(f"[LiveTrader] {symbol} equity is zero, skipping analysis")
            return None

        context = MarketContext(
            symbol=symbol,
            trading=bars,
            equity=equity,
            risk_fraction=self.config.risk.risk_fraction,
            position_status=PositionStatus.NO_POSITION,
            timestamp=bars[-1].timestamp,
        )
        decision = await request_decision(self.oracle, context)
        logger.info(f"[LiveTrader] {symbol} decision: {decision.action.value} ({decision.reason})")
        if not decision.approved:
            return None

        problem = decision.price_problem()
        if problem is not None:
            logger.warning(f"[LiveTrader] {symbol} approval rejected: {problem}")
            return None

        qty = calc_order_quantity(equity, decision.entry_price, decision.stop_loss, self.config.risk)
        if not qty > 0:
            logger.warning(f"[LiveTrader] {symbol} quantity {qty} <= 0, skipping")
            return None

        side = "buy" if decision.direction == TradeDirection.BUY else "sell"
        params: Dict[str, Any] = {"stopLoss": {"triggerPrice": decision.stop_loss}}
        if decision.take_profit is not None:
            params["takeProfit"] = {"triggerPrice": decision.take_profit}

        if decision.order_kind == OrderKind.MARKET:
            order_type = "market"
        else:
            order_type = "limit"
            params["triggerPrice"] = decision.entry_price

        plan = {
            "symbol": symbol,
            "type": order_type,
            "side": side,
            "amount": qty,
            "price": decision.entry_price if order_type != "market" else None,
            "params": params,
        }

        if self.config.dry_run:
            logger.info(f"[LiveTrader] DRY RUN, not sending order: {plan}")
            return plan

        order = await self.client.create_order(**plan)
        logger.info(f"[LiveTrader] Order placed: {order.get('id')} {side} {qty:.6f} @ {decision.entry_price}")
        return order
