#!/usr/bin/env python3
"""
라이브 루프 실행 스크립트
- 봉 마감마다 확정 봉 -> EMA 돌파 oracle -> stop 주문 (ccxt)

API 키는 환경변수:
    BARSIM_API_KEY / BARSIM_API_SECRET / BARSIM_API_PASSWORD

사용법:
    python scripts/run_live.py --symbol BTC/USDT:USDT --dry-run
    python scripts/run_live.py --symbol SUI/USDT:USDT --max-ticks 4
"""

import argparse
import asyncio
import os
import sys

from barsim.config import load_live_config
from barsim.errors import BarsimError
from barsim.market import LiveTrader, create_ccxt_client
from barsim.oracle import EmaCrossoverOracle
from barsim.utils import setup_logging


async def run(args) -> int:
    config = load_live_config(args.symbol)
    if args.dry_run:
        config.dry_run = True

    print("=" * 60)
    print(f"Live: {config.symbol} ({config.timeframe}) on {config.exchange_id}")
    print("=" * 60)
    print(f"  Lookback: {config.lookback} bars, close buffer {config.close_buffer_ms}ms")
    print(f"  Risk: {config.risk.risk_fraction:.2%} / max lev {config.risk.max_leverage}x")
    print(f"  Dry Run: {config.dry_run} | Sandbox: {config.sandbox}")

    client = create_ccxt_client(
        config.exchange_id,
        api_key=os.getenv("BARSIM_API_KEY"),
        secret=os.getenv("BARSIM_API_SECRET"),
        password=os.getenv("BARSIM_API_PASSWORD"),
        sandbox=config.sandbox,
    )
    oracle = EmaCrossoverOracle(period=args.ema_period, reward_ratio=args.reward_ratio)
    trader = LiveTrader(client, oracle, config)
    try:
        return await trader.run(max_ticks=args.max_ticks)
    finally:
        await client.close()


def main():
    parser = argparse.ArgumentParser(description='Candle-close live loop')
    parser.add_argument('--symbol', type=str, default='BTC/USDT:USDT', help='Symbol (config/symbols/<SYMBOL>.yaml)')
    parser.add_argument('--ema-period', type=int, default=20, help='EMA period')
    parser.add_argument('--reward-ratio', type=float, default=2.0, help='TP distance in R')
    parser.add_argument('--max-ticks', type=int, default=None, help='Stop after N candle closes')
    parser.add_argument('--dry-run', action='store_true', help='Log order plans without sending')
    parser.add_argument('--log-level', type=str, default=None, help='Logging level')
    args = parser.parse_args()

    setup_logging(args.log_level)

    try:
        ticks = asyncio.run(run(args))
    except (BarsimError, ImportError, ValueError) as e:
        print(f"[Error] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nStopped")
        return

    print(f"\nLoop finished after {ticks} ticks")


if __name__ == "__main__":
    main()
