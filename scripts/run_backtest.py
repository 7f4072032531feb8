#!/usr/bin/env python3
"""
백테스트 실행 스크립트
- CSV 봉 데이터 + YAML 설정 -> EMA 돌파 oracle 백테스트 -> JSON 리포트

사용법:
    python scripts/run_backtest.py --symbol BTC/USDT --csv data/btc_15m.csv
    python scripts/run_backtest.py --symbol SUI/USDT --csv data/sui_4h.csv --limit 500 --close-at-end
"""

import argparse
import asyncio
import sys
import time
from pathlib import Path

from barsim.backtest import BacktestEngine, print_report, save_report
from barsim.config import load_backtest_config
from barsim.data import load_bars_csv
from barsim.errors import BarsimError
from barsim.oracle import EmaCrossoverOracle
from barsim.utils import setup_logging

ROOT = Path(__file__).resolve().parent.parent


def main():
    parser = argparse.ArgumentParser(description='Bar-driven backtest')
    parser.add_argument('--symbol', type=str, default='BTC/USDT', help='Symbol (config/symbols/<SYMBOL>.yaml)')
    parser.add_argument('--csv', type=str, default=None, help='OHLCV CSV path (default: backtest.csv_path)')
    parser.add_argument('--resample', action='store_true', help='Resample CSV bars to the trading timeframe')
    parser.add_argument('--limit', type=int, default=None, help='Max bars to process after warmup')
    parser.add_argument('--ema-period', type=int, default=20, help='EMA period')
    parser.add_argument('--reward-ratio', type=float, default=2.0, help='TP distance in R')
    parser.add_argument('--context-filter', action='store_true', help='Require context TF agreement')
    parser.add_argument('--close-at-end', action='store_true', help='Close open positions at the last bar')
    parser.add_argument('--output', type=str, default=None, help='Report JSON path')
    parser.add_argument('--log-level', type=str, default=None, help='Logging level')
    args = parser.parse_args()

    setup_logging(args.log_level)

    config = load_backtest_config(args.symbol)
    if args.limit is not None:
        config.limit = args.limit
    if args.close_at_end:
        config.close_at_end = True

    csv_path = args.csv or config.csv_path
    if not csv_path:
        print("[Error] No CSV path given (--csv or backtest.csv_path)")
        sys.exit(1)
    config.csv_path = csv_path

    print("=" * 60)
    print(f"Backtest: {config.symbol}")
    print("=" * 60)
    print(f"  TF: {config.timeframes.trading} / {config.timeframes.context} / {config.timeframes.trend}")
    print(f"  Initial Balance: ${config.exchange.initial_balance:,.0f}")
    print(f"  Risk: {config.risk.risk_fraction:.2%} / max lev {config.risk.max_leverage}x")
    print(f"  Data: {csv_path}")

    try:
        bars = load_bars_csv(csv_path, interval=config.timeframes.trading if args.resample else None)
        print(f"  Bars: {len(bars)}")

        oracle = EmaCrossoverOracle(
            period=args.ema_period,
            reward_ratio=args.reward_ratio,
            use_context_filter=args.context_filter,
        )
        engine = BacktestEngine(config, oracle)
        report = asyncio.run(engine.run(bars))
    except (BarsimError, FileNotFoundError) as e:
        print(f"[Error] {e}")
        sys.exit(1)

    print_report(report)

    output = Path(args.output) if args.output else ROOT / "output" / f"backtest_report_{int(time.time() * 1000)}.json"
    path = save_report(report, output)
    print(f"\nReport saved to {path}")


if __name__ == "__main__":
    main()
