# -*- coding: utf-8 -*-
"""
Backtest Report
===============

run 결과 요약: 수익률 / 승률 / profit factor / MDD + 거래 목록 + equity curve.

- build_report(): 엔진 상태 -> BacktestReport
- to_dict() / save_report(): JSON 저장 (inf는 문자열 "inf")
- format_report() / print_report(): 콘솔 요약
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..config.loader import BacktestConfig
from ..models import EquityPoint, Trade


@dataclass
class BacktestReport:
    """백테스트 결과"""
    config: BacktestConfig
    symbol: str
    start_time: Optional[int]
    end_time: Optional[int]
    initial_balance: float
    final_equity: float
    total_return_pct: float
    total_trades: int
    wins: int
    losses: int
    win_rate: float
    profit_factor: float
    max_drawdown_pct: float
    bars_processed: int
    bankrupt: bool = False
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """JSON 직렬화 가능한 dict"""
        return {
            'config': self.config.to_dict(),
            'symbol': self.symbol,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'initial_balance': self.initial_balance,
            'final_equity': self.final_equity,
            'total_return_pct': self.total_return_pct,
            'total_trades': self.total_trades,
            'wins': self.wins,
            'losses': self.losses,
            'win_rate': self.win_rate,
            'profit_factor': _json_float(self.profit_factor),
            'max_drawdown_pct': self.max_drawdown_pct,
            'bars_processed': self.bars_processed,
            'bankrupt': self.bankrupt,
            'trades': [t.to_dict() for t in self.trades],
            'equity_curve': [p.to_dict() for p in self.equity_curve],
        }


def _json_float(value: float) -> Union[float, str]:
    if math.isinf(value):
        return "inf"
    return value


def calc_profit_factor(trades: Sequence[Trade]) -> float:
    """
    총이익 / 총손실.
    손실 없이 이익만 있으면 inf, 둘 다 없으면 0.
    """
    gross_profit = sum(t.realized_pnl for t in trades if t.realized_pnl > 0)
    gross_loss = -sum(t.realized_pnl for t in trades if t.realized_pnl < 0)
    if gross_loss > 0:
        return gross_profit / gross_loss
    if gross_profit > 0:
        return math.inf
    return 0.0


def build_report(
    config: BacktestConfig,
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityPoint],
    initial_balance: float,
    final_equity: float,
    max_drawdown_pct: float,
    bankrupt: bool = False,
) -> BacktestReport:
    """엔진 기록으로 리포트 생성"""
    wins = sum(1 for t in trades if t.realized_pnl > 0)
    losses = sum(1 for t in trades if t.realized_pnl <= 0)
    total = len(trades)

    return BacktestReport(
        config=config,
        symbol=config.symbol,
        start_time=equity_curve[0].timestamp if equity_curve else None,
        end_time=equity_curve[-1].timestamp if equity_curve else None,
        initial_balance=initial_balance,
        final_equity=final_equity,
        total_return_pct=(final_equity - initial_balance) / initial_balance * 100 if initial_balance > 0 else 0.0,
        total_trades=total,
        wins=wins,
        losses=losses,
        win_rate=wins / total * 100 if total > 0 else 0.0,
        profit_factor=calc_profit_factor(trades),
        max_drawdown_pct=max_drawdown_pct,
        bars_processed=len(equity_curve),
        bankrupt=bankrupt,
        trades=list(trades),
        equity_curve=list(equity_curve),
    )


def save_report(report: BacktestReport, path: Union[str, Path]) -> Path:
    """JSON 저장. 상위 디렉토리가 없으면 생성"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(report.to_dict(), f, indent=2, ensure_ascii=False)
    return path


def _fmt_time(ts: Optional[int]) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def format_report(report: BacktestReport) -> str:
    """콘솔 요약 문자열"""
    pf = "inf" if math.isinf(report.profit_factor) else f"{report.profit_factor:.2f}"
    lines = [
        "=" * 60,
        f"Backtest Report: {report.symbol} ({report.config.timeframes.trading})",
        "=" * 60,
        f"Period: {_fmt_time(report.start_time)} ~ {_fmt_time(report.end_time)} "
        f"({report.bars_processed} bars)",
        f"Equity: ${report.initial_balance:,.2f} -> ${report.final_equity:,.2f} "
        f"({report.total_return_pct:+.2f}%)",
        f"Trades: {report.total_trades} (W:{report.wins} L:{report.losses})",
        f"Win Rate: {report.win_rate:.1f}%",
        f"Profit Factor: {pf}",
        f"Max Drawdown: {report.max_drawdown_pct:.2f}%",
    ]
    if report.bankrupt:
        lines.append("BANKRUPT: equity depleted, run stopped early")

    if report.trades:
        lines.append("")
        lines.append("--- Last Trades ---")
        for t in report.trades[-5:]:
            lines.append(
                f"{_fmt_time(t.exit_time)} {t.side.value:<5} "
                f"{t.entry_price:.4f} -> {t.exit_price:.4f} "
                f"PnL {t.realized_pnl:+,.2f} ({t.reason})"
            )
    lines.append("=" * 60)
    return "\n".join(lines)


def print_report(report: BacktestReport) -> None:
    print(format_report(report))
