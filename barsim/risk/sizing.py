# -*- coding: utf-8 -*-
"""
Position Sizing - Fixed Fractional Risk
=======================================

고정 비율 리스크 기반 수량 계산.

    risk_amount = equity * risk_fraction
    distance    = max(|entry - stop_loss|, entry * min_distance_pct)
    quantity    = risk_amount / distance
    notional    = quantity * entry <= equity * max_leverage  (초과 시 clamp)

min_distance_pct: 너무 가까운 SL로 인한 과도한 레버리지 방지.

사용법:
```python
from barsim.risk import RiskConfig, calc_order_quantity

qty = calc_order_quantity(
    equity=10000, entry_price=100.0, stop_loss=98.0,
    config=RiskConfig(risk_fraction=0.01, max_leverage=3.0),
)
# risk 100 / dist 2 = 50 units -> notional 5000 <= 30000 -> 50
```
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class RiskConfig:
    """리스크 설정"""
    risk_fraction: float = 0.01       # 거래당 리스크 (equity 대비 1%)
    min_distance_pct: float = 0.002   # 최소 SL 거리 (진입가 대비 0.2%)
    max_leverage: float = 3.0         # 최대 명목 레버리지


def calc_order_quantity(
    equity: float,
    entry_price: float,
    stop_loss: float,
    config: Optional[RiskConfig] = None,
) -> float:
    """
    리스크 기반 주문 수량 계산

    Args:
        equity: 현재 equity
        entry_price: 진입가
        stop_loss: 손절가
        config: 리스크 설정

    Returns:
        수량 (진입 불가 시 0.0)
    """
    config = config or RiskConfig()

    if not all(math.isfinite(v) for v in (equity, entry_price, stop_loss)):
        logger.warning(f"Non-finite sizing input (equity={equity}, entry={entry_price}, SL={stop_loss})")
        return 0.0
    if equity <= 0 or entry_price <= 0:
        return 0.0

    risk_amount = equity * config.risk_fraction
    raw_distance = abs(entry_price - stop_loss)
    min_distance = entry_price * config.min_distance_pct
    distance = max(raw_distance, min_distance)

    if raw_distance < min_distance:
        logger.warning(
            f"SL distance {raw_distance:.6f} below {config.min_distance_pct * 100:.2f}% of price, "
            f"sizing with min distance {min_distance:.6f}"
        )

    if distance <= 0:
        return 0.0

    quantity = risk_amount / distance

    # 레버리지 상한
    max_notional = equity * config.max_leverage
    if quantity * entry_price > max_notional:
        clamped = max_notional / entry_price
        logger.warning(
            f"Quantity {quantity:.6f} exceeds max leverage {config.max_leverage}x, "
            f"clamping to {clamped:.6f}"
        )
        quantity = clamped

    if not math.isfinite(quantity):
        return 0.0
    return max(quantity, 0.0)
