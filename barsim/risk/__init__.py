"""Risk - fixed fractional position sizing"""
from .sizing import RiskConfig, calc_order_quantity

__all__ = [
    'RiskConfig',
    'calc_order_quantity',
]
