"""
barsim - Bar-Driven Trade Simulation Engine
============================================

Core Components:
- data/: CSV loader + multi-timeframe resampler
- market/: confirmed-bar selector, candle close scheduler, live adapter
- backtest/: virtual exchange (matching engine), driver, report
- oracle/: decision oracle interface + EMA crossover reference
- risk/: fixed fractional position sizing
- config/: YAML loader
"""

__version__ = "0.1.0"
