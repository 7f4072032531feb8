"""
Config Loader
=============

YAML 기반 시뮬레이션 / 라이브 파라미터 로더.

전역 싱글톤 없음: load_*()가 만든 dataclass를 각 컴포넌트 생성자에 직접 전달.
파라미터 스윕이나 여러 계좌 동시 시뮬레이션 시 상태 공유 없음.

사용법:
    from barsim.config import load_backtest_config

    cfg = load_backtest_config("BTC-USDT")
    print(cfg.exchange.entry_fee_rate)   # 0.0006
    print(cfg.timeframes.trading)        # 15m

로드 순서: config/default.yaml -> config/symbols/<SYMBOL>.yaml -> 환경변수

환경변수 오버라이드:
    BARSIM_CONFIG_DIR=/path/to/config   # 설정 디렉토리
    BARSIM_INITIAL_BALANCE=5000         # 초기 잔고
    BARSIM_MAX_LEVERAGE=2               # 최대 레버리지
    BARSIM_RISK_FRACTION=0.005          # 거래당 리스크
    BARSIM_DRY_RUN=true                 # 라이브 드라이런
"""

import os
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional
import yaml

from ..risk.sizing import RiskConfig
from ..utils.timeframe import TimeframeSpec, get_higher_timeframe


CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


@dataclass
class ExchangeConfig:
    """가상 거래소 파라미터"""
    initial_balance: float = 10000.0
    entry_fee_rate: float = 0.0006    # 체결 수수료 0.06%
    exit_fee_rate: float = 0.0005     # SL/TP 청산 수수료 0.05%


@dataclass
class TimeframeConfig:
    """타임프레임 + lookback 윈도우"""
    trading: str = "15m"
    context: str = "1h"
    trend: str = "4h"
    trading_lookback: int = 50
    context_lookback: int = 50
    trend_lookback: int = 50

    def __post_init__(self):
        # 파싱 실패 시 InvalidIntervalFormat
        for tf in (self.trading, self.context, self.trend):
            TimeframeSpec.from_string(tf)


@dataclass
class BacktestConfig:
    """백테스트 설정"""
    symbol: str = "BTC/USDT"
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    timeframes: TimeframeConfig = field(default_factory=TimeframeConfig)
    warmup_bars: int = 50
    limit: Optional[int] = None               # 처리할 최대 봉 수
    pending_order_max_bars: int = 0           # 0 = 만료 없음
    close_at_end: bool = False                # 데이터 끝에서 포지션 청산
    csv_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LiveConfig:
    """라이브 루프 설정"""
    symbol: str = "BTC/USDT"
    timeframe: str = "15m"
    lookback: int = 20
    close_buffer_ms: int = 5000               # 봉 마감 후 대기 (거래소 반영 지연)
    risk: RiskConfig = field(default_factory=RiskConfig)
    dry_run: bool = False
    exchange_id: str = "bitget"              # ccxt exchange id
    sandbox: bool = False


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: Dict, override: Dict) -> Dict:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(config: Dict) -> Dict:
    if os.getenv("BARSIM_INITIAL_BALANCE"):
        config.setdefault("exchange", {})
        config["exchange"]["initial_balance"] = float(os.getenv("BARSIM_INITIAL_BALANCE"))
    if os.getenv("BARSIM_MAX_LEVERAGE"):
        config.setdefault("risk", {})
        config["risk"]["max_leverage"] = float(os.getenv("BARSIM_MAX_LEVERAGE"))
    if os.getenv("BARSIM_RISK_FRACTION"):
        config.setdefault("risk", {})
        config["risk"]["risk_fraction"] = float(os.getenv("BARSIM_RISK_FRACTION"))
    if os.getenv("BARSIM_DRY_RUN", "").lower() in ("true", "1"):
        config.setdefault("live", {})
        config["live"]["dry_run"] = True
    return config


def _config_dir(config_dir: Optional[Path] = None) -> Path:
    if config_dir is not None:
        return Path(config_dir)
    env_dir = os.getenv("BARSIM_CONFIG_DIR")
    return Path(env_dir) if env_dir else CONFIG_DIR


def load_config(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """기본 설정 로드"""
    return _apply_env_overrides(_load_yaml(_config_dir(config_dir) / "default.yaml"))


def load_symbol_config(symbol: str, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """심볼별 raw 설정 (default + symbol override + env)"""
    root = _config_dir(config_dir)
    base = _load_yaml(root / "default.yaml")
    symbol_cfg = _load_yaml(root / "symbols" / f"{_symbol_file(symbol)}.yaml")
    return _apply_env_overrides(_deep_merge(base, symbol_cfg))


def _symbol_file(symbol: str) -> str:
    return symbol.replace("/", "-").replace(":", "-")


def _risk_from(raw: Dict[str, Any]) -> RiskConfig:
    risk = raw.get("risk", {})
    return RiskConfig(
        risk_fraction=risk.get("risk_fraction", 0.01),
        min_distance_pct=risk.get("min_distance_pct", 0.002),
        max_leverage=risk.get("max_leverage", 3.0),
    )


def load_backtest_config(symbol: str, config_dir: Optional[Path] = None) -> BacktestConfig:
    """심볼별 백테스트 설정 로드"""
    merged = load_symbol_config(symbol, config_dir)

    exc = merged.get("exchange", {})
    tfs = merged.get("timeframes", {})
    bt = merged.get("backtest", {})

    trading = tfs.get("trading", "15m")
    context = tfs.get("context") or get_higher_timeframe(trading) or trading
    trend = tfs.get("trend") or get_higher_timeframe(context) or context

    return BacktestConfig(
        symbol=symbol,
        exchange=ExchangeConfig(
            initial_balance=exc.get("initial_balance", 10000.0),
            entry_fee_rate=exc.get("entry_fee_rate", 0.0006),
            exit_fee_rate=exc.get("exit_fee_rate", 0.0005),
        ),
        risk=_risk_from(merged),
        timeframes=TimeframeConfig(
            trading=trading,
            context=context,
            trend=trend,
            trading_lookback=tfs.get("trading_lookback", 50),
            context_lookback=tfs.get("context_lookback", 50),
            trend_lookback=tfs.get("trend_lookback", 50),
        ),
        warmup_bars=bt.get("warmup_bars", 50),
        limit=bt.get("limit"),
        pending_order_max_bars=bt.get("pending_order_max_bars", 0),
        close_at_end=bt.get("close_at_end", False),
        csv_path=bt.get("csv_path"),
    )


def load_live_config(symbol: str, config_dir: Optional[Path] = None) -> LiveConfig:
    """심볼별 라이브 설정 로드"""
    merged = load_symbol_config(symbol, config_dir)
    live = merged.get("live", {})
    tfs = merged.get("timeframes", {})

    return LiveConfig(
        symbol=symbol,
        timeframe=live.get("timeframe", tfs.get("trading", "15m")),
        lookback=live.get("lookback", 20),
        close_buffer_ms=live.get("close_buffer_ms", 5000),
        risk=_risk_from(merged),
        dry_run=live.get("dry_run", False),
        exchange_id=live.get("exchange_id", "bitget"),
        sandbox=live.get("sandbox", False),
    )


def list_symbols(config_dir: Optional[Path] = None) -> List[str]:
    """심볼 override 파일 목록"""
    symbols_dir = _config_dir(config_dir) / "symbols"
    if not symbols_dir.exists():
        return []
    return sorted(f.stem for f in symbols_dir.glob("*.yaml"))
