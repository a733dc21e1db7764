from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, TypeVar
import os
import yaml

from .errors import ConfigError

T = TypeVar("T")

ENTRY_MODES = ("ob_mid", "ob_top", "ob_bottom")
MARKETS = ("futures", "spot")


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _split_env_list(raw: str) -> List[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass
class TimeframeMap(Generic[T]):
    """Per-timeframe value with an explicit default."""

    default: T
    overrides: Dict[str, T] = field(default_factory=dict)

    def for_tf(self, timeframe: str) -> T:
        return self.overrides.get(timeframe, self.default)

    @classmethod
    def parse(cls, raw: Any, default: T) -> "TimeframeMap[T]":
        # Accepts a bare value (default only) or {"default": v, "15m": v, ...}
        if raw is None:
            return cls(default=default)
        if isinstance(raw, TimeframeMap):
            return raw
        if isinstance(raw, dict):
            overrides = {str(k): v for k, v in raw.items() if k != "default"}
            return cls(default=raw.get("default", default), overrides=overrides)
        return cls(default=raw)

    def values(self) -> List[T]:
        return [self.default, *self.overrides.values()]


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


@dataclass
class SnrConfig:
    enabled: bool = False
    length: int = 50
    min: Any = None  # TimeframeMap[float] after load

    def __post_init__(self) -> None:
        self.min = TimeframeMap.parse(self.min, 0.0)

    def min_for(self, timeframe: str) -> float:
        return float(self.min.for_tf(timeframe))


@dataclass
class StrategyConfig:
    swing_lookback: int = 5
    atr_period: int = 14
    atr_mult: float = 0.6
    ob_use_wicks: bool = True
    ob_max_lookback: int = 50
    entry_mode: str = "ob_mid"  # ob_mid | ob_top | ob_bottom
    sl_atr_pad: float = 0.1
    min_candles: int = 80
    tp_r_mults: Any = None  # TimeframeMap[List[float]] after load
    snr: Any = None  # SnrConfig after load

    def __post_init__(self) -> None:
        tp = TimeframeMap.parse(self.tp_r_mults, [1.0, 1.5, 2.0])
        # a bare number means a single target
        self.tp_r_mults = TimeframeMap(
            default=_as_list(tp.default),
            overrides={tf: _as_list(v) for tf, v in tp.overrides.items()},
        )
        if self.snr is None:
            self.snr = SnrConfig()
        elif isinstance(self.snr, dict):
            self.snr = SnrConfig(**self.snr)

    def targets_for(self, timeframe: str) -> List[float]:
        return sorted({float(r) for r in self.tp_r_mults.for_tf(timeframe)})


@dataclass
class ProviderConfig:
    type: str = "binance"
    market: str = "futures"  # futures|spot
    fallback_markets: bool = True
    candle_limit: int = 300
    rest_timeout_s: int = 20
    rest_max_retries: int = 1  # attempts per market; the other market is the fallback
    rest_backoff_s: float = 0.8


@dataclass
class ScanConfig:
    symbols: List[str] = None
    timeframes: List[str] = None
    htf_timeframes: List[str] = None
    summary_timeframes: List[str] = None
    interval_s: int = 180
    push_on_start: bool = False

    def __post_init__(self) -> None:
        if self.symbols is None:
            self.symbols = ["BTC/USDT", "ETH/USDT", "SOL/USDT", "DOGE/USDT", "XRP/USDT", "ADA/USDT", "LINK/USDT"]
        if self.timeframes is None:
            self.timeframes = ["5m", "15m", "30m", "1h", "4h", "1d"]
        if self.htf_timeframes is None:
            self.htf_timeframes = ["30m", "1h", "4h", "1d", "1w"]
        if self.summary_timeframes is None:
            self.summary_timeframes = ["5m", "15m", "30m", "1h", "4h", "1d", "1w"]


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    poll_timeout_s: int = 30
    disable_web_page_preview: bool = True


@dataclass
class AppConfig:
    name: str = "Order Block Sentinel"
    log_level: str = "INFO"
    timezone: str = "UTC+8"


@dataclass
class Config:
    app: AppConfig
    provider: ProviderConfig
    scan: ScanConfig
    strategy: StrategyConfig
    telegram: TelegramConfig

    def validate(self) -> None:
        errs: List[str] = []
        s = self.strategy
        if not self.scan.symbols:
            errs.append("scan.symbols must not be empty")
        for name in ("timeframes", "htf_timeframes", "summary_timeframes"):
            if not getattr(self.scan, name):
                errs.append(f"scan.{name} must not be empty")
        if int(self.scan.interval_s) <= 0:
            errs.append("scan.interval_s must be > 0")
        if self.provider.type != "binance":
            errs.append("provider.type must be binance")
        if self.provider.market not in MARKETS:
            errs.append(f"provider.market must be one of {MARKETS}")
        if int(self.provider.rest_max_retries) < 1:
            errs.append("provider.rest_max_retries must be >= 1")
        if int(self.provider.candle_limit) < int(s.min_candles):
            errs.append("provider.candle_limit must be >= strategy.min_candles")
        for name in ("swing_lookback", "atr_period", "ob_max_lookback", "min_candles"):
            if int(getattr(s, name)) <= 0:
                errs.append(f"strategy.{name} must be > 0")
        if float(s.atr_mult) <= 0:
            errs.append("strategy.atr_mult must be > 0")
        if float(s.sl_atr_pad) < 0:
            errs.append("strategy.sl_atr_pad must be >= 0")
        if s.entry_mode not in ENTRY_MODES:
            errs.append(f"strategy.entry_mode must be one of {ENTRY_MODES}")
        for mults in s.tp_r_mults.values():
            try:
                rs = [float(r) for r in mults]
            except (TypeError, ValueError):
                errs.append("strategy.tp_r_mults must be numbers")
                break
            if not rs or any(r <= 0 for r in rs):
                errs.append("strategy.tp_r_mults must be non-empty lists of positive multiples")
                break
            if len(set(rs)) != len(rs):
                errs.append("strategy.tp_r_mults must not repeat a multiple")
                break
        if s.snr.enabled and int(s.snr.length) < 3:
            errs.append("strategy.snr.length must be >= 3")
        if errs:
            raise ConfigError("Invalid config: " + "; ".join(errs))


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return build_config(raw)


def build_config(raw: Dict[str, Any]) -> Config:
    try:
        cfg = Config(
            app=AppConfig(**(raw.get("app") or {})),
            provider=ProviderConfig(**(raw.get("provider") or {})),
            scan=ScanConfig(**(raw.get("scan") or {})),
            strategy=StrategyConfig(**(raw.get("strategy") or {})),
            telegram=TelegramConfig(**(raw.get("telegram") or {})),
        )
    except TypeError as e:
        # unknown keys in a section
        raise ConfigError(f"Invalid config: {e}") from e

    # env overrides (useful on servers)
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    cfg.telegram.chat_ids = [str(x).strip() for x in cfg.telegram.chat_ids if str(x).strip()]

    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = _split_env_list(chat_env)

    symbols_env = os.getenv("SCAN_SYMBOLS")
    if symbols_env:
        cfg.scan.symbols = _split_env_list(symbols_env)
    cfg.scan.interval_s = _env_override(cfg.scan.interval_s, "SCAN_INTERVAL_S")
    cfg.app.log_level = _env_override(cfg.app.log_level, "LOG_LEVEL")

    cfg.validate()
    return cfg


def default_config() -> Config:
    return build_config({})
