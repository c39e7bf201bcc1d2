"""Configuration loader for the trading pipeline.

Supports YAML format with environment variable interpolation. Every component
receives the section it needs at construction time; nothing reads ambient
configuration after startup.
"""
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


class ConfigurationError(Exception):
    """Raised for invalid or incomplete configuration. Fatal at startup."""


@dataclass(frozen=True)
class TradingSection:
    """Position sizing."""
    buy_amount: int = 500_000
    max_holdings: int = 15


@dataclass(frozen=True)
class BuyConfig:
    """Buy-side indicator thresholds."""
    rsi_below: float = 30.0
    positive_news_rsi_bonus: float = 10.0
    ma_short: int = 5
    ma_long: int = 20
    required_conditions: Optional[int] = None


@dataclass(frozen=True)
class SellConfig:
    """Sell-side thresholds. stop_loss is a negative rate."""
    rsi_above: float = 70.0
    stop_loss: float = -0.05
    take_profit: float = 0.10
    news_loss_threshold: float = -0.01
    required_conditions: int = 2


@dataclass(frozen=True)
class SafetyConfig:
    """Frequency and concentration guards."""
    strict_mode: bool = False
    cooldown_hours: float = 24.0
    min_holding_hours: float = 2.0
    min_profit_to_sell: float = 0.01
    max_buys_per_run: int = 3
    max_per_sector: int = 3
    max_daily_buys: int = 5
    max_daily_sells: int = 10


@dataclass(frozen=True)
class MtfConfig:
    """Multi-timeframe filter."""
    enabled: bool = True
    strict_mode: bool = True
    allowed_signals: Tuple[str, ...] = ("STRONG_BUY", "BUY")
    weekly_weeks: int = 52


@dataclass(frozen=True)
class CouplingConfig:
    """Market/sector coupling filter."""
    enabled: bool = True
    strict_mode: bool = False
    block_market_conditions: Tuple[str, ...] = ("STRONG_BEARISH",)
    warn_market_conditions: Tuple[str, ...] = ("BEARISH",)
    cache_minutes: float = 5.0


@dataclass(frozen=True)
class SupportResistanceConfig:
    """Support/resistance and liquidity sweep detection."""
    enabled: bool = True
    strict_mode: bool = False
    pivot_lookback: int = 3
    cluster_tolerance: float = 0.01
    proximity: float = 0.01
    sweep_lookback: int = 10
    max_levels: int = 5


@dataclass(frozen=True)
class PartialSellLevel:
    """One rung of the partial-sell ladder."""
    profit_rate: float
    sell_ratio: float

    @property
    def level_id(self) -> str:
        return f"L{round(self.profit_rate * 100)}"


DEFAULT_LADDER = (
    PartialSellLevel(0.05, 0.3),
    PartialSellLevel(0.10, 0.3),
    PartialSellLevel(0.15, 0.4),
)


@dataclass(frozen=True)
class ExitConfig:
    """Partial-sell ladder and trailing stop."""
    enabled: bool = True
    partial_sell_enabled: bool = True
    levels: Tuple[PartialSellLevel, ...] = DEFAULT_LADDER
    trailing_enabled: bool = True
    activation_rate: float = 0.05
    trailing_rate: float = 0.03
    min_profit_rate: float = 0.02


@dataclass(frozen=True)
class RiskConfig:
    """Volatility-scaled stop and risk/reward gate."""
    atr_stop_multiplier: float = 2.0
    max_stop_loss: float = 0.10
    min_risk_reward: float = 1.5
    exceptional_margin: int = 2


@dataclass(frozen=True)
class AnalysisConfig:
    """History windows and cache lifetimes."""
    history_days: int = 60
    news_cache_minutes: float = 30.0
    flow_cache_minutes: float = 30.0
    flow_days: int = 5


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    cooldown_seconds: float = 30.0
    half_open_max: int = 1


@dataclass(frozen=True)
class RateLimitConfig:
    """Broker call pacing."""
    min_interval_seconds: float = 0.2
    requests_per_second: int = 5


@dataclass(frozen=True)
class PersistenceConfig:
    """State documents and log settings."""
    data_dir: str = "data"
    portfolio_file: str = "portfolio.json"
    trades_file: str = "trades.json"
    cooldown_file: str = "cooldowns.json"
    daily_returns_file: str = "daily-returns.json"
    log_file: str = "logs/trading.log"
    log_level: str = "INFO"

    def path(self, name: str) -> Path:
        return Path(self.data_dir) / name


_SECTIONS = {
    "trading": TradingSection,
    "buy": BuyConfig,
    "sell": SellConfig,
    "safety": SafetyConfig,
    "mtf": MtfConfig,
    "coupling": CouplingConfig,
    "sr": SupportResistanceConfig,
    "exit": ExitConfig,
    "risk": RiskConfig,
    "analysis": AnalysisConfig,
    "circuit_breaker": CircuitBreakerConfig,
    "rate_limit": RateLimitConfig,
    "persistence": PersistenceConfig,
}

ENV_OVERRIDES = {
    "BUY_AMOUNT": ("trading", "buy_amount", int),
    "MAX_HOLDINGS": ("trading", "max_holdings", int),
}


def _build_section(name: str, raw: Optional[Dict[str, Any]]):
    section_cls = _SECTIONS[name]
    raw = dict(raw or {})
    known = {f.name for f in fields(section_cls)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"Unknown option(s) in '{name}': {sorted(unknown)}")
    if name == "exit" and "levels" in raw:
        raw["levels"] = tuple(
            PartialSellLevel(float(lv["profit_rate"]), float(lv["sell_ratio"]))
            for lv in raw["levels"]
        )
    for key, value in list(raw.items()):
        if isinstance(value, list):
            raw[key] = tuple(value)
    return section_cls(**raw)


def _plain(value):
    """Convert tuples to lists recursively; yaml.safe_dump rejects tuples."""
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class TradingConfig:
    """Complete trading system configuration."""
    trading: TradingSection = field(default_factory=TradingSection)
    buy: BuyConfig = field(default_factory=BuyConfig)
    sell: SellConfig = field(default_factory=SellConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    mtf: MtfConfig = field(default_factory=MtfConfig)
    coupling: CouplingConfig = field(default_factory=CouplingConfig)
    sr: SupportResistanceConfig = field(default_factory=SupportResistanceConfig)
    exit: ExitConfig = field(default_factory=ExitConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    watch_list: Tuple[str, ...] = ()
    sector_map: Dict[str, str] = field(default_factory=dict)
    index_codes: Tuple[str, ...] = ("0001", "1001")

    def __post_init__(self):
        self.validate()

    @property
    def required_buy_conditions(self) -> int:
        """Buy confirmation threshold; stricter safety mode raises the default."""
        if self.buy.required_conditions is not None:
            return self.buy.required_conditions
        return 4 if self.safety.strict_mode else 3

    def sector_of(self, code: str) -> str:
        return self.sector_map.get(code, "UNKNOWN")

    def validate(self) -> None:
        if self.trading.buy_amount <= 0:
            raise ConfigurationError("trading.buy_amount must be positive")
        if self.trading.max_holdings < 1:
            raise ConfigurationError("trading.max_holdings must be at least 1")
        if self.sell.stop_loss >= 0:
            raise ConfigurationError("sell.stop_loss must be negative")
        if self.sell.take_profit <= 0:
            raise ConfigurationError("sell.take_profit must be positive")
        if self.required_buy_conditions < 1 or self.sell.required_conditions < 1:
            raise ConfigurationError("required condition counts must be at least 1")
        if len(self.index_codes) != 2:
            raise ConfigurationError("index_codes must name exactly two market indices")
        previous = 0.0
        for level in self.exit.levels:
            if level.profit_rate <= previous:
                raise ConfigurationError("exit.levels must have increasing profit_rate")
            if not 0 < level.sell_ratio <= 1:
                raise ConfigurationError("exit.levels sell_ratio must be in (0, 1]")
            previous = level.profit_rate

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TradingConfig":
        data = dict(data or {})
        kwargs: Dict[str, Any] = {}
        for name in _SECTIONS:
            kwargs[name] = _build_section(name, data.pop(name, None))
        if "watch_list" in data:
            kwargs["watch_list"] = tuple(str(c) for c in data.pop("watch_list") or ())
        if "sector_map" in data:
            kwargs["sector_map"] = {str(k): v for k, v in (data.pop("sector_map") or {}).items()}
        if "index_codes" in data:
            kwargs["index_codes"] = tuple(str(c) for c in data.pop("index_codes"))
        if data:
            raise ConfigurationError(f"Unknown top-level option(s): {sorted(data)}")
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, config_path: str) -> "TradingConfig":
        """Load configuration from YAML file with env var interpolation.

        Args:
            config_path: Path to YAML config file

        Returns:
            TradingConfig instance

        Example YAML:
            trading:
              buy_amount: 500000
              max_holdings: 15
            sell:
              stop_loss: -0.05
              required_conditions: 2
            persistence:
              data_dir: "${STATE_DIR}/data"
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with config_file.open("r", encoding="utf-8") as f:
            raw = f.read()

        # Interpolate environment variables: ${VAR_NAME}
        for key, value in os.environ.items():
            raw = raw.replace(f"${{{key}}}", value)

        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping: {config_path}")
        try:
            return cls.from_dict(data).with_env_overrides()
        except (TypeError, ValueError, KeyError) as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    def with_env_overrides(self, environ: Optional[Dict[str, str]] = None) -> "TradingConfig":
        """Apply BUY_AMOUNT / MAX_HOLDINGS environment overrides."""
        environ = os.environ if environ is None else environ
        config = self
        for var, (section, option, cast) in ENV_OVERRIDES.items():
            value = environ.get(var)
            if not value:
                continue
            try:
                parsed = cast(value)
            except ValueError as e:
                raise ConfigurationError(f"{var} is not a valid {cast.__name__}: {value!r}") from e
            config = replace(config, **{section: replace(getattr(config, section), **{option: parsed})})
        return config

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file."""
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
