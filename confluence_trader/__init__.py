"""
Confluence Trader.

A multi-confirmation equity trading pipeline featuring:
- Daily and weekly candle analysis with a pure indicator library
- Structural detectors: candle patterns, support/resistance with liquidity
  sweeps, multi-timeframe alignment, market and sector coupling
- Buy only when enough independent conditions agree; sell on a confirmation
  vote or an emergency stop
- Partial-sell ladder and trailing stop that take precedence over sell votes
- Safety governor: cooldowns, holding time, sector and per-run caps, daily quotas
- Crash-safe JSON state with backup recovery and quarantine
- Circuit breaker and call pacing around the broker collaborator
- Structured logging via loguru
- Configuration-driven (YAML)

Core Modules:
    indicators: Moving averages, RSI, MACD, Bollinger, ATR, stochastic and more
    patterns, support_resistance, mtf, market: Structural detectors
    signals: Confluence signal engine
    exit_strategy: Partial-sell ladder and trailing stop
    safety: Safety governor, cooldown registry, cycle budget
    execution: Trade executor
    orchestrator: One decision cycle, portfolio sync, liquidation
    store, portfolio, journal: Persistent state
    broker, circuit_breaker, rate_limit_policy: Broker access
    config: Configuration loading and validation
    credentials: Credential presence check

Example:
    >>> from confluence_trader.config import TradingConfig
    >>> from confluence_trader.runner import build
    >>> from confluence_trader.broker import InMemoryBroker
    >>>
    >>> config = TradingConfig.from_yaml("config.yaml")
    >>> components = build(config, InMemoryBroker())
    >>> result = components.orchestrator.run_cycle()
"""

__version__ = "0.1.0"
__all__ = [
    "candles",
    "indicators",
    "patterns",
    "support_resistance",
    "mtf",
    "market",
    "news",
    "supply_demand",
    "analysis",
    "signals",
    "exit_strategy",
    "safety",
    "store",
    "portfolio",
    "journal",
    "broker",
    "circuit_breaker",
    "rate_limit_policy",
    "execution",
    "orchestrator",
    "config",
    "credentials",
    "runner",
]
