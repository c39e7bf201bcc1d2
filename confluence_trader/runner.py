"""Process wiring: configuration, credentials and components.

The broker wire client is supplied by the caller (the deployment owns
authentication and transport); everything else is built from ``TradingConfig``.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .broker import BrokerClient, GuardedBroker
from .cache import TTLCache
from .circuit_breaker import CircuitBreaker
from .config import TradingConfig
from .credentials import BrokerCredentials, load_credentials
from .execution import TradeExecutor
from .journal import DailyReturnLog, TradeJournal
from .logging_setup import logger, setup_logging
from .market import MarketAnalyzer
from .news import NewsAnalyzer, NewsProvider
from .orchestrator import CycleResult, TradingOrchestrator
from .portfolio import PortfolioStore
from .rate_limit_policy import CallPacer
from .safety import CooldownRegistry, SafetyGovernor
from .store import JsonDocumentStore
from .supply_demand import FlowProvider, SupplyDemandAnalyzer


@dataclass
class Components:
    config: TradingConfig
    broker: GuardedBroker
    portfolio_store: PortfolioStore
    journal: TradeJournal
    daily_returns: DailyReturnLog
    cooldowns: CooldownRegistry
    governor: SafetyGovernor
    executor: TradeExecutor
    orchestrator: TradingOrchestrator


def build(
    config: TradingConfig,
    broker: BrokerClient,
    news_provider: Optional[NewsProvider] = None,
    flow_provider: Optional[FlowProvider] = None,
    clock: Callable[[], datetime] = datetime.now,
    pacer: Optional[CallPacer] = None,
    breaker: Optional[CircuitBreaker] = None,
) -> Components:
    """Assemble the pipeline around ``broker``.

    The broker is wrapped in a ``GuardedBroker`` unless it already is one.
    """
    persistence = config.persistence
    if not isinstance(broker, GuardedBroker):
        broker = GuardedBroker(
            broker,
            breaker or CircuitBreaker.from_config(config.circuit_breaker),
            pacer if pacer is not None else CallPacer.from_config(config.rate_limit),
        )

    def document(name: str, expected_type) -> JsonDocumentStore:
        return JsonDocumentStore(persistence.path(name), expected_type=expected_type, clock=clock)

    portfolio_store = PortfolioStore(document(persistence.portfolio_file, dict), clock=clock)
    journal = TradeJournal(document(persistence.trades_file, list))
    daily_returns = DailyReturnLog(document(persistence.daily_returns_file, list))
    cooldowns = CooldownRegistry(document(persistence.cooldown_file, dict), config.safety.cooldown_hours)
    governor = SafetyGovernor(config, cooldowns, journal, clock=clock)
    executor = TradeExecutor(broker, config, portfolio_store, journal, cooldowns, governor, clock=clock)

    analysis = config.analysis
    market = MarketAnalyzer(
        broker,
        config.coupling,
        index_codes=config.index_codes,
        sector_map=config.sector_map,
        cache=TTLCache(ttl_seconds=config.coupling.cache_minutes * 60),
    )
    news = NewsAnalyzer(news_provider, cache_minutes=analysis.news_cache_minutes) if news_provider else None
    flow = (
        SupplyDemandAnalyzer(flow_provider, days=analysis.flow_days, cache_minutes=analysis.flow_cache_minutes)
        if flow_provider
        else None
    )

    orchestrator = TradingOrchestrator(
        config,
        broker,
        portfolio_store,
        journal,
        daily_returns,
        executor,
        market=market,
        news=news,
        flow=flow,
        clock=clock,
    )
    return Components(
        config=config,
        broker=broker,
        portfolio_store=portfolio_store,
        journal=journal,
        daily_returns=daily_returns,
        cooldowns=cooldowns,
        governor=governor,
        executor=executor,
        orchestrator=orchestrator,
    )


def start(
    config_path: str,
    broker_factory: Callable[[BrokerCredentials, TradingConfig], BrokerClient],
    news_provider: Optional[NewsProvider] = None,
    flow_provider: Optional[FlowProvider] = None,
) -> Components:
    """Load configuration and credentials, configure logging and build the pipeline.

    Raises:
        ConfigurationError: invalid configuration or missing credentials
    """
    config = TradingConfig.from_yaml(config_path)
    setup_logging(log_file=config.persistence.log_file, level=config.persistence.log_level)
    credentials = load_credentials()
    logger.info(f"Credentials loaded | account={credentials.masked_account}")
    components = build(config, broker_factory(credentials, config), news_provider, flow_provider)
    logger.info(
        f"Pipeline ready | watch_list={len(config.watch_list)} max_holdings={config.trading.max_holdings} "
        f"buy_amount={config.trading.buy_amount}"
    )
    return components


def run_once(components: Components) -> CycleResult:
    """Run one cycle; the external scheduler decides when to call this again."""
    return components.orchestrator.run_cycle()
