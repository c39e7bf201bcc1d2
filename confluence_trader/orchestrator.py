"""
One decision cycle over the configured universe.

    1. load the portfolio and freeze the cycle's buy budget
    2. refresh market context (cached)
    3. fetch quotes and candles for the watch list plus any held code
    4. score sector strength from the fetched quotes
    5. exit engine for every holding (trailing stop, partial-sell ladder)
    6. confluence sell vote for holdings the exit engine left alone
    7. confluence buy candidates, ranked, each through the safety governor
    8. upsert today's daily return snapshot from the broker balance

A failure on one instrument is recorded in the result and the cycle moves on.
``run_cycle`` never raises.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .analysis import InstrumentAnalysis, analyze_instrument
from .broker import Balance, BrokerClient
from .config import TradingConfig
from .execution import SkippedAction, TradeExecutor
from .exit_strategy import PARTIAL_SELL, TRAILING_STOP, ExitManager
from .indicators import UNKNOWN
from .journal import DailyReturnLog, DailyReturnSnapshot, TradeJournal, TradeRecord
from .logging_setup import logger, sanitize_error
from .market import MarketAnalyzer, MarketContext, SectorStrength
from .news import NewsAnalyzer
from .portfolio import Holding, Portfolio, PortfolioStore, PortfolioSummary
from .safety import CycleBudget
from .signals import Action, ConfluenceEngine, Signal, buy_rank
from .supply_demand import SupplyDemandAnalyzer


@dataclass(frozen=True)
class InstrumentError:
    code: str
    stage: str
    error: str


@dataclass
class CycleResult:
    started_at: str
    finished_at: Optional[str] = None
    market_condition: str = UNKNOWN
    analyzed: int = 0
    trades: List[TradeRecord] = field(default_factory=list)
    skipped: List[SkippedAction] = field(default_factory=list)
    errors: List[InstrumentError] = field(default_factory=list)

    @property
    def buys(self) -> List[TradeRecord]:
        return [t for t in self.trades if not t.is_sell]

    @property
    def sells(self) -> List[TradeRecord]:
        return [t for t in self.trades if t.is_sell]

    def summary(self) -> str:
        return (
            f"market={self.market_condition} analyzed={self.analyzed} buys={len(self.buys)} "
            f"sells={len(self.sells)} skipped={len(self.skipped)} errors={len(self.errors)}"
        )


class TradingOrchestrator:
    def __init__(
        self,
        config: TradingConfig,
        broker: BrokerClient,
        portfolio_store: PortfolioStore,
        journal: TradeJournal,
        daily_returns: DailyReturnLog,
        executor: TradeExecutor,
        market: Optional[MarketAnalyzer] = None,
        news: Optional[NewsAnalyzer] = None,
        flow: Optional[SupplyDemandAnalyzer] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.broker = broker
        self.portfolio_store = portfolio_store
        self.journal = journal
        self.daily_returns = daily_returns
        self.executor = executor
        self.market = market
        self.news = news
        self.flow = flow
        self.clock = clock
        self.engine = ConfluenceEngine(config)
        self.exits = ExitManager(config.exit)

    def _now(self) -> str:
        return self.clock().isoformat(timespec="seconds")

    def run_cycle(self) -> CycleResult:
        result = CycleResult(started_at=self._now())
        logger.info(f"Cycle started | universe={len(self.config.watch_list)}")
        try:
            self._run(result)
        except Exception as e:
            logger.exception(f"Cycle aborted | error={sanitize_error(e)}")
            result.errors.append(InstrumentError(code="*", stage="cycle", error=sanitize_error(e)))
        result.skipped.extend(self.executor.drain_skipped())
        result.finished_at = self._now()
        logger.info(f"Cycle finished | {result.summary()}")
        return result

    def _run(self, result: CycleResult) -> None:
        portfolio = self.portfolio_store.load()
        budget = CycleBudget.snapshot(portfolio, self.config)

        market = self._market_context()
        result.market_condition = market.condition if market else UNKNOWN

        universe = list(self.config.watch_list)
        universe += [code for code in portfolio.codes if code not in universe]
        data = self._fetch(universe, result)
        sectors = self.market.sector_strength(q["quote"] for q in data.values()) if self.market else {}
        analyses = self._analyze(data, market, sectors, result)
        result.analyzed = len(analyses)

        handled = self._run_exits(analyses, result)
        self._run_sells(analyses, handled, result)
        self._run_buys(analyses, budget, market, result)
        self._record_daily_return(result)

    # Data

    def _market_context(self) -> Optional[MarketContext]:
        if self.market is None or not self.config.coupling.enabled:
            return None
        return self.market.analyze_market()

    def _fetch(self, codes: List[str], result: CycleResult) -> Dict[str, dict]:
        data = {}
        for code in codes:
            try:
                quote = self.broker.get_quote(code)
                daily = self.broker.get_candles(code, self.config.analysis.history_days, "D")
                weekly = (
                    self.broker.get_candles(code, self.config.mtf.weekly_weeks, "W")
                    if self.config.mtf.enabled
                    else []
                )
            except Exception as e:
                self._error(result, code, "fetch", e)
                continue
            data[code] = {"quote": quote, "daily": daily, "weekly": weekly}
        return data

    def _analyze(
        self,
        data: Dict[str, dict],
        market: Optional[MarketContext],
        sectors: Dict[str, SectorStrength],
        result: CycleResult,
    ) -> Dict[str, InstrumentAnalysis]:
        analyses = {}
        for code, d in data.items():
            try:
                quote = d["quote"]
                coupling = (
                    self.market.coupling(quote, market, sectors)
                    if self.market is not None and market is not None
                    else None
                )
                analyses[code] = analyze_instrument(
                    quote,
                    d["daily"],
                    d["weekly"],
                    self.config,
                    coupling=coupling,
                    news=self.news.get_sentiment(code) if self.news else None,
                    flow=self.flow.analyze(code) if self.flow else None,
                )
            except Exception as e:
                self._error(result, code, "analysis", e)
        return analyses

    def _error(self, result: CycleResult, code: str, stage: str, err: Exception) -> None:
        message = sanitize_error(err)
        logger.error(f"Instrument failed | code={code} stage={stage} error={message}")
        result.errors.append(InstrumentError(code=code, stage=stage, error=message))

    # Decisions

    def _run_exits(self, analyses: Dict[str, InstrumentAnalysis], result: CycleResult) -> set:
        """Exit engine pass. Returns codes it traded.

        A rejected or failed exit leaves the code to the sell pass, so the
        emergency stop-loss is still checked.
        """
        handled = set()
        portfolio = self.portfolio_store.load()
        moved = False
        for holding in portfolio.holdings:
            a = analyses.get(holding.code)
            if a is not None and holding.update_high_water(a.price):
                moved = True
        if moved:
            self.portfolio_store.save(portfolio)

        for holding in list(portfolio.holdings):
            a = analyses.get(holding.code)
            if a is None:
                continue
            decision = self.exits.check(holding, a.price)
            if decision is None:
                continue
            try:
                if decision.action == TRAILING_STOP:
                    record = self.executor.execute_sell(
                        holding.code, a.price, reason=decision.reason, bypass_min_profit=True
                    )
                elif decision.action == PARTIAL_SELL:
                    record = self.executor.execute_partial_sell(
                        holding.code, decision.quantity, a.price, decision.level_id, reason=decision.reason
                    )
                else:
                    record = None
            except Exception as e:
                self._error(result, holding.code, "exit", e)
                continue
            if record is not None:
                handled.add(holding.code)
                result.trades.append(record)
        return handled

    def _run_sells(self, analyses: Dict[str, InstrumentAnalysis], handled: set, result: CycleResult) -> None:
        portfolio = self.portfolio_store.load()
        for holding in list(portfolio.holdings):
            a = analyses.get(holding.code)
            if holding.code in handled or a is None:
                continue
            signal = self.engine.evaluate_sell(a, holding)
            if signal.action != Action.SELL:
                logger.debug(f"Hold | code={holding.code} reason={signal.reason}")
                continue
            logger.info(
                f"Sell signal | code={holding.code} emergency={signal.emergency} "
                f"priority={signal.priority} reason={signal.reason}"
            )
            try:
                record = self.executor.execute_sell(
                    holding.code, a.price, reason=signal.reason, emergency=signal.emergency
                )
            except Exception as e:
                self._error(result, holding.code, "sell", e)
                continue
            if record is not None:
                result.trades.append(record)

    def _market_blocked(self, market: Optional[MarketContext]) -> bool:
        return (
            market is not None
            and self.config.coupling.enabled
            and market.condition in self.config.coupling.block_market_conditions
        )

    def _run_buys(
        self,
        analyses: Dict[str, InstrumentAnalysis],
        budget: CycleBudget,
        market: Optional[MarketContext],
        result: CycleResult,
    ) -> None:
        if self._market_blocked(market):
            logger.warning(f"Buys suspended | market={market.condition}")
            return
        if budget.remaining <= 0:
            logger.info(f"No buy capacity this cycle | max_buys={budget.max_buys}")
            return

        portfolio = self.portfolio_store.load()
        candidates: List[Signal] = []
        for code in self.config.watch_list:
            a = analyses.get(code)
            if a is None or code in portfolio:
                continue
            signal = self.engine.evaluate_buy(a)
            if signal.action == Action.BUY:
                candidates.append(signal)
            elif signal.warnings:
                logger.debug(f"Hold | code={code} reason={signal.reason} warnings={list(signal.warnings)}")

        for signal in sorted(candidates, key=buy_rank):
            logger.info(
                f"Buy signal | code={signal.code} priority={signal.priority} "
                f"conditions={signal.conditions_met}/{signal.conditions_required} reason={signal.reason}"
            )
            for warning in signal.warnings:
                logger.warning(f"Buy warning | code={signal.code} {warning}")
            try:
                record = self.executor.execute_buy(
                    signal.code,
                    signal.analysis.price,
                    budget,
                    reason=signal.reason,
                    name=signal.analysis.quote.name,
                )
            except Exception as e:
                self._error(result, signal.code, "buy", e)
                continue
            if record is not None:
                result.trades.append(record)

    def _record_daily_return(self, result: CycleResult) -> None:
        try:
            balance = self.broker.get_balance()
        except Exception as e:
            self._error(result, "*", "balance", e)
            return
        portfolio = self.portfolio_store.load()
        self._apply_summary(portfolio, balance)
        self.portfolio_store.save(portfolio)

        today = self.clock().date()
        counters = self.journal.daily_counters(today)
        deposit = balance.total_deposit
        self.daily_returns.upsert(
            DailyReturnSnapshot(
                date=today.isoformat(),
                total_deposit=deposit,
                total_evaluation=balance.total_evaluation,
                total_profit=balance.total_profit,
                profit_rate=round(balance.total_profit / deposit, 4) if deposit else 0.0,
                holdings_count=len(portfolio),
                buys=counters.buys,
                sells=counters.sells,
                market_condition=result.market_condition,
            )
        )

    @staticmethod
    def _apply_summary(portfolio: Portfolio, balance: Balance) -> None:
        portfolio.summary = PortfolioSummary(
            cash=balance.cash,
            total_deposit=balance.total_deposit,
            total_evaluation=balance.total_evaluation,
            total_profit=balance.total_profit,
        )

    # Maintenance

    def sync_portfolio(self) -> Portfolio:
        """Reconcile local holdings with the broker's balance.

        Quantities and average prices come from the broker. Buy dates,
        high-water marks and ladder progress are kept for codes already known.
        Codes the broker no longer reports are dropped.
        """
        balance = self.broker.get_balance()
        local = self.portfolio_store.load()
        synced = Portfolio(last_updated=local.last_updated)
        now = self._now()
        for bh in balance.holdings:
            if bh.quantity <= 0 or bh.avg_price <= 0:
                continue
            known = local.get(bh.code)
            if known is None:
                logger.info(f"Sync added holding | code={bh.code} qty={bh.quantity} avg={bh.avg_price}")
                holding = Holding(
                    code=bh.code,
                    name=bh.name,
                    sector=self.config.sector_of(bh.code),
                    quantity=bh.quantity,
                    avg_price=bh.avg_price,
                    buy_date=now,
                )
            else:
                if known.quantity != bh.quantity:
                    logger.info(f"Sync quantity | code={bh.code} local={known.quantity} broker={bh.quantity}")
                known.quantity = bh.quantity
                known.avg_price = bh.avg_price
                known.initial_quantity = max(known.initial_quantity, bh.quantity)
                known.highest_price = max(known.highest_price, bh.avg_price)
                holding = known
            self.executor.cooldowns.clear(bh.code)
            synced.add(holding)
        for code in local.codes:
            if code not in synced:
                logger.warning(f"Sync removed holding | code={code}")
        self._apply_summary(synced, balance)
        self.portfolio_store.save(synced)
        return synced

    def sell_all(self, reason: str = "liquidation") -> CycleResult:
        """Emergency sell of every holding at market."""
        result = CycleResult(started_at=self._now())
        logger.warning(f"Liquidating portfolio | reason={reason}")
        for holding in self.portfolio_store.load().holdings:
            try:
                quote = self.broker.get_quote(holding.code)
                record = self.executor.execute_sell(holding.code, quote.price, reason=reason, emergency=True)
            except Exception as e:
                self._error(result, holding.code, "liquidation", e)
                continue
            if record is not None:
                result.trades.append(record)
        result.skipped.extend(self.executor.drain_skipped())
        result.finished_at = self._now()
        return result
