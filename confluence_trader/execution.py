"""
Trade execution: turns approved decisions into broker orders and state.

Every method reloads the portfolio from disk, asks the safety governor,
submits the order through the broker client and, only on a confirmed fill,
writes the portfolio and appends a journal record. Rejections and failed
orders return None and are kept in ``skipped`` for the cycle report.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from .broker import BUY, SELL, BrokerClient
from .config import TradingConfig
from .journal import BUY as BUY_TRADE, PARTIAL_SELL, SELL as SELL_TRADE, TradeJournal, TradeRecord
from .logging_setup import logger, sanitize_error
from .portfolio import Holding, PortfolioStore
from .safety import CooldownRegistry, CycleBudget, SafetyGovernor


@dataclass(frozen=True)
class SkippedAction:
    code: str
    action: str
    reason: str


class TradeExecutor:
    def __init__(
        self,
        broker: BrokerClient,
        config: TradingConfig,
        portfolio_store: PortfolioStore,
        journal: TradeJournal,
        cooldowns: CooldownRegistry,
        governor: SafetyGovernor,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.broker = broker
        self.config = config
        self.portfolio_store = portfolio_store
        self.journal = journal
        self.cooldowns = cooldowns
        self.governor = governor
        self.clock = clock
        self.skipped: List[SkippedAction] = []

    def drain_skipped(self) -> List[SkippedAction]:
        out, self.skipped = self.skipped, []
        return out

    def _skip(self, code: str, action: str, reason: str) -> None:
        logger.info(f"Skipped | action={action} code={code} reason={reason}")
        self.skipped.append(SkippedAction(code=code, action=action, reason=reason))

    def _submit(self, code: str, side: str, quantity: int) -> Optional[str]:
        """Submit a market order; return the order reference on a confirmed fill."""
        try:
            result = self.broker.place_order(code, side, quantity)
        except Exception as e:
            self._skip(code, side, f"order error: {sanitize_error(e)}")
            return None
        if not result.success:
            self._skip(code, side, f"order rejected: {result.message}")
            return None
        logger.info(f"Order filled | side={side} code={code} qty={quantity} order_ref={result.order_ref}")
        return result.order_ref or ""

    def execute_buy(
        self,
        code: str,
        price: float,
        budget: CycleBudget,
        reason: str = "",
        name: str = "",
    ) -> Optional[TradeRecord]:
        """Buy ``trading.buy_amount`` worth of ``code`` at market.

        Returns None (and records a skip) when the portfolio is full, the code
        is already held, the amount buys less than one share, the governor
        rejects the buy, or the order does not fill.
        """
        portfolio = self.portfolio_store.load()
        if len(portfolio) >= self.config.trading.max_holdings:
            self._skip(code, BUY, f"max holdings reached ({len(portfolio)}/{self.config.trading.max_holdings})")
            return None
        if code in portfolio:
            self._skip(code, BUY, "already held")
            return None
        if price <= 0:
            self._skip(code, BUY, f"invalid price {price}")
            return None
        quantity = math.floor(self.config.trading.buy_amount / price)
        if quantity < 1:
            self._skip(code, BUY, f"buy amount {self.config.trading.buy_amount} below price {price:g}")
            return None

        now = self.clock()
        decision = self.governor.check_buy(code, budget, now)
        if not decision.allowed:
            self._skip(code, BUY, decision.reason)
            return None

        order_ref = self._submit(code, BUY, quantity)
        if order_ref is None:
            return None

        timestamp = now.isoformat(timespec="seconds")
        portfolio.add(
            Holding(
                code=code,
                name=name,
                sector=self.config.sector_of(code),
                quantity=quantity,
                avg_price=price,
                buy_date=timestamp,
                order_ref=order_ref,
            )
        )
        self.portfolio_store.save(portfolio)
        record = TradeRecord(
            type=BUY_TRADE,
            code=code,
            name=name,
            quantity=quantity,
            price=price,
            amount=round(price * quantity, 2),
            timestamp=timestamp,
            reason=reason,
            order_ref=order_ref,
        )
        self.journal.append(record)
        self.cooldowns.clear(code)
        budget.record_buy(self.config.sector_of(code))
        return record

    def execute_sell(
        self,
        code: str,
        price: float,
        reason: str = "",
        emergency: bool = False,
        bypass_min_profit: bool = False,
    ) -> Optional[TradeRecord]:
        """Close the whole position and start its cooldown."""
        portfolio = self.portfolio_store.load()
        holding = portfolio.get(code)
        if holding is None:
            self._skip(code, SELL, "not held")
            return None

        now = self.clock()
        decision = self.governor.check_sell(
            holding, price, emergency=emergency, now=now, bypass_min_profit=bypass_min_profit
        )
        if not decision.allowed:
            self._skip(code, SELL, decision.reason)
            return None

        quantity = holding.quantity
        order_ref = self._submit(code, SELL, quantity)
        if order_ref is None:
            return None

        portfolio.remove(code)
        self.portfolio_store.save(portfolio)
        record = self._sell_record(SELL_TRADE, holding, quantity, price, now, reason, order_ref)
        self.journal.append(record)
        self.cooldowns.record(code, now)
        return record

    def execute_partial_sell(
        self,
        code: str,
        quantity: int,
        price: float,
        level_id: str,
        reason: str = "",
    ) -> Optional[TradeRecord]:
        """Sell one ladder rung and mark it complete on the holding."""
        portfolio = self.portfolio_store.load()
        holding = portfolio.get(code)
        if holding is None:
            self._skip(code, PARTIAL_SELL, "not held")
            return None
        if level_id in holding.partial_sells:
            self._skip(code, PARTIAL_SELL, f"level {level_id} already executed")
            return None
        quantity = min(quantity, holding.quantity)
        if quantity < 1:
            self._skip(code, PARTIAL_SELL, "nothing to sell")
            return None

        now = self.clock()
        decision = self.governor.check_sell(holding, price, now=now)
        if not decision.allowed:
            self._skip(code, PARTIAL_SELL, decision.reason)
            return None

        order_ref = self._submit(code, SELL, quantity)
        if order_ref is None:
            return None

        holding.quantity -= quantity
        holding.partial_sells.append(level_id)
        closed = holding.quantity <= 0
        if closed:
            portfolio.remove(code)
        self.portfolio_store.save(portfolio)
        record = self._sell_record(PARTIAL_SELL, holding, quantity, price, now, reason, order_ref, level_id)
        self.journal.append(record)
        if closed:
            self.cooldowns.record(code, now)
        return record

    def _sell_record(
        self,
        kind: str,
        holding: Holding,
        quantity: int,
        price: float,
        now: datetime,
        reason: str,
        order_ref: str,
        level_id: Optional[str] = None,
    ) -> TradeRecord:
        return TradeRecord(
            type=kind,
            code=holding.code,
            name=holding.name,
            quantity=quantity,
            price=price,
            amount=round(price * quantity, 2),
            timestamp=now.isoformat(timespec="seconds"),
            reason=reason,
            profit=round((price - holding.avg_price) * quantity, 2),
            profit_rate=round(holding.profit_rate(price), 4),
            order_ref=order_ref,
            level_id=level_id,
        )
