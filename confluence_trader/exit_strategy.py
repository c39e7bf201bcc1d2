"""
Exit strategy engine: partial-sell ladder and trailing stop.

Runs for every holding independently of the confluence engine and takes
priority over it. Within one evaluation a triggered trailing stop (full exit)
wins over a due ladder rung.

Ladder:
    Rungs are (profit_rate, sell_ratio) pairs. The first rung whose threshold
    is reached and whose level id is not yet recorded on the holding is the
    next sell; its size is floor(initial_quantity * sell_ratio), at least 1
    and at most the shares still held. Completed rungs never re-trigger.

Trailing stop:
    Armed once the high-water return reaches ``activation_rate``. The stop is
    max(high * (1 - trailing_rate), avg * (1 + min_profit_rate)), which is
    non-decreasing in the high-water price. Price at or below the stop closes
    the whole position.
"""

import math
from dataclasses import dataclass
from typing import Optional

from .config import ExitConfig, PartialSellLevel
from .portfolio import Holding

TRAILING_STOP = "TRAILING_STOP"
PARTIAL_SELL = "PARTIAL_SELL"


@dataclass(frozen=True)
class PartialSellPlan:
    level_id: str
    threshold: float
    sell_ratio: float
    quantity: int


@dataclass(frozen=True)
class TrailingStopState:
    active: bool
    highest_price: float
    stop_price: float
    triggered: bool


@dataclass(frozen=True)
class ExitDecision:
    action: str  # TRAILING_STOP or PARTIAL_SELL
    quantity: int
    reason: str
    profit_rate: float
    priority: int
    level_id: Optional[str] = None


class ExitManager:
    def __init__(self, config: Optional[ExitConfig] = None):
        self.config = config or ExitConfig()

    def effective_stop_price(self, avg_price: float, highest_price: float) -> float:
        trailing = highest_price * (1 - self.config.trailing_rate)
        floor = avg_price * (1 + self.config.min_profit_rate)
        return round(max(trailing, floor), 2)

    def trailing_stop(self, holding: Holding, price: float) -> TrailingStopState:
        highest = max(holding.highest_price or max(price, holding.avg_price), price)
        stop = self.effective_stop_price(holding.avg_price, highest)
        active = (highest - holding.avg_price) / holding.avg_price >= self.config.activation_rate
        return TrailingStopState(
            active=active,
            highest_price=highest,
            stop_price=stop,
            triggered=active and price <= stop,
        )

    def _quantity(self, holding: Holding, level: PartialSellLevel) -> int:
        base = holding.initial_quantity or holding.quantity
        qty = max(1, math.floor(base * level.sell_ratio))
        return min(qty, holding.quantity)

    def next_partial_sell(self, holding: Holding, price: float) -> Optional[PartialSellPlan]:
        profit_rate = holding.profit_rate(price)
        completed = set(holding.partial_sells)
        for level in self.config.levels:
            if level.level_id in completed:
                continue
            if profit_rate >= level.profit_rate:
                return PartialSellPlan(
                    level_id=level.level_id,
                    threshold=level.profit_rate,
                    sell_ratio=level.sell_ratio,
                    quantity=self._quantity(holding, level),
                )
        return None

    def check(self, holding: Holding, price: float) -> Optional[ExitDecision]:
        """Return the exit action due for this holding at ``price``, if any."""
        if not self.config.enabled or holding.quantity <= 0:
            return None
        profit_rate = holding.profit_rate(price)

        if self.config.trailing_enabled:
            state = self.trailing_stop(holding, price)
            if state.triggered:
                return ExitDecision(
                    action=TRAILING_STOP,
                    quantity=holding.quantity,
                    reason=(
                        f"trailing stop: price {price:g} <= stop {state.stop_price:g} "
                        f"(high {state.highest_price:g})"
                    ),
                    profit_rate=profit_rate,
                    priority=1,
                )

        if self.config.partial_sell_enabled:
            plan = self.next_partial_sell(holding, price)
            if plan is not None:
                return ExitDecision(
                    action=PARTIAL_SELL,
                    quantity=plan.quantity,
                    reason=f"partial sell {plan.level_id}: +{profit_rate:.2%} >= +{plan.threshold:.0%}",
                    profit_rate=profit_rate,
                    priority=2,
                    level_id=plan.level_id,
                )
        return None
