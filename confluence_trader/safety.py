"""Safety governor: last gate before any order reaches the broker.

Checks run in a fixed order and the first failing check blocks the action:

    1. cooldown after a full sell              (BUY)
    2. minimum holding duration                (SELL, skipped for emergencies)
    3. minimum realized-gain floor             (SELL, skipped for emergencies)
    4. sector concentration                    (BUY)
    5. per-run buy cap, frozen at cycle start  (BUY)
    6. daily buy/sell quotas from the journal  (both)

A rejection is not an error: callers log it and move on to the next candidate.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from .config import TradingConfig
from .journal import TradeJournal
from .logging_setup import logger
from .portfolio import Holding, Portfolio
from .store import JsonDocumentStore

UNMAPPED_SECTOR = "UNKNOWN"


@dataclass(frozen=True)
class SafetyDecision:
    allowed: bool
    reason: str = ""
    check: str = ""


ALLOW = SafetyDecision(allowed=True)


def _reject(check: str, reason: str) -> SafetyDecision:
    return SafetyDecision(allowed=False, reason=reason, check=check)


class CooldownRegistry:
    """Persisted map of code -> time of the last completed full sell."""

    def __init__(self, store: JsonDocumentStore, cooldown_hours: float):
        self.store = store
        self.cooldown_hours = cooldown_hours

    def entries(self) -> Dict[str, str]:
        return dict(self.store.load(dict))

    def record(self, code: str, sold_at: datetime) -> None:
        data = self.entries()
        data[code] = sold_at.isoformat(timespec="seconds")
        self.store.save(data)

    def clear(self, code: str) -> None:
        data = self.entries()
        if data.pop(code, None) is not None:
            self.store.save(data)

    def remaining_hours(self, code: str, now: datetime) -> Optional[float]:
        """Hours left on the cooldown, or None if there is none.

        An expired entry is deleted as a side effect.
        """
        data = self.entries()
        sold_at = data.get(code)
        if sold_at is None:
            return None
        elapsed = (now - datetime.fromisoformat(sold_at)).total_seconds() / 3600
        if elapsed >= self.cooldown_hours:
            del data[code]
            self.store.save(data)
            logger.debug(f"Cooldown expired | code={code}")
            return None
        return self.cooldown_hours - elapsed


@dataclass
class CycleBudget:
    """Buy capacity snapshotted at cycle start.

    Intra-cycle sells never release capacity; intra-cycle buys consume it.
    """
    max_buys: int
    sector_counts: Dict[str, int] = field(default_factory=dict)
    buys_done: int = 0

    @classmethod
    def snapshot(cls, portfolio: Portfolio, config: TradingConfig) -> "CycleBudget":
        slots = max(0, config.trading.max_holdings - len(portfolio))
        return cls(
            max_buys=min(config.safety.max_buys_per_run, slots),
            sector_counts=portfolio.sector_counts(config.sector_of),
        )

    @property
    def remaining(self) -> int:
        return max(0, self.max_buys - self.buys_done)

    def record_buy(self, sector: str) -> None:
        self.buys_done += 1
        self.sector_counts[sector] = self.sector_counts.get(sector, 0) + 1


class SafetyGovernor:
    def __init__(
        self,
        config: TradingConfig,
        cooldowns: CooldownRegistry,
        journal: TradeJournal,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.cooldowns = cooldowns
        self.journal = journal
        self.clock = clock

    def check_buy(self, code: str, budget: CycleBudget, now: Optional[datetime] = None) -> SafetyDecision:
        now = now or self.clock()
        safety = self.config.safety

        remaining = self.cooldowns.remaining_hours(code, now)
        if remaining is not None:
            return _reject("cooldown", f"cooldown active: {remaining:.1f}h remaining")

        sector = self.config.sector_of(code)
        if sector != UNMAPPED_SECTOR and budget.sector_counts.get(sector, 0) >= safety.max_per_sector:
            return _reject(
                "sector",
                f"sector {sector} already holds {budget.sector_counts[sector]} positions (max {safety.max_per_sector})",
            )

        if budget.remaining <= 0:
            return _reject("run_cap", f"per-run buy cap reached ({budget.max_buys})")

        counters = self.journal.daily_counters(now.date())
        if counters.buys >= safety.max_daily_buys:
            return _reject("daily_quota", f"daily buy quota reached ({counters.buys}/{safety.max_daily_buys})")

        return ALLOW

    def check_sell(
        self,
        holding: Holding,
        price: float,
        emergency: bool = False,
        now: Optional[datetime] = None,
        bypass_min_profit: bool = False,
    ) -> SafetyDecision:
        """Emergency sells skip holding time and minimum gain. Trailing-stop
        exits skip only the minimum gain. The daily quota always applies.
        """
        now = now or self.clock()
        safety = self.config.safety

        if not emergency:
            held = holding.holding_hours(now)
            if held < safety.min_holding_hours:
                return _reject(
                    "min_holding",
                    f"held {held:.1f}h, minimum {safety.min_holding_hours:g}h",
                )
            profit_rate = holding.profit_rate(price)
            if not bypass_min_profit and 0 < profit_rate < safety.min_profit_to_sell:
                return _reject(
                    "min_profit",
                    f"gain {profit_rate:.2%} below minimum {safety.min_profit_to_sell:.2%}",
                )

        counters = self.journal.daily_counters(now.date())
        if counters.sells >= safety.max_daily_sells:
            return _reject("daily_quota", f"daily sell quota reached ({counters.sells}/{safety.max_daily_sells})")

        return ALLOW
