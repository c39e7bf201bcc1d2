"""
Holdings and the portfolio document.

A Holding tracks one open position: quantity, average price, entry time,
the highest price seen since entry (for the trailing stop) and which
partial-sell ladder rungs have already executed.

Invariants:
    - a code appears at most once in the portfolio
    - quantity > 0 and avg_price > 0 while the holding exists
    - highest_price never decreases (ratchet-only)

Examples:
    >>> h = Holding(code="005930", quantity=10, avg_price=10000, buy_date="2024-01-02T09:00:00")
    >>> h.update_high_water(10800)
    True
    >>> h.update_high_water(10500)
    False
    >>> h.highest_price
    10800
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .logging_setup import logger
from .store import JsonDocumentStore


@dataclass
class Holding:
    """An open position.

    Attributes:
        code: Instrument code (unique within the portfolio)
        quantity: Shares currently held
        avg_price: Average fill price
        sector: Sector label at entry
        buy_date: ISO timestamp of the opening fill
        initial_quantity: Shares bought at entry; ladder rungs size from this
        highest_price: High-water price since entry
        partial_sells: Completed ladder level ids, e.g. ["L5", "L10"]
    """

    code: str
    quantity: int
    avg_price: float
    buy_date: str
    name: str = ""
    sector: str = ""
    initial_quantity: int = 0
    highest_price: float = 0.0
    partial_sells: List[str] = field(default_factory=list)
    order_ref: Optional[str] = None

    def __post_init__(self):
        if not self.initial_quantity:
            self.initial_quantity = self.quantity
        if self.highest_price < self.avg_price:
            self.highest_price = self.avg_price

    def profit_rate(self, price: float) -> float:
        return (price - self.avg_price) / self.avg_price

    def update_high_water(self, price: float) -> bool:
        """Raise the high-water mark; return True if it moved."""
        if price > self.highest_price:
            self.highest_price = price
            return True
        return False

    def holding_hours(self, now: datetime) -> float:
        return (now - datetime.fromisoformat(self.buy_date)).total_seconds() / 3600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "sector": self.sector,
            "quantity": self.quantity,
            "initial_quantity": self.initial_quantity,
            "avg_price": self.avg_price,
            "buy_date": self.buy_date,
            "highest_price": self.highest_price,
            "partial_sells": list(self.partial_sells),
            "order_ref": self.order_ref,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Holding":
        return cls(
            code=str(d["code"]),
            name=d.get("name", ""),
            sector=d.get("sector", ""),
            quantity=int(d["quantity"]),
            initial_quantity=int(d.get("initial_quantity") or 0),
            avg_price=float(d["avg_price"]),
            buy_date=d["buy_date"],
            highest_price=float(d.get("highest_price") or 0),
            partial_sells=list(d.get("partial_sells") or []),
            order_ref=d.get("order_ref"),
        )


@dataclass
class PortfolioSummary:
    cash: float = 0.0
    total_deposit: float = 0.0
    total_evaluation: float = 0.0
    total_profit: float = 0.0


@dataclass
class Portfolio:
    holdings: List[Holding] = field(default_factory=list)
    summary: PortfolioSummary = field(default_factory=PortfolioSummary)
    last_updated: Optional[str] = None

    def get(self, code: str) -> Optional[Holding]:
        for holding in self.holdings:
            if holding.code == code:
                return holding
        return None

    def __contains__(self, code: str) -> bool:
        return self.get(code) is not None

    def __len__(self) -> int:
        return len(self.holdings)

    @property
    def codes(self) -> List[str]:
        return [h.code for h in self.holdings]

    def add(self, holding: Holding) -> None:
        if holding.code in self:
            raise ValueError(f"holding already exists: {holding.code}")
        if holding.quantity <= 0 or holding.avg_price <= 0:
            raise ValueError(f"invalid holding {holding.code}: quantity={holding.quantity} avg_price={holding.avg_price}")
        self.holdings.append(holding)

    def remove(self, code: str) -> Optional[Holding]:
        holding = self.get(code)
        if holding is not None:
            self.holdings.remove(holding)
        return holding

    def sector_counts(self, sector_of: Callable[[str], str]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for holding in self.holdings:
            sector = sector_of(holding.code)
            counts[sector] = counts.get(sector, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "holdings": [h.to_dict() for h in self.holdings],
            "summary": vars(self.summary).copy(),
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Portfolio":
        raw_summary = d.get("summary") or {}
        portfolio = cls(
            summary=PortfolioSummary(
                **{k: float(v) for k, v in raw_summary.items() if k in PortfolioSummary.__dataclass_fields__}
            ),
            last_updated=d.get("last_updated"),
        )
        for raw in d.get("holdings") or []:
            try:
                holding = Holding.from_dict(raw)
                portfolio.add(holding)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Dropping invalid holding record | record={raw} error={e}")
        return portfolio


class PortfolioStore:
    """Load/save the portfolio document. Reloaded at every decision point."""

    def __init__(self, store: JsonDocumentStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock

    def load(self) -> Portfolio:
        return Portfolio.from_dict(self.store.load(dict))

    def save(self, portfolio: Portfolio) -> None:
        portfolio.last_updated = self.clock().isoformat(timespec="seconds")
        self.store.save(portfolio.to_dict())
