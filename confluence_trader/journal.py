"""Trade journal, daily counters and daily return snapshots.

The journal is append-only and is the single source of truth for trade
counts and profit accounting; daily buy/sell counters are derived by
replaying the current day's records, never stored separately.
"""
from dataclasses import asdict, dataclass, fields
from datetime import date
from typing import Any, Dict, List, Optional

from .logging_setup import logger
from .store import JsonDocumentStore

BUY = "BUY"
SELL = "SELL"
PARTIAL_SELL = "PARTIAL_SELL"
SELL_TYPES = (SELL, PARTIAL_SELL)


@dataclass(frozen=True)
class TradeRecord:
    type: str
    code: str
    quantity: int
    price: float
    amount: float
    timestamp: str
    reason: str = ""
    name: str = ""
    profit: Optional[float] = None
    profit_rate: Optional[float] = None
    order_ref: Optional[str] = None
    level_id: Optional[str] = None

    @property
    def is_sell(self) -> bool:
        return self.type in SELL_TYPES

    @property
    def day(self) -> str:
        return self.timestamp[:10]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TradeRecord":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in known})


@dataclass(frozen=True)
class DailyCounters:
    buys: int = 0
    sells: int = 0


class TradeJournal:
    def __init__(self, store: JsonDocumentStore):
        self.store = store

    def records(self) -> List[TradeRecord]:
        out = []
        for raw in self.store.load(list):
            try:
                out.append(TradeRecord.from_dict(raw))
            except (TypeError, AttributeError) as e:
                logger.error(f"Skipping malformed trade record | record={raw} error={e}")
        return out

    def append(self, record: TradeRecord) -> None:
        data = self.store.load(list)
        data.append(record.to_dict())
        self.store.save(data)
        logger.info(
            f"Trade recorded | type={record.type} code={record.code} qty={record.quantity} "
            f"price={record.price} reason={record.reason}"
        )

    def for_day(self, day: date) -> List[TradeRecord]:
        key = day.isoformat()
        return [r for r in self.records() if r.day == key]

    def daily_counters(self, day: date) -> DailyCounters:
        today = self.for_day(day)
        return DailyCounters(
            buys=sum(1 for r in today if r.type == BUY),
            sells=sum(1 for r in today if r.is_sell),
        )

    def summary(self) -> Dict[str, Any]:
        """Aggregate realized P&L across all sell records."""
        sells = [r for r in self.records() if r.is_sell and r.profit is not None]
        if not sells:
            return {
                "total_trades": 0,
                "total_realized_pnl": 0.0,
                "win_count": 0,
                "loss_count": 0,
                "win_rate_percent": 0.0,
                "avg_profit_rate": 0.0,
            }
        wins = len([r for r in sells if r.profit > 0])
        losses = len([r for r in sells if r.profit < 0])
        rates = [r.profit_rate for r in sells if r.profit_rate is not None]
        return {
            "total_trades": len(sells),
            "total_realized_pnl": round(sum(r.profit for r in sells), 2),
            "win_count": wins,
            "loss_count": losses,
            "win_rate_percent": round(wins / len(sells) * 100, 2),
            "avg_profit_rate": round(sum(rates) / len(rates), 4) if rates else 0.0,
        }


@dataclass(frozen=True)
class DailyReturnSnapshot:
    date: str
    total_deposit: float
    total_evaluation: float
    total_profit: float
    profit_rate: float
    holdings_count: int
    buys: int
    sells: int
    market_condition: str = "UNKNOWN"


class DailyReturnLog:
    """One snapshot per date, upserted once per cycle."""

    def __init__(self, store: JsonDocumentStore):
        self.store = store

    def snapshots(self) -> List[DailyReturnSnapshot]:
        known = {f.name for f in fields(DailyReturnSnapshot)}
        out = []
        for raw in self._entries():
            try:
                out.append(DailyReturnSnapshot(**{k: v for k, v in raw.items() if k in known}))
            except TypeError as e:
                logger.error(f"Skipping malformed daily return | entry={raw} error={e}")
        return out

    def _entries(self) -> List[Dict[str, Any]]:
        entries = []
        for raw in self.store.load(list):
            if isinstance(raw, dict):
                entries.append(raw)
            else:
                logger.error(f"Skipping malformed daily return | entry={raw}")
        return entries

    def upsert(self, snapshot: DailyReturnSnapshot) -> None:
        data = [d for d in self._entries() if d.get("date") != snapshot.date]
        data.append(asdict(snapshot))
        data.sort(key=lambda d: str(d.get("date", "")))
        self.store.save(data)
