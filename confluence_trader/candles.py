"""OHLCV candle model.

Candles are immutable once fetched and always ordered oldest to newest.
Non-trading days are simply absent; nothing is zero-filled.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence


@dataclass(frozen=True)
class Candle:
    date: str
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def is_green(self) -> bool:
        return self.close > self.open

    @property
    def is_red(self) -> bool:
        return self.close < self.open

    @property
    def upper_shadow(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_shadow(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def body_ratio(self) -> float:
        return self.body / self.range if self.range > 0 else 0.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Candle":
        return cls(
            date=str(d["date"]),
            open=float(d["open"]),
            high=float(d["high"]),
            low=float(d["low"]),
            close=float(d["close"]),
            volume=float(d.get("volume", 0) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


def closes(candles: Sequence[Candle]) -> List[float]:
    return [c.close for c in candles]


def normalize(candles: Iterable[Any]) -> List[Candle]:
    """Coerce broker payloads to Candles sorted by date, dropping duplicate dates."""
    seen = {}
    for c in candles:
        candle = c if isinstance(c, Candle) else Candle.from_dict(c)
        seen[candle.date] = candle
    return [seen[d] for d in sorted(seen)]
