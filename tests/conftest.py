from datetime import date, datetime, timedelta

import pytest

from confluence_trader.broker import InMemoryBroker
from confluence_trader.candles import Candle
from confluence_trader.config import TradingConfig
from confluence_trader.rate_limit_policy import CallPacer
from confluence_trader.runner import build


class FakeMonotonic:
    """Monotonic clock for caches, breaker and pacer."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """Wall clock for state timestamps (naive datetimes)."""

    def __init__(self, start: datetime = datetime(2024, 3, 4, 10, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_candles(closes, start=date(2024, 1, 1), volume=1000.0, wick=0.005):
    """Daily candles whose open is the previous close."""
    out = []
    prev = closes[0] if closes else 0.0
    for i, close in enumerate(closes):
        o = prev
        out.append(
            Candle(
                date=(start + timedelta(days=i)).isoformat(),
                open=o,
                high=max(o, close) * (1 + wick),
                low=min(o, close) * (1 - wick),
                close=close,
                volume=volume,
            )
        )
        prev = close
    return out


def candle(i, o, h, low, c, volume=1000.0):
    return Candle(date=(date(2024, 1, 1) + timedelta(days=i)).isoformat(), open=o, high=h, low=low, close=c, volume=volume)


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def wall_clock():
    return FakeWallClock()


@pytest.fixture
def fake_pacer(monotonic):
    return CallPacer(min_interval_seconds=0.2, clock=monotonic, sleep=monotonic.sleep)


@pytest.fixture
def broker():
    return InMemoryBroker(cash=10_000_000)


@pytest.fixture
def config(tmp_path):
    return TradingConfig.from_dict(
        {
            "trading": {"buy_amount": 500_000, "max_holdings": 3},
            "persistence": {"data_dir": str(tmp_path / "data"), "log_file": str(tmp_path / "logs" / "trading.log")},
            "watch_list": ["AAA", "BBB", "CCC"],
            "sector_map": {"AAA": "TECH", "BBB": "TECH", "CCC": "BANK"},
        }
    )


@pytest.fixture
def components(config, broker, wall_clock, fake_pacer):
    return build(config, broker, clock=wall_clock, pacer=fake_pacer)
