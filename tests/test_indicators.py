import math
from dataclasses import fields, is_dataclass

import pytest

from confluence_trader.candles import Candle
from confluence_trader.indicators import (
    UNKNOWN,
    atr,
    bollinger_bands,
    compute_snapshot,
    dead_cross,
    ema,
    ema_series,
    fibonacci,
    golden_cross,
    macd,
    rsi,
    sma,
    stochastic,
    volatility_state,
    volume_analysis,
    vwap_ratio,
    williams_r,
)

from conftest import make_candles


def _numbers(value):
    """Yield every float/int reachable from a snapshot value."""
    if is_dataclass(value):
        for f in fields(value):
            yield from _numbers(getattr(value, f.name))
    elif isinstance(value, dict):
        for v in value.values():
            yield from _numbers(v)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        yield value


def test_sma_and_ema():
    assert sma([1, 2, 3, 4], 2) == 3.5
    assert sma([1, 2], 3) is None
    assert ema([1, 2, 3], 3) == 2.0
    assert ema_series([1, 2, 3, 4], 3) == [2.0, 3.0]
    assert ema([1, 2], 3) is None


def test_invalid_period_raises():
    with pytest.raises(ValueError):
        sma([1, 2, 3], 0)


class TestRsi:
    def test_no_losses_is_100(self):
        assert rsi(list(range(10, 25))) == 100.0

    def test_no_gains_is_0(self):
        assert rsi(list(range(25, 10, -1))) == 0.0

    def test_balanced_changes_is_50(self):
        values = [10 + (i % 2) for i in range(15)]
        assert rsi(values) == 50.0

    def test_bounded(self):
        values = [100, 102, 101, 105, 103, 104, 99, 98, 101, 106, 104, 103, 107, 102, 101, 100]
        value = rsi(values)
        assert 0 <= value <= 100

    def test_insufficient(self):
        assert rsi(list(range(14))) is None


@pytest.mark.parametrize("n", [0, 1, 2, 5, 13, 14, 19, 20, 25, 34])
def test_short_windows_are_explicitly_unknown_and_finite(n):
    candles = make_candles([100 + (i % 3) for i in range(n)])
    snapshot = compute_snapshot(candles)

    assert snapshot.macd.trend == UNKNOWN
    assert snapshot.macd.macd is None
    for number in _numbers(snapshot):
        assert math.isfinite(number)
    if n < 15:
        assert snapshot.rsi is None
        assert snapshot.atr.atr is None
    if n < 17:
        assert snapshot.stochastic.zone == UNKNOWN
    if n < 20:
        assert snapshot.bollinger.signal == UNKNOWN
        assert snapshot.fibonacci.zone == UNKNOWN
        assert snapshot.vwap.signal == UNKNOWN
    if n < 21:
        assert snapshot.volume.signal == UNKNOWN
        assert snapshot.volatility.state == UNKNOWN
        assert snapshot.golden_cross is False


class TestMacd:
    def test_needs_slow_plus_signal_values(self):
        assert not macd(list(range(1, 35))).available
        assert macd(list(range(1, 36))).available

    def test_fast_must_be_shorter(self):
        with pytest.raises(ValueError):
            macd(list(range(50)), fast=26, slow=12)


def test_golden_cross_scenario_on_final_day():
    closes = [30000 - 5 * i ** 2 for i in range(59)] + [42000]
    candles = make_candles(closes)
    assert len(candles) == 60

    snapshot = compute_snapshot(candles)

    assert snapshot.golden_cross is True
    assert snapshot.dead_cross is False
    assert snapshot.macd.crossover == "GOLDEN_CROSS"
    assert snapshot.macd.trend == "BULLISH"


def test_dead_cross_mirror():
    closes = [10000 + 5 * i ** 2 for i in range(59)] + [1000]
    assert dead_cross(closes)
    assert not golden_cross(closes)


class TestBollinger:
    def test_flat_band_gives_mid_percent_b(self):
        result = bollinger_bands([100.0] * 20)
        assert result.percent_b == 0.5
        assert result.width == 0
        assert result.signal == "NEUTRAL"

    def test_spike_above_band_is_overbought(self):
        result = bollinger_bands([100.0] * 19 + [120.0])
        assert result.percent_b > 1
        assert result.signal == "OVERBOUGHT"
        assert result.middle == 101.0


def test_atr_of_constant_range():
    candles = [Candle(date=f"2024-01-{i + 1:02d}", open=100, high=101, low=99, close=100) for i in range(15)]
    result = atr(candles)
    assert result.atr == 2.0
    assert result.atr_percent == 2.0
    assert not atr(candles[:14]).available


class TestOscillators:
    def test_steady_decline_is_oversold(self):
        candles = make_candles([200 - 2 * i for i in range(20)])
        assert stochastic(candles).zone == "OVERSOLD"
        assert williams_r(candles).zone == "OVERSOLD"

    def test_steady_rise_is_overbought(self):
        candles = make_candles([100 + 2 * i for i in range(20)])
        assert stochastic(candles).zone == "OVERBOUGHT"
        assert williams_r(candles).zone == "OVERBOUGHT"


def test_volatility_squeeze():
    wide = [Candle(date=f"2024-01-{i + 1:02d}", open=100, high=105, low=95, close=100) for i in range(16)]
    narrow = [Candle(date=f"2024-01-{i + 17:02d}", open=100, high=100.5, low=99.5, close=100) for i in range(5)]
    result = volatility_state(wide + narrow)
    assert result.state == "SQUEEZE"
    assert result.ratio < 0.75


def test_fibonacci_golden_zone():
    closes = [100 + i for i in range(11)] + [110 - 0.75 * i for i in range(1, 10)]
    result = fibonacci(make_candles(closes, wick=0))
    assert result.zone == "GOLDEN_ZONE"
    assert 0.5 <= result.position < 1
    assert set(result.levels) == {"0.236", "0.382", "0.5", "0.618", "0.786"}


class TestVolume:
    def test_breakout_on_double_volume_green_bar(self):
        candles = make_candles([100.0] * 20, wick=0.01)
        candles.append(Candle(date="2024-02-01", open=100, high=104.2, low=99.9, close=104, volume=2500))
        result = volume_analysis(candles)
        assert result.signal == "STRONG_BUYING"
        assert result.pattern == "VOLUME_BREAKOUT"
        assert result.ratio == 2.5

    def test_zero_volume_is_unknown(self):
        candles = make_candles([100.0] * 21, volume=0)
        assert volume_analysis(candles).signal == UNKNOWN
        assert vwap_ratio(candles).signal == UNKNOWN
