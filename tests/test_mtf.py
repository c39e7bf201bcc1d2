import pytest

from confluence_trader.indicators import UNKNOWN
from confluence_trader.mtf import TrendResult, analyze, classify_alignment, daily_trend, weekly_trend

from conftest import make_candles


@pytest.mark.parametrize(
    "weekly,daily,expected",
    [
        ("STRONG_UPTREND", "UPTREND", "BULLISH_ALIGNED"),
        ("UPTREND", "SIDEWAYS", "WEEKLY_BULLISH"),
        ("UPTREND", "DOWNTREND", "PULLBACK"),
        ("DOWNTREND", "MILD_DOWNTREND", "BEARISH_ALIGNED"),
        ("STRONG_DOWNTREND", "SIDEWAYS", "WEEKLY_BEARISH"),
        ("DOWNTREND", "MILD_UPTREND", "BOUNCE"),
        ("SIDEWAYS", "UPTREND", "MIXED"),
    ],
)
def test_alignment_table(weekly, daily, expected):
    assert classify_alignment(TrendResult(trend=weekly), TrendResult(trend=daily)) == expected


def test_insufficient_history_is_neutral():
    result = analyze(make_candles([100.0] * 10), make_candles([100.0] * 5))
    assert result.weekly.trend == UNKNOWN
    assert result.daily.trend == UNKNOWN
    assert result.signal == "NEUTRAL"
    assert not result.can_buy()
    assert not result.should_sell


def test_rising_on_both_timeframes_is_aligned_buy():
    daily = make_candles([100 + i + 0.05 * i ** 2 for i in range(60)])
    weekly = make_candles([100 + 5 * i + 0.1 * i ** 2 for i in range(30)])

    assert weekly_trend(weekly).bullish
    assert daily_trend(daily).bullish

    result = analyze(daily, weekly)
    assert result.alignment == "BULLISH_ALIGNED"
    assert result.signal == "STRONG_BUY"
    assert result.can_buy(("STRONG_BUY",))
    assert 0 < result.combined_strength <= 1


def test_falling_on_both_timeframes_is_aligned_sell():
    daily = make_candles([300 - i - 0.03 * i ** 2 for i in range(60)])
    weekly = make_candles([300 - 5 * i - 0.1 * i ** 2 for i in range(30)])

    result = analyze(daily, weekly)
    assert result.alignment == "BEARISH_ALIGNED"
    assert result.should_sell
    assert not result.can_buy()
