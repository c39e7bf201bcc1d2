from confluence_trader.config import SupportResistanceConfig
from confluence_trader.indicators import UNKNOWN
from confluence_trader.support_resistance import (
    Level,
    analyze,
    check_proximity,
    cluster_levels,
    detect_liquidity_sweep,
    find_levels,
)

from conftest import candle


def _flat(n, start=0):
    return [candle(start + i, 100, 101, 99, 100) for i in range(n)]


def test_cluster_levels_groups_nearby_prices():
    levels = cluster_levels([100, 100.5, 100.8, 110])
    assert levels[0] == Level(price=100.43, touches=3, strength="STRONG")
    assert levels[1].strength == "WEAK"
    assert cluster_levels([]) == []


def test_find_levels_from_pivots():
    candles = []
    for cycle in range(3):
        base = cycle * 8
        candles += [
            candle(base + 0, 100, 101, 99, 100),
            candle(base + 1, 100, 101, 99, 100),
            candle(base + 2, 100, 101, 99, 100),
            candle(base + 3, 100, 110, 99.5, 109),
            candle(base + 4, 100, 101, 99, 100),
            candle(base + 5, 100, 101, 99, 100),
            candle(base + 6, 100, 101, 99, 100),
            candle(base + 7, 100, 101, 90, 91),
        ]
    candles += _flat(3, start=24)
    supports, resistances = find_levels(candles)
    assert resistances[0].price == 110
    assert resistances[0].strength == "STRONG"
    assert supports[0].price == 90


class TestProximity:
    support = Level(price=100, touches=3, strength="STRONG")
    resistance = Level(price=120, touches=2, strength="MODERATE")

    def test_support_zone(self):
        result = check_proximity(101, [self.support], [self.resistance])
        assert result.zone == "SUPPORT_ZONE"
        assert result.near_support == self.support
        assert result.support_distance == 1.0

    def test_resistance_zone(self):
        assert check_proximity(119, [self.support], [self.resistance]).zone == "RESISTANCE_ZONE"

    def test_squeeze_when_both_near(self):
        tight = Level(price=101.5, touches=1, strength="WEAK")
        assert check_proximity(100.5, [self.support], [tight]).zone == "SQUEEZE"

    def test_middle(self):
        assert check_proximity(110, [self.support], [self.resistance]).zone == "MIDDLE"


class TestSweep:
    def test_bullish_sweep(self):
        candles = _flat(11) + [candle(11, 99.5, 100, 97, 98), candle(12, 98.5, 100.8, 98.4, 100.5)]
        sweep = detect_liquidity_sweep(candles)
        assert sweep.kind == "BULLISH_SWEEP"
        assert sweep.swept_level == 99

    def test_bearish_sweep(self):
        candles = _flat(11) + [candle(11, 100.5, 103, 100, 102), candle(12, 101.5, 101.6, 99.2, 99.5)]
        sweep = detect_liquidity_sweep(candles)
        assert sweep.kind == "BEARISH_SWEEP"
        assert sweep.swept_level == 101

    def test_no_sweep_without_reversal_close(self):
        candles = _flat(11) + [candle(11, 99.5, 100, 97, 98), candle(12, 98, 98.5, 97.5, 98.2)]
        assert not detect_liquidity_sweep(candles).detected

    def test_too_short(self):
        assert not detect_liquidity_sweep(_flat(12)).detected


def test_analyze_requires_twenty_candles():
    result = analyze(_flat(19))
    assert result.signal == UNKNOWN
    assert result.score == 0


def test_sweep_outranks_levels():
    candles = _flat(18) + [candle(18, 99.5, 100, 97, 98), candle(19, 98.5, 100.8, 98.4, 100.5)]
    result = analyze(candles, SupportResistanceConfig())
    assert result.signal == "STRONG_BUY"
    assert result.score == 3
