from confluence_trader.broker import Quote
from confluence_trader.cache import TTLCache
from confluence_trader.config import CouplingConfig
from confluence_trader.indicators import UNKNOWN
from confluence_trader.market import (
    IndexTrend,
    MarketAnalyzer,
    MarketContext,
    coupling,
    index_trend,
    market_condition,
    relative_strength,
    sector_strength,
)

from conftest import make_candles


def _trend(code, trend, change=0.0):
    return IndexTrend(code=code, trend=trend, change_rate=change)


class TestMarketCondition:
    def test_both_bullish(self):
        ctx = market_condition(_trend("0001", "BULLISH"), _trend("1001", "MILD_BULLISH"))
        assert ctx.condition == "STRONG_BULLISH"
        assert ctx.score == 3

    def test_one_bullish(self):
        assert market_condition(_trend("0001", "BULLISH"), _trend("1001", "SIDEWAYS")).condition == "BULLISH"

    def test_both_bearish(self):
        ctx = market_condition(_trend("0001", "BEARISH"), _trend("1001", "MILD_BEARISH"))
        assert ctx.condition == "STRONG_BEARISH"

    def test_unknown_indices_are_neutral(self):
        assert market_condition(IndexTrend("0001"), IndexTrend("1001")).condition == "NEUTRAL"


def test_index_trend_rising():
    candles = make_candles([1000 + 3 * i + 0.1 * i ** 2 for i in range(60)])
    result = index_trend("0001", candles, change_rate=1.2)
    assert result.trend == "BULLISH"
    assert result.bullish
    assert index_trend("0001", candles[:10], 1.2).trend == UNKNOWN


def test_sector_strength_buckets():
    quotes = [
        Quote("AAA", 100, change_rate=2.0),
        Quote("BBB", 100, change_rate=1.0),
        Quote("CCC", 100, change_rate=-0.5),
        Quote("DDD", 100, change_rate=0.0),
    ]
    sectors = sector_strength(quotes, {"AAA": "TECH", "BBB": "TECH", "CCC": "BANK"})
    assert sectors["TECH"].strength == "STRONG"
    assert sectors["TECH"].avg_change_rate == 1.5
    assert sectors["TECH"].count == 2
    assert sectors["BANK"].strength == "MILD_WEAK"
    assert sectors["UNKNOWN"].strength == "NEUTRAL"


def test_relative_strength():
    assert relative_strength(3.0, 1.0).rating == "OUTPERFORM"
    assert relative_strength(3.0, 1.0).value == 2.0
    assert relative_strength(0.5, 1.0).rating == "MILD_UNDERPERFORM"


class TestCoupling:
    sector_map = {"AAA": "TECH"}

    def test_hostile_context_blocks(self):
        market = MarketContext(condition="STRONG_BEARISH", score=-3, indices=(_trend("0001", "BEARISH", 1.0),))
        sectors = sector_strength([Quote("AAA", 100, change_rate=-2.0)], self.sector_map)
        result = coupling(Quote("AAA", 100, change_rate=-2.0), market, sectors, self.sector_map)
        assert result.score == -5
        assert result.signal == "STRONG_UNFAVORABLE"
        assert result.recommendation == "BLOCK"
        assert result.market_condition == "STRONG_BEARISH"

    def test_supportive_context_passes(self):
        market = MarketContext(condition="STRONG_BULLISH", score=3, indices=(_trend("0001", "BULLISH", 0.5),))
        sectors = sector_strength([Quote("AAA", 100, change_rate=3.0)], self.sector_map)
        result = coupling(Quote("AAA", 100, change_rate=3.0), market, sectors, self.sector_map)
        assert result.score == 5
        assert result.recommendation == "PASS"
        assert result.sector == "TECH"
        assert result.relative_strength.rating == "OUTPERFORM"


class TestMarketAnalyzer:
    def _analyzer(self, broker, monotonic):
        config = CouplingConfig()
        return MarketAnalyzer(broker, config, cache=TTLCache(ttl_seconds=config.cache_minutes * 60, clock=monotonic))

    def test_market_context_is_cached_for_five_minutes(self, broker, monotonic):
        for code in ("0001", "1001"):
            broker.set_quote(code, 2500, change_rate=1.0)
            broker.set_candles(code, make_candles([2000 + 5 * i + 0.1 * i ** 2 for i in range(60)]))
        analyzer = self._analyzer(broker, monotonic)

        first = analyzer.analyze_market()
        assert first.condition == "STRONG_BULLISH"
        calls = len(broker.calls)

        monotonic.advance(299)
        assert analyzer.analyze_market() is first
        assert len(broker.calls) == calls

        monotonic.advance(2)
        analyzer.analyze_market()
        assert len(broker.calls) > calls

    def test_index_failure_degrades_to_unknown(self, broker, monotonic):
        analyzer = self._analyzer(broker, monotonic)
        ctx = analyzer.analyze_market()
        assert ctx.condition == "NEUTRAL"
        assert [i.trend for i in ctx.indices] == [UNKNOWN, UNKNOWN]
