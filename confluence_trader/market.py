"""Market, sector and relative-strength classification.

Two broad market indices are scored into a market condition; each sector's
average same-day return is bucketed into a strength; an instrument's return
minus the primary index return is its relative strength. The three combine
into a coupling score and a PASS/WARN/BLOCK recommendation for buys.

Index results are cached through an injected ``TTLCache`` (5 minutes by
default) so a cycle never refetches index data more than once per window.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .broker import BrokerClient, Quote
from .cache import TTLCache
from .candles import closes
from .config import CouplingConfig
from .indicators import UNKNOWN, macd, sma
from .logging_setup import logger, sanitize_error

MIN_INDEX_CANDLES = 20
INDEX_HISTORY_DAYS = 60

MARKET_SCORES = {
    "STRONG_BULLISH": 3,
    "BULLISH": 2,
    "NEUTRAL": 0,
    "BEARISH": -2,
    "STRONG_BEARISH": -3,
}


@dataclass(frozen=True)
class IndexTrend:
    code: str
    trend: str = UNKNOWN
    strength: float = 0.0
    change_rate: float = 0.0
    net_score: int = 0

    @property
    def bullish(self) -> bool:
        return "BULLISH" in self.trend

    @property
    def bearish(self) -> bool:
        return "BEARISH" in self.trend


@dataclass(frozen=True)
class MarketContext:
    condition: str = "NEUTRAL"
    score: int = 0
    indices: Tuple[IndexTrend, ...] = ()

    @property
    def primary_change(self) -> float:
        return self.indices[0].change_rate if self.indices else 0.0


@dataclass(frozen=True)
class SectorStrength:
    sector: str
    avg_change_rate: float
    strength: str
    count: int


@dataclass(frozen=True)
class RelativeStrength:
    value: float
    rating: str


@dataclass(frozen=True)
class CouplingResult:
    signal: str = UNKNOWN
    score: float = 0.0
    recommendation: str = "PASS"  # PASS, WARN or BLOCK
    market_condition: str = UNKNOWN
    sector: str = "UNKNOWN"
    sector_strength: str = UNKNOWN
    relative_strength: Optional[RelativeStrength] = None


def index_trend(code: str, candles, change_rate: float) -> IndexTrend:
    """Score one index from its daily candles and today's change rate."""
    if len(candles) < MIN_INDEX_CANDLES:
        return IndexTrend(code=code, change_rate=change_rate)
    values = closes(candles)
    price = values[-1]
    ma5, ma20, ma60 = sma(values, 5), sma(values, 20), sma(values, 60)
    trend_macd = macd(values).trend

    bullish = bearish = 0
    if ma5 > ma20:
        bullish += 2
    else:
        bearish += 2
    if ma60 is not None:
        if ma20 > ma60:
            bullish += 1
        else:
            bearish += 1
    if price > ma5:
        bullish += 1
    else:
        bearish += 1
    if trend_macd == "BULLISH":
        bullish += 1
    elif trend_macd == "BEARISH":
        bearish += 1
    if change_rate > 0.5:
        bullish += 1
    elif change_rate < -0.5:
        bearish += 1

    net = bullish - bearish
    if net >= 3:
        trend = "BULLISH"
    elif net >= 1:
        trend = "MILD_BULLISH"
    elif net <= -3:
        trend = "BEARISH"
    elif net <= -1:
        trend = "MILD_BEARISH"
    else:
        trend = "SIDEWAYS"
    return IndexTrend(code=code, trend=trend, strength=round(abs(net) / 6, 2), change_rate=change_rate, net_score=net)


def market_condition(first: IndexTrend, second: IndexTrend) -> MarketContext:
    if first.bullish and second.bullish:
        condition = "STRONG_BULLISH"
    elif first.bullish or second.bullish:
        condition = "BULLISH"
    elif first.bearish and second.bearish:
        condition = "STRONG_BEARISH"
    elif first.bearish or second.bearish:
        condition = "BEARISH"
    else:
        condition = "NEUTRAL"
    return MarketContext(condition=condition, score=MARKET_SCORES[condition], indices=(first, second))


def sector_strength(quotes: Iterable[Quote], sector_map: Mapping[str, str]) -> Dict[str, SectorStrength]:
    """Average same-day change rate per sector across the given quotes."""
    totals: Dict[str, list] = {}
    for quote in quotes:
        sector = sector_map.get(quote.code, "UNKNOWN")
        totals.setdefault(sector, []).append(quote.change_rate or 0.0)

    result = {}
    for sector, rates in totals.items():
        avg = sum(rates) / len(rates)
        if avg > 1:
            strength = "STRONG"
        elif avg > 0:
            strength = "MILD_STRONG"
        elif avg < -1:
            strength = "WEAK"
        elif avg < 0:
            strength = "MILD_WEAK"
        else:
            strength = "NEUTRAL"
        result[sector] = SectorStrength(sector=sector, avg_change_rate=round(avg, 2), strength=strength, count=len(rates))
    return result


def relative_strength(stock_change: float, index_change: float) -> RelativeStrength:
    rs = stock_change - index_change
    if rs > 1:
        rating = "OUTPERFORM"
    elif rs > 0:
        rating = "MILD_OUTPERFORM"
    elif rs < -1:
        rating = "UNDERPERFORM"
    elif rs < 0:
        rating = "MILD_UNDERPERFORM"
    else:
        rating = "NEUTRAL"
    return RelativeStrength(value=round(rs, 2), rating=rating)


_SECTOR_POINTS = {"STRONG": 1.5, "MILD_STRONG": 0.5, "WEAK": -1.5, "MILD_WEAK": -0.5}
_RS_POINTS = {"OUTPERFORM": 1.5, "MILD_OUTPERFORM": 0.5, "UNDERPERFORM": -1.5, "MILD_UNDERPERFORM": -0.5}


def coupling(
    quote: Quote,
    market: MarketContext,
    sectors: Mapping[str, SectorStrength],
    sector_map: Mapping[str, str],
) -> CouplingResult:
    sector = sector_map.get(quote.code, "UNKNOWN")
    sector_info = sectors.get(sector)
    sector_rating = sector_info.strength if sector_info else UNKNOWN
    rs = relative_strength(quote.change_rate or 0.0, market.primary_change)

    score = 0.0
    if market.score >= 2:
        score += 2
    elif market.score >= 0:
        score += 1
    elif market.score <= -2:
        score -= 2
    else:
        score -= 1
    score += _SECTOR_POINTS.get(sector_rating, 0.0)
    score += _RS_POINTS.get(rs.rating, 0.0)

    if score >= 3:
        signal, recommendation = "STRONG_FAVORABLE", "PASS"
    elif score >= 1:
        signal, recommendation = "FAVORABLE", "PASS"
    elif score <= -3:
        signal, recommendation = "STRONG_UNFAVORABLE", "BLOCK"
    elif score <= -1:
        signal, recommendation = "UNFAVORABLE", "WARN"
    else:
        signal, recommendation = "NEUTRAL", "PASS"

    return CouplingResult(
        signal=signal,
        score=round(score, 2),
        recommendation=recommendation,
        market_condition=market.condition,
        sector=sector,
        sector_strength=sector_rating,
        relative_strength=rs,
    )


class MarketAnalyzer:
    """Fetches and caches index context through the broker collaborator."""

    def __init__(
        self,
        broker: BrokerClient,
        config: CouplingConfig,
        index_codes: Sequence[str] = ("0001", "1001"),
        sector_map: Optional[Mapping[str, str]] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.broker = broker
        self.config = config
        self.index_codes = tuple(index_codes)
        self.sector_map = dict(sector_map or {})
        self.cache = cache or TTLCache(ttl_seconds=config.cache_minutes * 60)

    def analyze_index(self, code: str) -> IndexTrend:
        try:
            quote = self.broker.get_quote(code)
            candles = self.broker.get_candles(code, INDEX_HISTORY_DAYS, "D")
        except Exception as e:
            logger.warning(f"Index analysis failed | index={code} error={sanitize_error(e)}")
            return IndexTrend(code=code)
        return index_trend(code, candles, quote.change_rate)

    def analyze_market(self) -> MarketContext:
        def load() -> MarketContext:
            first, second = (self.analyze_index(code) for code in self.index_codes)
            context = market_condition(first, second)
            logger.info(
                f"Market condition | condition={context.condition} "
                + " ".join(f"{i.code}={i.trend}({i.change_rate:+.2f}%)" for i in context.indices)
            )
            return context

        return self.cache.get_or_load("market", load)

    def sector_strength(self, quotes: Iterable[Quote]) -> Dict[str, SectorStrength]:
        return sector_strength(quotes, self.sector_map)

    def coupling(self, quote: Quote, market: MarketContext, sectors: Mapping[str, SectorStrength]) -> CouplingResult:
        return coupling(quote, market, sectors, self.sector_map)
