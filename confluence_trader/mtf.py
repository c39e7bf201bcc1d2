"""Multi-timeframe trend classifier.

The weekly (higher) and daily (base) timeframes are scored independently and
then combined into an alignment category. The weekly trend carries 60% of the
combined strength.
"""
from dataclasses import dataclass
from typing import Sequence, Tuple

from .candles import Candle, closes
from .indicators import UNKNOWN, bollinger_bands, macd, rsi, sma

MIN_CANDLES = 20
WEEKLY_WEIGHT = 0.6
DAILY_WEIGHT = 0.4

# alignment -> (signal, score)
ALIGNMENTS = {
    "BULLISH_ALIGNED": ("STRONG_BUY", 3),
    "WEEKLY_BULLISH": ("BUY", 2),
    "BEARISH_ALIGNED": ("STRONG_SELL", -3),
    "WEEKLY_BEARISH": ("SELL", -2),
    "PULLBACK": ("WAIT_BUY", 1),
    "BOUNCE": ("CAUTION", -1),
    "MIXED": ("NEUTRAL", 0),
}

BUY_SIGNALS = ("STRONG_BUY", "BUY")
SELL_SIGNALS = ("STRONG_SELL", "SELL")


@dataclass(frozen=True)
class TrendResult:
    trend: str = UNKNOWN
    strength: float = 0.0
    net_score: int = 0

    @property
    def bullish(self) -> bool:
        return "UPTREND" in self.trend

    @property
    def bearish(self) -> bool:
        return "DOWNTREND" in self.trend


@dataclass(frozen=True)
class MtfResult:
    signal: str = "NEUTRAL"
    score: int = 0
    alignment: str = "MIXED"
    combined_strength: float = 0.0
    weekly: TrendResult = TrendResult()
    daily: TrendResult = TrendResult()

    def can_buy(self, allowed: Sequence[str] = BUY_SIGNALS) -> bool:
        return self.signal in allowed

    @property
    def should_sell(self) -> bool:
        return self.signal in SELL_SIGNALS


def _points(bullish: int, bearish: int) -> Tuple[int, int, int]:
    return bullish, bearish, bullish - bearish


def weekly_trend(candles: Sequence[Candle]) -> TrendResult:
    """Score the higher-timeframe trend from MA5/10/20 ordering, MACD and RSI extremes."""
    if len(candles) < MIN_CANDLES:
        return TrendResult()
    values = closes(candles)
    price = values[-1]
    ma5, ma10, ma20 = sma(values, 5), sma(values, 10), sma(values, 20)
    macd_result = macd(values)
    rsi_value = rsi(values)

    bullish = bearish = 0
    if ma5 > ma10 > ma20:
        bullish += 3
    elif ma5 > ma10:
        bullish += 1
    elif ma5 < ma10 < ma20:
        bearish += 3
    elif ma5 < ma10:
        bearish += 1

    if price > ma5 and price > ma10:
        bullish += 2
    elif price < ma5 and price < ma10:
        bearish += 2

    if macd_result.trend == "BULLISH":
        bullish += 2
        if macd_result.crossover == "GOLDEN_CROSS":
            bullish += 1
    elif macd_result.trend == "BEARISH":
        bearish += 2
        if macd_result.crossover == "DEAD_CROSS":
            bearish += 1

    if rsi_value is not None:
        if rsi_value < 30:
            bullish += 1
        elif rsi_value > 70:
            bearish += 1

    net = bullish - bearish
    if net >= 5:
        trend = "STRONG_UPTREND"
    elif net >= 2:
        trend = "UPTREND"
    elif net <= -5:
        trend = "STRONG_DOWNTREND"
    elif net <= -2:
        trend = "DOWNTREND"
    else:
        trend = "SIDEWAYS"
    strength = min(abs(net) / 8, 1.0) if trend != "SIDEWAYS" else 0.0
    return TrendResult(trend=trend, strength=round(strength, 2), net_score=net)


def daily_trend(candles: Sequence[Candle]) -> TrendResult:
    """Score the base-timeframe trend from MA5/20/60, MACD and Bollinger extremes."""
    if len(candles) < MIN_CANDLES:
        return TrendResult()
    values = closes(candles)
    price = values[-1]
    ma5, ma20, ma60 = sma(values, 5), sma(values, 20), sma(values, 60)
    macd_result = macd(values)
    band = bollinger_bands(values)

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

    if macd_result.trend == "BULLISH":
        bullish += 2
    elif macd_result.trend == "BEARISH":
        bearish += 2

    if macd_result.crossover == "GOLDEN_CROSS":
        bullish += 2
    elif macd_result.crossover == "DEAD_CROSS":
        bearish += 2

    if band.signal == "OVERSOLD":
        bullish += 1
    elif band.signal == "OVERBOUGHT":
        bearish += 1

    net = bullish - bearish
    if net >= 4:
        trend = "UPTREND"
    elif net >= 2:
        trend = "MILD_UPTREND"
    elif net <= -4:
        trend = "DOWNTREND"
    elif net <= -2:
        trend = "MILD_DOWNTREND"
    else:
        trend = "SIDEWAYS"
    return TrendResult(trend=trend, strength=round(abs(net) / 10, 2), net_score=net)


def classify_alignment(weekly: TrendResult, daily: TrendResult) -> str:
    if weekly.bullish and daily.bullish:
        return "BULLISH_ALIGNED"
    if weekly.bullish and not daily.bearish:
        return "WEEKLY_BULLISH"
    if weekly.bearish and daily.bearish:
        return "BEARISH_ALIGNED"
    if weekly.bearish and not daily.bullish:
        return "WEEKLY_BEARISH"
    if weekly.bullish and daily.bearish:
        return "PULLBACK"
    if weekly.bearish and daily.bullish:
        return "BOUNCE"
    return "MIXED"


def analyze(daily_candles: Sequence[Candle], weekly_candles: Sequence[Candle]) -> MtfResult:
    weekly = weekly_trend(weekly_candles)
    daily = daily_trend(daily_candles)
    alignment = classify_alignment(weekly, daily)
    signal, score = ALIGNMENTS[alignment]
    combined = weekly.strength * WEEKLY_WEIGHT + daily.strength * DAILY_WEIGHT
    return MtfResult(
        signal=signal,
        score=score,
        alignment=alignment,
        combined_strength=round(combined, 2),
        weekly=weekly,
        daily=daily,
    )
