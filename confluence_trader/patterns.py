"""Candle-pattern recognizer for the last one to three candles.

Shapes are judged by body/shadow ratios relative to the trailing average candle
range. Each detected pattern contributes a signed strength; the net score is
bucketed into STRONG_BULLISH, BULLISH, NEUTRAL, BEARISH or STRONG_BEARISH.
"""
from dataclasses import dataclass, field
from typing import List, Sequence

from .candles import Candle
from .indicators import UNKNOWN

AVG_RANGE_PERIOD = 10
MIN_CANDLES = 3


@dataclass(frozen=True)
class DetectedPattern:
    name: str
    direction: str  # BULLISH, BEARISH or NEUTRAL
    strength: int


@dataclass(frozen=True)
class PatternResult:
    patterns: List[DetectedPattern] = field(default_factory=list)
    score: int = 0
    signal: str = UNKNOWN

    @property
    def names(self) -> List[str]:
        return [p.name for p in self.patterns]


def _ratios(candle: Candle):
    rng = candle.range
    if rng <= 0:
        return 0.0, 0.0, 0.0
    return candle.body / rng, candle.upper_shadow / rng, candle.lower_shadow / rng


def average_range(candles: Sequence[Candle], period: int = AVG_RANGE_PERIOD) -> float:
    window = candles[-period:]
    return sum(c.range for c in window) / len(window)


def is_hammer(candle: Candle, avg_range: float) -> bool:
    body, upper, lower = _ratios(candle)
    return body < 0.3 and lower > 0.5 and upper < 0.1 and candle.range >= avg_range * 0.8


def is_inverted_hammer(candle: Candle, avg_range: float) -> bool:
    body, upper, lower = _ratios(candle)
    return body < 0.3 and upper > 0.5 and lower < 0.1 and candle.range >= avg_range * 0.8


def is_bullish_engulfing(prev: Candle, curr: Candle) -> bool:
    return (
        not prev.is_green
        and curr.is_green
        and curr.open < prev.close
        and curr.close > prev.open
        and curr.body > prev.body * 1.2
    )


def is_bearish_engulfing(prev: Candle, curr: Candle) -> bool:
    return (
        prev.is_green
        and not curr.is_green
        and curr.open > prev.close
        and curr.close < prev.open
        and curr.body > prev.body * 1.2
    )


def is_morning_star(candles: Sequence[Candle]) -> bool:
    """Long red candle, small-bodied star, long green candle recovering past the first midpoint."""
    if len(candles) < 3:
        return False
    first, second, third = candles[-3:]
    return (
        not first.is_green
        and first.body_ratio > 0.5
        and second.body_ratio < 0.3
        and third.is_green
        and third.body_ratio > 0.5
        and third.close > (first.open + first.close) / 2
    )


def is_doji(candle: Candle) -> bool:
    return candle.range > 0 and candle.body_ratio < 0.1


def _bucket(score: int) -> str:
    if score >= 3:
        return "STRONG_BULLISH"
    if score >= 1:
        return "BULLISH"
    if score <= -3:
        return "STRONG_BEARISH"
    if score <= -1:
        return "BEARISH"
    return "NEUTRAL"


def analyze(candles: Sequence[Candle]) -> PatternResult:
    """Detect patterns ending on the last candle."""
    if len(candles) < MIN_CANDLES:
        return PatternResult()

    avg_range = average_range(candles)
    prev, curr = candles[-2], candles[-1]

    found: List[DetectedPattern] = []
    if is_hammer(curr, avg_range):
        found.append(DetectedPattern("HAMMER", "BULLISH", 2))
    if is_inverted_hammer(curr, avg_range):
        found.append(DetectedPattern("INVERTED_HAMMER", "BULLISH", 1))
    if is_bullish_engulfing(prev, curr):
        found.append(DetectedPattern("BULLISH_ENGULFING", "BULLISH", 3))
    if is_bearish_engulfing(prev, curr):
        found.append(DetectedPattern("BEARISH_ENGULFING", "BEARISH", -3))
    if is_morning_star(candles):
        found.append(DetectedPattern("MORNING_STAR", "BULLISH", 3))
    if is_doji(curr):
        found.append(DetectedPattern("DOJI", "NEUTRAL", 0))

    score = sum(p.strength for p in found)
    return PatternResult(patterns=found, score=score, signal=_bucket(score))
