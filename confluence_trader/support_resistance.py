"""Support/resistance levels and liquidity-sweep detection.

Pivots are found over a symmetric lookback window, clustered into price levels
and ranked by touch count. A liquidity sweep (a prior extreme pierced by one
candle, then closed back inside by a reversal candle) outranks proximity to a
level.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .candles import Candle
from .config import SupportResistanceConfig
from .indicators import UNKNOWN

MIN_CANDLES = 20


@dataclass(frozen=True)
class Level:
    price: float
    touches: int
    strength: str  # STRONG, MODERATE or WEAK


@dataclass(frozen=True)
class Proximity:
    zone: str = UNKNOWN  # SUPPORT_ZONE, RESISTANCE_ZONE, SQUEEZE, MIDDLE
    near_support: Optional[Level] = None
    near_resistance: Optional[Level] = None
    support_distance: Optional[float] = None
    resistance_distance: Optional[float] = None


@dataclass(frozen=True)
class Sweep:
    kind: Optional[str] = None  # BULLISH_SWEEP or BEARISH_SWEEP
    swept_level: Optional[float] = None

    @property
    def detected(self) -> bool:
        return self.kind is not None


@dataclass(frozen=True)
class SupportResistanceResult:
    supports: List[Level] = field(default_factory=list)
    resistances: List[Level] = field(default_factory=list)
    proximity: Proximity = field(default_factory=Proximity)
    sweep: Sweep = field(default_factory=Sweep)
    signal: str = UNKNOWN
    score: int = 0


def cluster_levels(prices: Sequence[float], tolerance: float = 0.01) -> List[Level]:
    """Group pivot prices lying within ``tolerance`` of a cluster's first price."""
    if not prices:
        return []
    ordered = sorted(prices)
    clusters: List[List[float]] = []
    current = [ordered[0]]
    for price in ordered[1:]:
        if (price - current[0]) / current[0] <= tolerance:
            current.append(price)
        else:
            clusters.append(current)
            current = [price]
    clusters.append(current)

    levels = []
    for cluster in clusters:
        touches = len(cluster)
        if touches >= 3:
            strength = "STRONG"
        elif touches >= 2:
            strength = "MODERATE"
        else:
            strength = "WEAK"
        levels.append(Level(price=round(sum(cluster) / touches, 2), touches=touches, strength=strength))
    return sorted(levels, key=lambda lv: lv.touches, reverse=True)


def find_levels(candles: Sequence[Candle], lookback: int = 3, tolerance: float = 0.01, max_levels: int = 5):
    """Return (supports, resistances) from strict pivot lows and highs."""
    if len(candles) < lookback * 2 + 1:
        return [], []
    highs: List[float] = []
    lows: List[float] = []
    for i in range(lookback, len(candles) - lookback):
        current = candles[i]
        neighbours = [candles[j] for j in range(i - lookback, i + lookback + 1) if j != i]
        if all(c.high < current.high for c in neighbours):
            highs.append(current.high)
        if all(c.low > current.low for c in neighbours):
            lows.append(current.low)
    return (
        cluster_levels(lows, tolerance)[:max_levels],
        cluster_levels(highs, tolerance)[:max_levels],
    )


def check_proximity(
    price: float,
    supports: Sequence[Level],
    resistances: Sequence[Level],
    proximity: float = 0.01,
) -> Proximity:
    """Classify price against the first level within [-p, 2p] on each side."""
    near_support = support_distance = None
    for level in supports:
        distance = (price - level.price) / level.price
        if -proximity <= distance <= proximity * 2:
            near_support, support_distance = level, round(distance * 100, 2)
            break

    near_resistance = resistance_distance = None
    for level in resistances:
        distance = (level.price - price) / level.price
        if -proximity <= distance <= proximity * 2:
            near_resistance, resistance_distance = level, round(distance * 100, 2)
            break

    if near_support and near_resistance:
        zone = "SQUEEZE"
    elif near_support:
        zone = "SUPPORT_ZONE"
    elif near_resistance:
        zone = "RESISTANCE_ZONE"
    else:
        zone = "MIDDLE"
    return Proximity(
        zone=zone,
        near_support=near_support,
        near_resistance=near_resistance,
        support_distance=support_distance,
        resistance_distance=resistance_distance,
    )


def detect_liquidity_sweep(candles: Sequence[Candle], lookback: int = 10) -> Sweep:
    """Detect a sweep of the extreme of the ``lookback`` candles preceding the last three."""
    if len(candles) < lookback + 3:
        return Sweep()
    previous = candles[-(lookback + 3):-3]
    prev_high = max(c.high for c in previous)
    prev_low = min(c.low for c in previous)
    sweep_candle, confirm = candles[-2], candles[-1]

    if sweep_candle.low < prev_low and confirm.close > prev_low and confirm.is_green:
        return Sweep(kind="BULLISH_SWEEP", swept_level=prev_low)
    if sweep_candle.high > prev_high and confirm.close < prev_high and confirm.is_red:
        return Sweep(kind="BEARISH_SWEEP", swept_level=prev_high)
    return Sweep()


def analyze(candles: Sequence[Candle], config: Optional[SupportResistanceConfig] = None) -> SupportResistanceResult:
    config = config or SupportResistanceConfig()
    if len(candles) < MIN_CANDLES:
        return SupportResistanceResult()

    price = candles[-1].close
    supports, resistances = find_levels(
        candles, config.pivot_lookback, config.cluster_tolerance, config.max_levels
    )
    proximity = check_proximity(price, supports, resistances, config.proximity)
    sweep = detect_liquidity_sweep(candles, config.sweep_lookback)

    signal, score = "NEUTRAL", 0
    if sweep.kind == "BULLISH_SWEEP":
        signal, score = "STRONG_BUY", 3
    elif sweep.kind == "BEARISH_SWEEP":
        signal, score = "STRONG_SELL", -3
    elif proximity.zone == "SUPPORT_ZONE":
        signal = "BUY"
        score = 2 if proximity.near_support.strength == "STRONG" else 1
    elif proximity.zone == "RESISTANCE_ZONE":
        signal = "SELL"
        score = -2 if proximity.near_resistance.strength == "STRONG" else -1

    return SupportResistanceResult(
        supports=supports,
        resistances=resistances,
        proximity=proximity,
        sweep=sweep,
        signal=signal,
        score=score,
    )
