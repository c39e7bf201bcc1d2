"""
Technical indicator library.

Every function here is pure and deterministic over a window of closes or
candles ordered oldest to newest. Each declares a minimum history; below it
the function returns an explicit insufficient result instead of a number:

- scalar indicators (sma, ema, rsi) return ``None``
- composite indicators return their result dataclass with numeric fields set
  to ``None`` and the categorical field set to ``UNKNOWN``

Callers treat ``None``/``UNKNOWN`` as neutral, never as zero. Percent-like
outputs are rounded to fixed precision so results are reproducible.

Examples:
    >>> rsi([10, 11, 12, 13, 14, 15, 16, 17, 18, 19, 20, 21, 22, 23, 24])
    100.0
    >>> rsi([10, 11, 12]) is None
    True
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .candles import Candle, closes as _closes

UNKNOWN = "UNKNOWN"

FIBONACCI_RATIOS = (0.236, 0.382, 0.5, 0.618, 0.786)


def _check_period(period: int) -> None:
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


# Moving averages


def sma(values: Sequence[float], period: int) -> Optional[float]:
    """Simple moving average of the last ``period`` values."""
    _check_period(period)
    if len(values) < period:
        return None
    return _mean(values[-period:])


def ema_series(values: Sequence[float], period: int) -> List[float]:
    """EMA series aligned to ``values[period - 1:]``, seeded with the first window's SMA."""
    _check_period(period)
    if len(values) < period:
        return []
    k = 2 / (period + 1)
    current = _mean(values[:period])
    out = [current]
    for value in values[period:]:
        current = value * k + current * (1 - k)
        out.append(current)
    return out


def ema(values: Sequence[float], period: int) -> Optional[float]:
    series = ema_series(values, period)
    return series[-1] if series else None


def golden_cross(values: Sequence[float], short: int = 5, long: int = 20) -> bool:
    """Short MA crossed above long MA on the last bar."""
    if len(values) < long + 1:
        return False
    prev_short, prev_long = sma(values[:-1], short), sma(values[:-1], long)
    cur_short, cur_long = sma(values, short), sma(values, long)
    return prev_short <= prev_long and cur_short > cur_long


def dead_cross(values: Sequence[float], short: int = 5, long: int = 20) -> bool:
    """Short MA crossed below long MA on the last bar."""
    if len(values) < long + 1:
        return False
    prev_short, prev_long = sma(values[:-1], short), sma(values[:-1], long)
    cur_short, cur_long = sma(values, short), sma(values, long)
    return prev_short >= prev_long and cur_short < cur_long


# Oscillators


def rsi(values: Sequence[float], period: int = 14) -> Optional[float]:
    """Relative Strength Index over the last ``period`` changes (simple averages).

    Returns 100 when the window contains no losing change.
    """
    _check_period(period)
    if len(values) < period + 1:
        return None
    window = values[-(period + 1):]
    gains = 0.0
    losses = 0.0
    for prev, cur in zip(window, window[1:]):
        change = cur - prev
        if change > 0:
            gains += change
        else:
            losses -= change
    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return round(100 - 100 / (1 + rs), 2)


@dataclass(frozen=True)
class MacdResult:
    macd: Optional[float] = None
    signal: Optional[float] = None
    histogram: Optional[float] = None
    trend: str = UNKNOWN
    crossover: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.macd is not None


def macd(values: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> MacdResult:
    """MACD line, signal line, histogram and crossover on the last bar.

    Needs ``slow + signal`` values so both the current and the previous signal
    value exist.
    """
    if fast >= slow:
        raise ValueError(f"fast period ({fast}) must be shorter than slow period ({slow})")
    if len(values) < slow + signal:
        return MacdResult()

    fast_ema = ema_series(values, fast)
    slow_ema = ema_series(values, slow)
    offset = slow - fast
    line = [f - s for f, s in zip(fast_ema[offset:], slow_ema)]
    signal_line = ema_series(line, signal)

    cur, prev = line[-1], line[-2]
    cur_sig, prev_sig = signal_line[-1], signal_line[-2]

    crossover = None
    if prev <= prev_sig and cur > cur_sig:
        crossover = "GOLDEN_CROSS"
    elif prev >= prev_sig and cur < cur_sig:
        crossover = "DEAD_CROSS"

    if crossover == "GOLDEN_CROSS" or (cur > cur_sig and cur > 0):
        trend = "BULLISH"
    elif crossover == "DEAD_CROSS" or (cur < cur_sig and cur < 0):
        trend = "BEARISH"
    else:
        trend = "NEUTRAL"

    return MacdResult(
        macd=round(cur, 2),
        signal=round(cur_sig, 2),
        histogram=round(cur - cur_sig, 2),
        trend=trend,
        crossover=crossover,
    )


@dataclass(frozen=True)
class StochasticResult:
    k: Optional[float] = None
    d: Optional[float] = None
    zone: str = UNKNOWN
    crossover: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.k is not None


def _percent_k(window: Sequence[Candle]) -> float:
    highest = max(c.high for c in window)
    lowest = min(c.low for c in window)
    if highest == lowest:
        return 50.0
    return (window[-1].close - lowest) / (highest - lowest) * 100


def stochastic(candles: Sequence[Candle], k_period: int = 14, d_period: int = 3) -> StochasticResult:
    """Stochastic %K/%D with crossover detection on the last bar."""
    _check_period(k_period)
    _check_period(d_period)
    n = len(candles)
    if n < k_period + d_period:
        return StochasticResult()

    ks = [
        _percent_k(candles[i - k_period + 1:i + 1])
        for i in range(n - d_period - 1, n)
    ]
    k_now, k_prev = ks[-1], ks[-2]
    d_now = _mean(ks[-d_period:])
    d_prev = _mean(ks[-d_period - 1:-1])

    crossover = None
    if k_prev <= d_prev and k_now > d_now:
        crossover = "BULLISH_CROSS"
    elif k_prev >= d_prev and k_now < d_now:
        crossover = "BEARISH_CROSS"

    if k_now < 20:
        zone = "OVERSOLD"
    elif k_now > 80:
        zone = "OVERBOUGHT"
    else:
        zone = "NEUTRAL"

    return StochasticResult(k=round(k_now, 2), d=round(d_now, 2), zone=zone, crossover=crossover)


@dataclass(frozen=True)
class WilliamsResult:
    value: Optional[float] = None
    zone: str = UNKNOWN


def williams_r(candles: Sequence[Candle], period: int = 14) -> WilliamsResult:
    """Williams %R in [-100, 0]."""
    _check_period(period)
    if len(candles) < period:
        return WilliamsResult()
    window = candles[-period:]
    highest = max(c.high for c in window)
    lowest = min(c.low for c in window)
    if highest == lowest:
        value = -50.0
    else:
        value = (highest - window[-1].close) / (highest - lowest) * -100
    if value <= -80:
        zone = "OVERSOLD"
    elif value >= -20:
        zone = "OVERBOUGHT"
    else:
        zone = "NEUTRAL"
    return WilliamsResult(value=round(value, 2), zone=zone)


# Volatility


@dataclass(frozen=True)
class BollingerResult:
    upper: Optional[float] = None
    middle: Optional[float] = None
    lower: Optional[float] = None
    percent_b: Optional[float] = None
    width: Optional[float] = None
    signal: str = UNKNOWN


def bollinger_bands(values: Sequence[float], period: int = 20, multiplier: float = 2.0) -> BollingerResult:
    """Bollinger Bands with population standard deviation."""
    _check_period(period)
    if len(values) < period:
        return BollingerResult()
    window = values[-period:]
    middle = _mean(window)
    std = (sum((v - middle) ** 2 for v in window) / period) ** 0.5
    upper = middle + multiplier * std
    lower = middle - multiplier * std
    price = window[-1]

    percent_b = (price - lower) / (upper - lower) if upper > lower else 0.5
    width = (upper - lower) / middle * 100 if middle else 0.0

    if percent_b >= 1:
        signal = "OVERBOUGHT"
    elif percent_b <= 0:
        signal = "OVERSOLD"
    elif percent_b > 0.8:
        signal = "UPPER_ZONE"
    elif percent_b < 0.2:
        signal = "LOWER_ZONE"
    else:
        signal = "NEUTRAL"

    return BollingerResult(
        upper=round(upper, 2),
        middle=round(middle, 2),
        lower=round(lower, 2),
        percent_b=round(percent_b, 3),
        width=round(width, 2),
        signal=signal,
    )


def true_ranges(candles: Sequence[Candle]) -> List[float]:
    """True range for every candle after the first."""
    out = []
    for prev, cur in zip(candles, candles[1:]):
        out.append(max(cur.high - cur.low, abs(cur.high - prev.close), abs(cur.low - prev.close)))
    return out


@dataclass(frozen=True)
class AtrResult:
    atr: Optional[float] = None
    atr_percent: Optional[float] = None

    @property
    def available(self) -> bool:
        return self.atr is not None


def atr(candles: Sequence[Candle], period: int = 14) -> AtrResult:
    """Average True Range over the last ``period`` bars; needs ``period + 1`` candles."""
    _check_period(period)
    if len(candles) < period + 1:
        return AtrResult()
    value = _mean(true_ranges(candles[-(period + 1):]))
    close = candles[-1].close
    percent = round(value / close * 100, 2) if close > 0 else None
    return AtrResult(atr=round(value, 2), atr_percent=percent)


@dataclass(frozen=True)
class VolatilityResult:
    ratio: Optional[float] = None
    state: str = UNKNOWN


def volatility_state(candles: Sequence[Candle], short: int = 5, long: int = 20) -> VolatilityResult:
    """Short/long ATR ratio: SQUEEZE below 0.75, EXPANSION above 1.3."""
    if short >= long:
        raise ValueError(f"short period ({short}) must be shorter than long period ({long})")
    if len(candles) < long + 1:
        return VolatilityResult()
    ranges = true_ranges(candles[-(long + 1):])
    long_atr = _mean(ranges)
    if long_atr == 0:
        return VolatilityResult()
    ratio = _mean(ranges[-short:]) / long_atr
    if ratio < 0.75:
        state = "SQUEEZE"
    elif ratio > 1.3:
        state = "EXPANSION"
    else:
        state = "NORMAL"
    return VolatilityResult(ratio=round(ratio, 2), state=state)


# Price structure and volume


@dataclass(frozen=True)
class FibonacciResult:
    high: Optional[float] = None
    low: Optional[float] = None
    levels: Dict[str, float] = field(default_factory=dict)
    position: Optional[float] = None
    zone: str = UNKNOWN


def fibonacci(candles: Sequence[Candle], lookback: int = 20) -> FibonacciResult:
    """Retracement of the last close within the lookback high/low swing."""
    _check_period(lookback)
    if len(candles) < lookback:
        return FibonacciResult()
    window = candles[-lookback:]
    high = max(c.high for c in window)
    low = min(c.low for c in window)
    if high == low:
        return FibonacciResult(high=high, low=low)
    diff = high - low
    levels = {str(r): round(high - diff * r, 2) for r in FIBONACCI_RATIOS}
    position = (high - window[-1].close) / diff
    if position >= 1:
        zone = "BELOW"
    elif position >= 0.5:
        zone = "GOLDEN_ZONE"
    elif position >= 0.382:
        zone = "SHALLOW"
    else:
        zone = "TOP_ZONE"
    return FibonacciResult(high=high, low=low, levels=levels, position=round(position, 3), zone=zone)


@dataclass(frozen=True)
class VwapResult:
    vwap: Optional[float] = None
    ratio: Optional[float] = None
    signal: str = UNKNOWN


def vwap_ratio(candles: Sequence[Candle], period: int = 20) -> VwapResult:
    """Last close relative to the volume-weighted typical price of the window."""
    _check_period(period)
    if len(candles) < period:
        return VwapResult()
    window = candles[-period:]
    total_volume = sum(c.volume for c in window)
    if total_volume <= 0:
        return VwapResult()
    vwap = sum((c.high + c.low + c.close) / 3 * c.volume for c in window) / total_volume
    ratio = window[-1].close / vwap
    if abs(ratio - 1) <= 0.005:
        signal = "AT_VWAP"
    elif ratio > 1:
        signal = "ABOVE_VWAP"
    else:
        signal = "BELOW_VWAP"
    return VwapResult(vwap=round(vwap, 2), ratio=round(ratio, 4), signal=signal)


@dataclass(frozen=True)
class VolumeResult:
    avg_volume: Optional[float] = None
    today_volume: Optional[float] = None
    ratio: Optional[float] = None
    body_ratio: Optional[float] = None
    signal: str = UNKNOWN
    pattern: Optional[str] = None


def volume_analysis(candles: Sequence[Candle], period: int = 20) -> VolumeResult:
    """Volume-spread classification of the last candle.

    The average excludes today, so ``period + 1`` candles are required.
    """
    _check_period(period)
    if len(candles) < period + 1:
        return VolumeResult()
    today = candles[-1]
    avg_volume = _mean([c.volume for c in candles[-(period + 1):-1]])
    if avg_volume <= 0:
        return VolumeResult()
    ratio = today.volume / avg_volume
    body_ratio = today.body_ratio

    pattern = None
    if ratio >= 2:
        if today.is_green and body_ratio > 0.6:
            signal, pattern = "STRONG_BUYING", "VOLUME_BREAKOUT"
        elif today.is_red and body_ratio > 0.6:
            signal, pattern = "STRONG_SELLING", "VOLUME_BREAKDOWN"
        else:
            signal, pattern = "HIGH_VOLUME", "CHURNING"
    elif ratio >= 1.5:
        if today.is_green:
            signal = "BUYING_PRESSURE"
        elif today.is_red:
            signal = "SELLING_PRESSURE"
        else:
            signal = "HIGH_VOLUME"
    elif ratio < 0.5:
        signal = "LOW_VOLUME"
    else:
        signal = "NORMAL"

    return VolumeResult(
        avg_volume=round(avg_volume, 2),
        today_volume=today.volume,
        ratio=round(ratio, 2),
        body_ratio=round(body_ratio, 2),
        signal=signal,
        pattern=pattern,
    )


@dataclass(frozen=True)
class IndicatorSnapshot:
    """All indicators for one instrument in one cycle. Never persisted."""
    price: Optional[float]
    ma_short: Optional[float]
    ma_long: Optional[float]
    ma60: Optional[float]
    rsi: Optional[float]
    macd: MacdResult
    bollinger: BollingerResult
    atr: AtrResult
    stochastic: StochasticResult
    williams: WilliamsResult
    vwap: VwapResult
    volatility: VolatilityResult
    fibonacci: FibonacciResult
    volume: VolumeResult
    golden_cross: bool
    dead_cross: bool


def compute_snapshot(candles: Sequence[Candle], ma_short: int = 5, ma_long: int = 20) -> IndicatorSnapshot:
    values = _closes(candles)
    return IndicatorSnapshot(
        price=values[-1] if values else None,
        ma_short=sma(values, ma_short),
        ma_long=sma(values, ma_long),
        ma60=sma(values, 60),
        rsi=rsi(values),
        macd=macd(values),
        bollinger=bollinger_bands(values),
        atr=atr(candles),
        stochastic=stochastic(candles),
        williams=williams_r(candles),
        vwap=vwap_ratio(candles),
        volatility=volatility_state(candles),
        fibonacci=fibonacci(candles),
        volume=volume_analysis(candles),
        golden_cross=golden_cross(values, ma_short, ma_long),
        dead_cross=dead_cross(values, ma_short, ma_long),
    )
