"""Investor-flow (supply/demand) scoring.

Foreign and institutional net buying trends come from an external
``FlowProvider``; results are cached for 30 minutes per instrument.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

from .cache import TTLCache
from .indicators import UNKNOWN
from .logging_setup import logger, sanitize_error


@dataclass(frozen=True)
class InvestorTrend:
    foreign: str = "NEUTRAL"  # BUY, SELL or NEUTRAL over the lookback days
    institution: str = "NEUTRAL"


@dataclass(frozen=True)
class FlowAnalysis:
    score: int = 0
    signal: str = UNKNOWN
    signals: Tuple[str, ...] = ()

    @property
    def buying(self) -> bool:
        return self.signal in ("STRONG_BUY", "BUY")

    @property
    def selling(self) -> bool:
        return self.signal in ("STRONG_SELL", "SELL")


class FlowProvider(ABC):
    @abstractmethod
    def get_investor_trend(self, code: str, days: int) -> Optional[InvestorTrend]:
        """Return the net buying trend of each investor group, or None if unavailable."""


def score_flow(trend: InvestorTrend) -> FlowAnalysis:
    score = 0
    signals = []
    for group, label in ((trend.foreign, "FOREIGN"), (trend.institution, "INSTITUTION")):
        if group == "BUY":
            score += 2
            signals.append(f"{label}_BUY")
        elif group == "SELL":
            score -= 2
            signals.append(f"{label}_SELL")
    if trend.foreign == "BUY" and trend.institution == "BUY":
        score += 1
        signals.append("DOUBLE_BUY")

    if score >= 4:
        signal = "STRONG_BUY"
    elif score >= 2:
        signal = "BUY"
    elif score <= -4:
        signal = "STRONG_SELL"
    elif score <= -2:
        signal = "SELL"
    else:
        signal = "NEUTRAL"
    return FlowAnalysis(score=score, signal=signal, signals=tuple(signals))


class SupplyDemandAnalyzer:
    def __init__(self, provider: Optional[FlowProvider], days: int = 5, cache: Optional[TTLCache] = None, cache_minutes: float = 30.0):
        self.provider = provider
        self.days = days
        self.cache = cache or TTLCache(ttl_seconds=cache_minutes * 60)

    def analyze(self, code: str) -> FlowAnalysis:
        if self.provider is None:
            return FlowAnalysis()
        cached = self.cache.get(code)
        if cached is not None:
            return cached
        try:
            trend = self.provider.get_investor_trend(code, self.days)
        except Exception as e:
            logger.warning(f"Investor flow fetch failed | code={code} error={sanitize_error(e)}")
            return FlowAnalysis()
        if trend is None:
            return FlowAnalysis()
        result = score_flow(trend)
        self.cache.set(code, result)
        return result
