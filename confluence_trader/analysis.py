"""Per-instrument, per-cycle analysis snapshot.

One tagged result per detector, composed into a single value the signal and
exit engines consume. Disabled detectors contribute their neutral default.
"""
from dataclasses import dataclass, field
from typing import Optional, Sequence

from . import mtf as mtf_detector
from . import patterns as pattern_detector
from . import support_resistance as sr_detector
from .broker import Quote
from .candles import Candle
from .config import TradingConfig
from .indicators import IndicatorSnapshot, compute_snapshot
from .market import CouplingResult
from .mtf import MtfResult
from .news import NewsSentiment
from .patterns import PatternResult
from .supply_demand import FlowAnalysis
from .support_resistance import SupportResistanceResult


@dataclass(frozen=True)
class InstrumentAnalysis:
    code: str
    quote: Quote
    indicators: IndicatorSnapshot
    patterns: PatternResult = field(default_factory=PatternResult)
    sr: SupportResistanceResult = field(default_factory=SupportResistanceResult)
    mtf: MtfResult = field(default_factory=MtfResult)
    coupling: CouplingResult = field(default_factory=CouplingResult)
    news: NewsSentiment = field(default_factory=NewsSentiment)
    flow: FlowAnalysis = field(default_factory=FlowAnalysis)

    @property
    def price(self) -> float:
        return self.quote.price


def analyze_instrument(
    quote: Quote,
    daily: Sequence[Candle],
    weekly: Sequence[Candle],
    config: TradingConfig,
    coupling: Optional[CouplingResult] = None,
    news: Optional[NewsSentiment] = None,
    flow: Optional[FlowAnalysis] = None,
) -> InstrumentAnalysis:
    """Run every enabled detector over the instrument's candles."""
    return InstrumentAnalysis(
        code=quote.code,
        quote=quote,
        indicators=compute_snapshot(daily, config.buy.ma_short, config.buy.ma_long),
        patterns=pattern_detector.analyze(daily),
        sr=sr_detector.analyze(daily, config.sr) if config.sr.enabled else SupportResistanceResult(),
        mtf=mtf_detector.analyze(daily, weekly) if config.mtf.enabled else MtfResult(),
        coupling=coupling or CouplingResult(),
        news=news or NewsSentiment(code=quote.code),
        flow=flow or FlowAnalysis(),
    )
