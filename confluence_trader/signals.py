"""
Confluence signal engine.

Buy side: an ordered checklist of independent conditions is evaluated for an
unheld instrument and the satisfied ones are counted. BUY requires the count
to reach ``TradingConfig.required_buy_conditions`` and then passes through:

- negative news, which always blocks
- multi-timeframe, coupling and support/resistance filters, each in strict
  (block) or advisory (warn) mode per its own config switch
- a risk/reward gate on take_profit / volatility-scaled stop, waived when the
  count exceeds the threshold by ``risk.exceptional_margin``

Sell side for a holding:

- emergency path, checked first and exempt from the vote: the loss reaches the
  volatility-scaled stop, or negative news coincides with a loss
- otherwise a vote against ``sell.required_conditions``

Priority 1 is the most urgent. Emergency sells are 1; buys rank 2 to 4 by how
far they clear the threshold.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .analysis import InstrumentAnalysis
from .config import TradingConfig
from .portfolio import Holding


class Action(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    PARTIAL_SELL = "PARTIAL_SELL"
    HOLD = "HOLD"


@dataclass(frozen=True)
class Signal:
    code: str
    action: Action
    priority: int = 5
    reason: str = ""
    conditions: Tuple[str, ...] = ()
    conditions_required: int = 0
    emergency: bool = False
    quantity: Optional[int] = None
    level_id: Optional[str] = None
    warnings: Tuple[str, ...] = ()
    analysis: Optional[InstrumentAnalysis] = None

    @property
    def conditions_met(self) -> int:
        return len(self.conditions)

    @property
    def is_hold(self) -> bool:
        return self.action == Action.HOLD


def buy_rank(signal: Signal) -> Tuple[int, int]:
    """Sort key for buy candidates: priority, with a one-step bonus for aligned timeframes."""
    bonus = 1 if signal.analysis is not None and signal.analysis.mtf.alignment == "BULLISH_ALIGNED" else 0
    return (signal.priority - bonus, -signal.conditions_met)


class ConfluenceEngine:
    def __init__(self, config: TradingConfig):
        self.config = config

    def stop_loss_rate(self, analysis: Optional[InstrumentAnalysis]) -> float:
        """Volatility-scaled stop as a negative rate, never tighter than ``sell.stop_loss``."""
        base = abs(self.config.sell.stop_loss)
        atr_percent = analysis.indicators.atr.atr_percent if analysis is not None else None
        if atr_percent is None:
            return -base
        scaled = atr_percent * self.config.risk.atr_stop_multiplier / 100
        return -min(max(base, scaled), max(base, self.config.risk.max_stop_loss))

    # Buy side

    def buy_conditions(self, a: InstrumentAnalysis) -> List[str]:
        cfg = self.config
        ind = a.indicators
        met = []

        rsi_limit = cfg.buy.rsi_below + (cfg.buy.positive_news_rsi_bonus if a.news.positive else 0)
        if ind.rsi is not None and ind.rsi < rsi_limit:
            met.append(f"RSI oversold ({ind.rsi} < {rsi_limit:g})")

        st = ind.stochastic
        if st.zone == "OVERSOLD":
            met.append(f"Stochastic oversold (%K {st.k})")
        elif st.crossover == "BULLISH_CROSS" and st.k < 50:
            met.append(f"Stochastic bullish cross (%K {st.k})")

        if ind.williams.zone == "OVERSOLD":
            met.append(f"Williams %R oversold ({ind.williams.value})")

        if ind.bollinger.signal in ("OVERSOLD", "LOWER_ZONE"):
            met.append(f"Bollinger lower band (%B {ind.bollinger.percent_b})")

        if ind.macd.crossover == "GOLDEN_CROSS":
            met.append("MACD golden cross")
        elif ind.macd.trend == "BULLISH":
            met.append("MACD bullish")

        if ind.golden_cross:
            met.append(f"MA{cfg.buy.ma_short}/MA{cfg.buy.ma_long} golden cross")
        elif None not in (ind.price, ind.ma_short, ind.ma_long) and ind.price > ind.ma_short > ind.ma_long:
            met.append("MA alignment")

        if ind.volume.signal in ("STRONG_BUYING", "BUYING_PRESSURE"):
            met.append(f"Volume {ind.volume.signal.lower()} (x{ind.volume.ratio})")

        if a.patterns.signal in ("BULLISH", "STRONG_BULLISH"):
            met.append(f"Candle pattern {'+'.join(a.patterns.names)}")

        if ind.fibonacci.zone == "GOLDEN_ZONE":
            met.append(f"Fibonacci golden zone ({ind.fibonacci.position})")

        if cfg.mtf.enabled and a.mtf.can_buy(cfg.mtf.allowed_signals):
            met.append(f"Multi-timeframe {a.mtf.alignment}")

        if a.sr.sweep.kind == "BULLISH_SWEEP":
            met.append("Liquidity sweep (bullish)")
        elif a.sr.proximity.zone == "SUPPORT_ZONE":
            met.append(f"Near support {a.sr.proximity.near_support.price:g}")

        if a.news.positive:
            met.append(f"Positive news (score {a.news.total_score})")

        if a.flow.buying:
            met.append(f"Investor flow {a.flow.signal}")

        return met

    def _filters(self, a: InstrumentAnalysis) -> Tuple[Optional[str], List[str]]:
        """Return (blocking reason, warnings) from the strict/advisory filters."""
        cfg = self.config
        warnings: List[str] = []

        def apply(strict: bool, message: str) -> Optional[str]:
            if strict:
                return message
            warnings.append(message)
            return None

        if cfg.mtf.enabled and not a.mtf.can_buy(cfg.mtf.allowed_signals):
            blocked = apply(cfg.mtf.strict_mode, f"multi-timeframe {a.mtf.signal} ({a.mtf.alignment})")
            if blocked:
                return blocked, warnings

        if cfg.coupling.enabled:
            c = a.coupling
            if c.recommendation == "BLOCK":
                blocked = apply(cfg.coupling.strict_mode, f"coupling {c.signal} (score {c.score})")
                if blocked:
                    return blocked, warnings
            elif c.recommendation == "WARN":
                warnings.append(f"coupling {c.signal} (score {c.score})")
            if c.market_condition in cfg.coupling.warn_market_conditions:
                warnings.append(f"market {c.market_condition}")

        if cfg.sr.enabled:
            if a.sr.sweep.kind == "BEARISH_SWEEP":
                blocked = apply(cfg.sr.strict_mode, "bearish liquidity sweep")
            elif a.sr.proximity.zone == "RESISTANCE_ZONE":
                blocked = apply(cfg.sr.strict_mode, f"near resistance {a.sr.proximity.near_resistance.price:g}")
            else:
                blocked = None
            if blocked:
                return blocked, warnings

        return None, warnings

    def evaluate_buy(self, a: InstrumentAnalysis) -> Signal:
        cfg = self.config
        required = cfg.required_buy_conditions
        met = self.buy_conditions(a)

        def hold(reason: str, warnings=()) -> Signal:
            return Signal(
                code=a.code,
                action=Action.HOLD,
                reason=reason,
                conditions=tuple(met),
                conditions_required=required,
                warnings=tuple(warnings),
                analysis=a,
            )

        if a.news.negative:
            return hold(f"negative news (score {a.news.total_score})")
        if len(met) < required:
            return hold(f"{len(met)}/{required} buy conditions")

        blocked, warnings = self._filters(a)
        if blocked:
            return hold(f"blocked: {blocked}", warnings)

        margin = len(met) - required
        stop = abs(self.stop_loss_rate(a))
        ratio = cfg.sell.take_profit / stop
        if ratio < cfg.risk.min_risk_reward and margin < cfg.risk.exceptional_margin:
            return hold(f"risk/reward {ratio:.2f} < {cfg.risk.min_risk_reward:g} (stop {stop:.2%})", warnings)

        priority = 2 if margin >= 2 else 3 if margin == 1 else 4
        return Signal(
            code=a.code,
            action=Action.BUY,
            priority=priority,
            reason=", ".join(met),
            conditions=tuple(met),
            conditions_required=required,
            warnings=tuple(warnings),
            analysis=a,
        )

    # Sell side

    def sell_conditions(self, a: InstrumentAnalysis, holding: Holding) -> List[str]:
        cfg = self.config
        ind = a.indicators
        profit_rate = holding.profit_rate(a.price)
        met = []

        if profit_rate >= cfg.sell.take_profit:
            met.append(f"Take profit ({profit_rate:+.2%})")

        if ind.rsi is not None and ind.rsi > cfg.sell.rsi_above:
            met.append(f"RSI overbought ({ind.rsi})")

        st = ind.stochastic
        if st.zone == "OVERBOUGHT":
            met.append(f"Stochastic overbought (%K {st.k})")
        elif st.crossover == "BEARISH_CROSS" and st.k > 50:
            met.append(f"Stochastic bearish cross (%K {st.k})")

        if ind.williams.zone == "OVERBOUGHT":
            met.append(f"Williams %R overbought ({ind.williams.value})")

        if ind.bollinger.signal in ("OVERBOUGHT", "UPPER_ZONE"):
            met.append(f"Bollinger upper band (%B {ind.bollinger.percent_b})")

        if ind.macd.crossover == "DEAD_CROSS":
            met.append("MACD dead cross")

        if ind.dead_cross:
            met.append(f"MA{cfg.buy.ma_short}/MA{cfg.buy.ma_long} dead cross")
        elif None not in (ind.price, ind.ma_short, ind.ma_long) and ind.price < ind.ma_short < ind.ma_long:
            met.append("MA breakdown")

        if ind.volume.signal in ("STRONG_SELLING", "SELLING_PRESSURE"):
            met.append(f"Volume {ind.volume.signal.lower()} (x{ind.volume.ratio})")

        if a.patterns.signal in ("BEARISH", "STRONG_BEARISH"):
            met.append(f"Candle pattern {'+'.join(a.patterns.names)}")

        if cfg.mtf.enabled and a.mtf.should_sell:
            met.append(f"Multi-timeframe {a.mtf.alignment}")

        if a.sr.sweep.kind == "BEARISH_SWEEP":
            met.append("Liquidity sweep (bearish)")
        elif a.sr.proximity.zone == "RESISTANCE_ZONE":
            met.append(f"Near resistance {a.sr.proximity.near_resistance.price:g}")

        if a.news.negative:
            met.append(f"Negative news (score {a.news.total_score})")

        if a.flow.selling:
            met.append(f"Investor flow {a.flow.signal}")

        return met

    def evaluate_sell(self, a: InstrumentAnalysis, holding: Holding) -> Signal:
        cfg = self.config
        required = cfg.sell.required_conditions
        profit_rate = holding.profit_rate(a.price)

        stop = self.stop_loss_rate(a)
        if profit_rate <= stop:
            return Signal(
                code=holding.code,
                action=Action.SELL,
                priority=1,
                reason=f"stop-loss: {profit_rate:+.2%} <= {stop:+.2%}",
                emergency=True,
                quantity=holding.quantity,
                analysis=a,
            )
        if a.news.negative and profit_rate <= cfg.sell.news_loss_threshold:
            return Signal(
                code=holding.code,
                action=Action.SELL,
                priority=1,
                reason=f"negative news with loss: {profit_rate:+.2%} (score {a.news.total_score})",
                emergency=True,
                quantity=holding.quantity,
                analysis=a,
            )

        met = self.sell_conditions(a, holding)
        if len(met) >= required:
            return Signal(
                code=holding.code,
                action=Action.SELL,
                priority=3,
                reason=", ".join(met),
                conditions=tuple(met),
                conditions_required=required,
                quantity=holding.quantity,
                analysis=a,
            )
        return Signal(
            code=holding.code,
            action=Action.HOLD,
            reason=f"{len(met)}/{required} sell conditions",
            conditions=tuple(met),
            conditions_required=required,
            analysis=a,
        )
