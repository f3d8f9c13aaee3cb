from dataclasses import dataclass
from typing import Optional, Sequence

from polyedge.config import BotConfig
from polyedge.core.edge import EdgeCalculator, EdgeReading, Recommendation
from polyedge.core.indicators import IndicatorAggregator, IndicatorSnapshot
from polyedge.core.probability import (
    DirectionScore, ProbabilityPair, ProbabilityScorer, TimeDecayAdjuster,
)
from polyedge.core.regime import RegimeDetector, RegimeReading
from polyedge.utils.candle import Candle, MarketQuote


@dataclass(frozen=True)
class Signals:
    """Everything the trader needs from one pass of the pipeline."""
    snapshot: IndicatorSnapshot
    regime: RegimeReading
    score: DirectionScore
    model: ProbabilityPair                 # time-adjusted
    edge: EdgeReading
    recommendation: Recommendation
    remaining_minutes: float
    bar_count: int

    @property
    def model_up(self) -> float:
        return self.model.up

    @property
    def model_down(self) -> float:
        return self.model.down


class SignalPipeline:
    """bars → indicators → regime → probability → time decay → edge → recommendation.

    Pure computation; safe to call from inside the event loop without awaiting.
    """

    def __init__(self, cfg: BotConfig):
        self.cfg = cfg
        self.indicators = IndicatorAggregator(cfg)
        self.regime_detector = RegimeDetector(cfg)
        self.scorer = ProbabilityScorer(cfg)
        self.time_decay = TimeDecayAdjuster(cfg.window_minutes)
        self.edge_calc = EdgeCalculator(cfg)

    def run(self, bars: Sequence[Candle], quote: Optional[MarketQuote],
            remaining_minutes: float, price: Optional[float] = None) -> Signals:
        snapshot = self.indicators.compute(bars, price)
        regime = self.regime_detector.detect(snapshot)
        score = self.scorer.score(snapshot, regime)
        model = self.time_decay.adjust(score.raw.up, remaining_minutes)
        edge = self.edge_calc.compute(model, quote)
        rec = self.edge_calc.decide(model, edge, remaining_minutes)
        return Signals(
            snapshot=snapshot,
            regime=regime,
            score=score,
            model=model,
            edge=edge,
            recommendation=rec,
            remaining_minutes=remaining_minutes,
            bar_count=len(bars),
        )
