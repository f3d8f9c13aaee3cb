from dataclasses import dataclass
from typing import Optional

from polyedge.config import BotConfig
from polyedge.constants import Action, Phase, Side
from polyedge.core.probability import ProbabilityPair
from polyedge.utils.candle import MarketQuote


@dataclass(frozen=True)
class EdgeReading:
    market_up: Optional[float]
    market_down: Optional[float]
    edge_up: Optional[float]
    edge_down: Optional[float]

    def edge_for(self, side: Side) -> Optional[float]:
        return self.edge_up if side is Side.UP else self.edge_down


@dataclass(frozen=True)
class Recommendation:
    action: Action
    side: Optional[Side]
    phase: Phase
    edge: Optional[float] = None
    reason: str = ""

    @property
    def label(self) -> str:
        if self.action is Action.ENTER and self.side is not None:
            return f"{self.side.value}:{self.phase.value}"
        return "NO_TRADE"


class EdgeCalculator:
    """Model vs market per side, then a coarse ENTER/HOLD call for the current phase."""

    def __init__(self, cfg: BotConfig):
        self.cfg = cfg

    def phase_for(self, remaining_minutes: Optional[float]) -> Phase:
        remaining = remaining_minutes if remaining_minutes is not None else 0.0
        if remaining > self.cfg.early_cutoff_minutes:
            return Phase.EARLY
        if remaining > self.cfg.mid_cutoff_minutes:
            return Phase.MID
        return Phase.LATE

    @staticmethod
    def compute(model: ProbabilityPair, quote: Optional[MarketQuote]) -> EdgeReading:
        market_up = quote.price_for(Side.UP) if quote is not None else None
        market_down = quote.price_for(Side.DOWN) if quote is not None else None
        return EdgeReading(
            market_up=market_up,
            market_down=market_down,
            edge_up=None if market_up is None else model.up - market_up,
            edge_down=None if market_down is None else model.down - market_down,
        )

    def decide(self, model: ProbabilityPair, edge: EdgeReading,
               remaining_minutes: Optional[float]) -> Recommendation:
        phase = self.phase_for(remaining_minutes)
        min_prob, min_edge = self.cfg.phase_thresholds(phase)

        if edge.edge_up is None and edge.edge_down is None:
            return Recommendation(Action.HOLD, None, phase, None, "missing_market_data")

        candidates = []
        best_edge = None
        for side, prob in ((Side.UP, model.up), (Side.DOWN, model.down)):
            side_edge = edge.edge_for(side)
            if side_edge is None:
                continue
            if best_edge is None or side_edge > best_edge:
                best_edge = side_edge
            if side_edge >= min_edge and prob >= min_prob:
                candidates.append((side_edge, side))

        if not candidates:
            if best_edge is None or best_edge < min_edge:
                return Recommendation(Action.HOLD, None, phase, best_edge, f"edge_below_{min_edge:.2f}")
            return Recommendation(Action.HOLD, None, phase, best_edge, f"prob_below_{min_prob:.2f}")

        side_edge, side = max(candidates, key=lambda c: c[0])
        return Recommendation(Action.ENTER, side, phase, side_edge, "edge_and_prob_clear")
