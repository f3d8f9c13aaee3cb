import math
from dataclasses import dataclass
from typing import Optional

from polyedge.config import BotConfig
from polyedge.constants import Regime, TrendColor
from polyedge.core.indicators import IndicatorSnapshot
from polyedge.core.regime import RegimeReading


@dataclass(frozen=True)
class ProbabilityPair:
    up: float
    down: float


@dataclass(frozen=True)
class DirectionScore:
    up_score: int
    down_score: int

    @property
    def raw(self) -> ProbabilityPair:
        up = self.up_score / (self.up_score + self.down_score)
        return ProbabilityPair(up, 1.0 - up)


class ProbabilityScorer:
    """Heuristic vote count over the indicator snapshot. Both sides start at 1."""

    def __init__(self, cfg: BotConfig):
        self.cfg = cfg

    def score(self, snap: IndicatorSnapshot, regime: Optional[RegimeReading] = None) -> DirectionScore:
        up = 1
        down = 1

        # ── 1. VWAP side & slope ──
        if snap.vwap_dist is not None:
            if snap.vwap_dist > 0: up += 2
            if snap.vwap_dist < 0: down += 2
        if snap.vwap_slope is not None:
            if snap.vwap_slope > 0: up += 2
            if snap.vwap_slope < 0: down += 2

        # ── 2. RSI level + slope ──
        if snap.rsi is not None and snap.rsi_slope is not None:
            if snap.rsi > self.cfg.rsi_bull and snap.rsi_slope > 0: up += 2
            if snap.rsi < self.cfg.rsi_bear and snap.rsi_slope < 0: down += 2

        # ── 3. MACD histogram expanding ──
        if snap.macd_histogram is not None and snap.macd_histogram_delta is not None:
            if snap.macd_histogram > 0 and snap.macd_histogram_delta > 0: up += 2
            if snap.macd_histogram < 0 and snap.macd_histogram_delta < 0: down += 2

        # ── 4. Heiken Ashi run ──
        if snap.trend_color is not None and snap.trend_run_length >= self.cfg.trend_min_run:
            if snap.trend_color is TrendColor.GREEN: up += 1
            if snap.trend_color is TrendColor.RED: down += 1

        # ── 5. Failed VWAP reclaim is a strong short tell ──
        if snap.failed_vwap_reclaim:
            down += 3

        # ── 6. Regime ──
        if regime is not None:
            if regime.regime is Regime.TRENDING_UP: up += 1
            if regime.regime is Regime.TRENDING_DOWN: down += 1

        return DirectionScore(up, down)


class TimeDecayAdjuster:
    """Pulls the raw probability toward 50/50 as the window runs out.

    decay = remaining / window, clamped to [0, 1]. At a full window the raw
    probability passes through untouched; at expiry it is exactly 0.5. The
    direction never inverts.
    """

    def __init__(self, window_minutes: float):
        self.window_minutes = window_minutes

    def decay(self, remaining_minutes: Optional[float]) -> float:
        if remaining_minutes is None or not math.isfinite(remaining_minutes) or self.window_minutes <= 0:
            return 0.0
        return _clamp(remaining_minutes / self.window_minutes, 0.0, 1.0)

    def adjust(self, raw_up: float, remaining_minutes: Optional[float]) -> ProbabilityPair:
        up = _clamp(0.5 + (raw_up - 0.5) * self.decay(remaining_minutes), 0.0, 1.0)
        return ProbabilityPair(up, 1.0 - up)


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))
