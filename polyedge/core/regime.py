from dataclasses import dataclass

from polyedge.config import BotConfig
from polyedge.constants import Regime, TrendColor
from polyedge.core.indicators import IndicatorSnapshot


@dataclass(frozen=True)
class RegimeReading:
    regime: Regime
    reason: str


class RegimeDetector:
    def __init__(self, cfg: BotConfig):
        self.cfg = cfg

    def detect(self, snap: IndicatorSnapshot) -> RegimeReading:
        if snap.vwap is None or snap.vwap_slope is None or snap.vwap_dist is None:
            return RegimeReading(Regime.CHOPPY, "missing_inputs")

        above = snap.vwap_dist > 0
        below = snap.vwap_dist < 0

        # Thin tape hugging VWAP — nothing to ride
        low_volume = (
            snap.volume_recent is not None and snap.volume_avg is not None
            and snap.volume_recent < self.cfg.low_volume_ratio * snap.volume_avg
        )
        if low_volume and abs(snap.vwap_dist) < self.cfg.flat_vwap_dist:
            return RegimeReading(Regime.CHOPPY, "low_volume_flat")

        if above and snap.vwap_slope > 0 and self._confirms(snap, up=True):
            return RegimeReading(Regime.TRENDING_UP, "price_above_vwap_slope_up")
        if below and snap.vwap_slope < 0 and self._confirms(snap, up=False):
            return RegimeReading(Regime.TRENDING_DOWN, "price_below_vwap_slope_down")

        if snap.vwap_cross_count is not None and snap.vwap_cross_count >= self.cfg.chop_cross_count:
            return RegimeReading(Regime.CHOPPY, "frequent_vwap_cross")
        return RegimeReading(Regime.RANGING, "default")

    def _confirms(self, snap: IndicatorSnapshot, up: bool) -> bool:
        """At least one momentum read agrees with the VWAP trend."""
        votes = 0
        if snap.rsi is not None:
            if up and snap.rsi > 50: votes += 1
            if not up and snap.rsi < 50: votes += 1
        if snap.macd_histogram is not None:
            if up and snap.macd_histogram > 0: votes += 1
            if not up and snap.macd_histogram < 0: votes += 1
        if snap.trend_color is not None and snap.trend_run_length >= self.cfg.trend_min_run:
            if up and snap.trend_color is TrendColor.GREEN: votes += 1
            if not up and snap.trend_color is TrendColor.RED: votes += 1
        return votes >= 1
