import math
from dataclasses import dataclass, fields
from typing import Iterator, Optional, Sequence

import numpy as np

from polyedge.config import BotConfig
from polyedge.constants import TrendColor
from polyedge.utils.candle import Candle


@dataclass
class IndicatorSnapshot:
    """Indicator values for the latest bar. Fields stay None until enough bars exist."""

    vwap: Optional[float] = None
    vwap_slope: Optional[float] = None
    vwap_dist: Optional[float] = None
    rsi: Optional[float] = None
    rsi_slope: Optional[float] = None
    macd_histogram: Optional[float] = None
    macd_histogram_delta: Optional[float] = None
    trend_color: Optional[TrendColor] = None
    trend_run_length: int = 0
    vwap_cross_count: Optional[int] = None
    failed_vwap_reclaim: bool = False
    volume_recent: Optional[float] = None
    volume_avg: Optional[float] = None

    # fields an entry decision depends on
    REQUIRED = (
        "vwap", "vwap_slope", "rsi", "rsi_slope",
        "macd_histogram", "macd_histogram_delta", "trend_color",
    )

    def missing(self) -> list[str]:
        out = []
        for name in self.REQUIRED:
            value = getattr(self, name)
            if value is None or (isinstance(value, float) and not math.isfinite(value)):
                out.append(name)
        return out

    @property
    def populated(self) -> bool:
        return not self.missing()

    def to_dict(self) -> dict:
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[f.name] = value.value if isinstance(value, TrendColor) else value
        return out


class IndicatorAggregator:
    """Turns a window of 1m bars into an IndicatorSnapshot. Pure: no state between calls."""

    def __init__(self, cfg: BotConfig):
        self.cfg = cfg

    def compute(self, bars: Sequence[Candle], price: Optional[float] = None) -> IndicatorSnapshot:
        snap = IndicatorSnapshot()
        if not bars:
            return snap

        closes = np.array([b.close for b in bars], dtype=np.float64)
        last_price = price if price is not None and math.isfinite(price) else float(closes[-1])

        # --- VWAP ---
        vwaps = vwap_series(bars)
        snap.vwap = vwaps[-1]
        snap.vwap_slope = slope(vwaps, self.cfg.vwap_slope_lookback)
        if snap.vwap:
            snap.vwap_dist = (last_price - snap.vwap) / snap.vwap
        snap.vwap_cross_count = count_vwap_crosses(closes, vwaps, self.cfg.vwap_cross_lookback)
        if len(bars) >= 2:
            snap.failed_vwap_reclaim = bool(closes[-2] > vwaps[-2] and closes[-1] < vwaps[-1])

        # --- RSI ---
        rsis = [_opt(v) for v in rsi_series(closes, self.cfg.rsi_period)]
        snap.rsi = rsis[-1]
        snap.rsi_slope = slope([v for v in rsis if v is not None], self.cfg.rsi_slope_lookback)

        # --- MACD ---
        _, _, hist = macd(closes, self.cfg.macd_fast, self.cfg.macd_slow, self.cfg.macd_signal)
        snap.macd_histogram = _opt(hist[-1])
        if len(hist) >= 2 and snap.macd_histogram is not None and _opt(hist[-2]) is not None:
            snap.macd_histogram_delta = float(hist[-1] - hist[-2])

        # --- Heiken Ashi ---
        snap.trend_color, snap.trend_run_length = trend_run(heiken_ashi(bars))

        # --- Volume (None when the feed carries none) ---
        snap.volume_recent, snap.volume_avg = volume_stats(bars, self.cfg.volume_window)
        return snap

    def iter_snapshots(self, bars: Sequence[Candle]) -> Iterator[IndicatorSnapshot]:
        """Lazily yield the snapshot as of every bar, oldest first (for back-testing)."""
        for i in range(1, len(bars) + 1):
            yield self.compute(bars[:i])


# ---- Helpers ----
def _opt(value) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def session_vwap(bars: Sequence[Candle]) -> Optional[float]:
    """Volume-weighted typical price; unweighted mean of typical price when volume is zero."""
    if not bars:
        return None
    pv = 0.0
    v = 0.0
    tp_sum = 0.0
    for b in bars:
        tp = b.typical_price
        vol = b.volume if b.volume is not None and math.isfinite(b.volume) else 0.0
        pv += tp * vol
        v += vol
        tp_sum += tp
    if v == 0:
        return tp_sum / len(bars)
    return pv / v


def vwap_series(bars: Sequence[Candle]) -> list[float]:
    """session_vwap of every prefix, accumulated in one pass."""
    out = []
    pv = 0.0
    v = 0.0
    tp_sum = 0.0
    for i, b in enumerate(bars, start=1):
        tp = b.typical_price
        vol = b.volume if b.volume is not None and math.isfinite(b.volume) else 0.0
        pv += tp * vol
        v += vol
        tp_sum += tp
        out.append(tp_sum / i if v == 0 else pv / v)
    return out


def slope(series: Sequence[float], lookback: int) -> Optional[float]:
    """Forward difference over `lookback` steps, per step."""
    if lookback <= 0 or len(series) <= lookback:
        return None
    now, then = series[-1], series[-1 - lookback]
    if now is None or then is None:
        return None
    return (now - then) / lookback


def rsi_series(closes: np.ndarray, period: int = 14) -> np.ndarray:
    """Wilder RSI; NaN until `period` deltas exist."""
    closes = np.asarray(closes, dtype=np.float64)
    out = np.full(len(closes), np.nan)
    if len(closes) < period + 1:
        return out

    deltas = np.diff(closes)
    gains = np.maximum(deltas, 0.0)
    losses = np.maximum(-deltas, 0.0)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))
    out[period] = _rsi_value(avg_gain, avg_loss)
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out[i + 1] = _rsi_value(avg_gain, avg_loss)
    return out


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss < 1e-12:
        return 100.0 if avg_gain > 1e-12 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def ema_series(values: np.ndarray, span: int) -> np.ndarray:
    """EMA seeded with the SMA of the first `span` values; NaN before that."""
    values = np.asarray(values, dtype=np.float64)
    out = np.full(len(values), np.nan)
    if len(values) < span:
        return out
    alpha = 2.0 / (span + 1)
    out[span - 1] = np.mean(values[:span])
    for i in range(span, len(values)):
        out[i] = alpha * values[i] + (1 - alpha) * out[i - 1]
    return out


def macd(closes: np.ndarray, fast: int = 12, slow: int = 26, signal: int = 9):
    """(macd_line, signal_line, histogram), NaN where not yet defined."""
    closes = np.asarray(closes, dtype=np.float64)
    line = ema_series(closes, fast) - ema_series(closes, slow)
    sig = np.full(len(closes), np.nan)
    start = slow - 1
    if len(closes) > start:
        sig[start:] = ema_series(line[start:], signal)
    return line, sig, line - sig


def heiken_ashi(bars: Sequence[Candle]) -> list[tuple[float, float]]:
    """(ha_open, ha_close) per bar."""
    out: list[tuple[float, float]] = []
    for b in bars:
        ha_close = (b.open + b.high + b.low + b.close) / 4
        if out:
            prev_open, prev_close = out[-1]
            ha_open = (prev_open + prev_close) / 2
        else:
            ha_open = (b.open + b.close) / 2
        out.append((ha_open, ha_close))
    return out


def trend_run(ha: Sequence[tuple[float, float]]) -> tuple[Optional[TrendColor], int]:
    """Colour of the last Heiken Ashi bar and how many bars in a row share it."""
    if not ha:
        return None, 0

    def color(bar):
        return TrendColor.GREEN if bar[1] >= bar[0] else TrendColor.RED

    last = color(ha[-1])
    count = 0
    for bar in reversed(ha):
        if color(bar) is not last:
            break
        count += 1
    return last, count


def count_vwap_crosses(closes: Sequence[float], vwaps: Sequence[float], lookback: int) -> Optional[int]:
    if len(closes) < lookback or len(vwaps) < lookback:
        return None
    crosses = 0
    for i in range(len(closes) - lookback + 1, len(closes)):
        prev = closes[i - 1] - vwaps[i - 1]
        cur = closes[i] - vwaps[i]
        if prev == 0:
            continue
        if (prev > 0 > cur) or (prev < 0 < cur):
            crosses += 1
    return crosses


def volume_stats(bars: Sequence[Candle], window: int) -> tuple[Optional[float], Optional[float]]:
    """(sum of the last `window` volumes, average sum per `window`-bar block)."""
    vols = np.array([b.volume or 0.0 for b in bars], dtype=np.float64)
    if len(vols) == 0 or not np.any(vols > 0):
        return None, None
    recent = float(np.sum(vols[-window:]))
    blocks = max(len(vols) / window, 1.0)
    return recent, float(np.sum(vols) / blocks)
