import json
import math
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import numpy as np

from polyedge.utils.candle import MarketQuote
from polyedge.utils.logger import log

MIN_SAMPLE_GAP = 55.0     # seconds between samples of the same market


def _finite(x) -> Optional[float]:
    if isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x):
        return float(x)
    return None


def _parse_at(raw) -> Optional[float]:
    if not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


class LiquiditySampler:
    """Appends market liquidity/spread to a JSONL file, about once a minute per market."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._last_at: dict[str, float] = {}     # current market only

    def record(self, quote: Optional[MarketQuote], now: Optional[float] = None) -> bool:
        """Returns True when a row was written."""
        if quote is None or not quote.market_id:
            return False
        liquidity = _finite(quote.liquidity)
        if liquidity is None:
            return False
        now = time.time() if now is None else now
        if now - self._last_at.get(quote.market_id, float("-inf")) < MIN_SAMPLE_GAP:
            return False

        row = {
            "at": datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            "marketId": quote.market_id,
            "liquidity": liquidity,
            "spreadUp": _finite(quote.spread_up),
            "spreadDown": _finite(quote.spread_down),
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(row) + "\n")
        except OSError as e:
            log.warning("Failed to record liquidity sample: %s", e)
            return False
        self._last_at = {quote.market_id: now}
        return True

    def read_samples(self, limit: int = 5000) -> list[dict]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            lines = [ln for ln in f.read().splitlines() if ln.strip()]
        rows = []
        for ln in lines[-limit:]:
            try:
                rows.append(json.loads(ln))
            except json.JSONDecodeError:
                continue
        return rows


def compute_liquidity_stats(rows: list[dict], window_hours: float = 24,
                            now: Optional[float] = None) -> dict:
    """Sample count, mean and lower-index quartiles of liquidity over the last `window_hours`."""
    now = time.time() if now is None else now
    cutoff = now - window_hours * 3600
    recent = []
    for r in rows or []:
        at = _parse_at(r.get("at"))
        if at is not None and at >= cutoff:
            recent.append(r)

    liqs = np.array([v for v in (_finite(r.get("liquidity")) for r in recent) if v is not None])
    stats = {"windowHours": window_hours, "samples": len(recent),
             "avg": None, "p25": None, "p50": None, "p75": None}
    if liqs.size:
        stats["avg"] = float(np.mean(liqs))
        for key, q in (("p25", 25), ("p50", 50), ("p75", 75)):
            stats[key] = float(np.percentile(liqs, q, method="lower"))
    return stats
