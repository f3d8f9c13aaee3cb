import math
from dataclasses import dataclass
from typing import Optional

from polyedge.constants import Side

@dataclass
class Candle:
    open_time: float                     # bucket start, epoch ms
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0                  # 0 for oracle-derived bars

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3


# (field, accepted keys) for kline dicts; volume is optional
_KLINE_KEYS = (
    ("open_time", ("openTime", "open_time", "t")),
    ("open", ("open", "o")),
    ("high", ("high", "h")),
    ("low", ("low", "l")),
    ("close", ("close", "c")),
    ("volume", ("volume", "v")),
)


def parse_candle(raw) -> Candle:
    """Normalise a bar pushed by a feed adapter.

    Accepts a `Candle`, an exchange kline row ``[openTime, open, high, low,
    close, volume, ...]`` (numbers may arrive as strings), or a kline dict with
    long or single-letter keys, optionally wrapped in a ``"k"`` event. Raises
    ValueError when a price field is missing or not a finite number.
    """
    if isinstance(raw, Candle):
        return raw
    if isinstance(raw, dict):
        bar = raw.get("k", raw)
        values = {}
        for field, keys in _KLINE_KEYS:
            values[field] = next((bar[k] for k in keys if bar.get(k) is not None), None)
    elif isinstance(raw, (list, tuple)):
        if len(raw) < 5:
            raise ValueError(f"kline row needs at least 5 fields, got {len(raw)}")
        values = dict(zip([f for f, _ in _KLINE_KEYS], raw))
    else:
        raise TypeError(f"cannot parse a candle from {type(raw).__name__}")

    if values.get("volume") is None:
        values["volume"] = 0.0
    out = {}
    for field, value in values.items():
        if value is None:
            raise ValueError(f"candle is missing {field}")
        try:
            num = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"candle {field}={value!r} is not a number") from None
        if not math.isfinite(num):
            raise ValueError(f"candle {field}={value!r} is not finite")
        out[field] = num
    return Candle(**out)


@dataclass
class MarketQuote:
    """Two-sided prediction-market quote. Prices are dollars in (0, 1), sourced independently."""
    market_id: str
    up_price: Optional[float] = None
    down_price: Optional[float] = None
    liquidity: Optional[float] = None
    spread_up: Optional[float] = None
    spread_down: Optional[float] = None

    def price_for(self, side: Side) -> Optional[float]:
        price = self.up_price if side is Side.UP else self.down_price
        if price is None or not math.isfinite(price):
            return None
        return price
