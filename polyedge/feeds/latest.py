import math
import time
from collections import deque
from typing import Generic, Optional, TypeVar

from polyedge.utils.candle import Candle, MarketQuote, parse_candle
from polyedge.utils.logger import log

T = TypeVar("T")


class LatestValue(Generic[T]):
    """Single-slot cell. Producers overwrite, the loop reads; nobody ever waits."""

    def __init__(self, value: Optional[T] = None):
        self._value = value
        self.updated_at: Optional[float] = None

    def set(self, value: T, at: Optional[float] = None):
        self._value = value
        self.updated_at = time.time() if at is None else at

    def get(self) -> Optional[T]:
        return self._value

    def age(self, now: Optional[float] = None) -> Optional[float]:
        if self.updated_at is None:
            return None
        return (time.time() if now is None else now) - self.updated_at


class CandleBuilder:
    """Rolls reference-price ticks into 1-minute bars (volume stays 0)."""

    def __init__(self, lookback: int = 240, bar_seconds: int = 60):
        self.bar_seconds = bar_seconds
        self.candles: deque[Candle] = deque(maxlen=lookback)

    def add_tick(self, price: float, ts: float):
        if price is None or not math.isfinite(price):
            return
        bar_ms = self.bar_seconds * 1000
        bucket = (int(ts * 1000) // bar_ms) * bar_ms       # epoch ms, like Candle.open_time
        last = self.candles[-1] if self.candles else None

        if last is not None and bucket < last.open_time:
            return                                  # late tick, bar already closed
        if last is not None and bucket == last.open_time:
            last.high = max(last.high, price)
            last.low = min(last.low, price)
            last.close = price
            return
        self.candles.append(Candle(open_time=bucket, open=price, high=price, low=price, close=price))

    def bars(self) -> list[Candle]:
        return list(self.candles)

    def __len__(self):
        return len(self.candles)


class FeedHub:
    """What the evaluation loop reads each tick: latest price, latest quote, recent bars.

    Feed adapters push into it; `recent_bars()` comes from explicitly pushed
    candles when an adapter supplies them, otherwise from the tick builder.
    """

    def __init__(self, lookback: int = 240):
        self.price: LatestValue[float] = LatestValue()
        self.quote: LatestValue[MarketQuote] = LatestValue()
        self.builder = CandleBuilder(lookback)
        self._bars: deque[Candle] = deque(maxlen=lookback)

    # ---- producers ----
    def push_price(self, price: float, ts: Optional[float] = None):
        ts = time.time() if ts is None else ts
        self.price.set(price, ts)
        self.builder.add_tick(price, ts)

    def push_quote(self, quote: MarketQuote, ts: Optional[float] = None):
        self.quote.set(quote, ts)

    def push_candle(self, raw) -> bool:
        """Accept a Candle or a raw kline. Returns False for stale or unparseable bars."""
        try:
            candle = parse_candle(raw)
        except (TypeError, ValueError) as e:
            log.warning("Dropping bad candle %r: %s", raw, e)
            return False
        if self._bars and candle.open_time <= self._bars[-1].open_time:
            if candle.open_time == self._bars[-1].open_time:
                self._bars[-1] = candle             # still-forming bar updated
                return True
            return False
        self._bars.append(candle)
        return True

    # ---- consumers ----
    def latest_reference_price(self) -> Optional[float]:
        return self.price.get()

    def latest_market_quote(self) -> Optional[MarketQuote]:
        return self.quote.get()

    def recent_bars(self) -> list[Candle]:
        if self._bars:
            return list(self._bars)
        return self.builder.bars()
