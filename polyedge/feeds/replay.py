import csv
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Optional

from polyedge.feeds.latest import FeedHub
from polyedge.utils.candle import MarketQuote
from polyedge.utils.logger import log
from polyedge.utils.timing import window_timing


@dataclass
class ReplayTick:
    ts: float                               # epoch seconds
    price: float                            # reference (oracle) price
    up: Optional[float] = None
    down: Optional[float] = None
    liquidity: Optional[float] = None
    spread_up: Optional[float] = None
    spread_down: Optional[float] = None
    market_id: Optional[str] = None


def _num(row: dict, *keys) -> Optional[float]:
    for k in keys:
        raw = row.get(k)
        if raw is None or str(raw).strip() == "":
            continue
        value = float(raw)
        return value if math.isfinite(value) else None
    return None


def _parse_time(raw: str) -> float:
    raw = raw.strip()
    if "-" in raw and ":" in raw:
        parsed = datetime.strptime(raw[:19].replace("T", " "), "%Y-%m-%d %H:%M:%S")
        return parsed.replace(tzinfo=timezone.utc).timestamp()
    value = float(raw)
    return value / 1000 if value > 1e11 else value      # epoch ms → s


def read_ticks(path: str) -> list[ReplayTick]:
    """Parse a tick CSV (comma or semicolon, headers required). Bad rows are skipped."""
    ticks: list[ReplayTick] = []
    skipped = 0
    with open(path, "r", encoding="utf-8-sig") as f:
        first_line = f.readline()
        f.seek(0)
        delimiter = ";" if ";" in first_line else ","
        reader = csv.DictReader(f, delimiter=delimiter)
        log.info("Replay columns found: %s (delimiter='%s')", reader.fieldnames, delimiter)

        for row in reader:
            row = {str(k).strip().lower(): v for k, v in row.items() if k is not None}
            try:
                time_str = str(row.get("time") or row.get("timestamp") or row.get("ts") or "")
                price = _num(row, "price", "close", "btc")
                if not time_str.strip() or price is None:
                    skipped += 1
                    continue
                ticks.append(ReplayTick(
                    ts=_parse_time(time_str),
                    price=price,
                    up=_num(row, "up", "up_price", "mkt_up"),
                    down=_num(row, "down", "down_price", "mkt_down"),
                    liquidity=_num(row, "liquidity"),
                    spread_up=_num(row, "spread_up"),
                    spread_down=_num(row, "spread_down"),
                    market_id=(row.get("market_id") or row.get("market") or "").strip() or None,
                ))
            except (ValueError, TypeError):
                skipped += 1
                continue

    ticks.sort(key=lambda t: t.ts)
    log.info("Parsed %d replay ticks (%d skipped).", len(ticks), skipped)
    return ticks


class ReplayFeed:
    """Feeds recorded ticks through a FeedHub and steps a bot once per poll interval."""

    def __init__(self, path: str, window_minutes: int = 15, poll_interval: float = 5.0):
        self.path = path
        self.window_minutes = window_minutes
        self.poll_interval = poll_interval

    def market_id_for(self, tick: ReplayTick) -> str:
        if tick.market_id:
            return tick.market_id
        start_ms = window_timing(tick.ts, self.window_minutes).start_ms
        return f"window-{int(start_ms)}"

    def push(self, hub: FeedHub, tick: ReplayTick):
        hub.push_price(tick.price, tick.ts)
        if tick.up is not None or tick.down is not None:
            hub.push_quote(MarketQuote(
                market_id=self.market_id_for(tick),
                up_price=tick.up,
                down_price=tick.down,
                liquidity=tick.liquidity,
                spread_up=tick.spread_up,
                spread_down=tick.spread_down,
            ), tick.ts)

    def steps(self, hub: FeedHub) -> Iterator[float]:
        """Push ticks in order, yielding the clock each time the bot should evaluate."""
        last_step = None
        for tick in read_ticks(self.path):
            self.push(hub, tick)
            if last_step is None or tick.ts - last_step >= self.poll_interval:
                last_step = tick.ts
                yield tick.ts

    def run(self, bot) -> int:
        """Replay the whole file through `bot.run_once(now)`. Returns ticks evaluated."""
        n = 0
        for now in self.steps(bot.ctx.feeds):
            bot.run_once(now)
            n += 1
        log.info("🏁 Replay finished: %d ticks evaluated | %s", n, bot.performance().summary())
        return n
