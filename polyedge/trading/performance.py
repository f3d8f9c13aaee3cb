from collections import defaultdict
from typing import Callable, Iterable, Optional

from polyedge.constants import TradeStatus
from polyedge.trading.trade import TradeRecord


def entry_price_bucket(trade: TradeRecord) -> str:
    px = trade.entry_price
    if not isinstance(px, (int, float)):
        return "unknown"
    cents = px * 100
    if cents < 0.5: return "<0.5¢"
    if cents < 1:   return "0.5–1¢"
    if cents < 2:   return "1–2¢"
    if cents < 5:   return "2–5¢"
    if cents < 10:  return "5–10¢"
    return "10¢+"


def _side_inferred_key(trade: TradeRecord) -> str:
    return "inferred" if trade.side_inferred else "explicit"


def group_pnl(trades: Iterable[TradeRecord], key_fn: Callable[[TradeRecord], Optional[str]]) -> list[dict]:
    """Count and PnL per key, biggest absolute PnL first."""
    groups: dict[str, dict] = defaultdict(lambda: {"count": 0, "pnl": 0.0})
    for t in trades:
        key = str(key_fn(t) or "unknown")
        groups[key]["count"] += 1
        groups[key]["pnl"] += t.pnl or 0.0
    rows = [{"key": k, "count": v["count"], "pnl": round(v["pnl"], 2)} for k, v in groups.items()]
    return sorted(rows, key=lambda r: abs(r["pnl"]), reverse=True)


class PerformanceTracker:
    """Read-only analytics over the ledger's closed trades."""

    def __init__(self, trades: Iterable[TradeRecord]):
        self.closed = [t for t in trades if t.status == TradeStatus.CLOSED.value]

    @property
    def wins(self) -> list[TradeRecord]:
        return [t for t in self.closed if (t.pnl or 0.0) > 0]

    @property
    def losses(self) -> list[TradeRecord]:
        return [t for t in self.closed if (t.pnl or 0.0) < 0]

    @property
    def total_profit(self) -> float:
        return sum(t.pnl or 0.0 for t in self.closed)

    @property
    def win_rate(self) -> Optional[float]:
        return len(self.wins) / len(self.closed) if self.closed else None

    @property
    def max_drawdown(self) -> float:
        peak = 0.0
        running = 0.0
        dd = 0.0
        for t in sorted(self.closed, key=lambda t: t.exit_time or 0.0):
            running += t.pnl or 0.0
            peak = max(peak, running)
            dd = max(dd, peak - running)
        return dd

    def overview(self) -> dict:
        win_pnl = sum(t.pnl for t in self.wins)
        loss_pnl = sum(t.pnl for t in self.losses)   # negative
        n = len(self.closed)
        return {
            "closedTrades": n,
            "wins": len(self.wins),
            "losses": len(self.losses),
            "totalPnL": round(self.total_profit, 2),
            "winRate": self.win_rate,
            "avgWin": win_pnl / len(self.wins) if self.wins else None,
            "avgLoss": loss_pnl / len(self.losses) if self.losses else None,
            "profitFactor": win_pnl / abs(loss_pnl) if loss_pnl != 0 else None,
            "expectancy": self.total_profit / n if n else None,
            "maxDrawdown": round(self.max_drawdown, 2),
        }

    def analytics(self) -> dict:
        return {
            "overview": self.overview(),
            "byExitReason": group_pnl(self.closed, lambda t: t.exit_reason),
            "byEntryPhase": group_pnl(self.closed, lambda t: t.entry_phase),
            "byEntryPriceBucket": group_pnl(self.closed, entry_price_bucket),
            "bySideInferred": group_pnl(self.closed, _side_inferred_key),
        }

    def summary(self) -> str:
        wr = self.win_rate
        return (
            f"W:{len(self.wins)} L:{len(self.losses)} "
            f"WR:{'-' if wr is None else f'{wr:.1%}'} "
            f"P&L:${self.total_profit:+.2f} "
            f"MaxDD:${self.max_drawdown:.2f}"
        )
