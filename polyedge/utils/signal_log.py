import csv
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from polyedge.constants import Action
from polyedge.core.pipeline import Signals
from polyedge.utils.logger import log

HEADER = ["timestamp", "time_left", "regime", "signal", "model_up", "model_down",
          "mkt_up", "mkt_down", "edge_up", "edge_down", "rec"]


def _fmt(x: Optional[float]) -> str:
    return "" if x is None else f"{x:.4f}"


class SignalLogger:
    """One CSV row per evaluated tick."""

    def __init__(self, path: str):
        self.path = Path(path)

    def row(self, signals: Signals, now: float) -> list[str]:
        rec = signals.recommendation
        if rec.action is Action.ENTER and rec.side is not None:
            signal = f"BUY {rec.side.value}"
        else:
            signal = "NO TRADE"
        return [
            datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            f"{signals.remaining_minutes:.3f}",
            signals.regime.regime.value,
            signal,
            _fmt(signals.model_up),
            _fmt(signals.model_down),
            _fmt(signals.edge.market_up),
            _fmt(signals.edge.market_down),
            _fmt(signals.edge.edge_up),
            _fmt(signals.edge.edge_down),
            rec.label,
        ]

    def append(self, signals: Signals, now: float):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            new_file = not self.path.exists()
            with open(self.path, "a", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                if new_file:
                    writer.writerow(HEADER)
                writer.writerow(self.row(signals, now))
        except OSError as e:
            log.warning("Failed to append signal row: %s", e)
