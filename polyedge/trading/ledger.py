import json
import os
import shutil
import tempfile
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Optional

from polyedge.constants import ExitReason, TradeStatus
from polyedge.trading.trade import TradeRecord
from polyedge.utils.logger import log


class LedgerError(RuntimeError):
    pass


class InvalidTradeError(LedgerError, ValueError):
    """An OPEN trade that breaks the positivity invariant, or a duplicate id."""


class LedgerIOError(LedgerError):
    """Persisting the ledger failed. The in-memory state was not advanced."""


@dataclass(frozen=True)
class LedgerSummary:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    total_pnl: float = 0.0
    win_rate: float = 0.0                   # percent

    def to_dict(self) -> dict:
        return {
            "totalTrades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "totalPnL": self.total_pnl,
            "winRate": self.win_rate,
        }


def recompute_summary(trades: Iterable[TradeRecord]) -> LedgerSummary:
    """Fold over the full trade list. CLOSED trades count; pnl <= 0 is a loss."""
    total = 0
    wins = 0
    losses = 0
    pnl_sum = 0.0
    for t in trades:
        total += 1
        if t.status != TradeStatus.CLOSED.value:
            continue
        pnl = t.pnl or 0.0
        pnl_sum += pnl
        if pnl > 0:
            wins += 1
        else:
            losses += 1
    closed = wins + losses
    win_rate = (wins / closed) * 100 if closed > 0 else 0.0
    return LedgerSummary(
        total_trades=total,
        wins=wins,
        losses=losses,
        total_pnl=round(pnl_sum, 2),
        win_rate=round(win_rate, 2),
    )


class Ledger:
    """JSON trade ledger. Owns its cache; every mutation persists the whole file before returning.

    Mutations build the new trade list, write it (temp file + atomic replace)
    and only then swap it in, so a failed write leaves memory untouched.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._trades: list[TradeRecord] = []
        self._summary = LedgerSummary()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    @property
    def trades(self) -> list[TradeRecord]:
        return [replace(t) for t in self._trades]

    @property
    def summary(self) -> LedgerSummary:
        return self._summary

    @property
    def realized_pnl(self) -> float:
        return self._summary.total_pnl

    def get(self, trade_id: str) -> Optional[TradeRecord]:
        for t in self._trades:
            if t.id == trade_id:
                return replace(t)
        return None

    def open_trade(self) -> Optional[TradeRecord]:
        for t in reversed(self._trades):
            if t.is_open:
                return replace(t)
        return None

    def snapshot(self) -> dict:
        return {
            "trades": [t.to_dict() for t in self._trades],
            "summary": self._summary.to_dict(),
        }

    # ------------------------------------------------------------------
    def load(self, now: Optional[float] = None) -> LedgerSummary:
        """Read the file (or start empty), validate every record and repair open-trade invariants."""
        now = time.time() if now is None else now
        with self._lock:
            trades: list[TradeRecord] = []
            raw = self._read_raw(now)
            skipped = 0
            for item in raw.get("trades") or []:
                try:
                    trades.append(TradeRecord.from_dict(item))
                except (KeyError, TypeError, ValueError) as e:
                    skipped += 1
                    log.warning("Dropping unreadable ledger record %r: %s", item, e)
            if skipped:
                self._backup(now)

            trades = self._repair(trades, now)
            self._commit(trades)
            log.info("Ledger loaded from %s — trades=%d  summary=%s",
                     self.path, len(trades), self._summary.to_dict())
            return self._summary

    def append(self, trade: TradeRecord) -> TradeRecord:
        bad = trade.invalid_reason()
        if bad:
            raise InvalidTradeError(f"Refusing to add invalid OPEN trade {trade.id}: {bad}")
        with self._lock:
            if any(t.id == trade.id for t in self._trades):
                raise InvalidTradeError(f"Trade id {trade.id} already in ledger")
            stored = replace(trade)
            self._commit(self._trades + [stored])
        log.debug("Trade added: %s %s @ %.4f", trade.id, trade.side, trade.entry_price)
        return replace(stored)

    def update(self, trade_id: str, patch: dict) -> Optional[TradeRecord]:
        """Merge `patch` (TradeRecord field names) onto a record. Unknown id → warning, no-op."""
        with self._lock:
            for i, t in enumerate(self._trades):
                if t.id != trade_id:
                    continue
                updated = replace(t, **{k: v for k, v in patch.items() if k != "id"})
                trades = list(self._trades)
                trades[i] = updated
                self._commit(trades)
                return replace(updated)
        log.warning("Trade with id %s not found for update.", trade_id)
        return None

    def flush(self):
        with self._lock:
            self._commit(list(self._trades))

    # ------------------------------------------------------------------
    def _commit(self, trades: list[TradeRecord]):
        summary = recompute_summary(trades)
        self._persist(trades, summary)
        self._trades = trades
        self._summary = summary

    def _persist(self, trades: list[TradeRecord], summary: LedgerSummary):
        payload = {"trades": [t.to_dict() for t in trades], "summary": summary.to_dict()}
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=self.path.name, suffix=".tmp", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise LedgerIOError(f"Failed to save ledger to {self.path}: {e}") from e

    def _read_raw(self, now: float) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            log.error("Ledger %s is corrupt (%s) — moving it aside and starting fresh", self.path, e)
            self._move_aside(now)
            return {}
        except OSError as e:
            raise LedgerIOError(f"Failed to read ledger {self.path}: {e}") from e
        if not isinstance(raw, dict) or not isinstance(raw.get("trades", []), list):
            log.error("Ledger %s has an unexpected layout — moving it aside and starting fresh", self.path)
            self._move_aside(now)
            return {}
        return raw

    def _corrupt_path(self, now: float) -> Path:
        return self.path.with_name(f"{self.path.name}.corrupt-{int(now)}")

    def _move_aside(self, now: float):
        try:
            os.replace(self.path, self._corrupt_path(now))
        except OSError as e:
            raise LedgerIOError(f"Failed to move corrupt ledger {self.path}: {e}") from e

    def _backup(self, now: float):
        try:
            shutil.copyfile(self.path, self._corrupt_path(now))
        except OSError as e:
            raise LedgerIOError(f"Failed to back up ledger {self.path}: {e}") from e

    @staticmethod
    def _repair(trades: list[TradeRecord], now: float) -> list[TradeRecord]:
        out = []
        for t in trades:
            bad = t.invalid_reason()
            if bad:
                log.warning("Invalid open trade %s in ledger (%s) — force-closing", t.id, bad)
                t = _force_closed(t, now, ExitReason.INVALID_ENTRY)
            out.append(t)

        open_idx = [i for i, t in enumerate(out) if t.is_open]
        for i in open_idx[:-1]:
            log.warning("More than one open trade in ledger — force-closing %s", out[i].id)
            out[i] = _force_closed(out[i], now, ExitReason.DUPLICATE_OPEN)
        return out


def _force_closed(t: TradeRecord, now: float, reason: ExitReason) -> TradeRecord:
    return replace(t, status=TradeStatus.CLOSED.value, exit_time=now, pnl=0.0, exit_reason=reason.value)
