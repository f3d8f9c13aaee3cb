"""
Tests for the JSON trade ledger: invariants, summary recomputation, recovery and I/O failure.
"""

import json
import math
import os

import pytest

from polyedge.config import BotConfig
from polyedge.trading.ledger import (
    InvalidTradeError,
    Ledger,
    LedgerIOError,
    recompute_summary,
)
from polyedge.trading.trade import TradeRecord
from polyedge.trading.trader import Trader

from tests.conftest import T0, make_quote, make_signals


def open_trade(tid="t1", market="m1", side="UP", price=0.4, shares=250.0, notional=100.0):
    return TradeRecord(id=tid, market_id=market, side=side, entry_price=price,
                       shares=shares, notional_usd=notional, entry_time=T0, entry_phase="EARLY")


def closed_trade(tid, pnl, reason="end_of_window"):
    t = open_trade(tid)
    t.status = "CLOSED"
    t.pnl = pnl
    t.exit_price = 0.5
    t.exit_time = T0 + 60
    t.exit_reason = reason
    return t


class TestAppend:
    @pytest.mark.parametrize("price", [0.0, -0.1, float("nan"), float("inf")])
    def test_rejects_bad_entry_price(self, ledger, price):
        with pytest.raises(InvalidTradeError):
            ledger.append(open_trade(price=price))
        assert ledger.trades == []

    @pytest.mark.parametrize("shares", [0.0, -5.0, float("nan")])
    def test_rejects_bad_shares(self, ledger, shares):
        with pytest.raises(InvalidTradeError):
            ledger.append(open_trade(shares=shares))

    def test_shares_may_be_absent(self, ledger):
        stored = ledger.append(open_trade(shares=None))
        assert stored.effective_shares() == pytest.approx(250.0)

    def test_rejects_duplicate_id(self, ledger):
        ledger.append(open_trade())
        with pytest.raises(InvalidTradeError):
            ledger.append(open_trade())

    def test_invalid_trade_error_is_value_error(self):
        assert issubclass(InvalidTradeError, ValueError)

    def test_persists_camel_case_layout(self, ledger):
        ledger.append(open_trade())
        with open(ledger.path, encoding="utf-8") as f:
            raw = json.load(f)
        rec = raw["trades"][0]
        assert rec["marketId"] == "m1"
        assert rec["entryPrice"] == 0.4
        assert rec["notionalUsd"] == 100.0
        assert rec["sideInferred"] is False
        assert set(raw["summary"]) == {"totalTrades", "wins", "losses", "totalPnL", "winRate"}

    def test_returned_copy_is_detached(self, ledger):
        stored = ledger.append(open_trade())
        stored.entry_price = 0.9
        assert ledger.get("t1").entry_price == 0.4


class TestSummary:
    def test_counts_closed_only(self):
        trades = [closed_trade("a", 10.0), closed_trade("b", -4.0), closed_trade("c", 0.0), open_trade("d")]
        s = recompute_summary(trades)
        assert s.total_trades == 4
        assert s.wins == 1
        assert s.losses == 2
        assert s.total_pnl == 6.0
        assert s.win_rate == pytest.approx(33.33)

    def test_idempotent(self):
        trades = [closed_trade("a", 1.234), closed_trade("b", -0.5)]
        assert recompute_summary(trades) == recompute_summary(trades)

    def test_total_is_sum_of_closed_pnl(self, ledger):
        ledger.append(open_trade("a"))
        ledger.update("a", {"status": "CLOSED", "pnl": 12.5, "exit_reason": "stop_loss"})
        ledger.append(open_trade("b"))
        ledger.update("b", {"status": "CLOSED", "pnl": -2.25})
        ledger.append(open_trade("c"))
        assert ledger.summary.total_pnl == pytest.approx(10.25)
        assert ledger.realized_pnl == pytest.approx(10.25)
        assert ledger.summary.total_trades == 3

    def test_empty(self):
        s = recompute_summary([])
        assert (s.total_trades, s.wins, s.losses, s.total_pnl, s.win_rate) == (0, 0, 0, 0.0, 0.0)


class TestUpdate:
    def test_unknown_id_is_noop(self, ledger):
        ledger.append(open_trade())
        assert ledger.update("nope", {"status": "CLOSED"}) is None
        assert ledger.open_trade().id == "t1"

    def test_id_cannot_be_patched(self, ledger):
        ledger.append(open_trade())
        updated = ledger.update("t1", {"id": "other", "pnl": 1.0})
        assert updated.id == "t1"

    def test_open_trade_is_latest_open(self, ledger):
        ledger.append(open_trade("a"))
        ledger.update("a", {"status": "CLOSED"})
        assert ledger.open_trade() is None
        ledger.append(open_trade("b"))
        assert ledger.open_trade().id == "b"


class TestLoad:
    """Recovery from whatever is on disk."""

    def _write(self, path, payload):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            if isinstance(payload, str):
                f.write(payload)
            else:
                json.dump(payload, f)

    def test_missing_file_starts_empty(self, tmp_path):
        led = Ledger(str(tmp_path / "none.json"))
        summary = led.load(T0)
        assert summary.total_trades == 0
        assert os.path.exists(led.path)

    def test_round_trips_from_disk(self, cfg, ledger):
        ledger.append(open_trade())
        again = Ledger(cfg.ledger_path)
        again.load(T0)
        assert again.open_trade() == ledger.open_trade()

    def test_force_closes_invalid_open_trade(self, tmp_path):
        path = str(tmp_path / "trades.json")
        bad = open_trade(price=0.0).to_dict()
        self._write(path, {"trades": [bad], "summary": {}})
        led = Ledger(path)
        led.load(T0)
        t = led.get("t1")
        assert t.status == "CLOSED"
        assert t.exit_reason == "invalid_entry"
        assert t.pnl == 0.0
        assert led.open_trade() is None

    def test_force_closes_all_but_last_open(self, tmp_path):
        path = str(tmp_path / "trades.json")
        self._write(path, {"trades": [open_trade("a").to_dict(), open_trade("b").to_dict()]})
        led = Ledger(path)
        led.load(T0)
        assert led.get("a").exit_reason == "duplicate_open"
        assert led.open_trade().id == "b"

    def test_corrupt_file_moved_aside(self, tmp_path):
        path = str(tmp_path / "trades.json")
        self._write(path, "{not json")
        led = Ledger(path)
        led.load(T0)
        assert led.trades == []
        assert os.path.exists(f"{path}.corrupt-{int(T0)}")

    def test_unexpected_layout_moved_aside(self, tmp_path):
        path = str(tmp_path / "trades.json")
        self._write(path, [1, 2, 3])
        Ledger(path).load(T0)
        assert os.path.exists(f"{path}.corrupt-{int(T0)}")

    def test_unreadable_records_dropped_and_backed_up(self, tmp_path):
        path = str(tmp_path / "trades.json")
        self._write(path, {"trades": [{"nope": 1}, "garbage", closed_trade("ok", 3.0).to_dict()]})
        led = Ledger(path)
        led.load(T0)
        assert [t.id for t in led.trades] == ["ok"]
        assert led.summary.total_pnl == 3.0
        assert os.path.exists(f"{path}.corrupt-{int(T0)}")

    def test_summary_recomputed_not_trusted(self, tmp_path):
        path = str(tmp_path / "trades.json")
        self._write(path, {"trades": [closed_trade("a", 5.0).to_dict()],
                           "summary": {"totalTrades": 99, "totalPnL": -1000}})
        led = Ledger(path)
        led.load(T0)
        assert led.summary.total_trades == 1
        assert led.summary.total_pnl == 5.0

    def test_non_numeric_pnl_dropped_not_fatal(self, tmp_path):
        path = str(tmp_path / "trades.json")
        bad = closed_trade("bad", 0.0).to_dict()
        bad["pnl"] = "1.5"
        self._write(path, {"trades": [bad, closed_trade("ok", 2.0).to_dict()]})
        led = Ledger(path)
        led.load(T0)
        assert [t.id for t in led.trades] == ["ok"]
        assert led.summary.total_pnl == 2.0
        assert os.path.exists(f"{path}.corrupt-{int(T0)}")

    def test_open_trade_without_notional_force_closed(self, tmp_path, bars):
        path = str(tmp_path / "trades.json")
        bad = open_trade().to_dict()
        bad["notionalUsd"] = None
        self._write(path, {"trades": [bad]})
        led = Ledger(path)
        led.load(T0)
        t = led.get("t1")
        assert t.status == "CLOSED"
        assert t.exit_reason == "invalid_entry"

        trader = Trader(BotConfig(ledger_path=path), led)
        trader.initialize(T0)
        res = trader.evaluate_tick(bars, make_quote(), make_signals(trader.cfg, 0.5), T0 + 5)
        assert trader.current_open_trade() is None
        assert res.status.blocked_by != "error"


class TestIOFailure:
    def test_write_failure_leaves_memory_unchanged(self, ledger, monkeypatch):
        ledger.append(open_trade("a"))
        before = ledger.snapshot()

        def boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("polyedge.trading.ledger.os.replace", boom)
        with pytest.raises(LedgerIOError):
            ledger.update("a", {"status": "CLOSED", "pnl": 4.0})
        with pytest.raises(LedgerIOError):
            ledger.append(open_trade("b"))

        assert ledger.snapshot() == before
        assert ledger.open_trade().id == "a"
        leftovers = [p for p in os.listdir(ledger.path.parent) if p.endswith(".tmp")]
        assert leftovers == []


class TestTradeRecord:
    def test_from_dict_requires_identity(self):
        with pytest.raises(KeyError):
            TradeRecord.from_dict({"side": "UP", "marketId": "m"})

    def test_from_dict_rejects_non_object(self):
        with pytest.raises(TypeError):
            TradeRecord.from_dict(["x"])

    @pytest.mark.parametrize("key, value", [
        ("entryPrice", "0.4"),
        ("shares", True),
        ("entryTime", [1]),
        ("exitPrice", float("nan")),
    ])
    def test_from_dict_rejects_bad_numbers(self, key, value):
        raw = open_trade().to_dict()
        raw[key] = value
        with pytest.raises(ValueError):
            TradeRecord.from_dict(raw)

    def test_from_dict_converts_ints(self):
        raw = open_trade().to_dict()
        raw["notionalUsd"] = 100
        t = TradeRecord.from_dict(raw)
        assert isinstance(t.notional_usd, float)
        assert t.invalid_reason() is None

    def test_open_trade_needs_positive_notional(self):
        assert open_trade(notional=0.0).invalid_reason() == "notional_usd=0.0"

    def test_mark_to_market(self):
        t = open_trade()
        assert t.mark_to_market(0.5) == pytest.approx(25.0)
        assert math.isclose(t.mark_to_market(0.4), 0.0, abs_tol=1e-9)
