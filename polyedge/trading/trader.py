import math
import time
from dataclasses import asdict, dataclass, replace
from typing import Optional, Sequence

from polyedge.config import BotConfig
from polyedge.constants import Action, ExitReason, GatingMode, Phase, Side, TickAction, TradeStatus
from polyedge.core.pipeline import Signals
from polyedge.trading.ledger import Ledger
from polyedge.trading.money_manager import MoneyManager
from polyedge.trading.trade import TradeRecord, new_trade_id
from polyedge.utils.candle import Candle, MarketQuote
from polyedge.utils.logger import log


@dataclass
class EntryStatus:
    """Why the last tick did (or did not) trade. Filled in on every tick, errors included."""
    at: float
    state: str = "FLAT"                     # "FLAT" / "OPEN"
    eligible: bool = False
    blocked_by: Optional[str] = None        # gate name, None when eligible
    detail: str = ""
    side: Optional[str] = None
    phase: Optional[str] = None
    model_up: Optional[float] = None
    model_down: Optional[float] = None
    action: str = TickAction.NONE.value
    trade_id: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TickResult:
    action: TickAction
    status: EntryStatus
    trade: Optional[TradeRecord] = None     # the trade opened or closed this tick


class Trader:
    """Paper-trading state machine: FLAT ⇄ OPEN(side), one position at a time.

    The ledger is the source of truth; `open_trade` is a transient copy of its
    single OPEN record and is only advanced after the ledger write succeeds.
    """

    def __init__(self, cfg: BotConfig, ledger: Ledger, money_mgr: Optional[MoneyManager] = None):
        self.cfg = cfg
        self.ledger = ledger
        self.money_mgr = money_mgr or MoneyManager(cfg)
        self.open_trade: Optional[TradeRecord] = None
        self.last_status: Optional[EntryStatus] = None
        self._last_flip_at: Optional[float] = None
        self._marks: dict[tuple[str, str], float] = {}   # (market_id, side) → last seen price

    # ------------------------------------------------------------------
    def initialize(self, now: Optional[float] = None):
        """Pick up the ledger's open trade, force-closing it if it breaks the entry invariant."""
        now = time.time() if now is None else now
        trade = self.ledger.open_trade()
        if trade is not None:
            bad = trade.invalid_reason()
            if bad:
                log.warning("Invalid open trade %s (%s) — force-closing", trade.id, bad)
                self.ledger.update(trade.id, {
                    "status": TradeStatus.CLOSED.value,
                    "exit_time": now,
                    "pnl": 0.0,
                    "exit_reason": ExitReason.INVALID_ENTRY.value,
                })
                trade = None
        self.open_trade = trade
        log.info("Trader initialized. Open trade: %s", trade.id[:8] if trade else "None")

    def current_open_trade(self) -> Optional[TradeRecord]:
        return self.open_trade

    def balance(self) -> float:
        return self.money_mgr.balance(self.ledger.realized_pnl)

    # ------------------------------------------------------------------
    def evaluate_tick(self, bars: Sequence[Candle], quote: Optional[MarketQuote],
                      signals: Signals, now: Optional[float] = None) -> TickResult:
        now = time.time() if now is None else now
        rec = signals.recommendation
        status = EntryStatus(
            at=now,
            state="OPEN" if self.open_trade else "FLAT",
            phase=rec.phase.value,
            model_up=signals.model_up,
            model_down=signals.model_down,
        )
        self.last_status = status
        try:
            self._record_marks(quote)
            if self.open_trade is not None:
                return self._manage_open(quote, signals, now, status)
            return self._try_entry(bars, quote, signals, now, status)
        except Exception as e:
            status.eligible = False
            status.blocked_by = "error"
            status.detail = f"{type(e).__name__}: {e}"
            raise

    # ---- entry ----
    def _try_entry(self, bars, quote, signals: Signals, now: float, status: EntryStatus) -> TickResult:
        cfg = self.cfg
        rec = signals.recommendation

        # (0) cannot evaluate without a market
        if quote is None or not quote.market_id:
            return _blocked(status, "no_quote", "no market quote this tick")

        # (a) warm-up
        if len(bars) < cfg.warmup_candles:
            return _blocked(status, "warmup", f"{len(bars)}/{cfg.warmup_candles} candles")

        # (b) every indicator populated
        missing = signals.snapshot.missing()
        if missing:
            return _blocked(status, "indicators", "missing " + ",".join(missing))

        # (c) recommendation gating
        side = rec.side
        inferred = False
        if cfg.gating is GatingMode.STRICT:
            if rec.action is not Action.ENTER or side is None:
                return _blocked(status, "recommendation", f"rec={rec.action.value} ({rec.reason})")
        else:
            if side is None:
                if signals.model_up > signals.model_down:
                    side = Side.UP
                elif signals.model_down > signals.model_up:
                    side = Side.DOWN
                else:
                    return _blocked(status, "no_side", "model is exactly 50/50")
                inferred = True
        status.side = side.value
        if cfg.gating is GatingMode.LOOSE:
            why = self._threshold_block(side, inferred, rec.phase, signals)
            if why:
                return _blocked(status, "thresholds", why)

        # (d) market quality
        why = self._quality_block(quote, signals)
        if why:
            return _blocked(status, "market_quality", why)

        # (e) too close to expiry
        if signals.remaining_minutes < cfg.no_entry_final_minutes:
            return _blocked(status, "time", f"{signals.remaining_minutes:.2f}m left < {cfg.no_entry_final_minutes}m")

        # (f) price sanity
        price = quote.price_for(side)
        why = self._price_block(side, price)
        if why:
            return _blocked(status, "price", why)

        trade = self._open(quote.market_id, side, price, rec.phase, inferred, now)
        if trade is None:
            return _blocked(status, "sizing", f"no stake available at balance ${self.balance():.2f}")

        status.eligible = True
        status.state = "OPEN"
        status.action = TickAction.OPENED.value
        status.trade_id = trade.id
        status.detail = f"opened {side.value} @ {price:.4f}" + (" (inferred)" if inferred else "")
        return TickResult(TickAction.OPENED, status, trade)

    def _threshold_block(self, side: Side, inferred: bool, phase: Phase, signals: Signals) -> Optional[str]:
        cfg = self.cfg
        min_prob, min_edge = cfg.phase_thresholds(phase)
        if inferred:
            min_prob += cfg.inferred_prob_boost
            min_edge += cfg.inferred_edge_boost

        best = max(signals.model_up, signals.model_down)
        if best < cfg.min_model_max_prob:
            return f"max prob {best:.3f} < {cfg.min_model_max_prob:.3f}"
        prob = signals.model_up if side is Side.UP else signals.model_down
        if prob < min_prob:
            return f"{side.value} prob {prob:.3f} < {min_prob:.3f} ({phase.value})"
        edge = signals.edge.edge_for(side)
        if edge is None:
            return f"no edge for {side.value} (missing market price)"
        if edge < min_edge:
            return f"{side.value} edge {edge:.3f} < {min_edge:.3f} ({phase.value})"
        return None

    def _quality_block(self, quote: MarketQuote, signals: Signals) -> Optional[str]:
        cfg = self.cfg
        for label, spread in (("up", quote.spread_up), ("down", quote.spread_down)):
            if spread is not None and spread > cfg.max_spread:
                return f"{label} spread {spread:.4f} > {cfg.max_spread:.4f}"
        if cfg.min_liquidity > 0:
            if quote.liquidity is None:
                return "liquidity unknown"
            if quote.liquidity < cfg.min_liquidity:
                return f"liquidity {quote.liquidity:.0f} < {cfg.min_liquidity:.0f}"

        snap = signals.snapshot
        if cfg.min_volume_recent > 0 and snap.volume_recent is not None:
            if snap.volume_recent < cfg.min_volume_recent:
                return f"volume {snap.volume_recent:.2f} < {cfg.min_volume_recent:.2f}"
        if cfg.min_volume_ratio > 0 and snap.volume_recent is not None and snap.volume_avg is not None:
            if snap.volume_recent < snap.volume_avg * cfg.min_volume_ratio:
                return f"volume {snap.volume_recent:.2f} < {cfg.min_volume_ratio:.2f}× avg {snap.volume_avg:.2f}"
        return None

    def _price_block(self, side: Side, price: Optional[float]) -> Optional[str]:
        lo, hi = self.cfg.min_entry_price, self.cfg.max_entry_price
        if price is None:
            return f"no {side.value} price"
        if not lo < price < hi:
            return f"{side.value} price {price:.4f} outside ({lo}, {hi})"
        return None

    def _open(self, market_id: str, side: Side, price: float, phase: Phase,
              inferred: bool, now: float) -> Optional[TradeRecord]:
        notional = self.money_mgr.compute_stake(self.balance())
        if notional <= 0:
            return None
        shares = self.money_mgr.shares_for(notional, price)
        if not math.isfinite(shares) or shares <= 0:
            return None

        trade = TradeRecord(
            id=new_trade_id(),
            market_id=market_id,
            side=side.value,
            entry_price=price,
            shares=shares,
            notional_usd=notional,
            status=TradeStatus.OPEN.value,
            entry_time=now,
            pnl=0.0,
            entry_phase=phase.value,
            side_inferred=inferred,
        )
        self.open_trade = self.ledger.append(trade)
        log.info("📈 TRADE OPENED: %s @ %.2f¢ | $%.2f | %.2f shares | %s%s",
                 side.value, price * 100, notional, shares, phase.value,
                 " (inferred)" if inferred else "")
        return self.open_trade

    # ---- open position ----
    def _manage_open(self, quote, signals: Signals, now: float, status: EntryStatus) -> TickResult:
        trade = self.open_trade
        held = Side(trade.side)
        status.state = "OPEN"
        status.side = trade.side
        status.trade_id = trade.id

        # Contract window rolled over underneath us
        if quote is not None and quote.market_id and quote.market_id != trade.market_id:
            price = self._marks.get((trade.market_id, trade.side), trade.entry_price)
            closed = self._close(trade, price, ExitReason.ROLLOVER, now)
            log.info("🔄 Market rolled %s → %s", trade.market_id, quote.market_id)
            status.state = "FLAT"
            status.blocked_by = "rollover"
            status.action = TickAction.ROLLED_OVER.value
            status.detail = f"closed {trade.side} @ {price:.4f} on rollover"
            return TickResult(TickAction.ROLLED_OVER, status, closed)

        mark = self._mark_for(trade, quote)
        reason = self._exit_reason(trade, signals, mark, now)
        if reason is None:
            pnl = "-" if mark is None else f"{trade.mark_to_market(mark):+.2f}"
            return _blocked(status, "position_open", f"holding {trade.side}, unrealized {pnl}")
        if mark is None:
            return _blocked(status, "no_exit_price", f"{reason.value} wanted but no {trade.side} price")

        closed = self._close(trade, mark, reason, now)
        status.state = "FLAT"
        status.action = TickAction.CLOSED.value
        status.blocked_by = reason.value
        status.detail = f"closed {trade.side} @ {mark:.4f} ({reason.value})"

        if reason is ExitReason.PROBABILITY_FLIP:
            flipped = self._try_flip(held.opposite, quote, signals, now)
            if flipped is not None:
                status.state = "OPEN"
                status.side = flipped.side
                status.trade_id = flipped.id
                status.action = TickAction.FLIPPED.value
                status.detail += f", flipped to {flipped.side} @ {flipped.entry_price:.4f}"
                return TickResult(TickAction.FLIPPED, status, flipped)
        return TickResult(TickAction.CLOSED, status, closed)

    def _flip_condition(self, held: Side, signals: Signals) -> bool:
        held_p = signals.model_up if held is Side.UP else signals.model_down
        opp_p = signals.model_down if held is Side.UP else signals.model_up
        return opp_p >= self.cfg.exit_flip_min_prob and opp_p >= held_p + self.cfg.exit_flip_margin

    def _exit_reason(self, trade: TradeRecord, signals: Signals, mark: Optional[float],
                     now: float) -> Optional[ExitReason]:
        """First matching rule wins: probability flip, stop-loss (only with a flip), end of window."""
        cfg = self.cfg
        flip = self._flip_condition(Side(trade.side), signals)
        held_for = now - (trade.entry_time if trade.entry_time is not None else now)

        if flip and held_for >= cfg.exit_flip_min_hold_seconds:
            return ExitReason.PROBABILITY_FLIP
        if flip and mark is not None:
            loss = -trade.mark_to_market(mark)
            if loss > trade.notional_usd * cfg.stop_loss_pct:
                return ExitReason.STOP_LOSS
        if signals.remaining_minutes * 60 < cfg.end_of_window_seconds:
            return ExitReason.END_OF_WINDOW
        return None

    def _try_flip(self, side: Side, quote: Optional[MarketQuote], signals: Signals,
                  now: float) -> Optional[TradeRecord]:
        cfg = self.cfg
        if not cfg.flip_on_probability_flip or quote is None:
            return None
        if self._last_flip_at is not None and now - self._last_flip_at < cfg.flip_cooldown_seconds:
            log.info("⏸ Flip cooldown (%ds left)", int(cfg.flip_cooldown_seconds - (now - self._last_flip_at)))
            return None
        price = quote.price_for(side)
        why = self._quality_block(quote, signals) or self._price_block(side, price)
        if why:
            log.info("⏸ Flip to %s skipped: %s", side.value, why)
            return None
        trade = self._open(quote.market_id, side, price, signals.recommendation.phase, False, now)
        if trade is not None:
            self._last_flip_at = now
        return trade

    def _close(self, trade: TradeRecord, exit_price: float, reason: ExitReason, now: float) -> TradeRecord:
        pnl = round(trade.mark_to_market(exit_price), 2)
        patch = {
            "status": TradeStatus.CLOSED.value,
            "exit_price": exit_price,
            "exit_time": now,
            "pnl": pnl,
            "exit_reason": reason.value,
        }
        closed = self.ledger.update(trade.id, patch)
        if closed is None:
            log.warning("Open trade %s vanished from ledger — dropping it", trade.id)
            closed = replace(trade, **patch)
        self.open_trade = None

        icon = "✅" if pnl >= 0 else "❌"
        log.info("%s TRADE CLOSED: %s | Entry: %.2f¢ → Exit: %.2f¢ | PnL: $%+.2f | %s",
                 icon, trade.side, trade.entry_price * 100, exit_price * 100, pnl, reason.value)
        return closed

    # ---- marks ----
    def _record_marks(self, quote: Optional[MarketQuote]):
        if quote is None or not quote.market_id:
            return
        for side in Side:
            price = quote.price_for(side)
            if price is not None and price > 0:
                self._marks[(quote.market_id, side.value)] = price
        keep = {quote.market_id}
        if self.open_trade is not None:
            keep.add(self.open_trade.market_id)
        for key in [k for k in self._marks if k[0] not in keep]:
            del self._marks[key]

    def _mark_for(self, trade: TradeRecord, quote: Optional[MarketQuote]) -> Optional[float]:
        if quote is not None and quote.market_id == trade.market_id:
            price = quote.price_for(Side(trade.side))
            if price is not None:
                return price
        return self._marks.get((trade.market_id, trade.side))


def _blocked(status: EntryStatus, gate: str, detail: str) -> TickResult:
    status.eligible = False
    status.blocked_by = gate
    status.detail = detail
    return TickResult(TickAction.NONE, status)
