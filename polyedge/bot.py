import asyncio
import time
from typing import Optional

from polyedge.constants import TickAction
from polyedge.context import AppContext
from polyedge.core.pipeline import Signals
from polyedge.trading.performance import PerformanceTracker
from polyedge.trading.trade import TradeRecord
from polyedge.trading.trader import EntryStatus, TickResult
from polyedge.utils.logger import log
from polyedge.utils.timing import window_timing


class PaperTradingBot:
    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.cfg = ctx.cfg
        self._running = False
        self._tick_lock = asyncio.Lock()
        self._last_diag = 0.0
        self.started_at: Optional[float] = None
        self.ticks = 0
        self.tick_errors = 0
        self.last_signals: Optional[Signals] = None
        self.last_result: Optional[TickResult] = None

    # ------------------------------------------------------------------
    def run_once(self, now: Optional[float] = None) -> Optional[TickResult]:
        """One evaluation: read feeds → signals → state machine → samplers. Synchronous."""
        cfg = self.cfg
        ctx = self.ctx
        now = time.time() if now is None else now
        if self.started_at is None:
            self.started_at = now

        timing = window_timing(now, cfg.window_minutes)
        bars = ctx.feeds.recent_bars()
        quote = ctx.feeds.latest_market_quote()
        price = ctx.feeds.latest_reference_price()

        try:
            signals = ctx.pipeline.run(bars, quote, timing.remaining_minutes, price)
        except Exception as e:
            ctx.trader.last_status = EntryStatus(
                at=now,
                state="OPEN" if ctx.trader.open_trade else "FLAT",
                blocked_by="error",
                detail=f"{type(e).__name__}: {e}",
            )
            raise
        self.last_signals = signals
        self.ticks += 1

        ctx.liquidity.record(quote, now)
        if ctx.signal_log is not None:
            ctx.signal_log.append(signals, now)

        if not cfg.paper_trading_enabled:
            return None

        result = ctx.trader.evaluate_tick(bars, quote, signals, now)
        self.last_result = result

        # ── diagnostics (throttled) ──
        if result.action is TickAction.NONE:
            if now - self._last_diag >= cfg.diag_interval:
                st = result.status
                log.info("⏸ %s: %s | %s | up=%.3f down=%.3f | %.1fm left | %s",
                         st.blocked_by, st.detail, signals.recommendation.label,
                         signals.model_up, signals.model_down, timing.remaining_minutes,
                         signals.regime.regime.value)
                self._last_diag = now
        else:
            log.info("📊 %s | Balance: $%.2f", self.performance().summary(), ctx.trader.balance())
        return result

    # ------------------------------------------------------------------
    async def start(self):
        """Main entry point."""
        cfg = self.cfg
        log.info("═" * 60)
        log.info("  📈 PolyEdge PAPER TRADER — %dm contract windows", cfg.window_minutes)
        log.info("  Gating: %s  |  Stake: %.0f%% ($%.0f–$%.0f)  |  Poll: %.1fs",
                 cfg.gating.value, cfg.stake_pct * 100, cfg.min_trade_usd,
                 cfg.max_trade_usd, cfg.poll_interval)
        log.info("  Balance: $%.2f  |  %s", self.ctx.trader.balance(),
                 self.ctx.ledger.summary.to_dict())
        log.info("═" * 60)

        self._running = True
        self.started_at = time.time()
        await self._trade_loop()

    async def _trade_loop(self):
        while self._running:
            await asyncio.sleep(self.cfg.poll_interval)
            if not self._running:
                break
            async with self._tick_lock:
                try:
                    self.run_once()
                except Exception as e:
                    self.tick_errors += 1
                    log.error("Trade loop error: %s", e, exc_info=True)

    async def stop(self):
        """Stop after the in-flight tick and flush the ledger."""
        self._running = False
        async with self._tick_lock:
            self.ctx.close()
        log.info("Bot stopped.  Final stats: %s", self.performance().summary())

    # ------------------------------------------------------------------
    def ledger_snapshot(self) -> dict:
        return self.ctx.ledger.snapshot()

    def current_open_trade(self) -> Optional[TradeRecord]:
        return self.ctx.trader.current_open_trade()

    def performance(self) -> PerformanceTracker:
        return PerformanceTracker(self.ctx.ledger.trades)

    def status(self) -> dict:
        """What a status endpoint would serve: balance, open trade, last entry status, runtime."""
        trader = self.ctx.trader
        open_trade = trader.current_open_trade()
        sig = self.last_signals
        return {
            "balance": {
                "starting": self.cfg.starting_balance,
                "realized": self.ctx.ledger.realized_pnl,
                "current": trader.balance(),
            },
            "openTrade": open_trade.to_dict() if open_trade else None,
            "entryStatus": trader.last_status.to_dict() if trader.last_status else None,
            "signals": None if sig is None else {
                "rec": sig.recommendation.label,
                "modelUp": sig.model_up,
                "modelDown": sig.model_down,
                "regime": sig.regime.regime.value,
                "remainingMinutes": sig.remaining_minutes,
            },
            "summary": self.ctx.ledger.summary.to_dict(),
            "runtime": {
                "running": self._running,
                "startedAt": self.started_at,
                "ticks": self.ticks,
                "tickErrors": self.tick_errors,
                "gating": self.cfg.gating.value,
                "paperTrading": self.cfg.paper_trading_enabled,
            },
        }
