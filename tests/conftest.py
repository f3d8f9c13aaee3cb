"""Shared builders for the test suite."""

import logging
from typing import Optional

import pytest

from polyedge.config import BotConfig
from polyedge.constants import Regime, TrendColor
from polyedge.core.edge import EdgeCalculator, Recommendation
from polyedge.core.indicators import IndicatorSnapshot
from polyedge.core.pipeline import Signals
from polyedge.core.probability import DirectionScore, ProbabilityPair
from polyedge.core.regime import RegimeReading
from polyedge.trading.ledger import Ledger
from polyedge.trading.trader import Trader
from polyedge.utils.candle import Candle, MarketQuote

logging.disable(logging.CRITICAL)

T0 = 1_700_000_100.0          # start of an epoch-aligned 15m window


def make_bars(closes, volume: float = 0.0, start_ms: float = 0.0) -> list[Candle]:
    bars = []
    prev = closes[0]
    for i, c in enumerate(closes):
        bars.append(Candle(
            open_time=start_ms + i * 60_000,
            open=prev,
            high=max(prev, c) + 0.5,
            low=min(prev, c) - 0.5,
            close=c,
            volume=volume,
        ))
        prev = c
    return bars


def make_snapshot(**overrides) -> IndicatorSnapshot:
    values = dict(
        vwap=100.0,
        vwap_slope=0.1,
        vwap_dist=0.002,
        rsi=60.0,
        rsi_slope=1.0,
        macd_histogram=0.5,
        macd_histogram_delta=0.1,
        trend_color=TrendColor.GREEN,
        trend_run_length=3,
        vwap_cross_count=0,
    )
    values.update(overrides)
    return IndicatorSnapshot(**values)


def make_quote(market_id: str = "m1", up: Optional[float] = 0.5, down: Optional[float] = 0.5,
               liquidity: Optional[float] = 50_000.0, spread: Optional[float] = 0.005) -> MarketQuote:
    return MarketQuote(market_id=market_id, up_price=up, down_price=down,
                       liquidity=liquidity, spread_up=spread, spread_down=spread)


def make_signals(cfg: BotConfig, model_up: float, model_down: Optional[float] = None,
                 quote: Optional[MarketQuote] = None, remaining: float = 12.0,
                 rec: Optional[Recommendation] = None,
                 snapshot: Optional[IndicatorSnapshot] = None, bar_count: int = 60) -> Signals:
    """Signals with a chosen model probability; the recommendation is derived unless given."""
    model = ProbabilityPair(model_up, 1.0 - model_up if model_down is None else model_down)
    calc = EdgeCalculator(cfg)
    edge = calc.compute(model, quote)
    if rec is None:
        rec = calc.decide(model, edge, remaining)
    return Signals(
        snapshot=snapshot if snapshot is not None else make_snapshot(),
        regime=RegimeReading(Regime.RANGING, "default"),
        score=DirectionScore(1, 1),
        model=model,
        edge=edge,
        recommendation=rec,
        remaining_minutes=remaining,
        bar_count=bar_count,
    )


@pytest.fixture
def bars():
    return make_bars([100.0 + 0.1 * i for i in range(60)])


@pytest.fixture
def cfg(tmp_path) -> BotConfig:
    return BotConfig(
        ledger_path=str(tmp_path / "paper_trading" / "trades.json"),
        liquidity_samples_path=str(tmp_path / "paper_trading" / "liquidity_samples.jsonl"),
        signals_csv_path=str(tmp_path / "logs" / "signals.csv"),
    )


@pytest.fixture
def ledger(cfg) -> Ledger:
    led = Ledger(cfg.ledger_path)
    led.load(T0)
    return led


@pytest.fixture
def trader(cfg, ledger) -> Trader:
    t = Trader(cfg, ledger)
    t.initialize(T0)
    return t
