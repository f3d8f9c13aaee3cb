"""
Tests for regime detection, probability scoring, time decay, edge and the signal pipeline.
"""

import math

import pytest

from polyedge.config import BotConfig
from polyedge.constants import Action, Phase, Regime, Side, TrendColor
from polyedge.core.edge import EdgeCalculator
from polyedge.core.indicators import IndicatorSnapshot
from polyedge.core.pipeline import SignalPipeline
from polyedge.core.probability import ProbabilityPair, ProbabilityScorer, TimeDecayAdjuster
from polyedge.core.regime import RegimeDetector, RegimeReading

from tests.conftest import make_quote, make_snapshot


class TestRegimeDetector:
    def setup_method(self):
        self.detector = RegimeDetector(BotConfig())

    def test_missing_inputs_is_choppy(self):
        r = self.detector.detect(IndicatorSnapshot())
        assert r.regime is Regime.CHOPPY
        assert r.reason == "missing_inputs"

    def test_trending_up(self):
        assert self.detector.detect(make_snapshot()).regime is Regime.TRENDING_UP

    def test_trending_down(self):
        snap = make_snapshot(vwap_dist=-0.002, vwap_slope=-0.1, rsi=40.0, rsi_slope=-1.0,
                             macd_histogram=-0.5, trend_color=TrendColor.RED)
        assert self.detector.detect(snap).regime is Regime.TRENDING_DOWN

    def test_frequent_crosses_is_choppy(self):
        snap = make_snapshot(vwap_slope=-0.1, vwap_cross_count=4)
        r = self.detector.detect(snap)
        assert r.regime is Regime.CHOPPY
        assert r.reason == "frequent_vwap_cross"

    def test_low_volume_flat_is_choppy(self):
        snap = make_snapshot(vwap_dist=0.0005, volume_recent=1.0, volume_avg=10.0)
        assert self.detector.detect(snap).reason == "low_volume_flat"

    def test_default_ranging(self):
        snap = make_snapshot(vwap_slope=-0.1)
        assert self.detector.detect(snap).regime is Regime.RANGING


class TestProbabilityScorer:
    def setup_method(self):
        self.scorer = ProbabilityScorer(BotConfig())

    def test_no_evidence_is_coin_flip(self):
        raw = self.scorer.score(IndicatorSnapshot()).raw
        assert raw.up == pytest.approx(0.5)
        assert raw.down == pytest.approx(0.5)

    def test_bullish_votes(self):
        score = self.scorer.score(make_snapshot(), RegimeReading(Regime.TRENDING_UP, "x"))
        assert (score.up_score, score.down_score) == (11, 1)
        assert score.raw.up == pytest.approx(11 / 12)

    def test_failed_reclaim_adds_to_down(self):
        base = self.scorer.score(make_snapshot())
        with_fail = self.scorer.score(make_snapshot(failed_vwap_reclaim=True))
        assert with_fail.down_score == base.down_score + 3

    def test_raw_sums_to_one(self):
        raw = self.scorer.score(make_snapshot(rsi=30.0, rsi_slope=-2.0)).raw
        assert raw.up + raw.down == pytest.approx(1.0)


class TestTimeDecayAdjuster:
    """Shrinks toward 50/50 as the window runs out, never NaN."""

    def setup_method(self):
        self.adj = TimeDecayAdjuster(15)

    def test_full_window_passes_raw_through(self):
        assert self.adj.adjust(0.8, 15).up == pytest.approx(0.8)

    def test_expiry_is_half(self):
        assert self.adj.adjust(0.8, 0).up == pytest.approx(0.5)

    def test_halfway(self):
        p = self.adj.adjust(0.8, 7.5)
        assert p.up == pytest.approx(0.65)
        assert p.down == pytest.approx(0.35)

    @pytest.mark.parametrize("remaining", [-3.0, float("nan"), None])
    def test_bad_remaining_is_half_not_nan(self, remaining):
        p = self.adj.adjust(0.9, remaining)
        assert not math.isnan(p.up)
        assert p.up == pytest.approx(0.5)

    def test_overlong_remaining_clamps(self):
        assert self.adj.adjust(0.7, 40).up == pytest.approx(0.7)

    def test_direction_never_inverts(self):
        for rem in (0.5, 3, 9, 14):
            assert self.adj.adjust(0.3, rem).up <= 0.5


class TestEdgeCalculator:
    def setup_method(self):
        self.calc = EdgeCalculator(BotConfig())

    @pytest.mark.parametrize("remaining,phase", [
        (12, Phase.EARLY), (10, Phase.MID), (7, Phase.MID), (5, Phase.LATE), (0.5, Phase.LATE), (None, Phase.LATE),
    ])
    def test_phase_for(self, remaining, phase):
        assert self.calc.phase_for(remaining) is phase

    def test_edge_is_model_minus_market(self):
        edge = self.calc.compute(ProbabilityPair(0.7, 0.3), make_quote(up=0.55, down=0.48))
        assert edge.edge_up == pytest.approx(0.15)
        assert edge.edge_down == pytest.approx(-0.18)

    def test_missing_market_side_is_none(self):
        edge = self.calc.compute(ProbabilityPair(0.7, 0.3), make_quote(up=None))
        assert edge.edge_up is None
        assert edge.edge_for(Side.DOWN) == pytest.approx(-0.2)

    def test_enter_when_edge_and_prob_clear(self):
        model = ProbabilityPair(0.7, 0.3)
        rec = self.calc.decide(model, self.calc.compute(model, make_quote()), 12)
        assert rec.action is Action.ENTER
        assert rec.side is Side.UP
        assert rec.label == "UP:EARLY"

    def test_hold_without_market(self):
        model = ProbabilityPair(0.7, 0.3)
        rec = self.calc.decide(model, self.calc.compute(model, None), 12)
        assert rec.action is Action.HOLD
        assert rec.reason == "missing_market_data"
        assert rec.label == "NO_TRADE"

    def test_hold_edge_below(self):
        model = ProbabilityPair(0.7, 0.3)
        rec = self.calc.decide(model, self.calc.compute(model, make_quote(up=0.68, down=0.32)), 12)
        assert rec.reason == "edge_below_0.06"

    def test_hold_prob_below(self):
        model = ProbabilityPair(0.64, 0.36)
        rec = self.calc.decide(model, self.calc.compute(model, make_quote(up=0.3, down=0.7)), 3)
        assert rec.phase is Phase.LATE
        assert rec.reason == "prob_below_0.66"

    def test_picks_larger_edge(self):
        model = ProbabilityPair(0.7, 0.65)
        rec = self.calc.decide(model, self.calc.compute(model, make_quote(up=0.5, down=0.4)), 12)
        assert rec.side is Side.DOWN
        assert rec.edge == pytest.approx(0.25)


class TestSignalPipeline:
    def test_full_pass(self, bars):
        sig = SignalPipeline(BotConfig()).run(bars, make_quote(), 12.0)
        assert sig.bar_count == 60
        assert sig.snapshot.populated
        assert sig.model_up + sig.model_down == pytest.approx(1.0)
        assert sig.model_up > 0.5
        assert sig.edge.market_up == 0.5

    def test_no_bars_is_coin_flip_and_holds(self):
        sig = SignalPipeline(BotConfig()).run([], make_quote(), 12.0)
        assert sig.model_up == pytest.approx(0.5)
        assert sig.recommendation.action is Action.HOLD
