import math
import os
from dataclasses import dataclass, fields

from polyedge.constants import GatingMode, Phase


class ConfigError(ValueError):
    """Raised when a BotConfig fails validation."""


@dataclass
class BotConfig:
    """All tuneable knobs in one place."""

    # --- contract window ---
    window_minutes: int = 15                # length of one contract window
    poll_interval: float = 5.0              # seconds between ticks
    lookback: int = 240                     # max 1m bars kept
    warmup_candles: int = 30                # bars before first entry

    # --- indicators ---
    rsi_period: int = 14
    rsi_slope_lookback: int = 3
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    vwap_slope_lookback: int = 5
    vwap_cross_lookback: int = 20
    volume_window: int = 20                 # bars summed for volume_recent

    # --- regime ---
    rsi_bull: float = 55.0
    rsi_bear: float = 45.0
    chop_cross_count: int = 3               # VWAP crosses in lookback → choppy
    trend_min_run: int = 2                  # Heiken Ashi bars in a row
    flat_vwap_dist: float = 0.001           # |price-vwap|/vwap considered flat
    low_volume_ratio: float = 0.6

    # --- phases (remaining minutes) ---
    early_cutoff_minutes: float = 10.0      # > 10m left → EARLY
    mid_cutoff_minutes: float = 5.0         # > 5m left → MID, else LATE
    min_prob_early: float = 0.58
    min_prob_mid: float = 0.62
    min_prob_late: float = 0.66
    min_edge_early: float = 0.06
    min_edge_mid: float = 0.10
    min_edge_late: float = 0.16

    # --- entry gating ---
    rec_gating: str = "loose"               # "strict" | "loose"
    inferred_prob_boost: float = 0.03       # extra strictness for inferred sides
    inferred_edge_boost: float = 0.03
    min_model_max_prob: float = 0.55        # skip coin-flip markets
    no_entry_final_minutes: float = 2.0
    min_entry_price: float = 0.005          # never buy dust
    max_entry_price: float = 0.98           # never buy certainty
    min_liquidity: float = 10000.0
    max_spread: float = 0.01                # 1¢
    min_volume_recent: float = 0.0          # 0 = disabled
    min_volume_ratio: float = 0.0           # 0 = disabled

    # --- exits ---
    stop_loss_pct: float = 0.20             # of trade notional
    exit_flip_min_prob: float = 0.62
    exit_flip_margin: float = 0.06
    exit_flip_min_hold_seconds: float = 60.0
    end_of_window_seconds: float = 30.0
    flip_on_probability_flip: bool = False
    flip_cooldown_seconds: float = 180.0

    # --- bankroll ---
    starting_balance: float = 1000.0
    stake_pct: float = 0.10                 # of realized balance per trade
    min_trade_usd: float = 25.0
    max_trade_usd: float = 250.0

    # --- persistence ---
    ledger_path: str = "paper_trading/trades.json"
    liquidity_samples_path: str = "paper_trading/liquidity_samples.jsonl"
    signals_csv_path: str = "logs/signals.csv"

    # --- misc ---
    paper_trading_enabled: bool = True
    diag_interval: float = 30.0             # seconds between ⏸ diagnostics

    # ------------------------------------------------------------------
    @property
    def gating(self) -> GatingMode:
        return GatingMode(self.rec_gating.lower())

    def phase_thresholds(self, phase: Phase) -> tuple[float, float]:
        """(min_probability, min_edge) for a phase."""
        if phase is Phase.EARLY:
            return self.min_prob_early, self.min_edge_early
        if phase is Phase.MID:
            return self.min_prob_mid, self.min_edge_mid
        return self.min_prob_late, self.min_edge_late

    # ------------------------------------------------------------------
    def validate(self) -> "BotConfig":
        """Check every constraint once at startup. Returns self."""
        probs = [self.min_prob_early, self.min_prob_mid, self.min_prob_late]
        edges = [self.min_edge_early, self.min_edge_mid, self.min_edge_late]
        if not probs[0] <= probs[1] <= probs[2]:
            raise ConfigError(f"min_prob thresholds must be non-decreasing EARLY→MID→LATE, got {probs}")
        if not edges[0] <= edges[1] <= edges[2]:
            raise ConfigError(f"min_edge thresholds must be non-decreasing EARLY→MID→LATE, got {edges}")

        for name in ("min_prob_early", "min_prob_mid", "min_prob_late", "min_model_max_prob",
                     "exit_flip_min_prob", "exit_flip_margin", "stop_loss_pct"):
            value = getattr(self, name)
            if not (math.isfinite(value) and 0.0 <= value <= 1.0):
                raise ConfigError(f"{name} must be within [0, 1], got {value}")

        if not 0.0 < self.min_entry_price < self.max_entry_price < 1.0:
            raise ConfigError(
                f"entry price bounds must satisfy 0 < min < max < 1, "
                f"got ({self.min_entry_price}, {self.max_entry_price})"
            )
        if not 0.0 < self.stake_pct <= 1.0:
            raise ConfigError(f"stake_pct must be within (0, 1], got {self.stake_pct}")
        if not 0.0 < self.min_trade_usd <= self.max_trade_usd:
            raise ConfigError(
                f"trade size bounds must satisfy 0 < min <= max, "
                f"got ({self.min_trade_usd}, {self.max_trade_usd})"
            )
        if self.starting_balance < 0:
            raise ConfigError(f"starting_balance must be >= 0, got {self.starting_balance}")

        try:
            self.gating
        except ValueError:
            raise ConfigError(f"rec_gating must be 'strict' or 'loose', got {self.rec_gating!r}") from None

        if self.window_minutes <= 0:
            raise ConfigError(f"window_minutes must be > 0, got {self.window_minutes}")
        if not 0.0 <= self.mid_cutoff_minutes < self.early_cutoff_minutes <= self.window_minutes:
            raise ConfigError(
                f"phase cutoffs must satisfy 0 <= mid < early <= window, "
                f"got mid={self.mid_cutoff_minutes} early={self.early_cutoff_minutes}"
            )
        for name in ("rsi_period", "rsi_slope_lookback", "macd_fast", "macd_slow", "macd_signal",
                     "vwap_slope_lookback", "vwap_cross_lookback", "volume_window", "lookback"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.macd_fast >= self.macd_slow:
            raise ConfigError(f"macd_fast must be < macd_slow, got {self.macd_fast}/{self.macd_slow}")
        if self.lookback < self.warmup_candles:
            raise ConfigError(f"lookback ({self.lookback}) must cover warmup_candles ({self.warmup_candles})")
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be > 0, got {self.poll_interval}")
        return self

    # ------------------------------------------------------------------
    @classmethod
    def from_env(cls, environ=None) -> "BotConfig":
        """Build a config from PE_<FIELD> environment variables, then validate."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(f"PE_{f.name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            try:
                if f.type in (bool, "bool"):
                    overrides[f.name] = raw.lower() in {"1", "true", "yes", "y", "on"}
                elif f.type in (int, "int"):
                    overrides[f.name] = int(raw)
                elif f.type in (float, "float"):
                    overrides[f.name] = float(raw)
                else:
                    overrides[f.name] = raw
            except ValueError:
                raise ConfigError(f"Invalid value for PE_{f.name.upper()}: {raw!r}") from None
        return cls(**overrides).validate()
