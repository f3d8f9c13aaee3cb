from dataclasses import dataclass

@dataclass(frozen=True)
class WindowTiming:
    start_ms: float
    end_ms: float
    elapsed_minutes: float
    remaining_minutes: float


def window_timing(now: float, window_minutes: int = 15) -> WindowTiming:
    """Position of `now` (epoch seconds) inside its epoch-aligned contract window."""
    window_ms = window_minutes * 60_000
    now_ms = now * 1000
    start_ms = (now_ms // window_ms) * window_ms
    end_ms = start_ms + window_ms
    return WindowTiming(
        start_ms=start_ms,
        end_ms=end_ms,
        elapsed_minutes=(now_ms - start_ms) / 60_000,
        remaining_minutes=(end_ms - now_ms) / 60_000,
    )
