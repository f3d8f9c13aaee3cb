from enum import Enum

class Side(Enum):
    UP = "UP"
    DOWN = "DOWN"

    @property
    def opposite(self) -> "Side":
        return Side.DOWN if self is Side.UP else Side.UP

class Phase(Enum):
    EARLY = "EARLY"
    MID = "MID"
    LATE = "LATE"

class Action(Enum):
    ENTER = "ENTER"
    HOLD = "HOLD"

class Regime(Enum):
    TRENDING_UP = "trending_up"
    TRENDING_DOWN = "trending_down"
    RANGING = "ranging"
    CHOPPY = "choppy"

class TrendColor(Enum):
    GREEN = "green"
    RED = "red"

class TradeStatus(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"

class GatingMode(Enum):
    STRICT = "strict"
    LOOSE = "loose"

class ExitReason(Enum):
    PROBABILITY_FLIP = "probability_flip"
    STOP_LOSS = "stop_loss"
    END_OF_WINDOW = "end_of_window"
    ROLLOVER = "rollover"
    INVALID_ENTRY = "invalid_entry"
    DUPLICATE_OPEN = "duplicate_open"

class TickAction(Enum):
    NONE = "none"
    OPENED = "opened"
    CLOSED = "closed"
    FLIPPED = "flipped"
    ROLLED_OVER = "rolled_over"
