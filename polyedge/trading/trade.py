import math
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from polyedge.constants import TradeStatus

# persisted key for every TradeRecord field
_KEYS = {
    "id": "id",
    "market_id": "marketId",
    "side": "side",
    "entry_price": "entryPrice",
    "shares": "shares",
    "notional_usd": "notionalUsd",
    "status": "status",
    "entry_time": "entryTime",
    "exit_time": "exitTime",
    "exit_price": "exitPrice",
    "pnl": "pnl",
    "entry_phase": "entryPhase",
    "side_inferred": "sideInferred",
    "exit_reason": "exitReason",
}

# numeric fields, and whether they must be finite when present
_NUMERIC = {
    "entry_price": False,
    "shares": False,
    "notional_usd": False,
    "entry_time": True,
    "exit_time": True,
    "exit_price": True,
    "pnl": True,
}


def _is_num(x) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def _as_float(value, key: str, finite: bool) -> Optional[float]:
    if value is None:
        return None
    if not _is_num(value):
        raise ValueError(f"{key} must be a number, got {value!r}")
    value = float(value)
    if finite and not math.isfinite(value):
        raise ValueError(f"{key} must be finite, got {value!r}")
    return value


@dataclass
class TradeRecord:
    id: str
    market_id: str
    side: str                               # "UP" / "DOWN"
    entry_price: float                      # dollars (0..1)
    shares: Optional[float]
    notional_usd: float
    status: str = TradeStatus.OPEN.value     # "OPEN" / "CLOSED"
    entry_time: Optional[float] = None      # epoch seconds
    exit_time: Optional[float] = None
    exit_price: Optional[float] = None
    pnl: Optional[float] = 0.0
    entry_phase: Optional[str] = None
    side_inferred: bool = False
    exit_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN.value

    def invalid_reason(self) -> Optional[str]:
        """Why an OPEN trade breaks the positivity invariant, or None."""
        if not self.is_open:
            return None
        ep = self.entry_price
        if not _is_num(ep) or not math.isfinite(ep) or ep <= 0:
            return f"entry_price={ep!r}"
        sh = self.shares
        if sh is not None:
            try:
                sh = float(sh)
            except (TypeError, ValueError):
                return f"shares={self.shares!r}"
            if not math.isfinite(sh) or sh <= 0:
                return f"shares={self.shares!r}"
        nu = self.notional_usd
        if not _is_num(nu) or not math.isfinite(nu) or nu <= 0:
            return f"notional_usd={nu!r}"
        return None

    def mark_to_market(self, price: float) -> float:
        """Unrealized PnL at `price`."""
        return self.effective_shares() * price - self.notional_usd

    def effective_shares(self) -> float:
        if self.shares is not None and math.isfinite(self.shares):
            return self.shares
        return self.notional_usd / self.entry_price if self.entry_price > 0 else 0.0

    # ------------------------------------------------------------------
    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for attr, key in _KEYS.items()}

    @classmethod
    def from_dict(cls, raw: dict) -> "TradeRecord":
        """Build from a persisted record. Raises KeyError/TypeError/ValueError on garbage."""
        if not isinstance(raw, dict):
            raise TypeError(f"trade record must be an object, got {type(raw).__name__}")
        kwargs = {attr: raw[key] for attr, key in _KEYS.items() if key in raw}
        for attr in ("id", "market_id", "side"):
            if attr not in kwargs:
                raise KeyError(_KEYS[attr])
        kwargs["id"] = str(kwargs["id"])
        kwargs.setdefault("entry_price", 0.0)
        kwargs.setdefault("shares", None)
        kwargs.setdefault("notional_usd", 0.0)
        for attr, finite in _NUMERIC.items():
            if attr in kwargs:
                kwargs[attr] = _as_float(kwargs[attr], _KEYS[attr], finite)
        kwargs["side_inferred"] = bool(kwargs.get("side_inferred", False))
        return cls(**kwargs)


def new_trade_id() -> str:
    return f"{int(time.time() * 1000)}{uuid.uuid4().hex[:6]}"
