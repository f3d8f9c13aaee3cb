from decimal import Decimal, ROUND_DOWN

from polyedge.config import BotConfig
from polyedge.utils.logger import log

class MoneyManager:
    def __init__(self, cfg: BotConfig):
        self.cfg = cfg

    def balance(self, realized_pnl: float) -> float:
        """Starting bankroll plus realized PnL. Open positions are never marked in."""
        return self.cfg.starting_balance + realized_pnl

    def compute_stake(self, balance: float) -> float:
        """Stake % of balance, clamped to [min, max], capped at balance, floored to the cent."""
        if balance <= 0:
            return 0.0
        stake = balance * self.cfg.stake_pct
        stake = max(self.cfg.min_trade_usd, min(stake, self.cfg.max_trade_usd))
        stake = min(stake, balance)
        # floor to the cent
        stake = float(Decimal(repr(stake)).quantize(Decimal("0.01"), rounding=ROUND_DOWN))
        if stake <= 0:
            log.debug("Stake rounds to zero at balance $%.4f", balance)
        return stake

    @staticmethod
    def shares_for(notional: float, price: float) -> float:
        if price <= 0:
            return 0.0
        return notional / price
