from dataclasses import dataclass
from typing import Optional

from polyedge.config import BotConfig
from polyedge.core.pipeline import SignalPipeline
from polyedge.feeds.latest import FeedHub
from polyedge.trading.ledger import Ledger
from polyedge.trading.liquidity import LiquiditySampler
from polyedge.trading.money_manager import MoneyManager
from polyedge.trading.trader import Trader
from polyedge.utils.logger import log
from polyedge.utils.signal_log import SignalLogger


@dataclass
class AppContext:
    """Everything built once at startup and handed to the loop and reporting code."""
    cfg: BotConfig
    ledger: Ledger
    money_mgr: MoneyManager
    trader: Trader
    feeds: FeedHub
    pipeline: SignalPipeline
    liquidity: LiquiditySampler
    signal_log: Optional[SignalLogger] = None

    @classmethod
    def build(cls, cfg: BotConfig, now: Optional[float] = None) -> "AppContext":
        cfg.validate()
        ledger = Ledger(cfg.ledger_path)
        ledger.load(now)
        money_mgr = MoneyManager(cfg)
        trader = Trader(cfg, ledger, money_mgr)
        trader.initialize(now)
        return cls(
            cfg=cfg,
            ledger=ledger,
            money_mgr=money_mgr,
            trader=trader,
            feeds=FeedHub(cfg.lookback),
            pipeline=SignalPipeline(cfg),
            liquidity=LiquiditySampler(cfg.liquidity_samples_path),
            signal_log=SignalLogger(cfg.signals_csv_path) if cfg.signals_csv_path else None,
        )

    def close(self):
        self.ledger.flush()
        log.info("Ledger flushed to %s", self.ledger.path)
