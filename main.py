import os
import sys

from polyedge.bot import PaperTradingBot
from polyedge.config import BotConfig, ConfigError
from polyedge.context import AppContext
from polyedge.feeds.replay import ReplayFeed


def main():
    # --- Load config from PE_* env vars or defaults ---
    try:
        cfg = BotConfig.from_env()
    except ConfigError as e:
        print(f"Config error: {e}")
        sys.exit(1)

    replay_path = os.environ.get("PE_REPLAY_PATH", "").strip()
    if not replay_path:
        print("=" * 60)
        print("  ERROR: No feed configured!")
        print()
        print("  Replay a recorded tick CSV (time,price,up,down,liquidity,...):")
        print("    export PE_REPLAY_PATH=ticks.csv   # Linux/Mac")
        print("    set PE_REPLAY_PATH=ticks.csv      # Windows")
        print()
        print("  Live adapters push into AppContext.feeds and run PaperTradingBot.start().")
        print("=" * 60)
        sys.exit(1)

    ctx = AppContext.build(cfg)
    bot = PaperTradingBot(ctx)
    try:
        ReplayFeed(replay_path, cfg.window_minutes, cfg.poll_interval).run(bot)
    except KeyboardInterrupt:
        pass
    finally:
        ctx.close()


if __name__ == "__main__":
    main()
