"""Application entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import signal
from pathlib import Path

from signal_trader.backtest import BacktestRunner
from signal_trader.config import AppConfig, load_config
from signal_trader.database import Database
from signal_trader.decision_engine import TradeDecisionEngine
from signal_trader.indicators import CandleKdjSource
from signal_trader.ingester import SignalIngester
from signal_trader.logger import setup_logger
from signal_trader.market_hours import TradingSession
from signal_trader.notifier import SlackNotifier
from signal_trader.order_gateway import HttpOrderGateway
from signal_trader.scheduler import Scheduler


def build_scheduler(config: AppConfig, database: Database, logger) -> Scheduler:
    session = TradingSession(config.session)
    ingester = SignalIngester(
        source=CandleKdjSource(database, config.kdj, logger=logger),
        coins=config.ea.coins,
        symbols=config.ea.symbols,
        session=session,
        unit=config.ea.candlestick_unit,
        logger=logger,
    )
    engine = TradeDecisionEngine(
        config=config,
        signal_store=database,
        account_store=database,
        ledger=database,
        order_gateway=HttpOrderGateway(config.trader, logger=logger),
        notifier=SlackNotifier(config.slack.url, logger=logger),
        logger=logger,
    )
    return Scheduler(
        ingester=ingester,
        engine=engine,
        interval_sec=config.ea.interval_sec,
        data_provider=database,
        logger=logger,
        shutdown_timeout_sec=config.runtime.shutdown_timeout_sec,
    )


async def _replay(config: AppConfig, database: Database, logger) -> None:
    if config.backtest.date is None:
        raise ValueError("backtest.date is required for --replay")
    config.backtest.test = True
    scheduler = build_scheduler(config, database, logger)
    runner = BacktestRunner(
        scheduler=scheduler,
        database=database,
        session=TradingSession(config.session),
        day=config.backtest.date,
        step_sec=config.backtest.interval_sec,
        logger=logger,
    )
    try:
        await runner.run()
    finally:
        await database.close()


async def run(config_path: Path, replay: bool = False) -> None:
    root_dir = config_path.resolve().parent
    config = load_config(config_path)
    logger = setup_logger(config.runtime, base_dir=root_dir)

    db_path = Path(config.store.path)
    if not db_path.is_absolute():
        db_path = root_dir / db_path
    database = Database(db_path)
    logger.info("Database at {}", db_path)

    if replay:
        await _replay(config, database, logger)
        return

    scheduler = build_scheduler(config, database, logger)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info(
        "Trader started coins={} symbols={} interval={}s backtest={}",
        config.ea.coins,
        config.ea.symbols,
        config.ea.interval_sec,
        config.backtest.test,
    )
    await scheduler.start()
    try:
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        await scheduler.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="signal_trader", description="KDJ signal trader")
    parser.add_argument("--config", default="config.yml", help="path to the YAML config file")
    parser.add_argument("--replay", action="store_true", help="replay backtest.date instead of running live")
    args = parser.parse_args(argv)
    asyncio.run(run(Path(args.config), replay=args.replay))


if __name__ == "__main__":
    main()
