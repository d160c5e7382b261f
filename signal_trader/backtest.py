"""Historical replay of one trading day through the scheduler."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from loguru import logger as default_logger

from signal_trader.database import Database
from signal_trader.market_hours import TradingSession
from signal_trader.scheduler import Scheduler


class BacktestRunner:
    def __init__(
        self,
        scheduler: Scheduler,
        database: Database,
        session: TradingSession,
        day: date,
        step_sec: int = 300,
        logger: Any | None = None,
    ) -> None:
        if step_sec <= 0:
            raise ValueError("step_sec must be positive")
        self.scheduler = scheduler
        self.database = database
        self.session = session
        self.day = day
        self.step = timedelta(seconds=step_sec)
        self.logger = logger or default_logger

    async def run(self) -> int:
        """Tick once per step across the day; returns the number of ticks run."""
        await self.database.init_db()
        cleared = await self.database.clear_signals(backtest=True)
        start, end = self.session.day_bounds(self.day)
        self.logger.info(
            "Backtest replay day={} from={} to={} step={} cleared_signals={}",
            self.day.isoformat(),
            start.isoformat(),
            end.isoformat(),
            self.step,
            cleared,
        )

        ticks = 0
        now = start
        while now <= end:
            await self.scheduler.tick(now=now)
            ticks += 1
            now += self.step

        trades = [trade for trade in await self.database.list_trades(limit=10_000) if trade.backtest]
        self.logger.info("Backtest finished ticks={} trades={}", ticks, len(trades))
        return ticks
