"""Fixed-rate tick loop driving ingestion and trade decisions."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from loguru import logger as default_logger

from signal_trader.decision_engine import TradeDecisionEngine
from signal_trader.ingester import SignalIngester
from signal_trader.interfaces import DataProvider
from signal_trader.models import TradeDecision


class Scheduler:
    """Runs one tick every `interval_sec`, never two at a time.

    A tick that is still running when the next one is due causes that next
    tick to be skipped. Errors inside a tick are logged and the loop goes on.
    """

    def __init__(
        self,
        ingester: SignalIngester,
        engine: TradeDecisionEngine,
        interval_sec: float,
        data_provider: DataProvider | None = None,
        logger: Any | None = None,
        clock: Callable[[], datetime] | None = None,
        shutdown_timeout_sec: float = 30.0,
    ) -> None:
        self.ingester = ingester
        self.engine = engine
        self.interval_sec = interval_sec
        self.data_provider = data_provider
        self.logger = logger or default_logger
        self.clock = clock or (lambda: datetime.now(UTC))
        self.shutdown_timeout_sec = shutdown_timeout_sec
        self._loop_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self._stopped = False
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        if self.running:
            return
        if self.data_provider is not None:
            await self.data_provider.init_db()
        self._stopped = False
        self._loop_task = asyncio.create_task(self._run_loop(), name="scheduler")
        self.logger.info("Scheduler started interval={}s", self.interval_sec)

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_sec)
            self._launch_tick()

    def _launch_tick(self) -> None:
        if self._tick_task is not None and not self._tick_task.done():
            self.skipped_ticks += 1
            self.logger.warning("Previous tick still running, skipping this one")
            return
        self._tick_task = asyncio.create_task(self.tick(), name="scheduler-tick")

    async def tick(self, now: datetime | None = None) -> dict[str, TradeDecision | None]:
        now = now or self.clock()
        self.logger.info("Tick at {}", now.isoformat())
        try:
            items = await self.ingester.collect(now)
            return await self.engine.on_tick(items)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Tick failed: {}", exc)
            return {}

    async def stop(self) -> None:
        """Stop ticking and close the data provider.

        A running tick gets `shutdown_timeout_sec` to finish before it is
        cancelled. Order executions already under way are not cancelled with
        it: they are awaited so that every sent order is recorded.
        """
        if self._stopped:
            return
        self._stopped = True

        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        if self._tick_task is not None and not self._tick_task.done():
            self.logger.info("Waiting up to {}s for the running tick", self.shutdown_timeout_sec)
            try:
                await asyncio.wait_for(asyncio.shield(self._tick_task), timeout=self.shutdown_timeout_sec)
            except TimeoutError:
                self.logger.warning("Tick did not finish in time, cancelling it")
                self._tick_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._tick_task
        self._tick_task = None
        await self.engine.drain()

        if self.data_provider is not None:
            await self.data_provider.close()
        self.logger.info("Scheduler stopped")
