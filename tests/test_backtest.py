"""Tests for signal_trader/backtest.py and a replayed buy through the real store"""

from __future__ import annotations

from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_config
from signal_trader.backtest import BacktestRunner
from signal_trader.config import SessionConfig
from signal_trader.database import Database
from signal_trader.decision_engine import TradeDecisionEngine
from signal_trader.indicators import CandleKdjSource
from signal_trader.ingester import SignalIngester
from signal_trader.market_hours import TradingSession
from signal_trader.models import Candle, OrderSide
from signal_trader.scheduler import Scheduler
from test_indicators import falling_then_bounce


@pytest.fixture
async def database(tmp_path):
    db = Database(tmp_path / "replay.db")
    await db.init_db()
    yield db
    await db.close()


async def test_runner_ticks_across_the_day(database):
    scheduler = MagicMock()
    scheduler.tick = AsyncMock(return_value={})
    session = TradingSession(SessionConfig())
    runner = BacktestRunner(scheduler, database, session, date(2018, 6, 1), step_sec=3600)

    ticks = await runner.run()

    start, _ = session.day_bounds(date(2018, 6, 1))
    assert ticks == 24
    assert scheduler.tick.await_args_list[0].kwargs["now"] == start
    assert scheduler.tick.await_args_list[-1].kwargs["now"] == start + timedelta(hours=23)


def test_runner_rejects_bad_step():
    with pytest.raises(ValueError):
        BacktestRunner(MagicMock(), MagicMock(), TradingSession(SessionConfig()), date(2018, 6, 1), step_sec=0)


async def test_replayed_bounce_then_rally_buys(database):
    config = make_config(backtest={"test": True}, ea={"symbols": [], "coins": ["btc_jpy"]})
    await database.upsert_account("coin-acct", balance=1_000.0)
    candles = falling_then_bounce()
    await database.add_candles("btc_jpy", "5min", candles)

    gateway = AsyncMock()
    notifier = AsyncMock()
    engine = TradeDecisionEngine(config, database, database, database, gateway, notifier)
    ingester = SignalIngester(
        CandleKdjSource(database, config.kdj), config.ea.coins, config.ea.symbols, TradingSession(config.session)
    )
    scheduler = Scheduler(ingester, engine, interval_sec=300)

    await scheduler.tick(now=candles[-1].time)
    signal = await database.get_signal("btc_jpy", backtest=True)
    assert signal.side == OrderSide.BUY
    assert signal.mocktime == candles[-1].time
    notifier.post_signal_alert.assert_awaited_once()

    rally_time = candles[-1].time + timedelta(minutes=5)
    last = candles[-1].close
    await database.add_candles(
        "btc_jpy", "5min", [Candle(time=rally_time, open=last, high=last + 1.5, low=last, close=last + 1.0)]
    )
    outcomes = await scheduler.tick(now=rally_time)

    assert outcomes["btc_jpy"].action == "executed"
    order = gateway.submit_order.await_args.args[0]
    assert order.backtest is True
    assert order.mocktime == rally_time
    assert await database.get_signal("btc_jpy", backtest=True) is None
    trades = await database.list_trades("coin-acct")
    assert len(trades) == 1
    account = await database.get_account("coin-acct")
    assert account.balance == pytest.approx(1_000.0 - order.notional)
