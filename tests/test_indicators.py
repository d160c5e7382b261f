"""Tests for signal_trader/indicators.py"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from signal_trader.config import KdjConfig
from signal_trader.indicators import CandleKdjSource, KdjPoint, kdj_series, kdj_side
from signal_trader.models import Candle, OrderSide, SymbolType

START = datetime(2018, 6, 1, 0, 0, tzinfo=UTC)


def falling_then_bounce(bars: int = 30) -> list[Candle]:
    """Steady decline followed by one bar that closes off the lows."""
    candles = []
    for i in range(bars):
        close = 100.0 - i
        candles.append(Candle(time=START + timedelta(minutes=5 * i), open=close, high=close + 0.5, low=close - 0.5, close=close))
    last = candles[-1].close
    candles.append(
        Candle(time=START + timedelta(minutes=5 * bars), open=last, high=last + 2.0, low=last, close=last + 1.5)
    )
    return candles


def test_flat_market_stays_neutral():
    candles = [Candle(time=START + timedelta(minutes=5 * i), open=10, high=10, low=10, close=10) for i in range(12)]

    series = kdj_series(candles)

    assert len(series) == 4
    assert all(point.k == pytest.approx(50.0) for point in series)
    assert series[-1].j == pytest.approx(50.0)


def test_too_few_candles_gives_empty_series():
    candles = falling_then_bounce()[:8]

    assert kdj_series(candles, period=9) == []


def test_j_line():
    series = kdj_series(falling_then_bounce())

    last = series[-1]
    assert last.j == pytest.approx(3 * last.k - 2 * last.d)


@pytest.mark.parametrize(
    "previous, current, expected",
    [
        (KdjPoint(10, 12, 6), KdjPoint(15, 13, 19), OrderSide.BUY),
        (KdjPoint(40, 42, 36), KdjPoint(45, 43, 49), None),  # cross above oversold
        (KdjPoint(85, 80, 95), KdjPoint(78, 79, 76), OrderSide.SELL),
        (KdjPoint(60, 55, 70), KdjPoint(50, 52, 46), None),  # cross below overbought
        (KdjPoint(10, 12, 6), KdjPoint(11, 12, 9), None),  # no cross
    ],
)
def test_kdj_side(previous, current, expected):
    assert kdj_side(previous, current, oversold=30, overbought=70) == expected


async def test_source_reports_buy_on_bounce():
    database = MagicMock()
    candles = falling_then_bounce()
    database.get_candles = AsyncMock(return_value=candles)
    source = CandleKdjSource(database, KdjConfig())

    outputs = await source.kdj(["btc_jpy"], SymbolType.CRYPTOCOIN, "5min", as_of=candles[-1].time)

    assert len(outputs) == 1
    output = outputs[0]
    assert output.side == OrderSide.BUY
    assert output.last_price == candles[-1].close
    assert output.last_time == candles[-1].time
    assert output.k < 30
    database.get_candles.assert_awaited_once_with("btc_jpy", "5min", as_of=candles[-1].time, limit=120)


async def test_source_skips_symbols_without_history():
    database = MagicMock()
    database.get_candles = AsyncMock(return_value=[])
    source = CandleKdjSource(database, KdjConfig())

    assert await source.kdj(["6501"], SymbolType.STOCK, "5min") == []


async def test_short_history_carries_price_only():
    database = MagicMock()
    candles = falling_then_bounce()[:5]
    database.get_candles = AsyncMock(return_value=candles)
    source = CandleKdjSource(database, KdjConfig())

    outputs = await source.kdj(["6501"], SymbolType.STOCK, "5min")

    assert outputs[0].side is None
    assert outputs[0].k is None
    assert outputs[0].last_price == candles[-1].close
