"""Tests for signal_trader/ingester.py"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

from signal_trader.ingester import SignalIngester
from signal_trader.models import KdjOutput, OrderSide, SymbolType

NOW = datetime(2018, 6, 1, 1, 0, tzinfo=UTC)


def _output(symbol, symbol_type, side=None):
    return KdjOutput(symbol=symbol, symbol_type=symbol_type, last_price=10.0, last_time=NOW, side=side)


def _make_ingester(session_open=True, coins=("btc_jpy",), symbols=("6501", "7203")):
    source = MagicMock()

    async def kdj(symbols, symbol_type, unit, as_of=None):
        return [_output(symbol, symbol_type) for symbol in symbols if symbol != "7203"]

    source.kdj = AsyncMock(side_effect=kdj)
    session = MagicMock()
    session.is_open.return_value = session_open
    return SignalIngester(source, list(coins), list(symbols), session), source


async def test_coins_and_stocks_in_session():
    ingester, source = _make_ingester(session_open=True)

    items = await ingester.collect(NOW)

    assert [item.symbol for item in items] == ["btc_jpy", "6501", "7203"]
    assert items[0].symbol_type == SymbolType.CRYPTOCOIN
    assert items[1].detection.symbol == "6501"
    # symbol without indicator output still gets a slot
    assert items[2].detection is None
    assert source.kdj.await_count == 2


async def test_stocks_skipped_outside_session():
    ingester, source = _make_ingester(session_open=False)

    items = await ingester.collect(NOW)

    assert [item.symbol for item in items] == ["btc_jpy"]
    source.kdj.assert_awaited_once_with(["btc_jpy"], SymbolType.CRYPTOCOIN, "5min", as_of=NOW)


async def test_indicator_failure_yields_empty_slots():
    ingester, source = _make_ingester(session_open=True)
    source.kdj.side_effect = RuntimeError("indicator service down")

    items = await ingester.collect(NOW)

    assert len(items) == 3
    assert all(item.detection is None for item in items)


async def test_detection_side_is_passed_through():
    ingester, source = _make_ingester(session_open=False)
    source.kdj.side_effect = None
    source.kdj.return_value = [_output("btc_jpy", SymbolType.CRYPTOCOIN, side=OrderSide.SELL)]

    items = await ingester.collect(NOW)

    assert items[0].detection.side == OrderSide.SELL
