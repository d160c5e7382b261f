"""Collects freshly computed indicator signals for the watch-list."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger as default_logger

from signal_trader.interfaces import IndicatorSource
from signal_trader.market_hours import TradingSession
from signal_trader.models import KdjOutput, SymbolType


@dataclass(slots=True)
class WatchItem:
    symbol: str
    symbol_type: SymbolType
    detection: KdjOutput | None


class SignalIngester:
    """Builds one watch slot per symbol: coins always, stocks only in session."""

    def __init__(
        self,
        source: IndicatorSource,
        coins: list[str],
        symbols: list[str],
        session: TradingSession,
        unit: str = "5min",
        logger: Any | None = None,
    ) -> None:
        self.source = source
        self.coins = list(coins)
        self.symbols = list(symbols)
        self.session = session
        self.unit = unit
        self.logger = logger or default_logger

    async def collect(self, now: datetime) -> list[WatchItem]:
        items: list[WatchItem] = []
        if self.coins:
            items.extend(await self._collect(self.coins, SymbolType.CRYPTOCOIN, now))
        if self.symbols and self.session.is_open(now):
            self.logger.info("Stock session open, querying stock signals")
            items.extend(await self._collect(self.symbols, SymbolType.STOCK, now))
        self.logger.info("Watch list: {}", [item.symbol for item in items])
        return items

    async def _collect(self, symbols: list[str], symbol_type: SymbolType, now: datetime) -> list[WatchItem]:
        try:
            outputs = await self.source.kdj(symbols, symbol_type, self.unit, as_of=now)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Indicator failed for {} list: {}", symbol_type.value, exc)
            outputs = []

        by_symbol = {output.symbol: output for output in outputs}
        return [WatchItem(symbol, symbol_type, by_symbol.get(symbol)) for symbol in symbols]
