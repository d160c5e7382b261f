"""KDJ (stochastic) indicator over stored candles."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger as default_logger

from signal_trader.config import KdjConfig
from signal_trader.database import Database
from signal_trader.models import Candle, KdjOutput, OrderSide, SymbolType


@dataclass(slots=True)
class KdjPoint:
    k: float
    d: float
    j: float


def kdj_series(candles: list[Candle], period: int = 9, k_smooth: int = 3, d_smooth: int = 3) -> list[KdjPoint]:
    """Classic KDJ: RSV over `period` bars, K and D smoothed from a neutral 50 seed."""
    points: list[KdjPoint] = []
    k_prev = 50.0
    d_prev = 50.0
    for i in range(period - 1, len(candles)):
        window = candles[i - period + 1 : i + 1]
        highest = max(c.high for c in window)
        lowest = min(c.low for c in window)
        if highest == lowest:
            rsv = 50.0
        else:
            rsv = (candles[i].close - lowest) / (highest - lowest) * 100.0
        k = ((k_smooth - 1) * k_prev + rsv) / k_smooth
        d = ((d_smooth - 1) * d_prev + k) / d_smooth
        points.append(KdjPoint(k=k, d=d, j=3 * k - 2 * d))
        k_prev, d_prev = k, d
    return points


def kdj_side(previous: KdjPoint, current: KdjPoint, oversold: float, overbought: float) -> OrderSide | None:
    if previous.k <= previous.d and current.k > current.d and current.k < oversold:
        return OrderSide.BUY
    if previous.k >= previous.d and current.k < current.d and current.k > overbought:
        return OrderSide.SELL
    return None


class CandleKdjSource:
    """Indicator source reading candle history from the database."""

    def __init__(self, database: Database, config: KdjConfig, logger: Any | None = None) -> None:
        self.database = database
        self.config = config
        self.logger = logger or default_logger

    async def kdj(
        self,
        symbols: list[str],
        symbol_type: SymbolType,
        unit: str,
        as_of: datetime | None = None,
    ) -> list[KdjOutput]:
        outputs: list[KdjOutput] = []
        for symbol in symbols:
            candles = await self.database.get_candles(symbol, unit, as_of=as_of, limit=self.config.lookback)
            if not candles:
                self.logger.debug("KDJ: no candles symbol={} unit={}", symbol, unit)
                continue

            last = candles[-1]
            output = KdjOutput(symbol=symbol, symbol_type=symbol_type, last_price=last.close, last_time=last.time)
            series = kdj_series(candles, self.config.period, self.config.k_smooth, self.config.d_smooth)
            if series:
                output.k = round(series[-1].k, 4)
                output.d = round(series[-1].d, 4)
                output.j = round(series[-1].j, 4)
            if len(series) >= 2:
                output.side = kdj_side(series[-2], series[-1], self.config.oversold, self.config.overbought)
            outputs.append(output)
        return outputs
