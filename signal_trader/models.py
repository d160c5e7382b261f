"""Domain models for signals, accounts and orders."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar


class SymbolType(str, Enum):
    STOCK = "stock"
    CRYPTOCOIN = "cryptocoin"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class TradeType(str, Enum):
    MARGIN = "margin"
    SPOT = "spot"


class OrderType(str, Enum):
    LIMIT = "limit"
    MARKET = "market"


@dataclass(slots=True)
class Signal:
    """Pending indicator signal; `price` is the tracked price."""

    symbol: str
    side: OrderSide
    price: float
    detected_at: datetime
    notes: str = ""
    k: float | None = None
    d: float | None = None
    j: float | None = None
    backtest: bool = False
    mocktime: datetime | None = None
    id: int | None = None
    version: int = 0

    symbol_type: ClassVar[SymbolType]


@dataclass(slots=True)
class StockSignal(Signal):
    symbol_type: ClassVar[SymbolType] = SymbolType.STOCK


@dataclass(slots=True)
class CoinSignal(Signal):
    symbol_type: ClassVar[SymbolType] = SymbolType.CRYPTOCOIN


_SIGNAL_VARIANTS: dict[SymbolType, type[Signal]] = {
    SymbolType.STOCK: StockSignal,
    SymbolType.CRYPTOCOIN: CoinSignal,
}


def make_signal(symbol_type: SymbolType | str, **fields: Any) -> Signal:
    variant = _SIGNAL_VARIANTS[SymbolType(symbol_type)]
    return variant(**fields)


@dataclass(slots=True)
class KdjOutput:
    """Latest indicator reading for one symbol; `side` is None when nothing fired."""

    symbol: str
    symbol_type: SymbolType
    last_price: float | None
    last_time: datetime | None
    side: OrderSide | None = None
    k: float | None = None
    d: float | None = None
    j: float | None = None


@dataclass(slots=True)
class Candle:
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(slots=True)
class Position:
    symbol: str
    side: OrderSide
    price: float | None
    created_at: datetime


@dataclass(slots=True)
class Account:
    id: str
    balance: float
    bitcoin: float = 0.0
    positions: list[Position] = field(default_factory=list)

    def find_position(self, symbol: str, side: OrderSide) -> Position | None:
        for position in self.positions:
            if position.symbol == symbol and position.side == side:
                return position
        return None


@dataclass(slots=True)
class Order:
    symbol: str
    side: OrderSide
    price: float
    amount: float
    trade_type: TradeType = TradeType.MARGIN
    order_type: OrderType = OrderType.LIMIT
    settlement: str | None = None
    backtest: bool = False
    mocktime: datetime | None = None
    client_order_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def notional(self) -> float:
        return self.price * self.amount

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "symbol": self.symbol,
            "side": self.side.value,
            "price": self.price,
            "amount": self.amount,
            "tradeType": self.trade_type.value,
            "orderType": self.order_type.value,
            "clientOrderId": self.client_order_id,
        }
        if self.backtest:
            payload["backtest"] = "1"
            payload["mocktime"] = self.mocktime.isoformat() if self.mocktime else None
        return payload


@dataclass(slots=True)
class TradeInput:
    symbol: str
    symbol_type: SymbolType
    price: float
    time: datetime
    signal: Signal


@dataclass(slots=True)
class TradeDecision:
    action: str
    reason: str
