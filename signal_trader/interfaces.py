"""Collaborator capabilities injected into the ingester, engine and scheduler."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from signal_trader.models import Account, KdjOutput, Order, Signal, SymbolType


class SignalStore(Protocol):
    async def get_signal(self, symbol: str, backtest: bool = False) -> Signal | None: ...

    async def set_signal(self, signal: Signal) -> Signal: ...

    async def replace_signal(self, old_id: int | None, signal: Signal) -> Signal: ...

    async def remove_signal(self, signal_id: int) -> bool: ...


class AccountStore(Protocol):
    async def get_account(self, account_id: str) -> Account | None: ...


class TradeLedger(Protocol):
    async def record_trade(self, account_id: str, order: Order) -> int: ...


class OrderGateway(Protocol):
    async def submit_order(self, order: Order) -> int: ...


class NotificationGateway(Protocol):
    async def post_signal_alert(self, signal: Signal) -> None: ...

    async def post_trade_alert(self, order: Order, profit: float) -> None: ...


class IndicatorSource(Protocol):
    async def kdj(
        self,
        symbols: list[str],
        symbol_type: SymbolType,
        unit: str,
        as_of: datetime | None = None,
    ) -> list[KdjOutput]: ...


class DataProvider(Protocol):
    async def init_db(self) -> None: ...

    async def close(self) -> None: ...
