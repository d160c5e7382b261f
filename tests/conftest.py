"""
Shared fixtures: a validated config and in-memory collaborators for the
decision engine and scheduler.
"""

from __future__ import annotations

import copy
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from signal_trader.config import AppConfig
from signal_trader.decision_engine import TradeDecisionEngine
from signal_trader.models import Account, Signal

NOW = datetime(2018, 6, 1, 2, 0, tzinfo=UTC)

BASE_CONFIG = {
    "account": {"user_id": "stock-acct", "coin_id": "coin-acct"},
    "ea": {"symbols": ["6501"], "coins": ["btc_jpy"], "interval_sec": 300},
    "backtest": {"test": False, "date": "2018-06-01", "interval_sec": 300},
    "trader": {"host": "127.0.0.1", "port": 8080},
    "slack": {"url": "https://hooks.slack.test/services/T/B/X"},
    "store": {"path": "data/test.db"},
    "markets": {
        "trade_units": {"btc_jpy": {"amount": 0.01, "settlement": "jpy"}},
        "fees": {"btc_jpy": 5},
    },
}


def make_config(**overrides) -> AppConfig:
    raw = copy.deepcopy(BASE_CONFIG)
    for section, values in overrides.items():
        raw.setdefault(section, {}).update(values)
    return AppConfig.model_validate(raw)


class FakeSignalStore:
    def __init__(self) -> None:
        self.signals: dict[int, Signal] = {}
        self.removed: list[int] = []
        self.writes: list[Signal] = []
        self._next_id = 1

    async def get_signal(self, symbol: str, backtest: bool = False) -> Signal | None:
        matches = [s for s in self.signals.values() if s.symbol == symbol and s.backtest == backtest]
        return matches[-1] if matches else None

    async def set_signal(self, signal: Signal) -> Signal:
        if signal.id is None:
            signal.id = self._next_id
            self._next_id += 1
        else:
            signal.version += 1
        self.signals[signal.id] = signal
        self.writes.append(signal)
        return signal

    async def replace_signal(self, old_id: int | None, signal: Signal) -> Signal:
        if old_id is not None:
            self.removed.append(old_id)
            self.signals.pop(old_id, None)
        return await self.set_signal(signal)

    async def remove_signal(self, signal_id: int) -> bool:
        self.removed.append(signal_id)
        return self.signals.pop(signal_id, None) is not None


class FakeAccountStore:
    def __init__(self, *accounts: Account) -> None:
        self.accounts = {account.id: account for account in accounts}

    async def get_account(self, account_id: str) -> Account | None:
        return self.accounts.get(account_id)


class FakeLedger:
    def __init__(self) -> None:
        self.trades: list[tuple[str, object]] = []

    async def record_trade(self, account_id: str, order) -> int:
        self.trades.append((account_id, order))
        return len(self.trades)


@pytest.fixture
def config() -> AppConfig:
    return make_config()


@pytest.fixture
def signal_store() -> FakeSignalStore:
    return FakeSignalStore()


@pytest.fixture
def account_store() -> FakeAccountStore:
    return FakeAccountStore(
        Account(id="stock-acct", balance=1_000_000.0),
        Account(id="coin-acct", balance=1_000_000.0, bitcoin=1.0),
    )


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def order_gateway() -> AsyncMock:
    gateway = AsyncMock()
    gateway.submit_order.return_value = 200
    return gateway


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def make_engine(signal_store, account_store, ledger, order_gateway, notifier):
    def _make(config: AppConfig | None = None, clock=lambda: NOW) -> TradeDecisionEngine:
        return TradeDecisionEngine(
            config=config or make_config(),
            signal_store=signal_store,
            account_store=account_store,
            ledger=ledger,
            order_gateway=order_gateway,
            notifier=notifier,
            clock=clock,
        )

    return _make
