"""Async SQLite storage powered by SQLAlchemy."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    delete,
    desc,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from signal_trader.models import (
    Account,
    Candle,
    Order,
    OrderSide,
    OrderType,
    Position,
    Signal,
    TradeType,
    make_signal,
)


class StaleSignalError(RuntimeError):
    """Raised when a signal write loses an optimistic version check."""


class Base(DeclarativeBase):
    """Base declarative class for ORM models."""


class SignalORM(Base):
    __tablename__ = "signals"
    __table_args__ = (UniqueConstraint("symbol", "side", "backtest", name="uq_signals_pending"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    symbol: Mapped[str] = mapped_column(String, nullable=False, index=True)
    symbol_type: Mapped[str] = mapped_column(String, nullable=False)
    side: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    k: Mapped[float | None] = mapped_column(Float, nullable=True)
    d: Mapped[float | None] = mapped_column(Float, nullable=True)
    j: Mapped[float | None] = mapped_column(Float, nullable=True)
    backtest: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    mocktime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class AccountORM(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    balance: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    bitcoin: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


class PositionORM(Base):
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    symbol: Mapped[str] = mapped_column(String, nullable=False)
    side: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


class TradeORM(Base):
    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    account_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    symbol: Mapped[str] = mapped_column(String, nullable=False)
    side: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    trade_type: Mapped[str] = mapped_column(String, nullable=False)
    order_type: Mapped[str] = mapped_column(String, nullable=False)
    settlement: Mapped[str | None] = mapped_column(String, nullable=True)
    backtest: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    mocktime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CandleORM(Base):
    __tablename__ = "candles"
    __table_args__ = (UniqueConstraint("symbol", "unit", "time", name="uq_candles_bar"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    symbol: Mapped[str] = mapped_column(String, nullable=False, index=True)
    unit: Mapped[str] = mapped_column(String, nullable=False)
    time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    open: Mapped[float] = mapped_column(Float, nullable=False)
    high: Mapped[float] = mapped_column(Float, nullable=False)
    low: Mapped[float] = mapped_column(Float, nullable=False)
    close: Mapped[float] = mapped_column(Float, nullable=False)
    volume: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)


@dataclass(slots=True)
class TradeRecord:
    id: int
    created_at: datetime
    account_id: str
    symbol: str
    side: OrderSide
    price: float
    amount: float
    trade_type: TradeType
    order_type: OrderType
    settlement: str | None
    backtest: bool
    mocktime: datetime | None


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; everything is written as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _signal_from_row(row: SignalORM) -> Signal:
    return make_signal(
        row.symbol_type,
        id=row.id,
        symbol=row.symbol,
        side=OrderSide(row.side),
        price=row.price,
        detected_at=_utc(row.detected_at),
        notes=row.notes,
        k=row.k,
        d=row.d,
        j=row.j,
        backtest=bool(row.backtest),
        mocktime=_utc(row.mocktime),
        version=row.version,
    )


def _signal_row(signal: Signal) -> SignalORM:
    return SignalORM(
        symbol=signal.symbol,
        symbol_type=signal.symbol_type.value,
        side=signal.side.value,
        price=signal.price,
        detected_at=_utc(signal.detected_at),
        notes=signal.notes,
        k=signal.k,
        d=signal.d,
        j=signal.j,
        backtest=signal.backtest,
        mocktime=_utc(signal.mocktime),
        version=0,
    )


def _is_pending_conflict(exc: IntegrityError) -> bool:
    # SQLite reports the columns, not the constraint name
    message = str(exc.orig)
    return "uq_signals_pending" in message or "UNIQUE constraint failed: signals.symbol" in message


def _trade_from_row(row: TradeORM) -> TradeRecord:
    return TradeRecord(
        id=row.id,
        created_at=_utc(row.created_at),
        account_id=row.account_id,
        symbol=row.symbol,
        side=OrderSide(row.side),
        price=row.price,
        amount=row.amount,
        trade_type=TradeType(row.trade_type),
        order_type=OrderType(row.order_type),
        settlement=row.settlement,
        backtest=bool(row.backtest),
        mocktime=_utc(row.mocktime),
    )


class Database:
    """Signal store, account store, trade ledger and candle history in one SQLite file."""

    def __init__(self, db_path: str | Path = "data/trader.db") -> None:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._engine: AsyncEngine = create_async_engine(f"sqlite+aiosqlite:///{path}", echo=False)
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def init_db(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    async def get_signal(self, symbol: str, backtest: bool = False) -> Signal | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SignalORM)
                .where(SignalORM.symbol == symbol, SignalORM.backtest.is_(backtest))
                .order_by(desc(SignalORM.created_at))
                .limit(1)
            )
            row = result.scalars().first()
            if row is None:
                return None
            return _signal_from_row(row)

    async def set_signal(self, signal: Signal) -> Signal:
        if signal.id is None:
            return await self.replace_signal(None, signal)

        async with self._session_factory() as session:
            result = await session.execute(
                update(SignalORM)
                .where(SignalORM.id == signal.id, SignalORM.version == signal.version)
                .values(
                    price=signal.price,
                    notes=signal.notes,
                    k=signal.k,
                    d=signal.d,
                    j=signal.j,
                    mocktime=_utc(signal.mocktime),
                    version=signal.version + 1,
                )
            )
            await session.commit()
        if result.rowcount == 0:
            raise StaleSignalError(f"signal id={signal.id} version={signal.version} was changed or removed")
        signal.version += 1
        return signal

    async def replace_signal(self, old_id: int | None, signal: Signal) -> Signal:
        """Delete `old_id` (if any) and insert `signal` in one transaction."""
        row = _signal_row(signal)
        async with self._session_factory() as session:
            if old_id is not None:
                await session.execute(delete(SignalORM).where(SignalORM.id == old_id))
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                if _is_pending_conflict(exc):
                    raise StaleSignalError(
                        f"pending {signal.side.value} signal for {signal.symbol} already exists"
                    ) from exc
                raise
            await session.refresh(row)
        signal.id = row.id
        signal.version = row.version
        return signal

    async def remove_signal(self, signal_id: int) -> bool:
        async with self._session_factory() as session:
            row = await session.get(SignalORM, signal_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
        return True

    async def get_account(self, account_id: str) -> Account | None:
        async with self._session_factory() as session:
            row = await session.get(AccountORM, account_id)
            if row is None:
                return None
            result = await session.execute(
                select(PositionORM).where(PositionORM.account_id == account_id).order_by(PositionORM.created_at.asc())
            )
            positions = [
                Position(
                    symbol=pos.symbol,
                    side=OrderSide(pos.side),
                    price=pos.price,
                    created_at=_utc(pos.created_at),
                )
                for pos in result.scalars().all()
            ]
            return Account(id=row.id, balance=row.balance, bitcoin=row.bitcoin, positions=positions)

    async def upsert_account(self, account_id: str, balance: float, bitcoin: float = 0.0) -> None:
        async with self._session_factory() as session:
            row = await session.get(AccountORM, account_id)
            if row is None:
                session.add(AccountORM(id=account_id, balance=balance, bitcoin=bitcoin))
            else:
                row.balance = balance
                row.bitcoin = bitcoin
                row.updated_at = datetime.now(UTC)
            await session.commit()

    async def add_position(
        self,
        account_id: str,
        symbol: str,
        side: OrderSide,
        price: float | None,
        amount: float,
        created_at: datetime | None = None,
    ) -> int:
        position = PositionORM(
            account_id=account_id,
            symbol=symbol,
            side=side.value,
            price=price,
            amount=amount,
            created_at=_utc(created_at) or datetime.now(UTC),
        )
        async with self._session_factory() as session:
            session.add(position)
            await session.commit()
            await session.refresh(position)
        return position.id

    async def record_trade(self, account_id: str, order: Order) -> int:
        """Write the trade and apply it to the account's positions and balance."""
        executed_at = _utc(order.mocktime) or datetime.now(UTC)
        trade = TradeORM(
            account_id=account_id,
            symbol=order.symbol,
            side=order.side.value,
            price=order.price,
            amount=order.amount,
            trade_type=order.trade_type.value,
            order_type=order.order_type.value,
            settlement=order.settlement,
            backtest=order.backtest,
            mocktime=_utc(order.mocktime),
        )
        async with self._session_factory() as session:
            session.add(trade)
            account = await session.get(AccountORM, account_id)
            if order.side == OrderSide.BUY:
                session.add(
                    PositionORM(
                        account_id=account_id,
                        symbol=order.symbol,
                        side=order.side.value,
                        price=order.price,
                        amount=order.amount,
                        created_at=executed_at,
                    )
                )
                self._apply_balance(account, order, -order.notional)
            else:
                result = await session.execute(
                    select(PositionORM)
                    .where(
                        PositionORM.account_id == account_id,
                        PositionORM.symbol == order.symbol,
                        PositionORM.side == OrderSide.BUY.value,
                    )
                    .order_by(PositionORM.created_at.asc())
                    .limit(1)
                )
                position = result.scalars().first()
                if position is not None:
                    await session.delete(position)
                self._apply_balance(account, order, order.notional)
            await session.commit()
            await session.refresh(trade)
        return trade.id

    @staticmethod
    def _apply_balance(account: AccountORM | None, order: Order, delta: float) -> None:
        if account is None:
            return
        if order.settlement == "btc":
            account.bitcoin += delta
        else:
            account.balance += delta
        account.updated_at = datetime.now(UTC)

    async def list_trades(self, account_id: str | None = None, limit: int = 200) -> list[TradeRecord]:
        async with self._session_factory() as session:
            query = select(TradeORM).order_by(TradeORM.id.asc()).limit(limit)
            if account_id is not None:
                query = query.where(TradeORM.account_id == account_id)
            result = await session.execute(query)
            rows = result.scalars().all()
        return [_trade_from_row(row) for row in rows]

    async def add_candles(self, symbol: str, unit: str, candles: Iterable[Candle]) -> int:
        added = 0
        async with self._session_factory() as session:
            for candle in candles:
                session.add(
                    CandleORM(
                        symbol=symbol,
                        unit=unit,
                        time=_utc(candle.time),
                        open=candle.open,
                        high=candle.high,
                        low=candle.low,
                        close=candle.close,
                        volume=candle.volume,
                    )
                )
                added += 1
            await session.commit()
        return added

    async def get_candles(
        self,
        symbol: str,
        unit: str,
        as_of: datetime | None = None,
        limit: int = 120,
    ) -> list[Candle]:
        """Return the latest `limit` candles at or before `as_of`, oldest first."""
        async with self._session_factory() as session:
            query = select(CandleORM).where(CandleORM.symbol == symbol, CandleORM.unit == unit)
            if as_of is not None:
                query = query.where(CandleORM.time <= _utc(as_of))
            result = await session.execute(query.order_by(desc(CandleORM.time)).limit(limit))
            rows = result.scalars().all()
        return [
            Candle(
                time=_utc(row.time),
                open=row.open,
                high=row.high,
                low=row.low,
                close=row.close,
                volume=row.volume,
            )
            for row in reversed(rows)
        ]

    async def clear_signals(self, backtest: bool | None = None) -> int:
        async with self._session_factory() as session:
            query = delete(SignalORM)
            if backtest is not None:
                query = query.where(SignalORM.backtest.is_(backtest))
            result = await session.execute(query)
            await session.commit()
        return int(result.rowcount or 0)
