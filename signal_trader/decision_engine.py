"""Per-symbol signal admission and trade decision state machine."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from loguru import logger as default_logger

from signal_trader.config import AppConfig
from signal_trader.ingester import WatchItem
from signal_trader.interfaces import AccountStore, NotificationGateway, OrderGateway, SignalStore, TradeLedger
from signal_trader.markets import MarketRules
from signal_trader.models import (
    Account,
    KdjOutput,
    Order,
    OrderSide,
    Signal,
    SymbolType,
    TradeDecision,
    TradeInput,
    make_signal,
)
from signal_trader.orders import OrderBuilder


class TradeDecisionEngine:
    """Turns watch-list detections and pending signals into trades.

    Each symbol moves through: admitted (pending) -> updated (pending) ->
    executed (removed), or is superseded by a newer detection. Failures are
    contained to the symbol being processed.
    """

    def __init__(
        self,
        config: AppConfig,
        signal_store: SignalStore,
        account_store: AccountStore,
        ledger: TradeLedger,
        order_gateway: OrderGateway,
        notifier: NotificationGateway,
        logger: Any | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.signal_store = signal_store
        self.account_store = account_store
        self.ledger = ledger
        self.order_gateway = order_gateway
        self.notifier = notifier
        self.logger = logger or default_logger
        self.clock = clock or (lambda: datetime.now(UTC))
        self.backtest = config.backtest.test
        self.markets = MarketRules(config.markets)
        self.order_builder = OrderBuilder(config.order, self.markets, backtest=self.backtest)
        self._executions: set[asyncio.Task] = set()

    async def on_tick(self, items: list[WatchItem]) -> dict[str, TradeDecision | None]:
        self.logger.info("Pretrade analysis [start] symbols={}", len(items))
        outcomes: dict[str, TradeDecision | None] = {}
        for item in items:
            try:
                outcomes[item.symbol] = await self.process_symbol(item)
            except Exception as exc:  # noqa: BLE001
                self.logger.opt(exception=exc).error("Symbol {} failed: {}", item.symbol, exc)
                outcomes[item.symbol] = None
        self.logger.info("Pretrade analysis [end]")
        return outcomes

    async def process_symbol(self, item: WatchItem) -> TradeDecision | None:
        self.logger.info("Processing symbol={}", item.symbol)
        pending = await self.signal_store.get_signal(item.symbol, backtest=self.backtest)
        self.logger.debug("Stored signal for {}: {}", item.symbol, pending)

        detection = item.detection
        if detection is not None and detection.side is not None:
            if detection.last_price is None:
                self.logger.warning(
                    "{} signal for {} has no price, keeping the pending signal", detection.side.value, item.symbol
                )
            else:
                pending = await self.admit_signal(item, detection, pending)

        if pending is None:
            return None

        if detection is None or detection.last_price is None or detection.last_time is None:
            self.logger.warning("No market price for {} this tick, pending signal left as is", item.symbol)
            return TradeDecision("skipped", "no_market_data")

        return await self.evaluate(
            TradeInput(
                symbol=item.symbol,
                symbol_type=item.symbol_type,
                price=detection.last_price,
                time=detection.last_time,
                signal=pending,
            )
        )

    async def admit_signal(self, item: WatchItem, detection: KdjOutput, pending: Signal | None) -> Signal:
        candidate = make_signal(
            item.symbol_type,
            symbol=item.symbol,
            side=detection.side,
            price=detection.last_price,
            detected_at=detection.last_time or self.clock(),
            notes=f"K: {detection.k}",
            k=detection.k,
            d=detection.d,
            j=detection.j,
        )
        if self.backtest:
            candidate.backtest = True
            candidate.mocktime = detection.last_time

        old_id = pending.id if pending is not None else None
        if old_id is not None:
            self.logger.info(
                "Superseding {} signal id={} for {} with new {} signal",
                pending.side.value,
                old_id,
                item.symbol,
                candidate.side.value,
            )

        stored = await self.signal_store.replace_signal(old_id, candidate)
        self.logger.info("Signal recorded symbol={} side={} price={}", stored.symbol, stored.side.value, stored.price)

        try:
            await self.notifier.post_signal_alert(stored)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Signal alert failed symbol={} err={}", stored.symbol, exc)
        return stored

    async def evaluate(self, trade_input: TradeInput) -> TradeDecision:
        self.logger.info("Trade evaluation [start] symbol={}", trade_input.symbol)
        account_id = self._account_id(trade_input.symbol_type)
        account = await self.account_store.get_account(account_id)
        if account is None:
            self.logger.error("Account {} not found, skipping {}", account_id, trade_input.symbol)
            return TradeDecision("skipped", "account_not_found")

        order = self.order_builder.build(trade_input)
        if trade_input.signal.side == OrderSide.BUY:
            decision = await self._evaluate_buy(trade_input, account, order)
        else:
            decision = await self._evaluate_sell(trade_input, account, order)
        self.logger.info(
            "Trade evaluation [end] symbol={} action={} reason={}",
            trade_input.symbol,
            decision.action,
            decision.reason,
        )
        return decision

    async def _evaluate_buy(self, trade_input: TradeInput, account: Account, order: Order) -> TradeDecision:
        signal = trade_input.signal
        if signal.price < trade_input.price:
            self.logger.info("{} turned up after buy signal ({} < {})", trade_input.symbol, signal.price, trade_input.price)
            position = account.find_position(trade_input.symbol, OrderSide.BUY)
            if position is not None:
                elapsed = (self._now(trade_input) - position.created_at).total_seconds()
                if elapsed <= self.config.rules.cooldown_sec:
                    self.logger.info(
                        "Position in {} opened {:.0f}s ago (<= {}s), buy suppressed",
                        trade_input.symbol,
                        elapsed,
                        self.config.rules.cooldown_sec,
                    )
                    return TradeDecision("skipped", "cooldown")

            required = order.notional + self.markets.fee(trade_input.symbol)
            balance = account.bitcoin if order.settlement == "btc" else account.balance
            if balance < required:
                self.logger.warning("Available balance {} < order cost {}, buy skipped", balance, required)
                return TradeDecision("skipped", "insufficient_funds")

            self.logger.info("Order cost {}", required)
            await self._execute(account.id, order, signal, profit=0.0)
            return TradeDecision("executed", "buy")

        if signal.price > trade_input.price:
            return await self._track_price(signal, trade_input.price)
        return TradeDecision("hold", "price_unchanged")

    async def _evaluate_sell(self, trade_input: TradeInput, account: Account, order: Order) -> TradeDecision:
        signal = trade_input.signal
        position = account.find_position(trade_input.symbol, OrderSide.BUY)
        if position is None:
            self.logger.warning("No open position in {}, sell skipped", trade_input.symbol)
            return TradeDecision("skipped", "no_position")
        if position.price is None:
            self.logger.error("Position in {} has no entry price", trade_input.symbol)
            return TradeDecision("skipped", "missing_entry_price")

        if trade_input.symbol_type == SymbolType.CRYPTOCOIN:
            profitable = trade_input.price > position.price
        else:
            profitable = trade_input.price - position.price > self.config.rules.stock_profit_threshold
        self.logger.info(
            "Sell check {}: signal {} vs current {}, entry {} profitable={}",
            trade_input.symbol,
            signal.price,
            trade_input.price,
            position.price,
            profitable,
        )

        if signal.price > trade_input.price and profitable:
            profit = (
                signal.price * order.amount
                - trade_input.price * order.amount
                - self.markets.fee(trade_input.symbol)
            )
            self.logger.info("{} turned down after sell signal, profit {}", trade_input.symbol, profit)
            await self._execute(account.id, order, signal, profit=profit)
            return TradeDecision("executed", "sell")

        if signal.price < trade_input.price:
            return await self._track_price(signal, trade_input.price)
        return TradeDecision("hold", "not_profitable" if not profitable else "price_unchanged")

    async def _track_price(self, signal: Signal, price: float) -> TradeDecision:
        self.logger.info("Updating {} signal price for {}: {} -> {}", signal.side.value, signal.symbol, signal.price, price)
        signal.price = price
        await self.signal_store.set_signal(signal)
        return TradeDecision("updated", "tracked_price")

    async def _execute(self, account_id: str, order: Order, signal: Signal, profit: float) -> None:
        # a cancelled tick must not split a sent order from its ledger entry
        task = asyncio.create_task(
            self._submit_and_record(account_id, order, signal, profit),
            name=f"execute-{order.symbol}",
        )
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)
        await asyncio.shield(task)

    async def _submit_and_record(self, account_id: str, order: Order, signal: Signal, profit: float) -> None:
        # submission failures do not roll back the ledger or the signal removal
        try:
            await self.order_gateway.submit_order(order)
            await self.notifier.post_trade_alert(order, profit)
            self.logger.info("Sent {} order for {}", order.side.value, order.symbol)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Sending {} order for {} failed: {}", order.side.value, order.symbol, exc)

        await self.ledger.record_trade(account_id, order)
        if signal.id is not None:
            await self.signal_store.remove_signal(signal.id)

    async def drain(self) -> None:
        """Wait for order executions that outlived a cancelled tick."""
        pending = list(self._executions)
        if not pending:
            return
        self.logger.info("Waiting for {} order execution(s) to finish", len(pending))
        results = await asyncio.gather(*pending, return_exceptions=True)
        for task, result in zip(pending, results):
            if isinstance(result, Exception):
                self.logger.error("Execution {} failed: {}", task.get_name(), result)

    def _account_id(self, symbol_type: SymbolType) -> str:
        if symbol_type == SymbolType.CRYPTOCOIN:
            return self.config.account.coin_id
        return self.config.account.user_id

    def _now(self, trade_input: TradeInput) -> datetime:
        return trade_input.time if self.backtest else self.clock()
