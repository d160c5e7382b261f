"""Order construction from the configured template."""

from __future__ import annotations

from signal_trader.config import OrderTemplateConfig
from signal_trader.markets import MarketRules
from signal_trader.models import Order, SymbolType, TradeInput


class OrderBuilder:
    def __init__(self, template: OrderTemplateConfig, markets: MarketRules, backtest: bool = False) -> None:
        self.template = template
        self.markets = markets
        self.backtest = backtest

    def build(self, trade_input: TradeInput) -> Order:
        order = Order(
            symbol=trade_input.symbol,
            side=trade_input.signal.side,
            price=trade_input.price,
            amount=self.template.amount,
            trade_type=self.template.trade_type,
            order_type=self.template.order_type,
        )
        if trade_input.symbol_type == SymbolType.CRYPTOCOIN:
            unit = self.markets.trade_unit(trade_input.symbol)
            order.amount = unit.amount
            order.settlement = unit.settlement
        if self.backtest:
            order.backtest = True
            order.mocktime = trade_input.time
        return order
