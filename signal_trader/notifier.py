"""Slack webhook alerts for detected signals and executed trades."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from loguru import logger as default_logger

from signal_trader.markets import is_coin_symbol
from signal_trader.models import Order, OrderSide, Signal
from signal_trader.transport import JsonTransport

COIN_CHANNEL = "#coin"
STOCK_CHANNEL = "#kdj"
TRADE_CHANNEL = "#coin_trade"

STOCK_ICON = "https://platform.slack-edge.com/img/default_application_icon.png"
COIN_ICON = "https://png.icons8.com/dusk/2x/bitcoin.png"
TRADE_ICON = "https://png.icons8.com/dusk/2x/event-accepted.png"

# %I is the 12-hour clock
FOOTER_TIME_FORMAT = "%Y-%m-%d %I:%M:%S"


def alert_channel(symbol: str) -> str:
    return COIN_CHANNEL if is_coin_symbol(symbol) else STOCK_CHANNEL


def _color(side: OrderSide) -> str:
    return "danger" if side == OrderSide.BUY else "good"


def _side_label(side: OrderSide) -> str:
    return "Buy" if side == OrderSide.BUY else "Sell"


def _field(title: str, value: object) -> dict[str, Any]:
    return {"title": title, "value": f"{value}", "short": True}


def build_signal_alert(signal: Signal, now: datetime) -> dict[str, Any]:
    return {
        "channel": alert_channel(signal.symbol),
        "attachments": [
            {
                "color": _color(signal.side),
                "title": f"Symbol: {signal.symbol}",
                "text": signal.notes,
                "fields": [
                    _field("Price", signal.price),
                    _field("Side", _side_label(signal.side)),
                ],
                "footer": f"5min KDJ   {now.strftime(FOOTER_TIME_FORMAT)}",
                "footer_icon": COIN_ICON if is_coin_symbol(signal.symbol) else STOCK_ICON,
            }
        ],
    }


def build_trade_alert(order: Order, profit: float, now: datetime) -> dict[str, Any]:
    return {
        "channel": TRADE_CHANNEL,
        "attachments": [
            {
                "color": _color(order.side),
                "title": f"Symbol: {order.symbol}",
                "fields": [
                    _field("Price", order.price),
                    _field("Side", _side_label(order.side)),
                    _field("Amount", order.amount),
                    _field("Profit", profit),
                ],
                "footer": f"AI auto trade   {now.strftime(FOOTER_TIME_FORMAT)}",
                "footer_icon": TRADE_ICON,
            }
        ],
    }


class SlackNotifier:
    def __init__(
        self,
        url: str,
        transport: JsonTransport | None = None,
        logger: Any | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.url = url
        self.logger = logger or default_logger
        self.transport = transport or JsonTransport(logger=self.logger)
        self.clock = clock

    async def post_signal_alert(self, signal: Signal) -> None:
        await self.transport.post(self.url, build_signal_alert(signal, self.clock()))
        self.logger.info("Signal alert sent symbol={} side={}", signal.symbol, signal.side.value)

    async def post_trade_alert(self, order: Order, profit: float) -> None:
        await self.transport.post(self.url, build_trade_alert(order, profit, self.clock()))
        self.logger.info("Trade alert sent symbol={} side={} profit={}", order.symbol, order.side.value, profit)
