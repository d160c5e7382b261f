"""HTTP gateway to the order execution venue."""

from __future__ import annotations

from typing import Any

from loguru import logger as default_logger

from signal_trader.config import TraderConfig
from signal_trader.models import Order
from signal_trader.transport import CONNECT_ONLY_MARKERS, JsonTransport


class HttpOrderGateway:
    """Submits orders as `{"orderInfo": {...}}` to the venue's /api/v1/order.

    The returned status only confirms the venue accepted the request, not
    that the trade filled. Only send-phase failures are retried, and every
    order carries a client order id the venue can deduplicate on.
    """

    def __init__(self, config: TraderConfig, transport: JsonTransport | None = None, logger: Any | None = None) -> None:
        self.config = config
        self.logger = logger or default_logger
        self.transport = transport or JsonTransport(
            timeout_sec=config.timeout_sec,
            logger=self.logger,
            retry_markers=CONNECT_ONLY_MARKERS,
        )

    async def submit_order(self, order: Order) -> int:
        response = await self.transport.post(self.config.order_url, {"orderInfo": order.to_payload()})
        self.logger.info(
            "Order submitted symbol={} side={} price={} amount={} client_id={} status={}",
            order.symbol,
            order.side.value,
            order.price,
            order.amount,
            order.client_order_id,
            response.status,
        )
        return response.status
