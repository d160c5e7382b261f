"""Symbol classification, venue trade units and fees."""

from __future__ import annotations

from dataclasses import dataclass

from signal_trader.config import MarketsConfig
from signal_trader.models import SymbolType

COIN_SEPARATOR = "_"


def is_coin_symbol(symbol: str) -> bool:
    """Coin pairs are written base_quote (btc_jpy), equities are bare codes."""
    return COIN_SEPARATOR in symbol


def symbol_type_of(symbol: str) -> SymbolType:
    return SymbolType.CRYPTOCOIN if is_coin_symbol(symbol) else SymbolType.STOCK


def quote_currency(symbol: str) -> str | None:
    if not is_coin_symbol(symbol):
        return None
    return symbol.rsplit(COIN_SEPARATOR, 1)[1].lower() or None


@dataclass(slots=True)
class TradeUnit:
    amount: float
    settlement: str | None


class MarketRules:
    """Per-symbol trade unit and fee lookups backed by the `markets` config table."""

    def __init__(self, config: MarketsConfig) -> None:
        self.config = config

    def trade_unit(self, symbol: str) -> TradeUnit:
        unit = self.config.trade_units.get(symbol)
        if unit is None:
            return TradeUnit(amount=self.config.default_coin_amount, settlement=quote_currency(symbol))
        settlement = unit.settlement.lower() if unit.settlement else quote_currency(symbol)
        return TradeUnit(amount=unit.amount, settlement=settlement)

    def fee(self, symbol: str) -> float:
        return float(self.config.fees.get(symbol, self.config.default_fee))
