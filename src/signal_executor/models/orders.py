"""Order specs: one tagged variant per Binance futures order type.

Each variant validates its own fields and renders the string params that the
/fapi/v1/order and /fapi/v1/batchOrders endpoints expect. Protective legs are
always mark-price triggered with price protection on.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from signal_executor.models.signal import Side, Signal

OrderSide = Literal["BUY", "SELL"]


def _fmt(value: Decimal) -> str:
    return format(value, "f")


class _BaseOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(min_length=1)
    side: OrderSide

    def to_params(self) -> dict[str, str]:
        raise NotImplementedError


class _ProtectiveOrder(_BaseOrder):
    stop_price: Decimal = Field(gt=0)
    close_position: bool = True
    working_type: Literal["MARK_PRICE", "CONTRACT_PRICE"] = "MARK_PRICE"
    price_protect: bool = True
    time_in_force: str = "GTE_GTC"

    def to_params(self) -> dict[str, str]:
        return {
            "symbol": self.symbol,
            "side": self.side,
            "positionSide": "BOTH",
            "type": self.type,  # type: ignore[attr-defined]
            "stopPrice": _fmt(self.stop_price),
            "closePosition": str(self.close_position).lower(),
            "timeInForce": self.time_in_force,
            "workingType": self.working_type,
            "priceProtect": str(self.price_protect).lower(),
        }


class MarketOrder(_BaseOrder):
    type: Literal["MARKET"] = "MARKET"
    quantity: Decimal = Field(gt=0)
    reduce_only: bool = False

    @classmethod
    def entry(cls, signal: Signal, quantity: Decimal) -> MarketOrder:
        """Market order opening a position in the signal's direction."""
        return cls(symbol=signal.symbol, side=signal.side.entry_side, quantity=quantity)

    @classmethod
    def close(cls, symbol: str, side: Side, quantity: Decimal) -> MarketOrder:
        """Reduce-only market order flattening a *side* position."""
        return cls(symbol=symbol, side=side.exit_side, quantity=quantity, reduce_only=True)

    def to_params(self) -> dict[str, str]:
        params = {
            "symbol": self.symbol,
            "side": self.side,
            "type": self.type,
            "quantity": _fmt(self.quantity),
        }
        if self.reduce_only:
            params["reduceOnly"] = "true"
        return params


class StopMarketOrder(_ProtectiveOrder):
    type: Literal["STOP_MARKET"] = "STOP_MARKET"

    @classmethod
    def protective(cls, signal: Signal, stop_price: Decimal) -> StopMarketOrder:
        """Stop-loss leg closing the whole position at *stop_price*."""
        return cls(symbol=signal.symbol, side=signal.side.exit_side, stop_price=stop_price)


class TakeProfitMarketOrder(_ProtectiveOrder):
    type: Literal["TAKE_PROFIT_MARKET"] = "TAKE_PROFIT_MARKET"

    @classmethod
    def protective(cls, signal: Signal, stop_price: Decimal) -> TakeProfitMarketOrder:
        """Take-profit leg closing the whole position at *stop_price*."""
        return cls(symbol=signal.symbol, side=signal.side.exit_side, stop_price=stop_price)


class TrailingStopMarketOrder(_BaseOrder):
    """Trailing stop armed at the take-profit bound.

    Binance rejects ``closePosition`` on trailing stops, so the leg is
    reduce-only for the full position quantity instead.
    """

    type: Literal["TRAILING_STOP_MARKET"] = "TRAILING_STOP_MARKET"
    quantity: Decimal = Field(gt=0)
    activation_price: Decimal = Field(gt=0)
    callback_rate: Decimal = Field(ge=Decimal("0.1"), le=Decimal("5"))
    working_type: Literal["MARK_PRICE", "CONTRACT_PRICE"] = "MARK_PRICE"
    price_protect: bool = True

    @classmethod
    def protective(
        cls,
        signal: Signal,
        quantity: Decimal,
        activation_price: Decimal,
        callback_rate: Decimal,
    ) -> TrailingStopMarketOrder:
        return cls(
            symbol=signal.symbol,
            side=signal.side.exit_side,
            quantity=quantity,
            activation_price=activation_price,
            callback_rate=callback_rate,
        )

    def to_params(self) -> dict[str, str]:
        return {
            "symbol": self.symbol,
            "side": self.side,
            "positionSide": "BOTH",
            "type": self.type,
            "quantity": _fmt(self.quantity),
            "reduceOnly": "true",
            "activationPrice": _fmt(self.activation_price),
            "callbackRate": _fmt(self.callback_rate),
            "workingType": self.working_type,
            "priceProtect": str(self.price_protect).lower(),
        }


OrderSpec = Annotated[
    Union[MarketOrder, StopMarketOrder, TakeProfitMarketOrder, TrailingStopMarketOrder],
    Field(discriminator="type"),
]


def describe(order: Any) -> str:
    """Short human label for logs, e.g. ``STOP_MARKET SELL BTCUSDT``."""
    return f"{order.type} {order.side} {order.symbol}"
