"""The capability surface the lifecycle needs from an exchange."""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import Any, Protocol

from signal_executor.models import Candle, OrderSpec


class ExchangeGateway(Protocol):
    async def get_balance(self, asset: str = "USDT") -> Decimal: ...

    async def get_positions(self) -> list[dict[str, Any]]: ...

    async def get_open_orders(self, symbol: str) -> list[dict[str, Any]]: ...

    async def cancel_all_orders(self, symbol: str) -> dict[str, Any]: ...

    async def place_orders(self, orders: Sequence[OrderSpec]) -> list[dict[str, Any]]:
        """Submit a batch. Each result is either an order ack with ``orderId``
        or an error object with ``code`` / ``msg``, in submission order."""
        ...

    async def get_mark_price(self, symbol: str) -> Decimal | None: ...

    async def get_candles(self, symbol: str, interval: str, limit: int) -> list[Candle]: ...

    async def get_exchange_rules(self) -> list[dict[str, Any]]: ...

    async def set_leverage(self, symbol: str, leverage: int) -> None: ...

    async def set_margin_type(self, symbol: str, margin_type: str) -> None: ...

    async def close(self) -> None: ...
