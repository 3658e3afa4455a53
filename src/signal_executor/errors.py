"""Exception taxonomy for the signal lifecycle."""

from __future__ import annotations

from typing import Any

import httpx


class ExchangeError(Exception):
    """Base for failures reported by, or while talking to, the exchange."""


class BinanceAPIError(ExchangeError):
    def __init__(self, status: int, code: int | None, msg: str | None, body: str = ""):
        self.status = status
        self.code = code
        self.msg = msg
        self.body = body
        super().__init__(f"Binance API error (status={status}, code={code}, msg={msg})")


class OrderRejected(ExchangeError):
    """A batch order result came back without an ``orderId``."""

    def __init__(self, payload: Any):
        self.payload = payload
        if isinstance(payload, dict):
            msg = payload.get("msg") or str(payload)
        else:
            msg = str(payload)
        super().__init__(msg)


class ProtectiveLegFailed(ExchangeError):
    """A stop / take-profit leg failed on both attempts."""

    def __init__(self, order_type: str, cause: BaseException):
        self.order_type = order_type
        self.cause = cause
        super().__init__(f"{order_type}: {cause}")


class SymbolNotFound(LookupError):
    """Instrument rules or live price unavailable for a symbol."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__("Symbol not found")


class InvalidTransition(ValueError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Transition {current} -> {requested} is not allowed")


# Transient or exchange-reported failures; handled per signal, never fatal
EXCHANGE_ERRORS: tuple[type[BaseException], ...] = (ExchangeError, httpx.HTTPError)
