"""Binance USD-M futures client: signed REST over httpx."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections.abc import Sequence
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog

from signal_executor.errors import BinanceAPIError
from signal_executor.models import Candle, OrderSpec

log = structlog.get_logger("binance")

# Binance accepts at most five orders per batchOrders call
BATCH_LIMIT = 5
MAX_KLINES = 1500

# Error codes that mean "nothing to do"
_NO_NEED_TO_CHANGE_MARGIN = -4046
_INVALID_SYMBOL = -1121


class BinanceFuturesClient:
    """Async client for the subset of /fapi the lifecycle uses."""

    def __init__(
        self,
        base_url: str = "https://fapi.binance.com",
        api_key: str | None = None,
        api_secret: str | None = None,
        recv_window: int = 5000,
        timeout_s: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.api_secret = api_secret
        self.recv_window = recv_window
        self._timeout_s = timeout_s
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout_s,
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    # --- Request plumbing ---

    def sign(self, params: dict[str, Any]) -> dict[str, Any]:
        """Return *params* with timestamp, recvWindow and HMAC signature added."""
        if not self.api_key or not self.api_secret:
            raise RuntimeError("Binance API key/secret required for signed request")
        signed = dict(params)
        signed.setdefault("timestamp", int(time.time() * 1000))
        signed.setdefault("recvWindow", self.recv_window)
        query = urlencode(signed, doseq=True)
        signed["signature"] = hmac.new(
            self.api_secret.encode("utf-8"),
            query.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return signed

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        signed: bool = False,
    ) -> Any:
        http = await self._get_http()
        params = dict(params or {})
        headers: dict[str, str] = {}
        if signed:
            params = self.sign(params)
        if self.api_key:
            headers["X-MBX-APIKEY"] = self.api_key

        resp = await http.request(method, path, params=params, headers=headers)
        try:
            payload = resp.json()
        except ValueError:
            payload = resp.text

        if resp.status_code >= 400:
            code = msg = None
            if isinstance(payload, dict):
                code = payload.get("code")
                msg = payload.get("msg")
            raise BinanceAPIError(resp.status_code, code, msg, resp.text)
        return payload

    # --- Account ---

    async def get_balance(self, asset: str = "USDT") -> Decimal:
        """Wallet balance of *asset* in the futures account (0 if absent)."""
        rows = await self._request("GET", "/fapi/v2/balance", signed=True)
        for row in rows:
            if row.get("asset") == asset:
                return Decimal(str(row["balance"]))
        return Decimal("0")

    async def get_positions(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/fapi/v2/positionRisk", signed=True)

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        await self._request(
            "POST", "/fapi/v1/leverage",
            params={"symbol": symbol, "leverage": leverage},
            signed=True,
        )

    async def set_margin_type(self, symbol: str, margin_type: str) -> None:
        try:
            await self._request(
                "POST", "/fapi/v1/marginType",
                params={"symbol": symbol, "marginType": margin_type},
                signed=True,
            )
        except BinanceAPIError as exc:
            if exc.code != _NO_NEED_TO_CHANGE_MARGIN:
                raise

    # --- Orders ---

    async def get_open_orders(self, symbol: str) -> list[dict[str, Any]]:
        return await self._request(
            "GET", "/fapi/v1/openOrders", params={"symbol": symbol}, signed=True,
        )

    async def cancel_all_orders(self, symbol: str) -> dict[str, Any]:
        """Cancel every working order on *symbol*.

        Binance answers ``{"code": 200, "msg": "..."}`` on success.
        """
        return await self._request(
            "DELETE", "/fapi/v1/allOpenOrders", params={"symbol": symbol}, signed=True,
        )

    async def place_orders(self, orders: Sequence[OrderSpec]) -> list[dict[str, Any]]:
        """Submit orders via batchOrders, chunked to the exchange limit.

        Results keep submission order. A rejected order shows up as a
        ``{"code": ..., "msg": ...}`` element rather than an exception.
        """
        results: list[dict[str, Any]] = []
        for start in range(0, len(orders), BATCH_LIMIT):
            chunk = orders[start:start + BATCH_LIMIT]
            batch = json.dumps([o.to_params() for o in chunk], separators=(",", ":"))
            log.debug("batch_orders", count=len(chunk), orders=batch)
            data = await self._request(
                "POST", "/fapi/v1/batchOrders",
                params={"batchOrders": batch},
                signed=True,
            )
            results.extend(data)
        return results

    # --- Market data ---

    async def get_mark_price(self, symbol: str) -> Decimal | None:
        """Current mark price, or None if the exchange doesn't list *symbol*."""
        try:
            data = await self._request("GET", "/fapi/v1/premiumIndex", params={"symbol": symbol})
        except BinanceAPIError as exc:
            if exc.code == _INVALID_SYMBOL:
                return None
            raise
        price = data.get("markPrice") if isinstance(data, dict) else None
        if price is None:
            return None
        return Decimal(str(price))

    async def get_candles(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        """Most recent *limit* klines, oldest first."""
        limit = max(1, min(limit, MAX_KLINES))
        rows = await self._request(
            "GET", "/fapi/v1/klines",
            params={"symbol": symbol, "interval": interval, "limit": limit},
        )
        return [Candle.from_kline(r) for r in rows]

    async def get_exchange_rules(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/fapi/v1/exchangeInfo")
        return data.get("symbols", [])
