"""Lifecycle controller: the scheduled passes that drive every signal.

Each pass reads signals by status, consults the exchange, and writes the
resulting status back through ``SignalStore.transition``. Exchange failures
are contained per signal so one bad symbol never blocks the rest of a pass.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import structlog
from pydantic import ValidationError

from signal_executor.config.schema import AppConfig
from signal_executor.errors import EXCHANGE_ERRORS, SymbolNotFound
from signal_executor.exchange import ExchangeGateway
from signal_executor.lifecycle.entry import EntryDecision, should_enter
from signal_executor.lifecycle.executor import OrderExecutor
from signal_executor.lifecycle.persistence import SignalStore
from signal_executor.lifecycle.sizing import resolve_budget, round_to_precision, size
from signal_executor.logging import signal_logger
from signal_executor.models import (
    CapitalBudget,
    InstrumentInfo,
    MarketOrder,
    Signal,
    SignalRequest,
    SignalStatus,
)

log = structlog.get_logger("lifecycle")

_INTERVAL_SECONDS = {
    "1m": 60,
    "3m": 180,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
}
_MIN_CANDLES = 2
_MAX_CANDLES = 1500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def candles_since(created_at: datetime, now: datetime, interval: str) -> int:
    """How many *interval* candles cover the time since *created_at*."""
    seconds = _INTERVAL_SECONDS.get(interval, 300)
    elapsed = max(0.0, (now - created_at).total_seconds())
    return max(_MIN_CANDLES, min(_MAX_CANDLES, math.ceil(elapsed / seconds)))


def ttl_expired(signal: Signal, now: datetime, ttl: timedelta) -> bool:
    return now - signal.updated_at >= ttl


def position_amounts(positions: list[dict[str, Any]]) -> dict[str, Decimal]:
    """Net non-zero position size per symbol from a positionRisk list."""
    amounts: dict[str, Decimal] = {}
    for pos in positions:
        amount = Decimal(str(pos.get("positionAmt", "0")))
        if amount != 0:
            amounts[pos["symbol"]] = amounts.get(pos["symbol"], Decimal("0")) + amount
    return amounts


def _error_text(exc: BaseException) -> str:
    payload = getattr(exc, "payload", None)
    if payload is not None:
        return json.dumps(payload, default=str)
    return str(exc)


class LifecycleController:
    """Sizing, entry, close and refresh passes plus the emergency close-all."""

    def __init__(
        self,
        config: AppConfig,
        gateway: ExchangeGateway,
        store: SignalStore,
        executor: OrderExecutor | None = None,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.store = store
        self.executor = executor or OrderExecutor(
            gateway,
            store,
            margin_type=config.budget.margin_type,
            leg_delay_s=config.schedule.leg_delay_s,
        )

    # ── Inbound ───────────────────────────────────────────────

    def accept_signal(self, payload: dict[str, Any]) -> bool:
        """Validate and store an inbound signal. False means rejected, nothing stored."""
        try:
            request = SignalRequest.model_validate(payload)
        except ValidationError as exc:
            log.warning("signal_rejected", payload=payload, errors=exc.errors(include_url=False))
            return False
        self.store.create_signal(request)
        return True

    # ── Helpers ───────────────────────────────────────────────

    async def _budget(self) -> CapitalBudget:
        return await resolve_budget(self.config.budget, self.gateway)

    def _instruments(self) -> dict[str, InstrumentInfo]:
        instruments = self.store.latest_instrument_snapshot()
        if not instruments:
            log.warning("no_instrument_snapshot")
        return instruments

    async def _live_price(self, symbol: str, instrument: InstrumentInfo | None) -> Decimal:
        if instrument is None:
            raise SymbolNotFound(symbol)
        price = await self.gateway.get_mark_price(symbol)
        if price is None or price <= 0:
            raise SymbolNotFound(symbol)
        return round_to_precision(price, instrument.price_precision)

    # ── Sizing pass ───────────────────────────────────────────

    async def sizing_pass(self) -> None:
        """NEW → WAITING (quantity sized) or PASSED (sizes to zero)."""
        signals = self.store.find_by_status(SignalStatus.NEW)
        if not signals:
            log.debug("no_new_signals")
            return

        instruments = self._instruments()
        if not instruments:
            return
        budget = await self._budget()
        in_flight = self.store.count_in_flight()

        for signal in signals:
            slog = signal_logger(log, signal)
            try:
                instrument = instruments.get(signal.symbol)
                price = await self._live_price(signal.symbol, instrument)
            except SymbolNotFound as exc:
                self.store.transition(signal, SignalStatus.ERROR, message=str(exc))
                continue
            except EXCHANGE_ERRORS:
                slog.exception("sizing_price_failed")
                continue

            quantity = size(signal, price, instrument, budget, in_flight)
            status = SignalStatus.WAITING if quantity > 0 else SignalStatus.PASSED
            slog.info("signal_sized", price=float(price), quantity=float(quantity),
                      next_status=status.value)
            self.store.transition(signal, status, quantity=quantity)

    # ── Entry pass ────────────────────────────────────────────

    async def entry_pass(self, now: datetime | None = None) -> None:
        """WAITING → OPEN once the entry confirms, MISSED_ORDER if the trend broke."""
        signals = self.store.find_by_status(SignalStatus.WAITING)
        log.debug("entry_pass", waiting=len(signals))
        if not signals:
            return

        instruments = self._instruments()
        if not instruments:
            return
        budget = await self._budget()
        in_flight = self.store.count_in_flight()
        interval = self.config.schedule.candle_interval

        for signal in signals:
            slog = signal_logger(log, signal)
            try:
                instrument = instruments.get(signal.symbol)
                price = await self._live_price(signal.symbol, instrument)
                limit = candles_since(signal.created_at, now or _utcnow(), interval)
                candles = await self.gateway.get_candles(signal.symbol, interval, limit)
                decision = should_enter(signal, candles, price, budget)

                if decision is EntryDecision.MISSED:
                    slog.info("missed_order", reference_price=float(signal.reference_price))
                    self.store.transition(signal, SignalStatus.MISSED_ORDER)
                    continue
                if decision is EntryDecision.WAIT:
                    slog.debug("entry_not_confirmed", price=float(price),
                               candle_close=float(candles[-1].close) if candles else None)
                    continue

                quantity = size(signal, price, instrument, budget, in_flight)
                if quantity <= 0:
                    self.store.transition(signal, SignalStatus.PASSED, quantity=quantity)
                    continue

                await self.executor.place_bracket(signal, quantity, price, instrument, budget)
            except SymbolNotFound as exc:
                self.store.transition(signal, SignalStatus.ERROR, message=str(exc))
            except EXCHANGE_ERRORS:
                # status unchanged; the next tick retries
                slog.exception("entry_failed")

    # ── Close / TTL pass ──────────────────────────────────────

    async def close_pass(self, now: datetime | None = None) -> None:
        """Reconcile OPEN signals with the exchange and expire stale ones.

        No working orders and a flat position → CLOSED_AUTO. No working orders
        but a live position → ERROR, flagged unprotected. Past the order TTL →
        force-close. Unprotected ERROR signals get the same TTL force-close.
        """
        now = now or _utcnow()
        ttl = timedelta(seconds=self.config.budget.order_ttl_s)
        positions: dict[str, Decimal] | None = None

        for signal in self.store.find_by_status(SignalStatus.OPEN):
            slog = signal_logger(log, signal)
            if self.executor.legs.has_pending(signal.id):
                slog.debug("protective_legs_pending")
                continue
            try:
                open_orders = await self.gateway.get_open_orders(signal.symbol)
                if not open_orders and positions is None:
                    positions = position_amounts(await self.gateway.get_positions())
            except EXCHANGE_ERRORS:
                slog.exception("close_check_failed")
                continue

            if not open_orders:
                amount = positions.get(signal.symbol)
                if amount:
                    slog.error("position_unprotected", position=float(amount))
                    self.store.transition(
                        signal,
                        SignalStatus.ERROR,
                        message="position open without protective orders",
                        unprotected=True,
                        now=signal.updated_at,
                    )
                else:
                    self.store.transition(signal, SignalStatus.CLOSED_AUTO)
                continue

            if ttl_expired(signal, now, ttl):
                slog.info("order_ttl_expired", updated_at=signal.updated_at.isoformat())
                await self.force_close(signal)

        await self._sweep_unprotected(now, ttl)

    async def _sweep_unprotected(self, now: datetime, ttl: timedelta) -> None:
        expired = [s for s in self.store.find_unprotected() if ttl_expired(s, now, ttl)]
        if not expired:
            return
        try:
            positions = position_amounts(await self.gateway.get_positions())
        except EXCHANGE_ERRORS:
            log.exception("unprotected_sweep_positions_failed")
            return

        for signal in expired:
            slog = signal_logger(log, signal)
            if not positions.get(signal.symbol):
                outcome = "position already flat"
            else:
                slog.warning("unprotected_ttl_expired")
                errors = await self._close_position(signal)
                if errors:
                    outcome = f"TTL close failed: {', '.join(errors)}"
                else:
                    outcome = "position closed after TTL"
            self.store.settle(signal, unprotected=False, message=f"{signal.message}, {outcome}")

    async def _close_position(self, signal: Signal) -> list[str]:
        """Cancel the symbol's working orders and flatten the signal's quantity.

        Returns the exchange errors met on the way (empty on success).
        """
        errors: list[str] = []
        try:
            res = await self.gateway.cancel_all_orders(signal.symbol)
            if res.get("code") != 200:
                errors.append(str(res.get("msg")))
            ack = (await self.gateway.place_orders([
                MarketOrder.close(signal.symbol, signal.side, signal.quantity),
            ]) or [{}])[0]
            if not ack.get("orderId"):
                errors.append(str(ack.get("msg")))
        except EXCHANGE_ERRORS as exc:
            errors.append(_error_text(exc))
        return errors

    async def force_close(self, signal: Signal) -> Signal | None:
        """Close an OPEN signal's position: CLOSED on success, else ERROR."""
        errors = await self._close_position(signal)
        if errors:
            return self.store.transition(signal, SignalStatus.ERROR, message=", ".join(errors))
        return self.store.transition(signal, SignalStatus.CLOSED)

    # ── Instrument refresh ────────────────────────────────────

    async def refresh_instruments(self) -> int:
        """Fetch and store the full exchange rule set; returns the symbol count."""
        rules = await self.gateway.get_exchange_rules()
        self.store.save_instrument_snapshot(rules)
        log.info("instruments_refreshed", symbols=len(rules))
        return len(rules)

    # ── Emergency close ───────────────────────────────────────

    async def force_close_all(self) -> None:
        """Flatten every exchange position, then settle OPEN and WAITING signals.

        A symbol whose liquidation was not acknowledged (or every symbol, if
        positions could not be read) keeps its protective orders and its
        signals go to ERROR with the reason.
        """
        log.warning("force_close_all")
        positions_error: str | None = None
        still_open: dict[str, str] = {}
        try:
            positions = await self.gateway.get_positions()
        except EXCHANGE_ERRORS as exc:
            log.exception("positions_failed")
            positions_error = f"positions unavailable: {_error_text(exc)}"
            positions = []

        for pos in positions:
            amount = Decimal(str(pos.get("positionAmt", "0")))
            if amount == 0:
                continue
            symbol = pos["symbol"]
            side = "BUY" if amount < 0 else "SELL"
            order = MarketOrder(symbol=symbol, side=side, quantity=abs(amount), reduce_only=True)
            try:
                ack = (await self.gateway.place_orders([order]) or [{}])[0]
            except EXCHANGE_ERRORS as exc:
                log.exception("position_liquidation_failed", symbol=symbol)
                still_open[symbol] = f"liquidation failed: {_error_text(exc)}"
                continue
            if not ack.get("orderId"):
                log.error("position_liquidation_rejected", symbol=symbol, response=ack)
                still_open[symbol] = f"liquidation failed: {ack.get('msg')}"
                continue
            log.info("position_liquidated", symbol=symbol, amount=float(amount),
                     order_id=ack["orderId"])

        signals = self.store.find_by_status([SignalStatus.OPEN, SignalStatus.WAITING])
        if not signals:
            log.info("no_signals_to_close")
            return

        for signal in signals:
            slog = signal_logger(log, signal)
            reason = positions_error or still_open.get(signal.symbol)
            if reason is not None:
                slog.error("force_close_position_may_be_open", reason=reason)
                self.store.transition(signal, SignalStatus.ERROR, message=reason)
                continue
            try:
                open_orders = await self.gateway.get_open_orders(signal.symbol)
                if not open_orders:
                    self.store.transition(signal, SignalStatus.CLOSED_AUTO)
                    continue
                await self.gateway.cancel_all_orders(signal.symbol)
            except EXCHANGE_ERRORS as exc:
                slog.exception("force_close_signal_failed")
                self.store.transition(signal, SignalStatus.ERROR, message=_error_text(exc))
                continue
            self.store.transition(signal, SignalStatus.CLOSED)
