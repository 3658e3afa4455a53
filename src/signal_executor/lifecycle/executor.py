"""Order executor: market entry plus protective legs.

The entry is placed inline. The stop-loss and take-profit (or trailing stop)
legs are queued on ``ProtectiveLegQueue`` to go out shortly after the entry
acknowledgement, each with exactly one retry. A leg that fails twice flags
the signal ERROR; it is never only logged. Unless the entry was unwound, the
ERROR signal is also marked ``unprotected`` and keeps its OPEN-time
``updated_at``, so the close pass force-closes it once the order TTL runs out.
"""

from __future__ import annotations

import asyncio
import json
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from signal_executor.errors import EXCHANGE_ERRORS, OrderRejected, ProtectiveLegFailed
from signal_executor.exchange import ExchangeGateway
from signal_executor.lifecycle.persistence import SignalStore
from signal_executor.lifecycle.sizing import (
    calculate_stop_price,
    calculate_take_profit_price,
    round_to_precision,
)
from signal_executor.models import (
    CapitalBudget,
    InstrumentInfo,
    MarketOrder,
    OrderSpec,
    Signal,
    SignalStatus,
    StopMarketOrder,
    TakeProfitMarketOrder,
    TrailingStopMarketOrder,
)
from signal_executor.models.orders import describe

log = structlog.get_logger("order_executor")

LEG_ATTEMPTS = 2


@dataclass
class LegJob:
    """One protective order waiting to be placed."""

    signal: Signal
    order: OrderSpec
    budget: CapitalBudget
    not_before: float
    future: asyncio.Future = field(default=None, repr=False)  # type: ignore[assignment]


@dataclass
class BracketResult:
    order_id: int
    quantity: Decimal
    signal: Signal | None
    legs: list[asyncio.Future] = field(default_factory=list)


class ProtectiveLegQueue:
    """Single-worker queue that places delayed protective legs in order."""

    def __init__(self, handler: Callable[[LegJob], Awaitable[Any]]) -> None:
        self._handler = handler
        self._queue: asyncio.Queue[LegJob] | None = None
        self._worker: asyncio.Task | None = None
        self._pending: Counter[int] = Counter()

    def start(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="protective-legs")

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    def submit(self, job: LegJob) -> asyncio.Future:
        """Enqueue *job*; the returned future resolves with the order ack."""
        self.start()
        job.future = asyncio.get_running_loop().create_future()
        self._pending[job.signal.id] += 1
        self._queue.put_nowait(job)
        return job.future

    def has_pending(self, signal_id: int) -> bool:
        return self._pending[signal_id] > 0

    async def join(self) -> None:
        """Wait until every submitted leg has finished, successfully or not."""
        if self._queue is not None:
            await self._queue.join()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            job = await self._queue.get()
            try:
                delay = job.not_before - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)
                result = await self._handler(job)
            except Exception as exc:
                if not job.future.done():
                    job.future.set_exception(exc)
            else:
                if not job.future.done():
                    job.future.set_result(result)
            finally:
                self._pending[job.signal.id] -= 1
                if self._pending[job.signal.id] <= 0:
                    del self._pending[job.signal.id]
                self._queue.task_done()


def _failure_message(exc: BaseException) -> str:
    if isinstance(exc, OrderRejected):
        return json.dumps(exc.payload, default=str)
    return str(exc)


class OrderExecutor:
    """Places brackets for entering signals and supervises their legs."""

    def __init__(
        self,
        gateway: ExchangeGateway,
        store: SignalStore,
        *,
        margin_type: str = "ISOLATED",
        leg_delay_s: float = 3.0,
        retry_wait_s: float = 1.0,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.margin_type = margin_type
        self.leg_delay_s = leg_delay_s
        self.retry_wait_s = retry_wait_s
        self.legs = ProtectiveLegQueue(self._place_leg)

    async def submit(self, order: OrderSpec) -> dict[str, Any]:
        """Place a single order, raising OrderRejected if it wasn't accepted."""
        results = await self.gateway.place_orders([order])
        ack = results[0] if results else None
        if not isinstance(ack, dict) or not ack.get("orderId"):
            log.error("order_rejected", order=describe(order), response=ack)
            raise OrderRejected(ack)
        return ack

    def protective_orders(
        self,
        signal: Signal,
        quantity: Decimal,
        instrument: InstrumentInfo,
        budget: CapitalBudget,
    ) -> list[OrderSpec]:
        """Stop-loss leg plus take-profit (or trailing) leg, both at bounds
        derived from the reference price."""
        stop = round_to_precision(
            calculate_stop_price(signal.side, signal.reference_price, budget.stop_loss_rate),
            instrument.price_precision,
        )
        take_profit = round_to_precision(
            calculate_take_profit_price(signal.side, signal.reference_price, budget.take_profit_rate),
            instrument.price_precision,
        )
        legs: list[OrderSpec] = [StopMarketOrder.protective(signal, stop)]
        if budget.trailing_rate:
            legs.append(TrailingStopMarketOrder.protective(
                signal, quantity, take_profit, budget.trailing_rate,
            ))
        else:
            legs.append(TakeProfitMarketOrder.protective(signal, take_profit))
        return legs

    async def place_bracket(
        self,
        signal: Signal,
        quantity: Decimal,
        entry_price: Decimal,
        instrument: InstrumentInfo,
        budget: CapitalBudget,
    ) -> BracketResult:
        """Enter *signal* at market and queue its protective legs.

        Exchange failures before the entry is acknowledged propagate and leave
        the signal untouched. Once acknowledged the signal moves to OPEN with
        the entry order id and quantity.
        """
        await self.gateway.set_leverage(signal.symbol, budget.leverage)
        await self.gateway.set_margin_type(signal.symbol, self.margin_type)

        log.info(
            "entry_submitting",
            signal_id=signal.id,
            symbol=signal.symbol,
            side=signal.side.value,
            price=float(entry_price),
            quantity=float(quantity),
        )
        ack = await self.submit(MarketOrder.entry(signal, quantity))
        order_id = int(ack["orderId"])

        opened = self.store.transition(
            signal, SignalStatus.OPEN, order_id=order_id, quantity=quantity, message="",
        )
        if opened is None:
            # The signal moved on (e.g. force-close-all) while the entry was in
            # flight. Its position is left to the close path.
            log.error("entry_filled_after_conflict", signal_id=signal.id, order_id=order_id)
            return BracketResult(order_id=order_id, quantity=quantity, signal=None)

        loop = asyncio.get_running_loop()
        futures = [
            self.legs.submit(LegJob(
                signal=opened,
                order=order,
                budget=budget,
                not_before=loop.time() + self.leg_delay_s,
            ))
            for order in self.protective_orders(opened, quantity, instrument, budget)
        ]
        log.info("bracket_opened", signal_id=signal.id, order_id=order_id, legs=len(futures))
        return BracketResult(order_id=order_id, quantity=quantity, signal=opened, legs=futures)

    async def _place_leg(self, job: LegJob) -> dict[str, Any]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(LEG_ATTEMPTS),
            wait=wait_fixed(self.retry_wait_s),
            retry=retry_if_exception_type(EXCHANGE_ERRORS),
            reraise=True,
            before_sleep=lambda state: log.warning(
                "protective_leg_retry",
                signal_id=job.signal.id,
                order=describe(job.order),
                error=str(state.outcome.exception()),
                attempt=state.attempt_number,
            ),
        )
        try:
            ack = await retrying(self.submit, job.order)
        except EXCHANGE_ERRORS as exc:
            failure = ProtectiveLegFailed(job.order.type, exc)
            await self._flag_leg_failure(job, failure)
            raise failure from exc
        log.info("protective_leg_placed", signal_id=job.signal.id,
                 order=describe(job.order), order_id=ack.get("orderId"))
        return ack

    async def _flag_leg_failure(self, job: LegJob, failure: ProtectiveLegFailed) -> None:
        signal = job.signal
        messages = [f"{failure.order_type}: {_failure_message(failure.cause)}"]
        flat = False

        if job.budget.unwind_on_leg_failure:
            flat, outcome = await self._unwind(signal)
            messages.append(outcome)

        current = self.store.get(signal.id)
        if current is None or current.status is not SignalStatus.OPEN:
            log.error(
                "protective_leg_failed_signal_moved",
                signal_id=signal.id,
                status=current.status.value if current else None,
                error=messages[0],
            )
            return
        # the order TTL keeps counting from the OPEN transition
        self.store.transition(
            current,
            SignalStatus.ERROR,
            message=", ".join(messages),
            unprotected=not flat,
            now=current.updated_at,
        )
        log.error("protective_leg_failed", signal_id=signal.id,
                  error=", ".join(messages), unprotected=not flat)

    async def _unwind(self, signal: Signal) -> tuple[bool, str]:
        """Cancel working orders and flatten the unprotected entry.

        Returns whether the close was acknowledged, and a message for the signal.
        """
        try:
            await self.gateway.cancel_all_orders(signal.symbol)
            await self.submit(MarketOrder.close(signal.symbol, signal.side, signal.quantity))
        except EXCHANGE_ERRORS as exc:
            outcome = f"unwind failed: {_failure_message(exc)}"
            log.error("entry_unwind_failed", signal_id=signal.id, error=outcome)
            return False, outcome
        log.warning("entry_unwound", signal_id=signal.id)
        return True, "entry unwound"
