"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import BigInteger, Integer, JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import signal_executor.db.tables  # noqa: F401
from signal_executor.config.schema import AppConfig, BudgetConfig, ScheduleConfig
from signal_executor.db.base import Base
from signal_executor.lifecycle.controller import LifecycleController
from signal_executor.lifecycle.executor import OrderExecutor
from signal_executor.lifecycle.persistence import SignalStore
from signal_executor.models import Candle, OrderSpec, Side, SignalRequest, SignalStatus

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)

EXCHANGE_RULES = [
    {"symbol": "BTCUSDT", "pair": "BTCUSDT", "pricePrecision": 2, "quantityPrecision": 3},
    {"symbol": "ETHUSDT", "pair": "ETHUSDT", "pricePrecision": 2, "quantityPrecision": 3},
    {"symbol": "DOGEUSDT", "pair": "DOGEUSDT", "pricePrecision": 6, "quantityPrecision": 0},
]


@pytest.fixture
def session_factory():
    """In-memory SQLite session factory with all tables created.

    Patches JSONB→JSON and BigInteger→Integer for SQLite compatibility. The
    static pool keeps one connection so every session sees the same database.
    """
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # SQLite doesn't support schemas, JSONB, or BigInteger autoincrement
    for table in Base.metadata.tables.values():
        table.schema = None
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
            if isinstance(col.type, BigInteger):
                col.type = Integer()

    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    s = SignalStore(session_factory)
    s.save_instrument_snapshot(EXCHANGE_RULES, now=datetime(2020, 1, 1, tzinfo=timezone.utc))
    return s


def make_config(**budget) -> AppConfig:
    params = dict(
        max_capital=1000,
        max_pairs=2,
        leverage=10,
        take_profit_rate=0.04,
        stop_loss_rate=0.02,
        order_ttl_s=3600,
    )
    params.update(budget)
    return AppConfig(
        budget=BudgetConfig(**params),
        schedule=ScheduleConfig(leg_delay_s=0),
    )


def make_candles(closes: Sequence[float | str], start: datetime = NOW) -> list[Candle]:
    """Five-minute candles with the given closes, oldest first."""
    candles = []
    for i, close in enumerate(closes):
        open_time = start - timedelta(minutes=5 * (len(closes) - i))
        c = Decimal(str(close))
        candles.append(Candle(
            open_time=open_time,
            open=c,
            high=c,
            low=c,
            close=c,
            volume=Decimal("10"),
            close_time=open_time + timedelta(minutes=5) - timedelta(milliseconds=1),
        ))
    return candles


def add_signal(
    store: SignalStore,
    symbol: str = "BTCUSDT",
    side: str = "LONG",
    price: float | str = 50000,
    status: SignalStatus = SignalStatus.NEW,
    quantity: str = "0.100",
    now: datetime = NOW,
):
    """Insert a signal and walk it to *status* along legal transitions."""
    signal = store.create_signal(
        SignalRequest(symbol=symbol, side=Side(side), price=Decimal(str(price))),
        now=now,
    )
    path = {
        SignalStatus.NEW: [],
        SignalStatus.WAITING: [SignalStatus.WAITING],
        SignalStatus.OPEN: [SignalStatus.WAITING, SignalStatus.OPEN],
    }[status]
    for step in path:
        changes: dict[str, Any] = {"quantity": Decimal(quantity)}
        if step is SignalStatus.OPEN:
            changes["order_id"] = 4242
        signal = store.transition(signal, step, now=now, **changes)
    return signal


class FakeGateway:
    """In-memory exchange with scriptable responses per order type."""

    def __init__(self) -> None:
        self.balance = Decimal("5000")
        self.positions: list[dict[str, Any]] = []
        self.open_orders: dict[str, list[dict[str, Any]]] = {}
        self.mark_prices: dict[str, Decimal] = {"BTCUSDT": Decimal("50000")}
        self.candles: dict[str, list[Candle]] = {}
        self.rules = list(EXCHANGE_RULES)
        self.cancel_response: dict[str, Any] = {"code": 200, "msg": "done"}
        # order type -> queue of results (dict) or exceptions, consumed per call
        self.scripted: dict[str, list[Any]] = {}
        # method name -> exception raised on every call
        self.failures: dict[str, BaseException] = {}
        self.placed: list[OrderSpec] = []
        self.cancelled: list[str] = []
        self.leverage: dict[str, int] = {}
        self.margin: dict[str, str] = {}
        self.candle_requests: list[tuple[str, str, int]] = []
        self.closed = False
        self._next_id = 1000

    def _maybe_fail(self, name: str) -> None:
        if name in self.failures:
            raise self.failures[name]

    async def get_balance(self, asset: str = "USDT") -> Decimal:
        self._maybe_fail("get_balance")
        return self.balance

    async def get_positions(self) -> list[dict[str, Any]]:
        self._maybe_fail("get_positions")
        return self.positions

    async def get_open_orders(self, symbol: str) -> list[dict[str, Any]]:
        self._maybe_fail("get_open_orders")
        return self.open_orders.get(symbol, [])

    async def cancel_all_orders(self, symbol: str) -> dict[str, Any]:
        self._maybe_fail("cancel_all_orders")
        self.cancelled.append(symbol)
        return self.cancel_response

    async def place_orders(self, orders: Sequence[OrderSpec]) -> list[dict[str, Any]]:
        self._maybe_fail("place_orders")
        results = []
        for order in orders:
            self.placed.append(order)
            queue = self.scripted.get(order.type)
            if queue:
                outcome = queue.pop(0)
                if isinstance(outcome, BaseException):
                    raise outcome
                results.append(outcome)
                continue
            self._next_id += 1
            results.append({"orderId": self._next_id, "symbol": order.symbol, "type": order.type})
        return results

    async def get_mark_price(self, symbol: str) -> Decimal | None:
        self._maybe_fail("get_mark_price")
        return self.mark_prices.get(symbol)

    async def get_candles(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        self._maybe_fail("get_candles")
        self.candle_requests.append((symbol, interval, limit))
        return self.candles.get(symbol, [])

    async def get_exchange_rules(self) -> list[dict[str, Any]]:
        self._maybe_fail("get_exchange_rules")
        return self.rules

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        self.leverage[symbol] = leverage

    async def set_margin_type(self, symbol: str, margin_type: str) -> None:
        self.margin[symbol] = margin_type

    async def close(self) -> None:
        self.closed = True

    def placed_types(self) -> list[str]:
        return [o.type for o in self.placed]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def controller(config, gateway, store):
    executor = OrderExecutor(gateway, store, leg_delay_s=0, retry_wait_s=0)
    return LifecycleController(config, gateway, store, executor=executor)
