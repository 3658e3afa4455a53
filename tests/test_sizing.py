"""Tests for position sizing and bracket price math."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from signal_executor.config.schema import BudgetConfig
from signal_executor.lifecycle.sizing import (
    calculate_quantity,
    calculate_stop_price,
    calculate_take_profit_price,
    effective_pairs,
    resolve_budget,
    round_to_precision,
    size,
)
from signal_executor.models import CapitalBudget, InstrumentInfo, Side, Signal

from conftest import NOW, FakeGateway

BTC = InstrumentInfo(symbol="BTCUSDT", price_precision=2, quantity_precision=3)


def _budget(**overrides) -> CapitalBudget:
    params = dict(
        max_capital=Decimal("1000"),
        max_concurrent_pairs=2,
        leverage=10,
        take_profit_rate=Decimal("0.04"),
        stop_loss_rate=Decimal("0.02"),
        order_ttl=timedelta(hours=1),
    )
    params.update(overrides)
    return CapitalBudget(**params)


def _signal(side: Side = Side.LONG) -> Signal:
    return Signal(
        id=1, symbol="BTCUSDT", side=side, reference_price=Decimal("50000"),
        created_at=NOW, updated_at=NOW,
    )


class TestRounding:
    def test_half_up(self):
        assert round_to_precision(Decimal("0.1005"), 3) == Decimal("0.101")
        assert round_to_precision(Decimal("0.1004"), 3) == Decimal("0.100")

    def test_zero_precision(self):
        assert round_to_precision(Decimal("2.5"), 0) == Decimal("3")

    def test_keeps_trailing_zeros(self):
        assert str(round_to_precision(Decimal("49000"), 2)) == "49000.00"


class TestCalculateQuantity:
    def test_formula(self):
        qty = calculate_quantity(Decimal("1000"), 2, 10, Decimal("50000"), 3)
        assert qty == Decimal("0.100")

    def test_small_budget_rounds_to_zero(self):
        qty = calculate_quantity(Decimal("1"), 2, 1, Decimal("50000"), 3)
        assert qty == 0

    def test_non_positive_price_sizes_to_zero(self):
        assert calculate_quantity(Decimal("1000"), 2, 10, Decimal("0"), 3) == 0

    @pytest.mark.parametrize("low,high", [
        (Decimal("100"), Decimal("1000")),
        (Decimal("1000"), Decimal("5000")),
    ])
    def test_monotonic_in_capital(self, low, high):
        price = Decimal("1234.56")
        assert calculate_quantity(low, 2, 10, price, 3) <= calculate_quantity(high, 2, 10, price, 3)

    @pytest.mark.parametrize("cheap,dear", [
        (Decimal("0.5"), Decimal("0.75")),
        (Decimal("2500"), Decimal("50000")),
        (Decimal("49999.99"), Decimal("50000")),
    ])
    def test_higher_price_never_buys_more(self, cheap, dear):
        capital = Decimal("1000")
        assert calculate_quantity(capital, 2, 10, dear, 3) <= calculate_quantity(capital, 2, 10, cheap, 3)

    def test_doubling_price_halves_quantity(self):
        assert calculate_quantity(Decimal("1000"), 2, 10, Decimal("100000"), 3) == Decimal("0.050")

    @pytest.mark.parametrize("low,high", [(1, 2), (5, 10), (10, 125)])
    def test_monotonic_in_leverage(self, low, high):
        price = Decimal("3000")
        assert calculate_quantity(Decimal("1000"), 2, high, price, 3) >= \
            calculate_quantity(Decimal("1000"), 2, low, price, 3)

    def test_leverage_scales_notional(self):
        assert calculate_quantity(Decimal("1000"), 2, 20, Decimal("50000"), 3) == Decimal("0.200")

    def test_more_pairs_means_smaller_share(self):
        price = Decimal("2500")
        assert calculate_quantity(Decimal("1000"), 4, 10, price, 3) < \
            calculate_quantity(Decimal("1000"), 2, 10, price, 3)


class TestEffectivePairs:
    def test_configured_value_wins(self):
        assert effective_pairs(3, 10) == 3

    def test_falls_back_to_in_flight(self):
        assert effective_pairs(None, 4) == 4

    def test_never_below_one(self):
        assert effective_pairs(None, 0) == 1


class TestSize:
    def test_size_is_deterministic(self):
        signal = _signal()
        first = size(signal, Decimal("50000"), BTC, _budget(), 5)
        second = size(signal, Decimal("50000"), BTC, _budget(), 5)
        assert first == second == Decimal("0.100")

    def test_uses_in_flight_count_when_pairs_unset(self):
        qty = size(_signal(), Decimal("50000"), BTC, _budget(max_concurrent_pairs=None), 4)
        assert qty == Decimal("0.050")

    def test_price_rounded_before_division(self):
        # 49999.996 rounds to 50000.00 at two decimals
        qty = size(_signal(), Decimal("49999.996"), BTC, _budget(), 2)
        assert qty == Decimal("0.100")


class TestBracketPrices:
    def test_long_bounds(self):
        ref = Decimal("50000")
        assert calculate_stop_price(Side.LONG, ref, Decimal("0.02")) == Decimal("49000")
        assert calculate_take_profit_price(Side.LONG, ref, Decimal("0.04")) == Decimal("52000")

    def test_short_bounds_mirror(self):
        ref = Decimal("50000")
        assert calculate_stop_price(Side.SHORT, ref, Decimal("0.02")) == Decimal("51000")
        assert calculate_take_profit_price(Side.SHORT, ref, Decimal("0.04")) == Decimal("48000")


class TestResolveBudget:
    @pytest.mark.asyncio
    async def test_configured_capital(self):
        budget = await resolve_budget(BudgetConfig(max_capital=1000, max_pairs=2), FakeGateway())
        assert budget.max_capital == Decimal("1000")
        assert budget.max_concurrent_pairs == 2
        assert budget.stop_loss_rate == Decimal("0.02")
        assert budget.order_ttl == timedelta(hours=4)
        assert budget.trailing_rate is None

    @pytest.mark.asyncio
    async def test_live_balance_when_uncapped(self):
        gateway = FakeGateway()
        gateway.balance = Decimal("321.5")
        budget = await resolve_budget(BudgetConfig(), gateway)
        assert budget.max_capital == Decimal("321.5")
        assert budget.max_concurrent_pairs is None
