"""Position sizing and bracket price math: pure functions, no I/O.

``resolve_budget`` is the one exception: it may need the live balance when no
capital cap is configured, so it awaits the gateway once per pass.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from signal_executor.config.schema import BudgetConfig
from signal_executor.models import CapitalBudget, InstrumentInfo, Side, Signal

if TYPE_CHECKING:
    from signal_executor.exchange import ExchangeGateway


def round_to_precision(value: Decimal, precision: int) -> Decimal:
    """Round half-up to *precision* decimal places (fixed-point formatting)."""
    return value.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)


def effective_pairs(max_concurrent_pairs: int | None, in_flight_count: int) -> int:
    """Configured pair budget, else the number of signals in flight (min 1)."""
    if max_concurrent_pairs:
        return max_concurrent_pairs
    return max(1, in_flight_count)


def calculate_quantity(
    max_capital: Decimal,
    pairs: int,
    leverage: int,
    price: Decimal,
    quantity_precision: int,
) -> Decimal:
    """Order quantity for one pair's share of capital.

    quantity = round(max_capital / pairs * leverage / price, precision)
    """
    if price <= 0 or pairs <= 0:
        return round_to_precision(Decimal("0"), quantity_precision)
    raw = max_capital / Decimal(pairs) * Decimal(leverage) / price
    return round_to_precision(raw, quantity_precision)


def size(
    signal: Signal,
    current_price: Decimal,
    instrument: InstrumentInfo,
    budget: CapitalBudget,
    in_flight_count: int,
) -> Decimal:
    """Quantity for *signal* at *current_price*; zero means the signal is passed."""
    pairs = effective_pairs(budget.max_concurrent_pairs, in_flight_count)
    return calculate_quantity(
        max_capital=budget.max_capital,
        pairs=pairs,
        leverage=budget.leverage,
        price=round_to_precision(current_price, instrument.price_precision),
        quantity_precision=instrument.quantity_precision,
    )


def calculate_stop_price(side: Side, reference_price: Decimal, stop_loss_rate: Decimal) -> Decimal:
    """Stop-loss bound.

    LONG:  reference * (1 - rate)
    SHORT: reference * (1 + rate)
    """
    if side is Side.LONG:
        return reference_price * (1 - stop_loss_rate)
    return reference_price * (1 + stop_loss_rate)


def calculate_take_profit_price(
    side: Side,
    reference_price: Decimal,
    take_profit_rate: Decimal,
) -> Decimal:
    """Take-profit bound.

    LONG:  reference * (1 + rate)
    SHORT: reference * (1 - rate)
    """
    if side is Side.LONG:
        return reference_price * (1 + take_profit_rate)
    return reference_price * (1 - take_profit_rate)


async def resolve_budget(config: BudgetConfig, gateway: ExchangeGateway) -> CapitalBudget:
    """Build this pass's CapitalBudget, reading the live balance if uncapped."""
    if config.max_capital is not None:
        max_capital = Decimal(str(config.max_capital))
    else:
        max_capital = await gateway.get_balance("USDT")
    return CapitalBudget(
        max_capital=max_capital,
        max_concurrent_pairs=config.max_pairs,
        leverage=config.leverage,
        take_profit_rate=Decimal(str(config.take_profit_rate)),
        stop_loss_rate=Decimal(str(config.stop_loss_rate)),
        trailing_rate=Decimal(str(config.trailing_rate)) if config.trailing_rate else None,
        order_ttl=timedelta(seconds=config.order_ttl_s),
        unwind_on_leg_failure=config.unwind_on_leg_failure,
    )
