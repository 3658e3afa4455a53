"""Per-pass capital allocation parameters."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class CapitalBudget(BaseModel):
    """Allocation parameters resolved at the start of a pass.

    ``max_capital`` is always concrete here (the live balance has already been
    substituted if the config leaves it unset). ``max_concurrent_pairs`` stays
    optional; the sizer falls back to the in-flight count.
    """

    model_config = ConfigDict(frozen=True)

    max_capital: Decimal = Field(ge=0)
    max_concurrent_pairs: int | None = None
    leverage: int = Field(ge=1)
    take_profit_rate: Decimal
    stop_loss_rate: Decimal
    trailing_rate: Decimal | None = None
    order_ttl: timedelta
    unwind_on_leg_failure: bool = False
