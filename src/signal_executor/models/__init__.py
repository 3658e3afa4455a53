"""Pydantic domain models."""

from signal_executor.models.budget import CapitalBudget
from signal_executor.models.instrument import InstrumentInfo
from signal_executor.models.market import Candle
from signal_executor.models.orders import (
    MarketOrder,
    OrderSpec,
    StopMarketOrder,
    TakeProfitMarketOrder,
    TrailingStopMarketOrder,
)
from signal_executor.models.signal import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    Side,
    Signal,
    SignalRequest,
    SignalStatus,
)

__all__ = [
    "ACTIVE_STATUSES",
    "Candle",
    "CapitalBudget",
    "InstrumentInfo",
    "MarketOrder",
    "OrderSpec",
    "Side",
    "Signal",
    "SignalRequest",
    "SignalStatus",
    "StopMarketOrder",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "TakeProfitMarketOrder",
    "TrailingStopMarketOrder",
]
