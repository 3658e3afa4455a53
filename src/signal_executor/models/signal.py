"""Signal model, lifecycle statuses and the allowed-transition table."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def entry_side(self) -> str:
        """Exchange order side that opens a position in this direction."""
        return "BUY" if self is Side.LONG else "SELL"

    @property
    def exit_side(self) -> str:
        """Exchange order side that reduces a position in this direction."""
        return "SELL" if self is Side.LONG else "BUY"


class SignalStatus(str, Enum):
    NEW = "NEW"
    WAITING = "WAITING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    CLOSED_AUTO = "CLOSED_AUTO"
    MISSED_ORDER = "MISSED_ORDER"
    ERROR = "ERROR"
    PASSED = "PASSED"


# Statuses whose signals still hold, or may still take, exchange capital
ACTIVE_STATUSES = frozenset({SignalStatus.NEW, SignalStatus.WAITING, SignalStatus.OPEN})

TERMINAL_STATUSES = frozenset({
    SignalStatus.CLOSED,
    SignalStatus.CLOSED_AUTO,
    SignalStatus.MISSED_ORDER,
    SignalStatus.ERROR,
    SignalStatus.PASSED,
})

TRANSITIONS: dict[SignalStatus, frozenset[SignalStatus]] = {
    SignalStatus.NEW: frozenset({
        SignalStatus.WAITING,
        SignalStatus.PASSED,
        SignalStatus.ERROR,
    }),
    SignalStatus.WAITING: frozenset({
        SignalStatus.OPEN,
        SignalStatus.PASSED,
        SignalStatus.MISSED_ORDER,
        SignalStatus.ERROR,
        # force-close-all sweeps WAITING signals too
        SignalStatus.CLOSED,
        SignalStatus.CLOSED_AUTO,
    }),
    SignalStatus.OPEN: frozenset({
        SignalStatus.CLOSED,
        SignalStatus.CLOSED_AUTO,
        SignalStatus.ERROR,
    }),
    **{status: frozenset() for status in TERMINAL_STATUSES},
}


class Signal(BaseModel):
    """One trading intent and its execution record."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    symbol: str
    side: Side
    reference_price: Decimal
    quantity: Decimal = Decimal("0")
    status: SignalStatus = SignalStatus.NEW
    message: str = ""
    order_id: int = 0
    version: int = 0
    unprotected: bool = False
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        # some drivers hand back naive datetimes for timestamptz columns
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def can_transition(self, new_status: SignalStatus) -> bool:
        return new_status in TRANSITIONS[self.status]


class SignalRequest(BaseModel):
    """Inbound signal payload as posted by the webhook caller."""

    symbol: str = Field(min_length=1)
    side: Side
    price: Decimal = Field(gt=0)

    @field_validator("symbol")
    @classmethod
    def _normalise_symbol(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("side", mode="before")
    @classmethod
    def _normalise_side(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v
