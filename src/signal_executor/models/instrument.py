"""Exchange trading-rule snapshot for one instrument."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class InstrumentInfo(BaseModel):
    symbol: str
    price_precision: int = Field(ge=0)
    quantity_precision: int = Field(ge=0)

    @classmethod
    def from_exchange(cls, payload: dict[str, Any]) -> InstrumentInfo:
        """Build from one entry of the /fapi/v1/exchangeInfo ``symbols`` list."""
        return cls(
            symbol=payload["symbol"],
            price_precision=int(payload["pricePrecision"]),
            quantity_precision=int(payload["quantityPrecision"]),
        )
