"""Market data models."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel


class Candle(BaseModel):
    """One candlestick bar."""

    open_time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    close_time: datetime

    @classmethod
    def from_kline(cls, row: list) -> Candle:
        """Parse a Binance kline array.

        Layout: [open_time, open, high, low, close, volume, close_time, ...]
        with times in epoch milliseconds and prices as strings.
        """
        return cls(
            open_time=datetime.fromtimestamp(row[0] / 1000, tz=timezone.utc),
            open=Decimal(str(row[1])),
            high=Decimal(str(row[2])),
            low=Decimal(str(row[3])),
            close=Decimal(str(row[4])),
            volume=Decimal(str(row[5])),
            close_time=datetime.fromtimestamp(row[6] / 1000, tz=timezone.utc),
        )
