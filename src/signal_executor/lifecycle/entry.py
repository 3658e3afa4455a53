"""Entry evaluation for WAITING signals.

Two gates, both required:

* trend confirmation: no candle before the two most recent may have closed
  beyond the reference price against the signal. A violation means the move
  already happened without us, so the signal is missed for good.
* price band: the latest close has reached the reference in the signal's
  favour, and the live price sits strictly between the stop and take-profit
  bounds.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from enum import Enum

from signal_executor.lifecycle.sizing import calculate_stop_price, calculate_take_profit_price
from signal_executor.models import Candle, CapitalBudget, Side, Signal

# The two most recent candles are still forming the entry; they are not
# checked by the trend gate.
_UNCHECKED_TAIL = 2


class EntryDecision(str, Enum):
    ENTER = "ENTER"
    WAIT = "WAIT"
    MISSED = "MISSED"


def trend_confirmed(signal: Signal, candles: Sequence[Candle]) -> bool:
    for candle in candles[:-_UNCHECKED_TAIL]:
        if signal.side is Side.LONG and candle.close > signal.reference_price:
            return False
        if signal.side is Side.SHORT and candle.close < signal.reference_price:
            return False
    return True


def price_in_band(
    signal: Signal,
    candle_close: Decimal,
    current_price: Decimal,
    budget: CapitalBudget,
) -> bool:
    ref = signal.reference_price
    stop = calculate_stop_price(signal.side, ref, budget.stop_loss_rate)
    take_profit = calculate_take_profit_price(signal.side, ref, budget.take_profit_rate)

    if signal.side is Side.LONG:
        return candle_close >= ref and stop < current_price < take_profit
    return candle_close <= ref and take_profit < current_price < stop


def should_enter(
    signal: Signal,
    candles: Sequence[Candle],
    current_price: Decimal,
    budget: CapitalBudget,
) -> EntryDecision:
    if not candles:
        return EntryDecision.WAIT
    if not trend_confirmed(signal, candles):
        return EntryDecision.MISSED
    if price_in_band(signal, candles[-1].close, current_price, budget):
        return EntryDecision.ENTER
    return EntryDecision.WAIT
