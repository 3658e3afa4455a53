"""Signal lifecycle: sizing, entry, bracket execution, close and reconciliation."""

from signal_executor.lifecycle.controller import LifecycleController
from signal_executor.lifecycle.entry import EntryDecision, should_enter
from signal_executor.lifecycle.executor import BracketResult, OrderExecutor, ProtectiveLegQueue
from signal_executor.lifecycle.persistence import SignalStore
from signal_executor.lifecycle.sizing import calculate_quantity, resolve_budget, size

__all__ = [
    "BracketResult",
    "EntryDecision",
    "LifecycleController",
    "OrderExecutor",
    "ProtectiveLegQueue",
    "SignalStore",
    "calculate_quantity",
    "resolve_budget",
    "should_enter",
    "size",
]
