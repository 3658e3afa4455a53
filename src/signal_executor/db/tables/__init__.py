"""Import all table modules so Base.metadata knows about them."""

from signal_executor.db.tables.instruments import InstrumentSnapshotRow
from signal_executor.db.tables.signals import SignalRow

__all__ = ["InstrumentSnapshotRow", "SignalRow"]
