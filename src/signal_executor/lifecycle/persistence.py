"""Signal store: signal rows and instrument snapshots.

Every status change goes through ``transition``, which only writes if the row
still has the status and version the caller read. Overlapping passes (or a
force-close racing a scheduled pass) therefore cannot clobber each other; the
loser gets ``None`` back and moves on.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import desc, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from signal_executor.db.tables.instruments import InstrumentSnapshotRow
from signal_executor.db.tables.signals import SignalRow
from signal_executor.errors import InvalidTransition
from signal_executor.models import (
    ACTIVE_STATUSES,
    InstrumentInfo,
    Signal,
    SignalRequest,
    SignalStatus,
)

log = structlog.get_logger("signal_store")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignalStore:
    """Short-lived session per operation; returned Signals are detached values."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._sessions = session_factory

    # ── Signals ───────────────────────────────────────────────

    def create_signal(self, request: SignalRequest, now: datetime | None = None) -> Signal:
        """Insert a NEW signal and return it."""
        now = now or _utcnow()
        row = SignalRow(
            symbol=request.symbol,
            side=request.side.value,
            reference_price=request.price,
            quantity=0,
            status=SignalStatus.NEW.value,
            message="",
            order_id=0,
            version=0,
            unprotected=False,
            created_at=now,
            updated_at=now,
        )
        with self._sessions() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            signal = Signal.model_validate(row)
        log.info("signal_stored", signal_id=signal.id, symbol=signal.symbol,
                 side=signal.side.value, reference_price=float(signal.reference_price))
        return signal

    def get(self, signal_id: int) -> Signal | None:
        with self._sessions() as session:
            row = session.get(SignalRow, signal_id)
            return Signal.model_validate(row) if row is not None else None

    def find_by_status(self, status: SignalStatus | Iterable[SignalStatus]) -> list[Signal]:
        """Signals in *status* (one or several), oldest first."""
        statuses = [status] if isinstance(status, SignalStatus) else list(status)
        with self._sessions() as session:
            rows = session.execute(
                select(SignalRow)
                .where(SignalRow.status.in_([s.value for s in statuses]))
                .order_by(SignalRow.created_at, SignalRow.id)
            ).scalars().all()
            return [Signal.model_validate(r) for r in rows]

    def list_signals(self, status: SignalStatus | None = None, limit: int = 100) -> list[Signal]:
        """Most recent signals first, optionally filtered by status."""
        query = select(SignalRow).order_by(desc(SignalRow.id)).limit(limit)
        if status is not None:
            query = query.where(SignalRow.status == status.value)
        with self._sessions() as session:
            return [Signal.model_validate(r) for r in session.execute(query).scalars().all()]

    def count_in_flight(self) -> int:
        """Number of signals that hold or may take capital (NEW, WAITING, OPEN)."""
        with self._sessions() as session:
            return session.execute(
                select(func.count())
                .select_from(SignalRow)
                .where(SignalRow.status.in_([s.value for s in ACTIVE_STATUSES]))
            ).scalar_one()

    def transition(
        self,
        signal: Signal,
        new_status: SignalStatus,
        *,
        now: datetime | None = None,
        **changes: Any,
    ) -> Signal | None:
        """Move *signal* to *new_status*, applying *changes* in the same write.

        Returns the updated Signal, or None if the row changed since *signal*
        was read (another pass got there first).
        """
        if not signal.can_transition(new_status):
            raise InvalidTransition(signal.status.value, new_status.value)

        now = now or _utcnow()
        if not self._compare_and_swap(signal, new_status, now, changes):
            return None

        log.info(
            "signal_transition",
            signal_id=signal.id,
            symbol=signal.symbol,
            from_status=signal.status.value,
            to_status=new_status.value,
            message=changes.get("message"),
        )
        return signal.model_copy(update={
            "status": new_status,
            "version": signal.version + 1,
            "updated_at": now,
            **changes,
        })

    def settle(
        self,
        signal: Signal,
        *,
        now: datetime | None = None,
        **changes: Any,
    ) -> Signal | None:
        """Apply *changes* without moving status (bookkeeping on ERROR rows).

        Same compare-and-swap guard as ``transition``.
        """
        now = now or _utcnow()
        if not self._compare_and_swap(signal, signal.status, now, changes):
            return None
        log.info("signal_settled", signal_id=signal.id, symbol=signal.symbol,
                 status=signal.status.value, message=changes.get("message"))
        return signal.model_copy(update={
            "version": signal.version + 1,
            "updated_at": now,
            **changes,
        })

    def find_unprotected(self) -> list[Signal]:
        """ERROR signals whose entry may still be open without stop-loss coverage."""
        with self._sessions() as session:
            rows = session.execute(
                select(SignalRow)
                .where(
                    SignalRow.status == SignalStatus.ERROR.value,
                    SignalRow.unprotected.is_(True),
                )
                .order_by(SignalRow.updated_at, SignalRow.id)
            ).scalars().all()
            return [Signal.model_validate(r) for r in rows]

    def _compare_and_swap(
        self,
        signal: Signal,
        new_status: SignalStatus,
        now: datetime,
        changes: dict[str, Any],
    ) -> bool:
        stmt = (
            update(SignalRow)
            .where(
                SignalRow.id == signal.id,
                SignalRow.status == signal.status.value,
                SignalRow.version == signal.version,
            )
            .values(**{
                "status": new_status.value,
                "version": SignalRow.version + 1,
                "updated_at": now,
                **changes,
            })
        )
        with self._sessions() as session:
            result = session.execute(stmt)
            session.commit()

        if result.rowcount != 1:
            log.warning(
                "signal_transition_conflict",
                signal_id=signal.id,
                expected_status=signal.status.value,
                expected_version=signal.version,
                requested_status=new_status.value,
            )
            return False
        return True

    # ── Instrument snapshots ──────────────────────────────────

    def save_instrument_snapshot(
        self,
        rules: list[dict[str, Any]],
        now: datetime | None = None,
    ) -> int:
        """Store a full exchange rule list and return the snapshot id."""
        row = InstrumentSnapshotRow(fetched_at=now or _utcnow(), data=rules)
        with self._sessions() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.id

    def latest_instrument_snapshot(self) -> dict[str, InstrumentInfo]:
        """Instrument rules keyed by symbol from the newest snapshot ({} if none)."""
        with self._sessions() as session:
            row = session.execute(
                select(InstrumentSnapshotRow)
                .order_by(desc(InstrumentSnapshotRow.fetched_at), desc(InstrumentSnapshotRow.id))
                .limit(1)
            ).scalar_one_or_none()
            data = list(row.data) if row is not None else []

        instruments: dict[str, InstrumentInfo] = {}
        for entry in data:
            try:
                info = InstrumentInfo.from_exchange(entry)
            except (KeyError, TypeError, ValueError):
                log.debug("instrument_unparseable", entry=entry)
                continue
            instruments[info.symbol] = info
        return instruments
