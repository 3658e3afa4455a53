"""SQLAlchemy ORM model for exchange trading-rule snapshots."""

from sqlalchemy import BigInteger
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from signal_executor.db.base import Base

SCHEMA = "signal_executor"


class InstrumentSnapshotRow(Base):
    """One full /exchangeInfo symbol list, as fetched at ``fetched_at``."""

    __tablename__ = "instrument_snapshots"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    fetched_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    data: Mapped[list] = mapped_column(JSONB, nullable=False)
