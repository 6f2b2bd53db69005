"""SQLAlchemy 2.0 ORM table definitions for the execution history store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  Stage
and log rows reference their execution with ``ON DELETE CASCADE`` so a purge
removes the whole history of an execution.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime column that always reads back in UTC.

    SQLite has no timezone support and returns naive values; those are
    stored as UTC and re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# SQLite only auto-increments INTEGER PRIMARY KEY columns.
_IdType = BigInteger().with_variant(Integer(), "sqlite")


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all history tables."""


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


class ExecutionTable(Base):
    """One row per pipeline run."""

    __tablename__ = "executions"

    id: Mapped[int] = mapped_column(_IdType, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    parameters: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_millis: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('IN_PROGRESS','SUCCESS','FAILED')",
            name="ck_executions_status",
        ),
        Index("ix_executions_job_id", "job_id"),
        Index("ix_executions_status", "status"),
        Index("ix_executions_start_time", "start_time"),
        Index("ix_executions_created_at", "created_at"),
    )


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


class ExecutionStageTable(Base):
    """Stage rows, ordered within their execution by ``stage_order`` (1-based)."""

    __tablename__ = "execution_stages"

    id: Mapped[int] = mapped_column(_IdType, primary_key=True, autoincrement=True)
    execution_id: Mapped[int] = mapped_column(
        ForeignKey("executions.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    start_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    parameters: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_millis: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stage_order: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','IN_PROGRESS','SUCCESS','FAILED')",
            name="ck_execution_stages_status",
        ),
        CheckConstraint("stage_order >= 1", name="ck_execution_stages_order"),
        UniqueConstraint("execution_id", "stage_order", name="uq_execution_stages_order"),
        Index("ix_execution_stages_execution_id", "execution_id"),
    )


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


class ExecutionLogTable(Base):
    """Log lines; ``stage_id`` is set only for stage-scoped lines."""

    __tablename__ = "execution_logs"

    id: Mapped[int] = mapped_column(_IdType, primary_key=True, autoincrement=True)
    execution_id: Mapped[int] = mapped_column(
        ForeignKey("executions.id", ondelete="CASCADE"),
        nullable=False,
    )
    stage_id: Mapped[int | None] = mapped_column(
        ForeignKey("execution_stages.id", ondelete="CASCADE"),
        nullable=True,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    log_level: Mapped[str] = mapped_column(String(16), nullable=False, default="INFO")

    __table_args__ = (
        CheckConstraint(
            "log_level IN ('INFO','WARN','ERROR')",
            name="ck_execution_logs_level",
        ),
        Index("ix_execution_logs_execution_id", "execution_id"),
        Index("ix_execution_logs_stage_id", "stage_id"),
        Index("ix_execution_logs_timestamp", "timestamp"),
        Index("ix_execution_logs_log_level", "log_level"),
    )
