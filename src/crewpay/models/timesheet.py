"""Timesheet model."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from crewpay.models.base import Base, UpdatedAtMixin


class Timesheet(Base, UpdatedAtMixin):
    """A worker's hours on one project for one date."""

    __tablename__ = "timesheet"

    timesheet_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    worker_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker.worker_id", ondelete="CASCADE"),
        nullable=False,
    )
    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("project.project_id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    clock_in: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clock_out: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    regular_hours: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    total_hours: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_pay: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    supervisor_approval: Mapped[str] = mapped_column(
        String, nullable=False, default="pending"
    )
    source: Mapped[str] = mapped_column(String, nullable=False, default="clock")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "worker_id", "project_id", "date", name="timesheet_worker_project_date_unique"
        ),
        CheckConstraint(
            "supervisor_approval IN ('pending', 'approved', 'rejected')",
            name="timesheet_approval_check",
        ),
        CheckConstraint("source IN ('clock', 'manual')", name="timesheet_source_check"),
        CheckConstraint("regular_hours >= 0", name="timesheet_regular_hours_check"),
        CheckConstraint("overtime_hours >= 0", name="timesheet_overtime_hours_check"),
        Index("ix_timesheet_worker_date", "worker_id", "date"),
    )

    @property
    def is_approved(self) -> bool:
        return self.supervisor_approval == "approved"
