"""Payroll record and payment ledger models."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from crewpay.models.base import Base, TimestampMixin, UpdatedAtMixin

ZERO = Decimal("0")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PayrollRecord(Base, UpdatedAtMixin):
    """Aggregated pay obligation for one worker and one pay period.

    Upserted by (worker_id, pay_period_start, pay_period_end); the derived
    money columns are recomputed by the aggregator, total_paid and
    remaining_balance by the payment ledger.
    """

    __tablename__ = "payroll_record"

    payroll_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    worker_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker.worker_id", ondelete="CASCADE"),
        nullable=False,
    )
    project_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("project.project_id", ondelete="SET NULL"),
        nullable=True,
    )
    pay_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    pay_period_end: Mapped[date] = mapped_column(Date, nullable=False)

    regular_hours: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, default=ZERO)
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, default=ZERO)
    total_hours: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, default=ZERO)

    gross_pay: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=ZERO)
    nib_deduction: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=ZERO)
    other_deductions: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=ZERO
    )
    total_deductions: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=ZERO
    )
    net_pay: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=ZERO)

    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    payment_basis: Mapped[str] = mapped_column(String, nullable=False, default="net_pay")
    total_paid: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=ZERO)
    remaining_balance: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=ZERO
    )

    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "worker_id",
            "pay_period_start",
            "pay_period_end",
            name="payroll_record_worker_period_unique",
        ),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'paid', 'void')",
            name="payroll_record_status_check",
        ),
        CheckConstraint(
            "payment_basis IN ('net_pay', 'gross_pay')",
            name="payroll_record_basis_check",
        ),
        CheckConstraint(
            "pay_period_end >= pay_period_start", name="payroll_record_dates_check"
        ),
        CheckConstraint("total_paid >= 0", name="payroll_record_total_paid_check"),
        CheckConstraint(
            "remaining_balance >= 0", name="payroll_record_remaining_balance_check"
        ),
    )

    @property
    def basis_amount(self) -> Decimal:
        """Amount the ledger is settled against (net or gross pay)."""
        if self.payment_basis == "gross_pay":
            return self.gross_pay
        return self.net_pay


class PayrollPayment(Base, TimestampMixin):
    """Append-only ledger entry against a payroll record."""

    __tablename__ = "payroll_payment"

    payment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_record.payroll_id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="completed")
    entry_type: Mapped[str] = mapped_column(String, nullable=False, default="payment")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Microsecond ordering of ledger entries; created_at is server time.
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="payroll_payment_amount_check"),
        CheckConstraint(
            "status IN ('completed', 'void')", name="payroll_payment_status_check"
        ),
        CheckConstraint(
            "entry_type IN ('payment', 'adjustment', 'settlement')",
            name="payroll_payment_entry_type_check",
        ),
        Index("ix_payroll_payment_payroll", "payroll_id"),
    )
