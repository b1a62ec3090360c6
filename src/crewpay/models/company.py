"""Company settings and deduction rule models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from crewpay.models.base import Base, TimestampMixin


class Company(Base, TimestampMixin):
    """Company holding the payroll and timesheet settings."""

    __tablename__ = "company"

    company_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)

    # NIB (statutory social-insurance deduction)
    nib_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    nib_rate: Mapped[Decimal] = mapped_column(
        Numeric(7, 4), nullable=False, default=Decimal("3.9000")
    )
    nib_insurable_ceiling: Mapped[Decimal | None] = mapped_column(
        Numeric(14, 2), nullable=True
    )

    # Hours and overtime
    overtime_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("1.50")
    )
    standard_day_hours: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("8.00")
    )
    rounding_policy: Mapped[str] = mapped_column(
        String, nullable=False, default="standard"
    )
    round_to_standard_day: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    # Pay periods (week_start_day uses date.weekday(): 0=Monday .. 6=Sunday)
    period_type: Mapped[str] = mapped_column(String, nullable=False, default="weekly")
    week_start_day: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    period_anchor_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Payments
    payment_basis: Mapped[str] = mapped_column(String, nullable=False, default="net_pay")
    require_full_settlement: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    __table_args__ = (
        CheckConstraint(
            "rounding_policy IN ('no_rounding', 'quarter_hour', 'exact_minute', 'standard')",
            name="company_rounding_policy_check",
        ),
        CheckConstraint(
            "period_type IN ('weekly', 'biweekly', 'monthly')",
            name="company_period_type_check",
        ),
        CheckConstraint(
            "week_start_day BETWEEN 0 AND 6", name="company_week_start_day_check"
        ),
        CheckConstraint(
            "payment_basis IN ('net_pay', 'gross_pay')",
            name="company_payment_basis_check",
        ),
    )


class DeductionRule(Base, TimestampMixin):
    """Company-level flat or percentage deduction."""

    __tablename__ = "deduction_rule"

    deduction_rule_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    rule_type: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    applies_to_overtime: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "rule_type IN ('percentage', 'fixed')",
            name="deduction_rule_type_check",
        ),
        CheckConstraint("value >= 0", name="deduction_rule_value_check"),
    )
