"""Type definitions for the time-to-pay calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID

MONEY_QUANT = Decimal("0.01")
HOURS_QUANT = Decimal("0.0001")
ZERO = Decimal("0")


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def quantize_hours(hours: Decimal) -> Decimal:
    return hours.quantize(HOURS_QUANT, rounding=ROUND_HALF_UP)


class RoundingPolicy(str, Enum):
    """How raw clocked hours are rounded before the overtime split."""

    NO_ROUNDING = "no_rounding"
    QUARTER_HOUR = "quarter_hour"
    EXACT_MINUTE = "exact_minute"
    STANDARD = "standard"

    @classmethod
    def parse(cls, value: str | RoundingPolicy) -> RoundingPolicy:
        """Parse a policy name, accepting ``exact`` for ``exact_minute``."""
        if isinstance(value, cls):
            return value
        if value == "exact":
            return cls.EXACT_MINUTE
        return cls(value)


class ClockEventType(str, Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"


class PeriodType(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class PaymentBasis(str, Enum):
    """Which payroll amount payments are settled against."""

    NET_PAY = "net_pay"
    GROSS_PAY = "gross_pay"


class DeductionRuleType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True)
class ClockEventInput:
    """Flat clock event as seen by the rounding engine."""

    event_type: ClockEventType
    event_time: datetime


@dataclass(frozen=True)
class ClockPair:
    """A clock_in matched with its clock_out (or 'now' for an open shift)."""

    clock_in: datetime
    clock_out: datetime
    is_open: bool = False

    @property
    def seconds(self) -> int:
        return max(0, int((self.clock_out - self.clock_in).total_seconds()))


@dataclass(frozen=True)
class TimesheetPolicy:
    """Rounding and overtime configuration for one computation."""

    rounding: RoundingPolicy = RoundingPolicy.STANDARD
    round_to_standard_day: bool = True
    standard_day_hours: Decimal = Decimal("8")
    overtime_multiplier: Decimal = Decimal("1.5")


@dataclass(frozen=True)
class TimesheetComputation:
    """Result of turning one day of clock events into hours and pay."""

    clock_in: datetime | None
    clock_out: datetime | None
    break_minutes: int
    raw_hours: Decimal
    adjusted_hours: Decimal
    regular_hours: Decimal
    overtime_hours: Decimal
    hourly_rate: Decimal
    regular_pay: Decimal
    overtime_pay: Decimal
    is_open: bool = False
    pairs: tuple[ClockPair, ...] = ()

    @property
    def total_hours(self) -> Decimal:
        return self.regular_hours + self.overtime_hours

    @property
    def total_pay(self) -> Decimal:
        return self.regular_pay + self.overtime_pay


@dataclass(frozen=True)
class DeductionRuleConfig:
    """Company deduction rule (flat amount or percentage of pay)."""

    name: str
    rule_type: DeductionRuleType
    value: Decimal
    applies_to_overtime: bool = True
    is_active: bool = True


@dataclass(frozen=True)
class DeductionSettings:
    """NIB rate (percent) with optional per-period ceiling, plus other rules."""

    nib_enabled: bool = True
    nib_rate: Decimal = Decimal("3.9")
    nib_insurable_ceiling: Decimal | None = None
    rules: tuple[DeductionRuleConfig, ...] = ()


@dataclass(frozen=True)
class PayPeriodSettings:
    """Pay period boundary configuration.

    ``week_start_day`` follows ``date.weekday()`` (0=Monday .. 6=Sunday);
    the default 5 gives Saturday-Friday weeks.
    """

    period_type: PeriodType = PeriodType.WEEKLY
    week_start_day: int = 5
    anchor_date: date | None = None


@dataclass(frozen=True)
class PayPeriod:
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class PayrollSettings:
    """Company configuration injected into every pipeline call."""

    company_id: UUID
    timesheet_policy: TimesheetPolicy = field(default_factory=TimesheetPolicy)
    deductions: DeductionSettings = field(default_factory=DeductionSettings)
    periods: PayPeriodSettings = field(default_factory=PayPeriodSettings)
    payment_basis: PaymentBasis = PaymentBasis.NET_PAY
    require_full_settlement: bool = False


@dataclass(frozen=True)
class WorkerProfile:
    """Per-worker inputs to the pipeline."""

    worker_id: UUID
    company_id: UUID
    hourly_rate: Decimal
    nib_exempt: bool = False
