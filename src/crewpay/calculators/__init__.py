"""Pure time-to-pay calculators."""

from crewpay.calculators.deductions import DeductionBreakdown, calculate_deductions
from crewpay.calculators.periods import pay_period_for, validate_pay_period
from crewpay.calculators.rounding import TimesheetRoundingEngine, round_hours

__all__ = [
    "DeductionBreakdown",
    "TimesheetRoundingEngine",
    "calculate_deductions",
    "pay_period_for",
    "round_hours",
    "validate_pay_period",
]
