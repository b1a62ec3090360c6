"""Deduction calculator.

Pure and side-effect free: the same gross pay, exemptions and settings
always give the same breakdown, so regenerating a payroll record is
deterministic and auditable.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from crewpay.calculators.types import (
    ZERO,
    DeductionRuleType,
    DeductionSettings,
    quantize_money,
)
from crewpay.errors import IntegrityGuardError, ValidationError

HUNDRED = Decimal("100")
NIB_LINE = "NIB"


@dataclass(frozen=True)
class DeductionLine:
    name: str
    amount: Decimal


@dataclass(frozen=True)
class DeductionBreakdown:
    nib_deduction: Decimal
    other_deductions: Decimal
    lines: tuple[DeductionLine, ...] = ()

    @property
    def total_deductions(self) -> Decimal:
        return self.nib_deduction + self.other_deductions


def _check_percentage(name: str, rate: Decimal) -> None:
    if rate < 0 or rate > HUNDRED:
        raise ValidationError(
            f"Deduction rate for '{name}' must be between 0 and 100",
            {"deduction": name, "rate": str(rate)},
        )


def calculate_nib(
    gross_pay: Decimal, settings: DeductionSettings, exempt: bool = False
) -> Decimal:
    """NIB deduction: rate percent of gross, capped at the insurable ceiling."""
    if exempt or not settings.nib_enabled:
        return ZERO
    _check_percentage(NIB_LINE, settings.nib_rate)

    insurable = gross_pay
    if settings.nib_insurable_ceiling is not None:
        if settings.nib_insurable_ceiling < 0:
            raise ValidationError("NIB insurable ceiling cannot be negative")
        insurable = min(gross_pay, settings.nib_insurable_ceiling)
    return quantize_money(insurable * settings.nib_rate / HUNDRED)


def calculate_deductions(
    gross_pay: Decimal,
    settings: DeductionSettings,
    *,
    nib_exempt: bool = False,
    overtime_pay: Decimal = ZERO,
) -> DeductionBreakdown:
    """Compute NIB and other deductions for one payroll record.

    Percentage rules that do not apply to overtime are charged on
    ``gross_pay - overtime_pay``.
    """
    if gross_pay < 0:
        raise ValidationError("Gross pay cannot be negative", {"gross_pay": str(gross_pay)})
    if overtime_pay < 0 or overtime_pay > gross_pay:
        raise ValidationError(
            "Overtime pay must be between 0 and gross pay",
            {"gross_pay": str(gross_pay), "overtime_pay": str(overtime_pay)},
        )

    nib = calculate_nib(gross_pay, settings, exempt=nib_exempt)
    lines: list[DeductionLine] = []
    if nib > 0:
        lines.append(DeductionLine(NIB_LINE, nib))

    other = ZERO
    for rule in settings.rules:
        if not rule.is_active:
            continue
        if rule.value < 0:
            raise ValidationError(
                f"Deduction '{rule.name}' has a negative value",
                {"deduction": rule.name, "value": str(rule.value)},
            )
        if rule.rule_type == DeductionRuleType.PERCENTAGE:
            _check_percentage(rule.name, rule.value)
            base = gross_pay if rule.applies_to_overtime else gross_pay - overtime_pay
            amount = quantize_money(base * rule.value / HUNDRED)
        else:
            amount = quantize_money(rule.value)
        if amount > 0:
            lines.append(DeductionLine(rule.name, amount))
        other += amount

    breakdown = DeductionBreakdown(
        nib_deduction=nib, other_deductions=other, lines=tuple(lines)
    )
    if breakdown.total_deductions > gross_pay:
        raise IntegrityGuardError(
            "Deductions exceed gross pay",
            {
                "gross_pay": str(gross_pay),
                "total_deductions": str(breakdown.total_deductions),
            },
        )
    return breakdown
