"""Pay period boundaries."""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from crewpay.calculators.types import PayPeriod, PayPeriodSettings, PeriodType
from crewpay.errors import ValidationError

# Monday 2024-01-01: default origin for biweekly windows without an anchor
DEFAULT_BIWEEKLY_ORIGIN = date(2024, 1, 1)


def _week_start(day: date, week_start_day: int) -> date:
    return day - timedelta(days=(day.weekday() - week_start_day) % 7)


def pay_period_for(day: date, settings: PayPeriodSettings) -> PayPeriod:
    """Snap a date to the canonical pay period containing it."""
    if not 0 <= settings.week_start_day <= 6:
        raise ValidationError(
            "week_start_day must be between 0 (Monday) and 6 (Sunday)",
            {"week_start_day": settings.week_start_day},
        )

    if settings.period_type == PeriodType.WEEKLY:
        start = _week_start(day, settings.week_start_day)
        return PayPeriod(start=start, end=start + timedelta(days=6))

    if settings.period_type == PeriodType.BIWEEKLY:
        origin = _week_start(
            settings.anchor_date or DEFAULT_BIWEEKLY_ORIGIN, settings.week_start_day
        )
        offset = (day - origin).days // 14
        start = origin + timedelta(days=offset * 14)
        return PayPeriod(start=start, end=start + timedelta(days=13))

    if settings.period_type == PeriodType.MONTHLY:
        last_day = calendar.monthrange(day.year, day.month)[1]
        return PayPeriod(
            start=day.replace(day=1), end=day.replace(day=last_day)
        )

    raise ValidationError(f"Unsupported period type '{settings.period_type}'")


def validate_pay_period(
    start: date, end: date, settings: PayPeriodSettings
) -> PayPeriod:
    """Check an explicit [start, end] range is a canonical pay period."""
    if end < start:
        raise ValidationError(
            "Pay period end is before start",
            {"pay_period_start": start.isoformat(), "pay_period_end": end.isoformat()},
        )
    canonical = pay_period_for(start, settings)
    if canonical.start != start or canonical.end != end:
        raise ValidationError(
            "Pay period does not match the configured period boundaries",
            {
                "pay_period_start": start.isoformat(),
                "pay_period_end": end.isoformat(),
                "expected_start": canonical.start.isoformat(),
                "expected_end": canonical.end.isoformat(),
            },
        )
    return canonical
