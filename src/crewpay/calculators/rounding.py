"""Timesheet rounding engine.

Turns one worker's clock events for one calendar day into a single
timesheet computation:

1) Pair consecutive clock_in -> clock_out events
2) Sum elapsed time across pairs (an open trailing clock_in is closed at
   ``now`` for live status only)
3) Apply the rounding policy to the raw hours
4) Split into regular and overtime hours at the standard day
5) Price regular hours at the rate, overtime at rate x multiplier

Everything here is pure; persistence lives in the timesheet service.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from crewpay.calculators.types import (
    ZERO,
    ClockEventInput,
    ClockEventType,
    ClockPair,
    RoundingPolicy,
    TimesheetComputation,
    TimesheetPolicy,
    quantize_hours,
    quantize_money,
)
from crewpay.errors import NoValidPairsError, ValidationError

SECONDS_PER_HOUR = Decimal("3600")
SHORT_SHIFT_HOURS = Decimal("0.5")
STANDARD_DAY_WINDOW = Decimal("0.15")
SNAP_DOWN_BAND = Decimal("0.5")


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so stored and live times compare."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def round_to_quarter(hours: Decimal) -> Decimal:
    return (hours * 4).quantize(Decimal("1"), rounding=ROUND_HALF_UP) / 4


def round_to_minute(hours: Decimal) -> Decimal:
    minutes = (hours * 60).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return quantize_hours(minutes / 60)


def round_hours(
    raw_hours: Decimal,
    policy: RoundingPolicy,
    round_to_standard_day: bool = True,
    standard_day_hours: Decimal = Decimal("8"),
) -> Decimal:
    """Apply a rounding policy to raw clocked hours."""
    if raw_hours < 0:
        raise ValidationError("Hours cannot be negative", {"raw_hours": str(raw_hours)})

    if policy == RoundingPolicy.NO_ROUNDING:
        return quantize_hours(raw_hours)
    if policy == RoundingPolicy.QUARTER_HOUR:
        return quantize_hours(round_to_quarter(raw_hours))
    if policy == RoundingPolicy.EXACT_MINUTE:
        return round_to_minute(raw_hours)

    # standard: short shifts are neither inflated nor truncated to a day
    if raw_hours < SHORT_SHIFT_HOURS:
        return round_to_minute(raw_hours)

    quarter = round_to_quarter(raw_hours)
    if round_to_standard_day:
        if (
            abs(raw_hours - standard_day_hours) <= STANDARD_DAY_WINDOW
            or abs(quarter - standard_day_hours) <= STANDARD_DAY_WINDOW
        ):
            return quantize_hours(standard_day_hours)
        if standard_day_hours < quarter < standard_day_hours + SNAP_DOWN_BAND:
            return quantize_hours(standard_day_hours)
    return quantize_hours(quarter)


def split_hours(
    adjusted_hours: Decimal, standard_day_hours: Decimal = Decimal("8")
) -> tuple[Decimal, Decimal]:
    """Split adjusted hours into (regular, overtime)."""
    regular = min(adjusted_hours, standard_day_hours)
    overtime = max(ZERO, adjusted_hours - standard_day_hours)
    return quantize_hours(regular), quantize_hours(overtime)


def pair_clock_events(
    events: Iterable[ClockEventInput], now: datetime | None = None
) -> list[ClockPair]:
    """Pair consecutive clock_in -> clock_out events in time order.

    A clock_in followed by another clock_in is superseded by the later one;
    a clock_out without an open clock_in is ignored. A trailing clock_in is
    closed at ``now`` (and flagged open) only when ``now`` is given.
    """
    ordered = sorted(events, key=lambda e: as_utc(e.event_time))
    pairs: list[ClockPair] = []
    open_in: datetime | None = None

    for event in ordered:
        event_time = as_utc(event.event_time)
        if event.event_type == ClockEventType.CLOCK_IN:
            open_in = event_time
        elif open_in is not None:
            pairs.append(ClockPair(clock_in=open_in, clock_out=event_time))
            open_in = None

    if open_in is not None and now is not None:
        now = as_utc(now)
        if now >= open_in:
            pairs.append(ClockPair(clock_in=open_in, clock_out=now, is_open=True))
    return pairs


def has_open_shift(events: Iterable[ClockEventInput]) -> bool:
    """True when the last clock event of the day is an unmatched clock_in."""
    ordered = sorted(events, key=lambda e: as_utc(e.event_time))
    return bool(ordered) and ordered[-1].event_type == ClockEventType.CLOCK_IN


class TimesheetRoundingEngine:
    """Computes hours and pay for one worker-day under a TimesheetPolicy."""

    def __init__(self, policy: TimesheetPolicy):
        self.policy = policy

    def round_hours(self, raw_hours: Decimal) -> Decimal:
        return round_hours(
            raw_hours,
            self.policy.rounding,
            self.policy.round_to_standard_day,
            self.policy.standard_day_hours,
        )

    def compute(
        self,
        events: Iterable[ClockEventInput],
        hourly_rate: Decimal,
        now: datetime | None = None,
    ) -> TimesheetComputation:
        """Compute a day's timesheet from clock events.

        Raises NoValidPairsError when there is neither a completed pair nor
        (with ``now``) a live open shift.
        """
        pairs = pair_clock_events(events, now=now)
        if not pairs:
            raise NoValidPairsError("No valid clock in/out pairs found")

        seconds = sum(pair.seconds for pair in pairs)
        raw_hours = Decimal(seconds) / SECONDS_PER_HOUR

        break_seconds = 0
        for previous, current in zip(pairs, pairs[1:]):
            break_seconds += max(
                0, int((current.clock_in - previous.clock_out).total_seconds())
            )

        return self._build(
            raw_hours=raw_hours,
            adjusted_hours=self.round_hours(raw_hours),
            hourly_rate=hourly_rate,
            clock_in=pairs[0].clock_in,
            clock_out=pairs[-1].clock_out,
            break_minutes=break_seconds // 60,
            is_open=pairs[-1].is_open,
            pairs=tuple(pairs),
        )

    def compute_interval(
        self,
        clock_in: datetime,
        clock_out: datetime,
        hourly_rate: Decimal,
        break_minutes: int = 0,
    ) -> TimesheetComputation:
        """Compute a manual entry from explicit times; no rounding applied."""
        clock_in, clock_out = as_utc(clock_in), as_utc(clock_out)
        if clock_out <= clock_in:
            raise ValidationError(
                "Clock-out must be after clock-in",
                {"clock_in": clock_in.isoformat(), "clock_out": clock_out.isoformat()},
            )
        if break_minutes < 0:
            raise ValidationError("Break minutes cannot be negative")

        worked_seconds = int((clock_out - clock_in).total_seconds()) - break_minutes * 60
        if worked_seconds <= 0:
            raise ValidationError("Break is longer than the shift")

        raw_hours = Decimal(worked_seconds) / SECONDS_PER_HOUR
        return self._build(
            raw_hours=raw_hours,
            adjusted_hours=quantize_hours(raw_hours),
            hourly_rate=hourly_rate,
            clock_in=clock_in,
            clock_out=clock_out,
            break_minutes=break_minutes,
        )

    def _build(
        self,
        *,
        raw_hours: Decimal,
        adjusted_hours: Decimal,
        hourly_rate: Decimal,
        clock_in: datetime | None,
        clock_out: datetime | None,
        break_minutes: int,
        is_open: bool = False,
        pairs: tuple[ClockPair, ...] = (),
    ) -> TimesheetComputation:
        if hourly_rate < 0:
            raise ValidationError("Hourly rate cannot be negative")

        regular, overtime = split_hours(adjusted_hours, self.policy.standard_day_hours)
        return TimesheetComputation(
            clock_in=clock_in,
            clock_out=clock_out,
            break_minutes=break_minutes,
            raw_hours=quantize_hours(raw_hours),
            adjusted_hours=adjusted_hours,
            regular_hours=regular,
            overtime_hours=overtime,
            hourly_rate=hourly_rate,
            regular_pay=quantize_money(regular * hourly_rate),
            overtime_pay=quantize_money(
                overtime * hourly_rate * self.policy.overtime_multiplier
            ),
            is_open=is_open,
            pairs=pairs,
        )
