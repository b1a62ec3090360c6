"""Tests for the timesheet rounding engine."""

from datetime import timedelta
from decimal import Decimal

import pytest

from crewpay.calculators.rounding import (
    TimesheetRoundingEngine,
    has_open_shift,
    pair_clock_events,
    round_hours,
    split_hours,
)
from crewpay.calculators.types import (
    ClockEventInput,
    ClockEventType,
    RoundingPolicy,
    TimesheetPolicy,
)
from crewpay.errors import NoValidPairsError, ValidationError
from tests.conftest import WORK_DAY, at

IN = ClockEventType.CLOCK_IN
OUT = ClockEventType.CLOCK_OUT


def shift(minutes: int, start_hour: int = 7) -> list[ClockEventInput]:
    start = at(WORK_DAY, start_hour)
    return [
        ClockEventInput(IN, start),
        ClockEventInput(OUT, start + timedelta(minutes=minutes)),
    ]


class TestStandardRounding:
    """Standard policy with standard-day snapping."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("9.1", "9.0"),
            ("8.2", "8.0"),
            ("7.9", "8.0"),
            ("7.85", "8.0"),
            ("8.3", "8.0"),
            ("8.5", "8.5"),
            ("8.4", "8.5"),
            ("6.1", "6.0"),
            ("6.2", "6.25"),
            ("10.9", "11.0"),
        ],
    )
    def test_quarter_hour_with_standard_day_snap(self, raw, expected):
        assert round_hours(Decimal(raw), RoundingPolicy.STANDARD) == Decimal(expected)

    def test_short_shift_rounds_to_minute(self):
        # 24 minutes stays 24 minutes, not a quarter hour and not a day
        assert round_hours(Decimal("0.4"), RoundingPolicy.STANDARD) == Decimal("0.4")

    def test_snap_can_be_disabled(self):
        assert round_hours(
            Decimal("8.2"), RoundingPolicy.STANDARD, round_to_standard_day=False
        ) == Decimal("8.25")

    def test_standard_day_configurable(self):
        assert round_hours(
            Decimal("7.6"), RoundingPolicy.STANDARD, standard_day_hours=Decimal("7.5")
        ) == Decimal("7.5")

    def test_idempotent_on_own_output(self):
        for raw in ("8.0", "9.0", "0.4", "6.25"):
            once = round_hours(Decimal(raw), RoundingPolicy.STANDARD)
            assert round_hours(once, RoundingPolicy.STANDARD) == once

    def test_negative_hours_rejected(self):
        with pytest.raises(ValidationError):
            round_hours(Decimal("-1"), RoundingPolicy.STANDARD)


class TestOtherPolicies:
    def test_exact_minute(self):
        # 9h06m30s → 546.5 minutes → 547 minutes
        raw = Decimal(9 * 3600 + 6 * 60 + 30) / Decimal(3600)
        assert round_hours(raw, RoundingPolicy.EXACT_MINUTE) == Decimal("9.1167")

    def test_quarter_hour(self):
        assert round_hours(Decimal("8.2"), RoundingPolicy.QUARTER_HOUR) == Decimal("8.25")
        assert round_hours(Decimal("8.1"), RoundingPolicy.QUARTER_HOUR) == Decimal("8.0")

    def test_no_rounding(self):
        assert round_hours(Decimal("8.12345"), RoundingPolicy.NO_ROUNDING) == Decimal("8.1235")

    def test_exact_alias(self):
        assert RoundingPolicy.parse("exact") is RoundingPolicy.EXACT_MINUTE
        assert RoundingPolicy.parse("standard") is RoundingPolicy.STANDARD

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValueError):
            RoundingPolicy.parse("nearest_hour")


class TestSplitHours:
    def test_split_at_standard_day(self):
        assert split_hours(Decimal("9")) == (Decimal("8.0000"), Decimal("1.0000"))

    def test_no_overtime_under_standard_day(self):
        assert split_hours(Decimal("6.5")) == (Decimal("6.5000"), Decimal("0.0000"))


class TestPairing:
    def test_pairs_in_time_order(self):
        events = [
            ClockEventInput(OUT, at(WORK_DAY, 12)),
            ClockEventInput(IN, at(WORK_DAY, 7)),
            ClockEventInput(IN, at(WORK_DAY, 13)),
            ClockEventInput(OUT, at(WORK_DAY, 17)),
        ]
        pairs = pair_clock_events(events)

        assert [(p.clock_in.hour, p.clock_out.hour) for p in pairs] == [(7, 12), (13, 17)]

    def test_orphan_clock_out_ignored(self):
        events = [
            ClockEventInput(OUT, at(WORK_DAY, 6)),
            ClockEventInput(IN, at(WORK_DAY, 7)),
            ClockEventInput(OUT, at(WORK_DAY, 15)),
        ]
        assert len(pair_clock_events(events)) == 1

    def test_repeated_clock_in_superseded(self):
        events = [
            ClockEventInput(IN, at(WORK_DAY, 7)),
            ClockEventInput(IN, at(WORK_DAY, 8)),
            ClockEventInput(OUT, at(WORK_DAY, 16)),
        ]
        pairs = pair_clock_events(events)
        assert pairs[0].clock_in == at(WORK_DAY, 8)

    def test_trailing_clock_in_closed_only_with_now(self):
        events = shift(240) + [ClockEventInput(IN, at(WORK_DAY, 13))]

        assert len(pair_clock_events(events)) == 1
        live = pair_clock_events(events, now=at(WORK_DAY, 15))
        assert len(live) == 2
        assert live[-1].is_open is True

    def test_has_open_shift(self):
        assert has_open_shift([ClockEventInput(IN, at(WORK_DAY, 7))]) is True
        assert has_open_shift(shift(60)) is False
        assert has_open_shift([]) is False


class TestRoundingEngine:
    @pytest.fixture
    def engine(self) -> TimesheetRoundingEngine:
        return TimesheetRoundingEngine(TimesheetPolicy())

    def test_nine_point_one_hours(self, engine):
        """9.1 raw hours → 9.0: 8 regular + 1 overtime."""
        result = engine.compute(shift(546), Decimal("20.00"))

        assert result.raw_hours == Decimal("9.1000")
        assert result.total_hours == Decimal("9.0000")
        assert result.regular_hours == Decimal("8.0000")
        assert result.overtime_hours == Decimal("1.0000")
        assert result.regular_pay == Decimal("160.00")
        assert result.overtime_pay == Decimal("30.00")
        assert result.total_pay == Decimal("190.00")

    def test_eight_point_two_hours(self, engine):
        """8.2 raw hours → 8.0 with no overtime."""
        result = engine.compute(shift(492), Decimal("20.00"))

        assert result.total_hours == Decimal("8.0000")
        assert result.overtime_hours == Decimal("0.0000")
        assert result.total_pay == Decimal("160.00")

    def test_break_between_pairs(self, engine):
        events = [
            ClockEventInput(IN, at(WORK_DAY, 7)),
            ClockEventInput(OUT, at(WORK_DAY, 11)),
            ClockEventInput(IN, at(WORK_DAY, 11, 30)),
            ClockEventInput(OUT, at(WORK_DAY, 15, 30)),
        ]
        result = engine.compute(events, Decimal("20.00"))

        assert result.break_minutes == 30
        assert result.clock_in == at(WORK_DAY, 7)
        assert result.clock_out == at(WORK_DAY, 15, 30)
        assert result.total_hours == Decimal("8.0000")

    def test_open_shift_counts_to_now(self, engine):
        events = [ClockEventInput(IN, at(WORK_DAY, 7))]
        result = engine.compute(events, Decimal("20.00"), now=at(WORK_DAY, 10))

        assert result.is_open is True
        assert result.total_hours == Decimal("3.0000")

    def test_no_pairs(self, engine):
        with pytest.raises(NoValidPairsError):
            engine.compute([ClockEventInput(IN, at(WORK_DAY, 7))], Decimal("20.00"))

    def test_negative_rate_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.compute(shift(60), Decimal("-1"))

    def test_overtime_multiplier_from_policy(self):
        engine = TimesheetRoundingEngine(TimesheetPolicy(overtime_multiplier=Decimal("2")))
        result = engine.compute(shift(600), Decimal("10.00"))

        assert result.overtime_hours == Decimal("2.0000")
        assert result.overtime_pay == Decimal("40.00")


class TestComputeInterval:
    @pytest.fixture
    def engine(self) -> TimesheetRoundingEngine:
        return TimesheetRoundingEngine(TimesheetPolicy())

    def test_manual_entry_not_rounded(self, engine):
        result = engine.compute_interval(
            at(WORK_DAY, 7), at(WORK_DAY, 15, 20), Decimal("20.00"), break_minutes=20
        )
        assert result.total_hours == Decimal("8.0000")
        assert result.break_minutes == 20

    def test_clock_out_before_clock_in(self, engine):
        with pytest.raises(ValidationError):
            engine.compute_interval(at(WORK_DAY, 15), at(WORK_DAY, 7), Decimal("20.00"))

    def test_break_longer_than_shift(self, engine):
        with pytest.raises(ValidationError):
            engine.compute_interval(
                at(WORK_DAY, 7), at(WORK_DAY, 8), Decimal("20.00"), break_minutes=90
            )
