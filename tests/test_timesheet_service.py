"""Tests for timesheet generation, manual entry and hour corrections."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from crewpay.errors import (
    NotFoundError,
    NoValidPairsError,
    OpenShiftError,
    StateConflictError,
    TimesheetExistsError,
    ValidationError,
)
from crewpay.models import AuditEvent, Worker
from crewpay.services.timesheet_service import TimesheetService
from tests.conftest import WORK_DAY, add_clock_events, add_shift, add_timesheet, at


class TestGenerateTimesheet:
    async def test_rounded_day_with_overtime(self, session, company, worker, project):
        await add_shift(session, worker.worker_id, project.project_id, WORK_DAY, 546)
        service = TimesheetService(session)

        timesheet = await service.generate_timesheet(
            company.company_id, worker.worker_id, project.project_id, WORK_DAY
        )

        assert timesheet.supervisor_approval == "pending"
        assert timesheet.source == "clock"
        assert timesheet.total_hours == Decimal("9.0000")
        assert timesheet.regular_hours == Decimal("8.0000")
        assert timesheet.overtime_hours == Decimal("1.0000")
        assert timesheet.total_pay == Decimal("190.00")

        audit = (
            await session.execute(
                select(AuditEvent).where(AuditEvent.entity_id == timesheet.timesheet_id)
            )
        ).scalar_one()
        assert audit.action == "generated"
        assert audit.details["rounding"] == "standard"

    async def test_rounding_override(self, session, company, worker, project):
        await add_shift(session, worker.worker_id, project.project_id, WORK_DAY, 492)
        service = TimesheetService(session)

        timesheet = await service.generate_timesheet(
            company.company_id,
            worker.worker_id,
            project.project_id,
            WORK_DAY,
            rounding="exact",
        )
        assert timesheet.total_hours == Decimal("8.2000")

    async def test_invalid_rounding_override(self, session, company, worker, project):
        await add_shift(session, worker.worker_id, project.project_id, WORK_DAY, 480)
        service = TimesheetService(session)

        with pytest.raises(ValidationError):
            await service.generate_timesheet(
                company.company_id,
                worker.worker_id,
                project.project_id,
                WORK_DAY,
                rounding="nearest_hour",
            )

    async def test_existing_timesheet_refused(self, session, company, worker, project):
        await add_shift(session, worker.worker_id, project.project_id, WORK_DAY, 480)
        await add_timesheet(
            session,
            company.company_id,
            worker.worker_id,
            project.project_id,
            WORK_DAY,
            "8",
            approval="pending",
        )
        service = TimesheetService(session)

        with pytest.raises(TimesheetExistsError):
            await service.generate_timesheet(
                company.company_id, worker.worker_id, project.project_id, WORK_DAY
            )

    async def test_open_shift_refused(self, session, company, worker, project):
        await add_clock_events(
            session,
            worker.worker_id,
            project.project_id,
            [("clock_in", at(WORK_DAY, 7))],
        )
        service = TimesheetService(session)

        with pytest.raises(OpenShiftError):
            await service.generate_timesheet(
                company.company_id, worker.worker_id, project.project_id, WORK_DAY
            )

    async def test_no_events(self, session, company, worker, project):
        service = TimesheetService(session)

        with pytest.raises(NoValidPairsError):
            await service.generate_timesheet(
                company.company_id, worker.worker_id, project.project_id, WORK_DAY
            )

    async def test_other_days_ignored(self, session, company, worker, project):
        await add_shift(session, worker.worker_id, project.project_id, WORK_DAY, 480)
        await add_shift(
            session, worker.worker_id, project.project_id, WORK_DAY + timedelta(days=1), 120
        )
        service = TimesheetService(session)

        timesheet = await service.generate_timesheet(
            company.company_id, worker.worker_id, project.project_id, WORK_DAY
        )
        assert timesheet.total_hours == Decimal("8.0000")

    async def test_worker_from_other_company(self, session, company, worker, project):
        service = TimesheetService(session)

        with pytest.raises(NotFoundError):
            await service.generate_timesheet(
                uuid4(), worker.worker_id, project.project_id, WORK_DAY
            )


class TestGenerateForDate:
    async def test_each_worker_reported(self, session, company, worker, project):
        second = Worker(
            worker_id=uuid4(),
            company_id=company.company_id,
            name="Keisha Rolle",
            hourly_rate=Decimal("25.00"),
        )
        session.add(second)
        await session.commit()

        await add_shift(session, worker.worker_id, project.project_id, WORK_DAY, 480)
        await add_clock_events(
            session,
            second.worker_id,
            project.project_id,
            [("clock_in", at(WORK_DAY, 7))],
        )
        service = TimesheetService(session)

        batch = await service.generate_timesheets_for_date(
            company.company_id, project.project_id, WORK_DAY
        )

        assert batch.created_count == 1
        assert list(batch.errors) == [second.worker_id]


class TestLiveHours:
    async def test_open_shift_closed_at_now(self, session, company, worker, project):
        await add_clock_events(
            session,
            worker.worker_id,
            project.project_id,
            [("clock_in", at(WORK_DAY, 7))],
        )
        service = TimesheetService(session)

        live = await service.live_hours(
            company.company_id,
            worker.worker_id,
            project.project_id,
            WORK_DAY,
            now=at(WORK_DAY, 11, 30),
        )

        assert live.is_open is True
        assert live.total_hours == Decimal("4.5000")
        assert live.total_pay == Decimal("90.00")


class TestManualAndCorrections:
    async def test_manual_timesheet(self, session, company, worker, project):
        service = TimesheetService(session)

        timesheet = await service.create_manual_timesheet(
            company.company_id,
            worker.worker_id,
            project.project_id,
            WORK_DAY,
            clock_in=at(WORK_DAY, 7),
            clock_out=at(WORK_DAY, 17),
            break_minutes=30,
            notes="Paper sheet from site office",
        )

        assert timesheet.source == "manual"
        assert timesheet.total_hours == Decimal("9.5000")
        assert timesheet.overtime_hours == Decimal("1.5000")
        assert timesheet.total_pay == Decimal("205.00")

    async def test_correct_pending_hours(self, session, company, worker, project):
        timesheet = await add_timesheet(
            session,
            company.company_id,
            worker.worker_id,
            project.project_id,
            WORK_DAY,
            "8",
            approval="pending",
        )
        service = TimesheetService(session)

        corrected = await service.correct_hours(
            timesheet.timesheet_id, clock_out=at(WORK_DAY, 13)
        )
        assert corrected.total_hours == Decimal("6.0000")
        assert corrected.total_pay == Decimal("120.00")

    async def test_approved_hours_locked(self, session, company, worker, project):
        timesheet = await add_timesheet(
            session, company.company_id, worker.worker_id, project.project_id, WORK_DAY, "8"
        )
        service = TimesheetService(session)

        with pytest.raises(StateConflictError):
            await service.correct_hours(timesheet.timesheet_id, clock_out=at(WORK_DAY, 13))

    async def test_unknown_timesheet(self, session, company):
        service = TimesheetService(session)

        with pytest.raises(NotFoundError):
            await service.correct_hours(uuid4(), break_minutes=10)
