"""Timesheet generation from clock events, manual entry and hour corrections."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewpay.calculators.rounding import TimesheetRoundingEngine, has_open_shift
from crewpay.calculators.types import (
    ClockEventInput,
    ClockEventType,
    RoundingPolicy,
    TimesheetComputation,
)
from crewpay.errors import (
    NotFoundError,
    OpenShiftError,
    PayrollError,
    StateConflictError,
    TimesheetExistsError,
    ValidationError,
)
from crewpay.models import ClockEvent, Project, Timesheet, Worker
from crewpay.services.audit_service import record_audit
from crewpay.services.settings_service import SettingsProvider
from crewpay.services.state_machine import TimesheetApproval, TimesheetStateMachine

logger = logging.getLogger(__name__)


@dataclass
class TimesheetBatchResult:
    """Outcome of generating timesheets for every worker on a project/date."""

    created: list[UUID] = field(default_factory=list)
    errors: dict[UUID, str] = field(default_factory=dict)

    @property
    def created_count(self) -> int:
        return len(self.created)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class TimesheetService:
    """Creates and corrects timesheets.

    Operations:
    - generate_timesheet: clock events for one worker/project/day → pending timesheet
    - generate_timesheets_for_date: the same for every worker clocked on a project
    - live_hours: non-persisted computation including a still-open shift
    - create_manual_timesheet: explicit clock-in/out entry
    - correct_hours: hour-correction edit while not approved
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings_provider = SettingsProvider(session)

    async def load_clock_events(
        self, worker_id: UUID, project_id: UUID, day: date
    ) -> list[ClockEventInput]:
        """Load the non-deleted clock events for a worker/project/day in time order."""
        start, end = day_bounds(day)
        result = await self.session.execute(
            select(ClockEvent)
            .where(
                ClockEvent.worker_id == worker_id,
                ClockEvent.project_id == project_id,
                ClockEvent.event_time >= start,
                ClockEvent.event_time < end,
                ClockEvent.deleted_at.is_(None),
            )
            .order_by(ClockEvent.event_time)
        )
        return [
            ClockEventInput(
                event_type=ClockEventType(event.event_type),
                event_time=event.event_time,
            )
            for event in result.scalars().all()
        ]

    async def get_timesheet(self, timesheet_id: UUID) -> Timesheet:
        timesheet = await self.session.get(Timesheet, timesheet_id)
        if timesheet is None:
            raise NotFoundError(
                f"Timesheet {timesheet_id} not found", {"timesheet_id": str(timesheet_id)}
            )
        return timesheet

    async def find_timesheet(
        self, worker_id: UUID, project_id: UUID, day: date
    ) -> Timesheet | None:
        result = await self.session.execute(
            select(Timesheet).where(
                Timesheet.worker_id == worker_id,
                Timesheet.project_id == project_id,
                Timesheet.date == day,
            )
        )
        return result.scalar_one_or_none()

    async def _engine_for(
        self,
        company_id: UUID,
        rounding: RoundingPolicy | str | None,
        round_to_standard_day: bool | None,
    ) -> TimesheetRoundingEngine:
        settings = await self.settings_provider.get_payroll_settings(company_id)
        policy = settings.timesheet_policy
        if rounding is not None:
            try:
                policy = replace(policy, rounding=RoundingPolicy.parse(rounding))
            except ValueError as exc:
                raise ValidationError(
                    f"Invalid rounding strategy '{rounding}'", {"rounding": str(rounding)}
                ) from exc
        if round_to_standard_day is not None:
            policy = replace(policy, round_to_standard_day=round_to_standard_day)
        return TimesheetRoundingEngine(policy)

    async def _load_worker(self, company_id: UUID, worker_id: UUID) -> Worker:
        worker = await self.session.get(Worker, worker_id)
        if worker is None or worker.company_id != company_id:
            raise NotFoundError(f"Worker {worker_id} not found", {"worker_id": str(worker_id)})
        return worker

    async def _load_project(self, company_id: UUID, project_id: UUID) -> Project:
        project = await self.session.get(Project, project_id)
        if project is None or project.company_id != company_id:
            raise NotFoundError(
                f"Project {project_id} not found", {"project_id": str(project_id)}
            )
        return project

    async def live_hours(
        self,
        company_id: UUID,
        worker_id: UUID,
        project_id: UUID,
        day: date,
        now: datetime | None = None,
    ) -> TimesheetComputation:
        """Hours so far today, closing an open shift at ``now``. Never persisted."""
        worker = await self._load_worker(company_id, worker_id)
        engine = await self._engine_for(company_id, None, None)
        events = await self.load_clock_events(worker_id, project_id, day)
        return engine.compute(
            events, worker.hourly_rate, now=now or datetime.now(timezone.utc)
        )

    async def generate_timesheet(
        self,
        company_id: UUID,
        worker_id: UUID,
        project_id: UUID,
        day: date,
        rounding: RoundingPolicy | str | None = None,
        round_to_standard_day: bool | None = None,
        actor_id: UUID | None = None,
    ) -> Timesheet:
        """Persist a pending timesheet computed from the day's clock events.

        Raises:
            TimesheetExistsError: a timesheet for worker/project/date exists
            OpenShiftError: the worker has not clocked out yet
            NoValidPairsError: no completed clock in/out pair
        """
        worker = await self._load_worker(company_id, worker_id)
        await self._load_project(company_id, project_id)
        engine = await self._engine_for(company_id, rounding, round_to_standard_day)

        existing = await self.find_timesheet(worker_id, project_id, day)
        if existing is not None:
            raise TimesheetExistsError(
                "Timesheet already exists for this worker, project and date",
                {"timesheet_id": str(existing.timesheet_id)},
            )

        events = await self.load_clock_events(worker_id, project_id, day)
        if has_open_shift(events):
            raise OpenShiftError(
                "Worker is still clocked in; clock out before generating the timesheet",
                {"worker_id": str(worker_id), "date": day.isoformat()},
            )

        computation = engine.compute(events, worker.hourly_rate)
        timesheet = self._new_timesheet(
            company_id, worker_id, project_id, day, computation, source="clock"
        )
        self.session.add(timesheet)
        await self.session.flush()

        record_audit(
            self.session,
            entity_type="timesheet",
            entity_id=timesheet.timesheet_id,
            action="generated",
            company_id=company_id,
            actor_id=actor_id,
            details={
                "rounding": engine.policy.rounding.value,
                "raw_hours": str(computation.raw_hours),
                "adjusted_hours": str(computation.adjusted_hours),
            },
        )
        logger.info(
            "Generated timesheet %s for worker %s on %s: %s h",
            timesheet.timesheet_id,
            worker_id,
            day,
            computation.adjusted_hours,
        )
        return timesheet

    async def generate_timesheets_for_date(
        self,
        company_id: UUID,
        project_id: UUID,
        day: date,
        rounding: RoundingPolicy | str | None = None,
        round_to_standard_day: bool | None = None,
        actor_id: UUID | None = None,
    ) -> TimesheetBatchResult:
        """Generate timesheets for every worker with clock events on a project/date.

        Each worker succeeds or fails on its own; failures are reported.
        """
        await self._load_project(company_id, project_id)
        start, end = day_bounds(day)
        result = await self.session.execute(
            select(ClockEvent.worker_id)
            .where(
                ClockEvent.project_id == project_id,
                ClockEvent.event_time >= start,
                ClockEvent.event_time < end,
                ClockEvent.deleted_at.is_(None),
            )
            .distinct()
        )
        worker_ids = sorted(result.scalars().all(), key=str)

        batch = TimesheetBatchResult()
        for worker_id in worker_ids:
            try:
                timesheet = await self.generate_timesheet(
                    company_id,
                    worker_id,
                    project_id,
                    day,
                    rounding=rounding,
                    round_to_standard_day=round_to_standard_day,
                    actor_id=actor_id,
                )
            except PayrollError as exc:
                logger.warning("Timesheet not generated for worker %s: %s", worker_id, exc)
                batch.errors[worker_id] = exc.message
                continue
            batch.created.append(timesheet.timesheet_id)
        return batch

    async def create_manual_timesheet(
        self,
        company_id: UUID,
        worker_id: UUID,
        project_id: UUID,
        day: date,
        clock_in: datetime,
        clock_out: datetime,
        break_minutes: int = 0,
        hourly_rate: Decimal | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> Timesheet:
        """Create a pending timesheet from explicit times (no rounding)."""
        worker = await self._load_worker(company_id, worker_id)
        await self._load_project(company_id, project_id)
        engine = await self._engine_for(company_id, None, None)

        existing = await self.find_timesheet(worker_id, project_id, day)
        if existing is not None:
            raise TimesheetExistsError(
                "Timesheet already exists for this worker, project and date",
                {"timesheet_id": str(existing.timesheet_id)},
            )

        rate = worker.hourly_rate if hourly_rate is None else hourly_rate
        computation = engine.compute_interval(clock_in, clock_out, rate, break_minutes)
        timesheet = self._new_timesheet(
            company_id, worker_id, project_id, day, computation, source="manual", notes=notes
        )
        self.session.add(timesheet)
        await self.session.flush()

        record_audit(
            self.session,
            entity_type="timesheet",
            entity_id=timesheet.timesheet_id,
            action="created_manual",
            company_id=company_id,
            actor_id=actor_id,
        )
        return timesheet

    async def correct_hours(
        self,
        timesheet_id: UUID,
        *,
        clock_in: datetime | None = None,
        clock_out: datetime | None = None,
        break_minutes: int | None = None,
        hourly_rate: Decimal | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> Timesheet:
        """Edit the hours of a timesheet that is not yet approved."""
        timesheet = await self.get_timesheet(timesheet_id)
        if TimesheetStateMachine.are_hours_locked(timesheet.supervisor_approval):
            raise StateConflictError(
                "Approved timesheet hours cannot be changed; unapprove it first",
                {"timesheet_id": str(timesheet_id)},
            )

        new_in = clock_in or timesheet.clock_in
        new_out = clock_out or timesheet.clock_out
        if new_in is None or new_out is None:
            raise ValidationError("Clock-in and clock-out are required to correct hours")

        engine = await self._engine_for(timesheet.company_id, None, None)
        before = {
            "total_hours": str(timesheet.total_hours),
            "total_pay": str(timesheet.total_pay),
        }
        computation = engine.compute_interval(
            new_in,
            new_out,
            timesheet.hourly_rate if hourly_rate is None else hourly_rate,
            timesheet.break_minutes if break_minutes is None else break_minutes,
        )
        self._apply_computation(timesheet, computation)
        if notes is not None:
            timesheet.notes = notes
        await self.session.flush()

        record_audit(
            self.session,
            entity_type="timesheet",
            entity_id=timesheet.timesheet_id,
            action="hours_corrected",
            company_id=timesheet.company_id,
            actor_id=actor_id,
            details={
                "before": before,
                "after": {
                    "total_hours": str(timesheet.total_hours),
                    "total_pay": str(timesheet.total_pay),
                },
            },
        )
        return timesheet

    def _new_timesheet(
        self,
        company_id: UUID,
        worker_id: UUID,
        project_id: UUID,
        day: date,
        computation: TimesheetComputation,
        source: str,
        notes: str | None = None,
    ) -> Timesheet:
        timesheet = Timesheet(
            company_id=company_id,
            worker_id=worker_id,
            project_id=project_id,
            date=day,
            supervisor_approval=TimesheetApproval.PENDING.value,
            source=source,
            notes=notes,
        )
        self._apply_computation(timesheet, computation)
        return timesheet

    @staticmethod
    def _apply_computation(timesheet: Timesheet, computation: TimesheetComputation) -> None:
        timesheet.clock_in = computation.clock_in
        timesheet.clock_out = computation.clock_out
        timesheet.break_minutes = computation.break_minutes
        timesheet.regular_hours = computation.regular_hours
        timesheet.overtime_hours = computation.overtime_hours
        timesheet.total_hours = computation.total_hours
        timesheet.hourly_rate = computation.hourly_rate
        timesheet.total_pay = computation.total_pay
