"""Timesheet approval gate.

Approving a timesheet is the trigger for payroll aggregation: the payroll
record for the worker's pay period is created or recomputed in the same
transaction as the approval.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewpay.calculators.periods import pay_period_for
from crewpay.errors import (
    InvalidTransitionError,
    NotFoundError,
    PayrollError,
    StateConflictError,
    ValidationError,
)
from crewpay.models import PayrollRecord, Timesheet
from crewpay.services.aggregation_service import AggregationOutcome, PayrollAggregator
from crewpay.services.audit_service import record_audit
from crewpay.services.locking_service import payroll_period_key
from crewpay.services.settings_service import SettingsProvider
from crewpay.services.state_machine import (
    PayrollStateMachine,
    TimesheetApproval,
    TimesheetStateMachine,
)

logger = logging.getLogger(__name__)


@dataclass
class ApprovalOutcome:
    """Result of a single approval-state change."""

    timesheet: Timesheet
    payroll: PayrollRecord | None = None
    payroll_error: PayrollError | None = None
    needs_regeneration: bool = False


@dataclass
class ApprovalBatchResult:
    approved: list[UUID] = field(default_factory=list)
    errors: dict[UUID, str] = field(default_factory=dict)
    payrolls: list[AggregationOutcome] = field(default_factory=list)


class TimesheetApprovalGate:
    """Moves timesheets between pending, approved and rejected."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.aggregator = PayrollAggregator(session)
        self.settings_provider = SettingsProvider(session)

    async def _load(self, timesheet_id: UUID) -> Timesheet:
        result = await self.session.execute(
            select(Timesheet)
            .where(Timesheet.timesheet_id == timesheet_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        timesheet = result.scalar_one_or_none()
        if timesheet is None:
            raise NotFoundError(
                f"Timesheet {timesheet_id} not found", {"timesheet_id": str(timesheet_id)}
            )
        return timesheet

    async def lock_keys_for(self, timesheet_ids: list[UUID]) -> list[str]:
        """Payroll period keys touched by approving these timesheets."""
        if not timesheet_ids:
            return []
        result = await self.session.execute(
            select(Timesheet).where(Timesheet.timesheet_id.in_(timesheet_ids))
        )
        keys = set()
        for timesheet in result.scalars().all():
            settings = await self.settings_provider.get_payroll_settings(timesheet.company_id)
            period = pay_period_for(timesheet.date, settings.periods)
            keys.add(payroll_period_key(timesheet.worker_id, period.start, period.end))
        return sorted(keys)

    async def _mark_approved(self, timesheet_id: UUID, actor_id: UUID | None) -> Timesheet:
        timesheet = await self._load(timesheet_id)
        TimesheetStateMachine.validate_transition(
            timesheet.supervisor_approval, TimesheetApproval.APPROVED
        )
        timesheet.supervisor_approval = TimesheetApproval.APPROVED.value
        timesheet.approved_at = datetime.now(timezone.utc)
        timesheet.approved_by = actor_id
        await self.session.flush()

        record_audit(
            self.session,
            entity_type="timesheet",
            entity_id=timesheet.timesheet_id,
            action="approved",
            company_id=timesheet.company_id,
            actor_id=actor_id,
        )
        logger.info("Timesheet %s approved by %s", timesheet.timesheet_id, actor_id)
        return timesheet

    async def approve(self, timesheet_id: UUID, actor_id: UUID | None = None) -> ApprovalOutcome:
        """Approve a pending timesheet and aggregate its pay period.

        A payroll that is already confirmed, paid or void is left alone;
        the conflict is reported on the outcome and the approval stands.
        """
        timesheet = await self._mark_approved(timesheet_id, actor_id)
        outcome = ApprovalOutcome(timesheet=timesheet)
        try:
            outcome.payroll = await self.aggregator.generate_for_date(
                timesheet.company_id, timesheet.worker_id, timesheet.date, actor_id=actor_id
            )
        except StateConflictError as exc:
            logger.warning(
                "Timesheet %s approved but payroll not updated: %s", timesheet_id, exc
            )
            outcome.payroll_error = exc
            outcome.needs_regeneration = True
        return outcome

    async def approve_many(
        self, timesheet_ids: list[UUID], actor_id: UUID | None = None
    ) -> ApprovalBatchResult:
        """Approve a set of timesheets, then aggregate each distinct worker/period once."""
        batch = ApprovalBatchResult()
        by_company: dict[UUID, list[tuple[UUID, date]]] = {}

        for timesheet_id in timesheet_ids:
            try:
                timesheet = await self._mark_approved(timesheet_id, actor_id)
            except PayrollError as exc:
                batch.errors[timesheet_id] = exc.message
                continue
            batch.approved.append(timesheet_id)
            by_company.setdefault(timesheet.company_id, []).append(
                (timesheet.worker_id, timesheet.date)
            )

        for company_id, pairs in by_company.items():
            batch.payrolls.extend(
                await self.aggregator.generate_batch(company_id, pairs, actor_id=actor_id)
            )
        return batch

    async def reject(
        self, timesheet_id: UUID, actor_id: UUID | None = None, reason: str | None = None
    ) -> Timesheet:
        timesheet = await self._load(timesheet_id)
        TimesheetStateMachine.validate_transition(
            timesheet.supervisor_approval, TimesheetApproval.REJECTED
        )
        timesheet.supervisor_approval = TimesheetApproval.REJECTED.value
        await self.session.flush()

        record_audit(
            self.session,
            entity_type="timesheet",
            entity_id=timesheet.timesheet_id,
            action="rejected",
            company_id=timesheet.company_id,
            actor_id=actor_id,
            details={"reason": reason} if reason else None,
        )
        logger.info("Timesheet %s rejected by %s", timesheet_id, actor_id)
        return timesheet

    async def reset(self, timesheet_id: UUID, actor_id: UUID | None = None) -> Timesheet:
        """Return a rejected timesheet to pending."""
        timesheet = await self._load(timesheet_id)
        if timesheet.supervisor_approval != TimesheetApproval.REJECTED:
            raise InvalidTransitionError(
                timesheet.supervisor_approval,
                TimesheetApproval.PENDING.value,
                "only rejected timesheets can be reset; use unapprove for approved ones",
            )
        timesheet.supervisor_approval = TimesheetApproval.PENDING.value
        await self.session.flush()

        record_audit(
            self.session,
            entity_type="timesheet",
            entity_id=timesheet.timesheet_id,
            action="reset",
            company_id=timesheet.company_id,
            actor_id=actor_id,
        )
        return timesheet

    async def unapprove(
        self, timesheet_id: UUID, actor_id: UUID | None, reason: str
    ) -> ApprovalOutcome:
        """Admin reversal of an approval.

        A pending payroll for the period is recomputed without this
        timesheet; a confirmed or paid one is flagged for regeneration.
        Raises IntegrityGuardError when the recompute would leave the
        pending payroll below what has already been paid on it.
        """
        if actor_id is None:
            raise ValidationError("Unapproving a timesheet requires an actor")
        if not reason or not reason.strip():
            raise ValidationError("Unapproving a timesheet requires a reason")

        timesheet = await self._load(timesheet_id)
        if not TimesheetStateMachine.is_unapprove(
            timesheet.supervisor_approval, TimesheetApproval.PENDING
        ):
            raise InvalidTransitionError(
                timesheet.supervisor_approval,
                TimesheetApproval.PENDING.value,
                "only approved timesheets can be unapproved",
            )

        timesheet.supervisor_approval = TimesheetApproval.PENDING.value
        timesheet.approved_at = None
        timesheet.approved_by = None
        await self.session.flush()

        record_audit(
            self.session,
            entity_type="timesheet",
            entity_id=timesheet.timesheet_id,
            action="unapproved",
            company_id=timesheet.company_id,
            actor_id=actor_id,
            details={"reason": reason},
        )
        logger.info("Timesheet %s unapproved by %s: %s", timesheet_id, actor_id, reason)

        outcome = ApprovalOutcome(timesheet=timesheet)
        settings = await self.settings_provider.get_payroll_settings(timesheet.company_id)
        period = pay_period_for(timesheet.date, settings.periods)
        payroll = await self.aggregator.find_payroll(timesheet.worker_id, period)
        if payroll is None:
            return outcome

        if PayrollStateMachine.can_recompute(payroll.status):
            outcome.payroll = await self.aggregator.generate(
                timesheet.company_id,
                timesheet.worker_id,
                period.start,
                period.end,
                actor_id=actor_id,
            )
        else:
            outcome.payroll = payroll
            outcome.needs_regeneration = True
        return outcome
