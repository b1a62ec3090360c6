"""Payroll aggregation: approved timesheets → one payroll record per worker/period."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crewpay.calculators.deductions import DeductionBreakdown, calculate_deductions
from crewpay.calculators.periods import pay_period_for, validate_pay_period
from crewpay.calculators.types import (
    ZERO,
    PayPeriod,
    PayrollSettings,
    WorkerProfile,
    quantize_hours,
    quantize_money,
)
from crewpay.database import dialect_insert
from crewpay.errors import (
    IntegrityGuardError,
    NotFoundError,
    PayrollError,
    RegenerationRequiredError,
    StateConflictError,
)
from crewpay.models import PayrollPayment, PayrollRecord, Timesheet
from crewpay.services.audit_service import record_audit
from crewpay.services.settings_service import SettingsProvider
from crewpay.services.state_machine import (
    PayrollStateMachine,
    PayrollStatus,
    TimesheetApproval,
)

logger = logging.getLogger(__name__)


@dataclass
class AggregationTotals:
    """Sums over the approved timesheets of one worker/period."""

    regular_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    total_hours: Decimal = ZERO
    gross_pay: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    timesheet_count: int = 0
    project_ids: set[UUID] = field(default_factory=set)

    @property
    def single_project_id(self) -> UUID | None:
        if len(self.project_ids) == 1:
            return next(iter(self.project_ids))
        return None


@dataclass
class AggregationOutcome:
    """Per-(worker, period) result of a batched aggregation."""

    worker_id: UUID
    period: PayPeriod
    payroll: PayrollRecord | None = None
    error: PayrollError | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def balance_for(record: PayrollRecord) -> Decimal:
    """remaining = max(0, basis - total_paid); forced to 0 once paid."""
    if record.status == PayrollStatus.PAID:
        return ZERO
    return max(ZERO, quantize_money(record.basis_amount - record.total_paid))


class PayrollAggregator:
    """Idempotent upsert of payroll records.

    The upsert key (worker_id, pay_period_start, pay_period_end) is what
    makes concurrent approvals converge on one record: the row is inserted
    with ON CONFLICT DO NOTHING and then re-read FOR UPDATE before its
    derived fields are written.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings_provider = SettingsProvider(session)

    async def get_payroll(self, payroll_id: UUID, for_update: bool = False) -> PayrollRecord:
        query = select(PayrollRecord).where(PayrollRecord.payroll_id == payroll_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(
                f"Payroll {payroll_id} not found", {"payroll_id": str(payroll_id)}
            )
        return record

    async def find_payroll(
        self, worker_id: UUID, period: PayPeriod, for_update: bool = True
    ) -> PayrollRecord | None:
        query = select(PayrollRecord).where(
            PayrollRecord.worker_id == worker_id,
            PayrollRecord.pay_period_start == period.start,
            PayrollRecord.pay_period_end == period.end,
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def sum_approved_timesheets(
        self, worker_id: UUID, period: PayPeriod, overtime_multiplier: Decimal
    ) -> AggregationTotals:
        result = await self.session.execute(
            select(Timesheet).where(
                Timesheet.worker_id == worker_id,
                Timesheet.date >= period.start,
                Timesheet.date <= period.end,
                Timesheet.supervisor_approval == TimesheetApproval.APPROVED.value,
            )
        )
        totals = AggregationTotals()
        for timesheet in result.scalars().all():
            totals.regular_hours += timesheet.regular_hours
            totals.overtime_hours += timesheet.overtime_hours
            totals.total_hours += timesheet.total_hours
            totals.gross_pay += timesheet.total_pay
            totals.overtime_pay += quantize_money(
                timesheet.overtime_hours * timesheet.hourly_rate * overtime_multiplier
            )
            totals.timesheet_count += 1
            totals.project_ids.add(timesheet.project_id)

        totals.regular_hours = quantize_hours(totals.regular_hours)
        totals.overtime_hours = quantize_hours(totals.overtime_hours)
        totals.total_hours = quantize_hours(totals.total_hours)
        totals.gross_pay = quantize_money(totals.gross_pay)
        totals.overtime_pay = min(totals.overtime_pay, totals.gross_pay)
        return totals

    async def count_pending_timesheets(self, worker_id: UUID, period: PayPeriod) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Timesheet)
            .where(
                Timesheet.worker_id == worker_id,
                Timesheet.date >= period.start,
                Timesheet.date <= period.end,
                Timesheet.supervisor_approval == TimesheetApproval.PENDING.value,
            )
        )
        return int(result.scalar() or 0)

    async def generate_for_date(
        self,
        company_id: UUID,
        worker_id: UUID,
        day: date,
        regenerate: bool = False,
        actor_id: UUID | None = None,
    ) -> PayrollRecord:
        """Aggregate the pay period containing ``day``."""
        settings = await self.settings_provider.get_payroll_settings(company_id)
        period = pay_period_for(day, settings.periods)
        return await self.generate(
            company_id, worker_id, period.start, period.end, regenerate, actor_id
        )

    async def generate(
        self,
        company_id: UUID,
        worker_id: UUID,
        period_start: date,
        period_end: date,
        regenerate: bool = False,
        actor_id: UUID | None = None,
    ) -> PayrollRecord:
        """Create or recompute the payroll record for a worker and pay period.

        A pending record is recomputed in place. Regenerating a confirmed or
        paid record keeps its status and ledger; only a void record goes
        back to pending. Any recompute of a record that already carries
        payments must keep the basis at or above ``total_paid``.

        Raises:
            ValidationError: period is not canonical for the company
            NotFoundError: no record and no approved timesheets
            RegenerationRequiredError: record is confirmed/paid/void and
                ``regenerate`` is False
            IntegrityGuardError: deductions exceed gross pay, or a recomputed
                basis would fall below what was already paid
        """
        settings = await self.settings_provider.get_payroll_settings(company_id)
        profile = await self.settings_provider.get_worker_profile(worker_id)
        if profile.company_id != company_id:
            raise NotFoundError(f"Worker {worker_id} not found", {"worker_id": str(worker_id)})
        period = validate_pay_period(period_start, period_end, settings.periods)

        totals = await self.sum_approved_timesheets(
            worker_id, period, settings.timesheet_policy.overtime_multiplier
        )
        breakdown = self._deductions(totals, settings, profile)

        record = await self.find_payroll(worker_id, period)
        action = "recomputed"
        if record is None:
            if totals.timesheet_count == 0:
                raise NotFoundError(
                    "No approved timesheets for this worker and pay period",
                    {
                        "worker_id": str(worker_id),
                        "pay_period_start": period.start.isoformat(),
                        "pay_period_end": period.end.isoformat(),
                    },
                )
            record, created = await self._insert_if_absent(company_id, worker_id, period, settings)
            if created:
                action = "created"

        previous_status = record.status
        if not PayrollStateMachine.can_recompute(record.status):
            if not regenerate:
                raise RegenerationRequiredError(
                    f"Payroll is {record.status}; explicit regeneration required",
                    {"payroll_id": str(record.payroll_id), "status": record.status},
                )
            action = "regenerated"
            if record.status == PayrollStatus.VOID:
                record.status = PayrollStatus.PENDING.value

        # Reversals keep the ledger, so a pending record may carry payments too
        if record.total_paid > 0:
            self._guard_regeneration(record, totals, breakdown)

        self._apply(record, totals, breakdown)
        await self.session.flush()

        record_audit(
            self.session,
            entity_type="payroll",
            entity_id=record.payroll_id,
            action=f"payroll_{action}",
            company_id=company_id,
            actor_id=actor_id,
            details={
                "previous_status": previous_status,
                "timesheets": totals.timesheet_count,
                "gross_pay": str(record.gross_pay),
                "total_deductions": str(record.total_deductions),
                "net_pay": str(record.net_pay),
            },
        )
        logger.info(
            "Payroll %s %s for worker %s (%s..%s): gross %s net %s",
            record.payroll_id,
            action,
            worker_id,
            period.start,
            period.end,
            record.gross_pay,
            record.net_pay,
        )
        return record

    async def generate_batch(
        self,
        company_id: UUID,
        pairs: list[tuple[UUID, date]],
        regenerate: bool = False,
        actor_id: UUID | None = None,
    ) -> list[AggregationOutcome]:
        """Aggregate several (worker, date-in-period) pairs.

        Pairs that snap to the same worker/period are aggregated once.
        Each pair fails independently.
        """
        settings = await self.settings_provider.get_payroll_settings(company_id)
        seen: set[tuple[UUID, date]] = set()
        outcomes: list[AggregationOutcome] = []

        for worker_id, day in pairs:
            period = pay_period_for(day, settings.periods)
            if (worker_id, period.start) in seen:
                continue
            seen.add((worker_id, period.start))

            outcome = AggregationOutcome(worker_id=worker_id, period=period)
            try:
                outcome.payroll = await self.generate(
                    company_id, worker_id, period.start, period.end, regenerate, actor_id
                )
            except PayrollError as exc:
                logger.warning(
                    "Payroll aggregation failed for worker %s (%s): %s",
                    worker_id,
                    period.start,
                    exc,
                )
                outcome.error = exc
            outcomes.append(outcome)
        return outcomes

    async def discard_payroll(self, payroll_id: UUID, actor_id: UUID | None = None) -> None:
        """Delete a pending or void payroll record together with its ledger."""
        record = await self.get_payroll(payroll_id, for_update=True)
        if not PayrollStateMachine.can_discard(record.status):
            raise StateConflictError(
                f"Cannot discard a {record.status} payroll",
                {"payroll_id": str(payroll_id), "status": record.status},
            )

        await self.session.execute(
            delete(PayrollPayment).where(PayrollPayment.payroll_id == payroll_id)
        )
        await self.session.execute(
            delete(PayrollRecord).where(PayrollRecord.payroll_id == payroll_id)
        )
        self.session.expunge(record)
        record_audit(
            self.session,
            entity_type="payroll",
            entity_id=payroll_id,
            action="payroll_discarded",
            company_id=record.company_id,
            actor_id=actor_id,
            details={"status": record.status},
        )
        logger.info("Payroll %s discarded", payroll_id)

    async def _insert_if_absent(
        self,
        company_id: UUID,
        worker_id: UUID,
        period: PayPeriod,
        settings: PayrollSettings,
    ) -> tuple[PayrollRecord, bool]:
        stmt = (
            dialect_insert(self.session, PayrollRecord)
            .values(
                company_id=company_id,
                worker_id=worker_id,
                pay_period_start=period.start,
                pay_period_end=period.end,
                status=PayrollStatus.PENDING.value,
                payment_basis=settings.payment_basis.value,
            )
            .on_conflict_do_nothing(
                index_elements=["worker_id", "pay_period_start", "pay_period_end"]
            )
        )
        result = await self.session.execute(stmt)
        record = await self.find_payroll(worker_id, period)
        if record is None:
            raise IntegrityGuardError(
                "Payroll upsert produced no row",
                {"worker_id": str(worker_id), "pay_period_start": period.start.isoformat()},
            )
        return record, bool(result.rowcount)

    @staticmethod
    def _deductions(
        totals: AggregationTotals, settings: PayrollSettings, profile: WorkerProfile
    ) -> DeductionBreakdown:
        if totals.gross_pay == 0:
            return DeductionBreakdown(nib_deduction=ZERO, other_deductions=ZERO)
        return calculate_deductions(
            totals.gross_pay,
            settings.deductions,
            nib_exempt=profile.nib_exempt,
            overtime_pay=totals.overtime_pay,
        )

    @staticmethod
    def _guard_regeneration(
        record: PayrollRecord, totals: AggregationTotals, breakdown: DeductionBreakdown
    ) -> None:
        new_gross = totals.gross_pay
        new_net = new_gross - breakdown.total_deductions
        new_basis = new_gross if record.payment_basis == "gross_pay" else new_net
        if new_basis < record.total_paid:
            raise IntegrityGuardError(
                "Recomputed pay would fall below the amount already paid",
                {
                    "payroll_id": str(record.payroll_id),
                    "total_paid": str(record.total_paid),
                    "new_basis": str(new_basis),
                },
            )

    @staticmethod
    def _apply(
        record: PayrollRecord, totals: AggregationTotals, breakdown: DeductionBreakdown
    ) -> None:
        record.project_id = totals.single_project_id
        record.regular_hours = totals.regular_hours
        record.overtime_hours = totals.overtime_hours
        record.total_hours = totals.total_hours
        record.gross_pay = totals.gross_pay
        record.nib_deduction = breakdown.nib_deduction
        record.other_deductions = breakdown.other_deductions
        record.total_deductions = breakdown.total_deductions
        record.net_pay = totals.gross_pay - breakdown.total_deductions
        record.remaining_balance = balance_for(record)
