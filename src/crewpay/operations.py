"""Caller-facing operations.

Each operation runs in its own transaction, holding the per-record locks of
every payroll it may touch, and reports through an ``OperationResult``
envelope. Domain errors (``PayrollError``) roll the transaction back and
become failed results; anything else propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from crewpay.calculators.periods import pay_period_for
from crewpay.calculators.types import PayPeriod, RoundingPolicy
from crewpay.config import get_settings
from crewpay.errors import NotFoundError, PayrollError, ValidationError
from crewpay.models import PayrollPayment, PayrollRecord, Timesheet
from crewpay.services.aggregation_service import PayrollAggregator
from crewpay.services.approval_service import ApprovalOutcome, TimesheetApprovalGate
from crewpay.services.ledger_service import PaymentLedger
from crewpay.services.locking_service import (
    KeyedLockRegistry,
    RecordLockService,
    payroll_period_key,
    payroll_record_key,
)
from crewpay.services.payroll_status_service import BulkTransitionReport, PayrollStatusService
from crewpay.services.settings_service import SettingsProvider
from crewpay.services.timesheet_service import TimesheetService

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Envelope returned by every operation."""

    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, **details: Any) -> OperationResult:
        return cls(success=True, data=data, details=details)

    @classmethod
    def failure(cls, exc: PayrollError, data: Any = None) -> OperationResult:
        return cls(
            success=False,
            data=data,
            error=exc.message,
            error_code=exc.code,
            details=exc.details,
        )


def payroll_snapshot(record: PayrollRecord) -> dict[str, Any]:
    data = record.to_dict()
    data["basis_amount"] = record.basis_amount
    return data


def timesheet_snapshot(timesheet: Timesheet) -> dict[str, Any]:
    return timesheet.to_dict()


def payment_snapshot(payment: PayrollPayment) -> dict[str, Any]:
    return payment.to_dict()


def approval_snapshot(outcome: ApprovalOutcome) -> dict[str, Any]:
    return {
        "timesheet": timesheet_snapshot(outcome.timesheet),
        "payroll": payroll_snapshot(outcome.payroll) if outcome.payroll else None,
        "payroll_error": outcome.payroll_error.message if outcome.payroll_error else None,
        "payroll_error_code": outcome.payroll_error.code if outcome.payroll_error else None,
        "needs_regeneration": outcome.needs_regeneration,
    }


def report_snapshot(report: BulkTransitionReport) -> dict[str, Any]:
    return {
        "to_status": report.to_status,
        "succeeded": [str(pid) for pid in report.succeeded],
        "failed": {str(pid): reason for pid, reason in report.failed.items()},
        "warnings": {str(pid): msgs for pid, msgs in report.warnings.items()},
    }


class PayrollOperations:
    """Transaction and locking boundary around the time-to-pay services."""

    def __init__(
        self,
        session: AsyncSession,
        lock_timeout: float | None = None,
        registry: KeyedLockRegistry | None = None,
    ):
        self.session = session
        timeout = lock_timeout if lock_timeout is not None else get_settings().lock_timeout_seconds
        self.locks = RecordLockService(session, timeout=timeout, registry=registry)
        self.timesheets = TimesheetService(session)
        self.approvals = TimesheetApprovalGate(session)
        self.aggregator = PayrollAggregator(session)
        self.ledger = PaymentLedger(session)
        self.statuses = PayrollStatusService(session)
        self.settings_provider = SettingsProvider(session)

    async def _run(
        self,
        name: str,
        action: Callable[[], Awaitable[Any]],
        keys: Callable[[], Awaitable[list[str]]] | None = None,
    ) -> OperationResult:
        """Run ``action`` in one transaction under the locks named by ``keys``."""
        try:
            lock_keys = await keys() if keys is not None else []
            async with self.locks.hold(lock_keys):
                try:
                    data = await action()
                except Exception:
                    await self.session.rollback()
                    raise
                await self.session.commit()
        except PayrollError as exc:
            if self.session.in_transaction():
                await self.session.rollback()
            logger.warning("%s refused: [%s] %s", name, exc.code, exc.message)
            return OperationResult.failure(exc)
        return OperationResult.ok(data)

    async def _payroll_keys(self, payroll_id: UUID) -> list[str]:
        record = await self.aggregator.get_payroll(payroll_id)
        return [
            payroll_record_key(payroll_id),
            payroll_period_key(record.worker_id, record.pay_period_start, record.pay_period_end),
        ]

    async def _resolve_period(
        self,
        company_id: UUID,
        period_start: date | None,
        period_end: date | None,
        day: date | None,
    ) -> PayPeriod:
        if period_start is not None and period_end is not None:
            return PayPeriod(period_start, period_end)
        if day is None:
            raise ValidationError("Either a pay period or a date inside it is required")
        settings = await self.settings_provider.get_payroll_settings(company_id)
        return pay_period_for(day, settings.periods)

    # Payroll

    async def generate_payroll_for_worker_and_period(
        self,
        company_id: UUID,
        worker_id: UUID,
        period_start: date | None = None,
        period_end: date | None = None,
        day: date | None = None,
        regenerate: bool = False,
        actor_id: UUID | None = None,
    ) -> OperationResult:
        period: PayPeriod | None = None

        async def keys() -> list[str]:
            nonlocal period
            period = await self._resolve_period(company_id, period_start, period_end, day)
            return [payroll_period_key(worker_id, period.start, period.end)]

        async def action() -> dict[str, Any]:
            record = await self.aggregator.generate(
                company_id, worker_id, period.start, period.end, regenerate, actor_id
            )
            return payroll_snapshot(record)

        return await self._run("generate_payroll", action, keys)

    async def generate_payroll_batch(
        self,
        company_id: UUID,
        pairs: list[tuple[UUID, date]],
        regenerate: bool = False,
        actor_id: UUID | None = None,
    ) -> OperationResult:
        """Aggregate (worker, date-in-period) pairs, one transaction each."""
        try:
            settings = await self.settings_provider.get_payroll_settings(company_id)
        except PayrollError as exc:
            return OperationResult.failure(exc)

        results: list[dict[str, Any]] = []
        seen: set[tuple[UUID, date]] = set()
        for worker_id, day in pairs:
            period = pay_period_for(day, settings.periods)
            if (worker_id, period.start) in seen:
                continue
            seen.add((worker_id, period.start))

            result = await self.generate_payroll_for_worker_and_period(
                company_id,
                worker_id,
                period.start,
                period.end,
                regenerate=regenerate,
                actor_id=actor_id,
            )
            results.append(
                {
                    "worker_id": str(worker_id),
                    "pay_period_start": period.start.isoformat(),
                    "pay_period_end": period.end.isoformat(),
                    "success": result.success,
                    "payroll": result.data,
                    "error": result.error,
                    "error_code": result.error_code,
                }
            )

        failed = sum(1 for item in results if not item["success"])
        return OperationResult.ok(results, processed=len(results), failed=failed)

    async def discard_payroll(
        self, payroll_id: UUID, actor_id: UUID | None = None
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            await self.aggregator.discard_payroll(payroll_id, actor_id)
            return {"payroll_id": str(payroll_id), "discarded": True}

        return await self._run("discard_payroll", action, lambda: self._payroll_keys(payroll_id))

    async def get_payroll(self, payroll_id: UUID) -> OperationResult:
        async def action() -> dict[str, Any]:
            return payroll_snapshot(await self.aggregator.get_payroll(payroll_id))

        return await self._run("get_payroll", action)

    async def update_payroll_status(
        self,
        payroll_ids: list[UUID],
        new_status: str,
        actor_id: UUID | None = None,
        allow_pending_timesheets: bool = False,
        auto_settle: bool = False,
        reason: str | None = None,
    ) -> OperationResult:
        """Bulk status change.

        The batch is checked as a whole first (source status, pending
        timesheets). Then each record transitions in its own transaction.
        """
        try:
            to_process, missing = await self.statuses.precheck_bulk(
                payroll_ids, new_status, allow_pending_timesheets
            )
            await self.session.commit()
        except PayrollError as exc:
            await self.session.rollback()
            logger.warning("update_payroll_status refused: [%s] %s", exc.code, exc.message)
            return OperationResult.failure(exc)

        report = BulkTransitionReport(to_status=new_status)
        report.failed.update(missing)
        for payroll_id in to_process:

            async def action(payroll_id: UUID = payroll_id) -> list[str]:
                result = await self.statuses.transition(
                    payroll_id, new_status, actor_id, reason, auto_settle
                )
                return result.warnings

            result = await self._run(
                "update_payroll_status",
                action,
                lambda payroll_id=payroll_id: self._payroll_keys(payroll_id),
            )
            if result.success:
                report.succeeded.append(payroll_id)
                if result.data:
                    report.warnings[payroll_id] = result.data
            else:
                report.failed[payroll_id] = result.error or "failed"

        data = report_snapshot(report)
        if report.success:
            return OperationResult.ok(data)
        return OperationResult(
            success=False,
            data=data,
            error=f"{len(report.failed)} of {len(payroll_ids)} payroll(s) not updated",
            error_code="BULK_PARTIAL_FAILURE",
            details={"failed": data["failed"]},
        )

    async def check_pending_timesheets_for_payrolls(
        self, payroll_ids: list[UUID]
    ) -> OperationResult:
        async def action() -> dict[str, int]:
            counts = await self.statuses.check_pending_timesheets(payroll_ids)
            return {str(pid): count for pid, count in counts.items()}

        return await self._run("check_pending_timesheets", action)

    # Ledger

    async def add_payroll_payment(
        self,
        payroll_id: UUID,
        amount: Decimal,
        payment_date: date | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            payment = await self.ledger.add_payment(
                payroll_id, amount, payment_date, notes, actor_id
            )
            record = await self.aggregator.get_payroll(payroll_id)
            return {"payment": payment_snapshot(payment), "payroll": payroll_snapshot(record)}

        return await self._run("add_payroll_payment", action, lambda: self._payroll_keys(payroll_id))

    async def set_payroll_payment_amount(
        self,
        payroll_id: UUID,
        total_amount: Decimal,
        actor_id: UUID | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            record = await self.ledger.set_payment_amount(
                payroll_id, total_amount, actor_id, notes
            )
            return payroll_snapshot(record)

        return await self._run(
            "set_payroll_payment_amount", action, lambda: self._payroll_keys(payroll_id)
        )

    async def void_payroll_payment(
        self,
        payment_id: UUID,
        actor_id: UUID | None = None,
        reason: str | None = None,
    ) -> OperationResult:
        async def keys() -> list[str]:
            payment = await self.session.get(PayrollPayment, payment_id)
            if payment is None:
                raise NotFoundError(
                    f"Payment {payment_id} not found", {"payment_id": str(payment_id)}
                )
            return await self._payroll_keys(payment.payroll_id)

        async def action() -> dict[str, Any]:
            payment = await self.ledger.void_payment(payment_id, actor_id, reason)
            return payment_snapshot(payment)

        return await self._run("void_payroll_payment", action, keys)

    async def payroll_balance(self, payroll_id: UUID) -> OperationResult:
        async def action() -> dict[str, Any]:
            record = await self.aggregator.get_payroll(payroll_id)
            entries = await self.ledger.payments_for([payroll_id])
            return {
                "payroll_id": str(payroll_id),
                "status": record.status,
                "payment_basis": record.payment_basis,
                "basis_amount": record.basis_amount,
                "total_paid": await self.ledger.completed_total(payroll_id),
                "remaining_balance": await self.ledger.remaining_balance(payroll_id),
                "payments": [payment_snapshot(p) for p in entries[payroll_id]],
            }

        return await self._run("payroll_balance", action)

    # Timesheets

    async def generate_timesheet(
        self,
        company_id: UUID,
        worker_id: UUID,
        project_id: UUID,
        day: date,
        rounding: RoundingPolicy | str | None = None,
        round_to_standard_day: bool | None = None,
        actor_id: UUID | None = None,
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            timesheet = await self.timesheets.generate_timesheet(
                company_id, worker_id, project_id, day, rounding, round_to_standard_day, actor_id
            )
            return timesheet_snapshot(timesheet)

        return await self._run("generate_timesheet", action)

    async def generate_timesheets_for_date(
        self,
        company_id: UUID,
        project_id: UUID,
        day: date,
        rounding: RoundingPolicy | str | None = None,
        round_to_standard_day: bool | None = None,
        actor_id: UUID | None = None,
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            batch = await self.timesheets.generate_timesheets_for_date(
                company_id, project_id, day, rounding, round_to_standard_day, actor_id
            )
            return {
                "created": [str(tid) for tid in batch.created],
                "errors": {str(wid): msg for wid, msg in batch.errors.items()},
            }

        return await self._run("generate_timesheets_for_date", action)

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
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            timesheet = await self.timesheets.create_manual_timesheet(
                company_id,
                worker_id,
                project_id,
                day,
                clock_in,
                clock_out,
                break_minutes,
                hourly_rate,
                notes,
                actor_id,
            )
            return timesheet_snapshot(timesheet)

        return await self._run("create_manual_timesheet", action)

    async def live_hours(
        self,
        company_id: UUID,
        worker_id: UUID,
        project_id: UUID,
        day: date,
        now: datetime | None = None,
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            computation = await self.timesheets.live_hours(
                company_id, worker_id, project_id, day, now
            )
            return {
                "clock_in": computation.clock_in,
                "clock_out": computation.clock_out,
                "break_minutes": computation.break_minutes,
                "raw_hours": computation.raw_hours,
                "total_hours": computation.total_hours,
                "regular_hours": computation.regular_hours,
                "overtime_hours": computation.overtime_hours,
                "total_pay": computation.total_pay,
                "is_open": computation.is_open,
            }

        return await self._run("live_hours", action)

    async def approve_timesheet(
        self, timesheet_id: UUID, actor_id: UUID | None = None
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            return approval_snapshot(await self.approvals.approve(timesheet_id, actor_id))

        return await self._run(
            "approve_timesheet", action, lambda: self.approvals.lock_keys_for([timesheet_id])
        )

    async def approve_timesheets(
        self, timesheet_ids: list[UUID], actor_id: UUID | None = None
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            batch = await self.approvals.approve_many(timesheet_ids, actor_id)
            return {
                "approved": [str(tid) for tid in batch.approved],
                "errors": {str(tid): msg for tid, msg in batch.errors.items()},
                "payrolls": [
                    {
                        "worker_id": str(outcome.worker_id),
                        "pay_period_start": outcome.period.start.isoformat(),
                        "pay_period_end": outcome.period.end.isoformat(),
                        "payroll": payroll_snapshot(outcome.payroll) if outcome.payroll else None,
                        "error": outcome.error.message if outcome.error else None,
                        "error_code": outcome.error.code if outcome.error else None,
                    }
                    for outcome in batch.payrolls
                ],
            }

        return await self._run(
            "approve_timesheets", action, lambda: self.approvals.lock_keys_for(timesheet_ids)
        )

    async def reject_timesheet(
        self, timesheet_id: UUID, actor_id: UUID | None = None, reason: str | None = None
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            return timesheet_snapshot(await self.approvals.reject(timesheet_id, actor_id, reason))

        return await self._run("reject_timesheet", action)

    async def reset_timesheet(
        self, timesheet_id: UUID, actor_id: UUID | None = None
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            return timesheet_snapshot(await self.approvals.reset(timesheet_id, actor_id))

        return await self._run("reset_timesheet", action)

    async def unapprove_timesheet(
        self, timesheet_id: UUID, actor_id: UUID | None, reason: str
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            return approval_snapshot(
                await self.approvals.unapprove(timesheet_id, actor_id, reason)
            )

        return await self._run(
            "unapprove_timesheet", action, lambda: self.approvals.lock_keys_for([timesheet_id])
        )

    async def correct_timesheet_hours(
        self,
        timesheet_id: UUID,
        clock_in: datetime | None = None,
        clock_out: datetime | None = None,
        break_minutes: int | None = None,
        hourly_rate: Decimal | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> OperationResult:
        async def action() -> dict[str, Any]:
            timesheet = await self.timesheets.correct_hours(
                timesheet_id,
                clock_in=clock_in,
                clock_out=clock_out,
                break_minutes=break_minutes,
                hourly_rate=hourly_rate,
                notes=notes,
                actor_id=actor_id,
            )
            return timesheet_snapshot(timesheet)

        return await self._run("correct_timesheet_hours", action)
