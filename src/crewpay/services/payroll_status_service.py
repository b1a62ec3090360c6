"""Payroll status service - lifecycle transitions for payroll records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewpay.calculators.types import PayPeriod, quantize_money
from crewpay.errors import (
    IntegrityGuardError,
    InvalidTransitionError,
    StateConflictError,
    UnresolvedTimesheetsError,
)
from crewpay.models import PayrollPayment, PayrollRecord
from crewpay.services.aggregation_service import PayrollAggregator
from crewpay.services.audit_service import record_audit
from crewpay.services.ledger_service import PaymentLedger
from crewpay.services.settings_service import SettingsProvider
from crewpay.services.state_machine import PayrollStateMachine, PayrollStatus, status_value

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    record: PayrollRecord
    from_status: str
    settlement: PayrollPayment | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class BulkTransitionReport:
    """Per-record outcome of a bulk status update."""

    to_status: str
    succeeded: list[UUID] = field(default_factory=list)
    failed: dict[UUID, str] = field(default_factory=dict)
    warnings: dict[UUID, list[str]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


class PayrollStatusService:
    """Service for managing payroll record lifecycle.

    Operations:
    - transition_status: validated single transition with side effects
    - precheck_bulk: whole-batch source-state and pending-timesheet checks
    - check_pending_timesheets: pending timesheet counts per payroll
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.aggregator = PayrollAggregator(session)
        self.ledger = PaymentLedger(session)
        self.settings_provider = SettingsProvider(session)

    async def get_many(self, payroll_ids: list[UUID]) -> dict[UUID, PayrollRecord]:
        if not payroll_ids:
            return {}
        result = await self.session.execute(
            select(PayrollRecord).where(PayrollRecord.payroll_id.in_(payroll_ids))
        )
        return {record.payroll_id: record for record in result.scalars().all()}

    async def check_pending_timesheets(self, payroll_ids: list[UUID]) -> dict[UUID, int]:
        """Count pending timesheets inside each payroll's worker/period."""
        records = await self.get_many(payroll_ids)
        counts: dict[UUID, int] = {}
        for payroll_id in payroll_ids:
            record = records.get(payroll_id)
            if record is None:
                continue
            counts[payroll_id] = await self.aggregator.count_pending_timesheets(
                record.worker_id,
                PayPeriod(record.pay_period_start, record.pay_period_end),
            )
        return counts

    async def precheck_bulk(
        self,
        payroll_ids: list[UUID],
        to_status: str,
        allow_pending_timesheets: bool = False,
    ) -> tuple[list[UUID], dict[UUID, str]]:
        """Validate a bulk transition before anything changes.

        Returns (ids to process, unknown ids with reasons).

        Raises:
            StateConflictError: any known member is not in the batch's
                source status; the whole batch is rejected
            UnresolvedTimesheetsError: confirming with pending timesheets
        """
        to_status = status_value(to_status)
        records = await self.get_many(payroll_ids)
        missing = {pid: "Payroll not found" for pid in payroll_ids if pid not in records}

        wrong_state: dict[str, str] = {}
        allowed = PayrollStateMachine.bulk_source_statuses(to_status)
        present = {record.status for record in records.values()}
        required = next((s for s in allowed if s in present), None) if allowed else None
        for payroll_id, record in records.items():
            if allowed:
                ok = record.status == required
            else:
                ok = PayrollStateMachine.can_transition(record.status, to_status)
            if not ok:
                wrong_state[str(payroll_id)] = record.status
        if wrong_state:
            logger.warning(
                "Bulk update to %s rejected: %d record(s) in wrong status",
                to_status,
                len(wrong_state),
            )
            raise StateConflictError(
                f"{len(wrong_state)} payroll(s) cannot move to '{to_status}'",
                {"to_status": to_status, "records": wrong_state},
            )

        # Only forward confirmation checks the period's pending timesheets
        if required == PayrollStatus.PENDING and not allow_pending_timesheets:
            counts = await self.check_pending_timesheets(list(records))
            total = sum(counts.values())
            if total:
                raise UnresolvedTimesheetsError(
                    total, {"records": {str(k): v for k, v in counts.items() if v}}
                )

        ordered = [pid for pid in payroll_ids if pid in records]
        return list(dict.fromkeys(ordered)), missing

    async def transition(
        self,
        payroll_id: UUID,
        to_status: str,
        actor_id: UUID | None = None,
        reason: str | None = None,
        auto_settle: bool = False,
    ) -> TransitionResult:
        record = await self.aggregator.get_payroll(payroll_id, for_update=True)
        return await self.transition_status(record, to_status, actor_id, reason, auto_settle)

    async def transition_status(
        self,
        record: PayrollRecord,
        to_status: str,
        actor_id: UUID | None = None,
        reason: str | None = None,
        auto_settle: bool = False,
    ) -> TransitionResult:
        """Transition a payroll record to a new status.

        Handles the side effects of transitions:
        - confirmed: set confirmed_at
        - paid: settle or check the remaining balance, set paid_at
        - reversals: clear the timestamp of the state being left
        - void: requires reason

        Raises InvalidTransitionError if the transition is not allowed.
        """
        to_status = status_value(to_status)
        from_status = record.status

        errors = PayrollStateMachine.validate_record_for_transition(record, to_status)
        if errors:
            raise InvalidTransitionError(from_status, to_status, "; ".join(errors))

        result = TransitionResult(record=record, from_status=from_status)
        now = datetime.now(timezone.utc)

        if to_status == PayrollStatus.PAID:
            await self._handle_paid(result, actor_id, auto_settle)
            record.paid_at = now

        elif to_status == PayrollStatus.CONFIRMED:
            if from_status == PayrollStatus.PAID:
                record.paid_at = None
            else:
                record.confirmed_at = now

        elif to_status == PayrollStatus.PENDING:
            record.confirmed_at = None

        elif to_status == PayrollStatus.VOID:
            if not reason:
                raise InvalidTransitionError(from_status, to_status, "Void requires a reason")

        record.status = to_status
        await self.ledger.refresh_balance(record)

        reversal = PayrollStateMachine.is_reversal(from_status, to_status)
        details: dict[str, object] = {"from_status": from_status, "to_status": record.status}
        if reason:
            details["reason"] = reason
        if result.settlement is not None:
            details["settlement"] = str(result.settlement.amount)
        record_audit(
            self.session,
            entity_type="payroll",
            entity_id=record.payroll_id,
            action="status_reversal" if reversal else f"status_change:{from_status}:{record.status}",
            company_id=record.company_id,
            actor_id=actor_id,
            details=details,
        )
        logger.info("Payroll %s: %s -> %s", record.payroll_id, from_status, record.status)
        return result

    async def _handle_paid(
        self, result: TransitionResult, actor_id: UUID | None, auto_settle: bool
    ) -> None:
        record = result.record
        remaining = quantize_money(
            record.basis_amount - await self.ledger.completed_total(record.payroll_id)
        )
        if remaining <= 0:
            return

        if auto_settle:
            result.settlement = await self.ledger.settle(record, actor_id)
            return

        settings = await self.settings_provider.get_payroll_settings(record.company_id)
        if settings.require_full_settlement:
            raise IntegrityGuardError(
                "Payroll cannot be marked paid with a remaining balance",
                {"payroll_id": str(record.payroll_id), "remaining_balance": str(remaining)},
            )
        result.warnings.append(f"Marked paid with remaining balance {remaining}")
