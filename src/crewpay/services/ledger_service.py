"""Payment ledger for payroll records.

The ledger is append-only: entries are never deleted or edited, only voided.
``total_paid`` and ``remaining_balance`` on the payroll record are always
recomputed from the completed entries after a mutation.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crewpay.calculators.types import ZERO, quantize_money
from crewpay.errors import (
    IntegrityGuardError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from crewpay.models import PayrollPayment, PayrollRecord
from crewpay.services.aggregation_service import PayrollAggregator, balance_for
from crewpay.services.audit_service import record_audit
from crewpay.services.state_machine import PayrollStateMachine, PayrollStatus

logger = logging.getLogger(__name__)

COMPLETED = "completed"
VOID = "void"


class PaymentLedger:
    """Records, reconciles and voids payments against payroll records."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.aggregator = PayrollAggregator(session)

    async def completed_total(self, payroll_id: UUID) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(PayrollPayment.amount), 0)).where(
                PayrollPayment.payroll_id == payroll_id,
                PayrollPayment.status == COMPLETED,
            )
        )
        return quantize_money(Decimal(str(result.scalar() or 0)))

    async def refresh_balance(self, record: PayrollRecord) -> PayrollRecord:
        """Recompute total_paid and remaining_balance from the ledger."""
        record.total_paid = await self.completed_total(record.payroll_id)
        record.remaining_balance = balance_for(record)
        await self.session.flush()
        return record

    async def remaining_balance(self, payroll_id: UUID) -> Decimal:
        record = await self.aggregator.get_payroll(payroll_id)
        if record.status == PayrollStatus.PAID:
            return ZERO
        paid = await self.completed_total(payroll_id)
        return max(ZERO, quantize_money(record.basis_amount - paid))

    async def payments_for(self, payroll_ids: list[UUID]) -> dict[UUID, list[PayrollPayment]]:
        """All ledger entries for a set of payroll records, in one query."""
        entries: dict[UUID, list[PayrollPayment]] = {pid: [] for pid in payroll_ids}
        if not payroll_ids:
            return entries
        result = await self.session.execute(
            select(PayrollPayment)
            .where(PayrollPayment.payroll_id.in_(payroll_ids))
            .order_by(PayrollPayment.recorded_at)
        )
        for payment in result.scalars().all():
            entries.setdefault(payment.payroll_id, []).append(payment)
        return entries

    @staticmethod
    def _guard_accepts_payments(record: PayrollRecord) -> None:
        if not PayrollStateMachine.accepts_payments(record.status):
            raise StateConflictError(
                f"Payments can only be recorded against confirmed or paid payroll, "
                f"not {record.status}",
                {"payroll_id": str(record.payroll_id), "status": record.status},
            )

    @staticmethod
    def _guard_basis(record: PayrollRecord, new_total: Decimal) -> None:
        if new_total > record.basis_amount:
            raise IntegrityGuardError(
                "Payment would exceed the amount owed",
                {
                    "payroll_id": str(record.payroll_id),
                    "payment_basis": record.payment_basis,
                    "basis_amount": str(record.basis_amount),
                    "total_paid": str(record.total_paid),
                    "new_total": str(new_total),
                },
            )

    def _entry(
        self,
        record: PayrollRecord,
        amount: Decimal,
        entry_type: str,
        payment_date: date | None,
        notes: str | None,
        actor_id: UUID | None,
    ) -> PayrollPayment:
        payment = PayrollPayment(
            payroll_id=record.payroll_id,
            amount=amount,
            payment_date=payment_date or date.today(),
            status=COMPLETED,
            entry_type=entry_type,
            notes=notes,
            created_by=actor_id,
        )
        self.session.add(payment)
        return payment

    async def add_payment(
        self,
        payroll_id: UUID,
        amount: Decimal,
        payment_date: date | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
        entry_type: str = "payment",
    ) -> PayrollPayment:
        """Append a completed entry.

        Raises:
            ValidationError: amount is not positive
            StateConflictError: payroll is not confirmed or paid
            IntegrityGuardError: total paid would exceed the basis
        """
        amount = quantize_money(Decimal(amount))
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", {"amount": str(amount)})

        record = await self.aggregator.get_payroll(payroll_id, for_update=True)
        self._guard_accepts_payments(record)

        current = await self.completed_total(payroll_id)
        self._guard_basis(record, current + amount)

        payment = self._entry(record, amount, entry_type, payment_date, notes, actor_id)
        await self.session.flush()
        await self.refresh_balance(record)

        record_audit(
            self.session,
            entity_type="payroll",
            entity_id=payroll_id,
            action=f"{entry_type}_added",
            company_id=record.company_id,
            actor_id=actor_id,
            details={
                "payment_id": str(payment.payment_id),
                "amount": str(amount),
                "total_paid": str(record.total_paid),
            },
        )
        logger.info(
            "Recorded %s of %s against payroll %s (remaining %s)",
            entry_type,
            amount,
            payroll_id,
            record.remaining_balance,
        )
        return payment

    async def set_payment_amount(
        self,
        payroll_id: UUID,
        total_amount: Decimal,
        actor_id: UUID | None = None,
        notes: str | None = None,
    ) -> PayrollRecord:
        """Reconcile the completed total to ``total_amount``.

        An increase appends one adjustment for the delta. A decrease voids
        the most recent completed entries until the total is at or below the
        target, then appends an adjustment for any shortfall.
        """
        target = quantize_money(Decimal(total_amount))
        if target < 0:
            raise ValidationError(
                "Payment total cannot be negative", {"total_amount": str(target)}
            )

        record = await self.aggregator.get_payroll(payroll_id, for_update=True)
        self._guard_accepts_payments(record)
        self._guard_basis(record, target)

        current = await self.completed_total(payroll_id)
        delta = target - current
        voided: list[str] = []

        if delta < 0:
            result = await self.session.execute(
                select(PayrollPayment)
                .where(
                    PayrollPayment.payroll_id == payroll_id,
                    PayrollPayment.status == COMPLETED,
                )
                .order_by(PayrollPayment.recorded_at.desc())
            )
            running = current
            for payment in result.scalars().all():
                if running <= target:
                    break
                payment.status = VOID
                payment.voided_at = datetime.now(timezone.utc)
                payment.void_reason = "payment total reduced"
                running -= payment.amount
                voided.append(str(payment.payment_id))
            shortfall = target - running
        else:
            shortfall = delta

        if shortfall > 0:
            self._entry(record, shortfall, "adjustment", None, notes, actor_id)

        await self.session.flush()
        await self.refresh_balance(record)

        record_audit(
            self.session,
            entity_type="payroll",
            entity_id=payroll_id,
            action="payment_amount_set",
            company_id=record.company_id,
            actor_id=actor_id,
            details={
                "previous_total": str(current),
                "new_total": str(record.total_paid),
                "delta": str(record.total_paid - current),
                "voided": voided,
            },
        )
        logger.info(
            "Payroll %s payment total set %s -> %s", payroll_id, current, record.total_paid
        )
        return record

    async def void_payment(
        self, payment_id: UUID, actor_id: UUID | None = None, reason: str | None = None
    ) -> PayrollPayment:
        """Void a completed entry; it stays in the ledger for audit."""
        payment = await self.session.get(PayrollPayment, payment_id)
        if payment is None:
            raise NotFoundError(
                f"Payment {payment_id} not found", {"payment_id": str(payment_id)}
            )
        record = await self.aggregator.get_payroll(payment.payroll_id, for_update=True)
        self._guard_accepts_payments(record)
        if payment.status == VOID:
            raise StateConflictError(
                "Payment is already void", {"payment_id": str(payment_id)}
            )

        payment.status = VOID
        payment.voided_at = datetime.now(timezone.utc)
        payment.void_reason = reason
        await self.session.flush()
        await self.refresh_balance(record)

        record_audit(
            self.session,
            entity_type="payroll",
            entity_id=record.payroll_id,
            action="payment_voided",
            company_id=record.company_id,
            actor_id=actor_id,
            details={"payment_id": str(payment_id), "amount": str(payment.amount), "reason": reason},
        )
        logger.info("Voided payment %s on payroll %s", payment_id, record.payroll_id)
        return payment

    async def settle(
        self, record: PayrollRecord, actor_id: UUID | None = None
    ) -> PayrollPayment | None:
        """Add a settlement entry for the exact remainder, if any."""
        remainder = quantize_money(record.basis_amount - await self.completed_total(record.payroll_id))
        if remainder <= ZERO:
            return None
        return await self.add_payment(
            record.payroll_id,
            remainder,
            notes="Auto-settlement on mark paid",
            actor_id=actor_id,
            entry_type="settlement",
        )
