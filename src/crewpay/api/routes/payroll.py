"""Payroll API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status
from fastapi.responses import JSONResponse

from crewpay.api.dependencies import ActorId, CompanyId, Operations
from crewpay.api.responses import envelope
from crewpay.api.schemas import (
    OperationResponse,
    PaymentRequest,
    PaymentTotalRequest,
    PayrollBatchRequest,
    PayrollGenerateRequest,
    PayrollIdsRequest,
    StatusUpdateRequest,
    VoidPaymentRequest,
)

router = APIRouter(prefix="/payroll", tags=["payroll"])

PayrollId = Annotated[UUID, Path(description="Payroll record ID")]


# ============================================================================
# Aggregation
# ============================================================================


@router.post("/generate", response_model=OperationResponse)
async def generate_payroll(
    ops: Operations,
    company_id: CompanyId,
    actor_id: ActorId,
    payload: PayrollGenerateRequest,
) -> JSONResponse:
    """Create or recompute a worker's payroll for one pay period."""
    result = await ops.generate_payroll_for_worker_and_period(
        company_id,
        payload.worker_id,
        period_start=payload.period_start,
        period_end=payload.period_end,
        day=payload.date,
        regenerate=payload.regenerate,
        actor_id=actor_id,
    )
    return envelope(result)


@router.post("/generate-batch", response_model=OperationResponse)
async def generate_payroll_batch(
    ops: Operations,
    company_id: CompanyId,
    actor_id: ActorId,
    payload: PayrollBatchRequest,
) -> JSONResponse:
    result = await ops.generate_payroll_batch(
        company_id,
        [(item.worker_id, item.date) for item in payload.items],
        regenerate=payload.regenerate,
        actor_id=actor_id,
    )
    return envelope(result)


# ============================================================================
# Status
# ============================================================================


@router.post("/status", response_model=OperationResponse)
async def update_payroll_status(
    ops: Operations,
    actor_id: ActorId,
    payload: StatusUpdateRequest,
) -> JSONResponse:
    """Move a set of payroll records to a new status."""
    result = await ops.update_payroll_status(
        payload.payroll_ids,
        payload.status,
        actor_id=actor_id,
        allow_pending_timesheets=payload.allow_pending_timesheets,
        auto_settle=payload.auto_settle,
        reason=payload.reason,
    )
    return envelope(result)


@router.post("/pending-timesheets", response_model=OperationResponse)
async def check_pending_timesheets(
    ops: Operations,
    payload: PayrollIdsRequest,
) -> JSONResponse:
    result = await ops.check_pending_timesheets_for_payrolls(payload.payroll_ids)
    return envelope(result)


# ============================================================================
# Payments
# ============================================================================


@router.post("/payments/{payment_id}/void", response_model=OperationResponse)
async def void_payroll_payment(
    ops: Operations,
    actor_id: ActorId,
    payment_id: Annotated[UUID, Path(description="Ledger entry ID")],
    payload: VoidPaymentRequest | None = None,
) -> JSONResponse:
    result = await ops.void_payroll_payment(
        payment_id, actor_id, payload.reason if payload else None
    )
    return envelope(result)


@router.post(
    "/{payroll_id}/payments",
    response_model=OperationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_payroll_payment(
    ops: Operations,
    actor_id: ActorId,
    payroll_id: PayrollId,
    payload: PaymentRequest,
) -> JSONResponse:
    result = await ops.add_payroll_payment(
        payroll_id,
        payload.amount,
        payment_date=payload.payment_date,
        notes=payload.notes,
        actor_id=actor_id,
    )
    return envelope(result, status.HTTP_201_CREATED)


@router.put("/{payroll_id}/payments/total", response_model=OperationResponse)
async def set_payroll_payment_amount(
    ops: Operations,
    actor_id: ActorId,
    payroll_id: PayrollId,
    payload: PaymentTotalRequest,
) -> JSONResponse:
    """Reconcile the ledger so completed payments sum to the given total."""
    result = await ops.set_payroll_payment_amount(
        payroll_id, payload.total_amount, actor_id=actor_id, notes=payload.notes
    )
    return envelope(result)


@router.get("/{payroll_id}/balance", response_model=OperationResponse)
async def payroll_balance(ops: Operations, payroll_id: PayrollId) -> JSONResponse:
    result = await ops.payroll_balance(payroll_id)
    return envelope(result)


# ============================================================================
# Record
# ============================================================================


@router.get("/{payroll_id}", response_model=OperationResponse)
async def get_payroll(ops: Operations, payroll_id: PayrollId) -> JSONResponse:
    result = await ops.get_payroll(payroll_id)
    return envelope(result)


@router.delete("/{payroll_id}", response_model=OperationResponse)
async def discard_payroll(
    ops: Operations,
    actor_id: ActorId,
    payroll_id: PayrollId,
) -> JSONResponse:
    """Delete a pending or void payroll record and its ledger."""
    result = await ops.discard_payroll(payroll_id, actor_id)
    return envelope(result)
