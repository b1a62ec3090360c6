"""Timesheet API endpoints."""

import datetime as dt
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status
from fastapi.responses import JSONResponse

from crewpay.api.dependencies import ActorId, CompanyId, Operations
from crewpay.api.responses import envelope
from crewpay.api.schemas import (
    HoursCorrectionRequest,
    ManualTimesheetRequest,
    OperationResponse,
    RejectRequest,
    TimesheetBatchGenerateRequest,
    TimesheetGenerateRequest,
    TimesheetIdsRequest,
    UnapproveRequest,
)

router = APIRouter(prefix="/timesheets", tags=["timesheets"])

TimesheetId = Annotated[UUID, Path(description="Timesheet ID")]


# ============================================================================
# Generation
# ============================================================================


@router.post(
    "/generate",
    response_model=OperationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_timesheet(
    ops: Operations,
    company_id: CompanyId,
    actor_id: ActorId,
    payload: TimesheetGenerateRequest,
) -> JSONResponse:
    """Create a pending timesheet from the day's clock events."""
    result = await ops.generate_timesheet(
        company_id,
        payload.worker_id,
        payload.project_id,
        payload.date,
        rounding=payload.rounding,
        round_to_standard_day=payload.round_to_standard_day,
        actor_id=actor_id,
    )
    return envelope(result, status.HTTP_201_CREATED)


@router.post("/generate-for-date", response_model=OperationResponse)
async def generate_timesheets_for_date(
    ops: Operations,
    company_id: CompanyId,
    actor_id: ActorId,
    payload: TimesheetBatchGenerateRequest,
) -> JSONResponse:
    """Generate timesheets for every worker clocked on a project that day."""
    result = await ops.generate_timesheets_for_date(
        company_id,
        payload.project_id,
        payload.date,
        rounding=payload.rounding,
        round_to_standard_day=payload.round_to_standard_day,
        actor_id=actor_id,
    )
    return envelope(result)


@router.post(
    "/manual",
    response_model=OperationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_manual_timesheet(
    ops: Operations,
    company_id: CompanyId,
    actor_id: ActorId,
    payload: ManualTimesheetRequest,
) -> JSONResponse:
    result = await ops.create_manual_timesheet(
        company_id,
        payload.worker_id,
        payload.project_id,
        payload.date,
        payload.clock_in,
        payload.clock_out,
        break_minutes=payload.break_minutes,
        hourly_rate=payload.hourly_rate,
        notes=payload.notes,
        actor_id=actor_id,
    )
    return envelope(result, status.HTTP_201_CREATED)


@router.get("/live-hours", response_model=OperationResponse)
async def live_hours(
    ops: Operations,
    company_id: CompanyId,
    worker_id: Annotated[UUID, Query()],
    project_id: Annotated[UUID, Query()],
    day: Annotated[dt.date, Query(alias="date")],
) -> JSONResponse:
    """Hours so far for a worker, counting a still-open shift up to now."""
    result = await ops.live_hours(company_id, worker_id, project_id, day)
    return envelope(result)


# ============================================================================
# Approval
# ============================================================================


@router.post("/approve", response_model=OperationResponse)
async def approve_timesheets(
    ops: Operations,
    actor_id: ActorId,
    payload: TimesheetIdsRequest,
) -> JSONResponse:
    """Approve several timesheets and aggregate each affected pay period once."""
    result = await ops.approve_timesheets(payload.timesheet_ids, actor_id)
    return envelope(result)


@router.post("/{timesheet_id}/approve", response_model=OperationResponse)
async def approve_timesheet(
    ops: Operations,
    actor_id: ActorId,
    timesheet_id: TimesheetId,
) -> JSONResponse:
    result = await ops.approve_timesheet(timesheet_id, actor_id)
    return envelope(result)


@router.post("/{timesheet_id}/reject", response_model=OperationResponse)
async def reject_timesheet(
    ops: Operations,
    actor_id: ActorId,
    timesheet_id: TimesheetId,
    payload: RejectRequest | None = None,
) -> JSONResponse:
    result = await ops.reject_timesheet(
        timesheet_id, actor_id, payload.reason if payload else None
    )
    return envelope(result)


@router.post("/{timesheet_id}/reset", response_model=OperationResponse)
async def reset_timesheet(
    ops: Operations,
    actor_id: ActorId,
    timesheet_id: TimesheetId,
) -> JSONResponse:
    result = await ops.reset_timesheet(timesheet_id, actor_id)
    return envelope(result)


@router.post("/{timesheet_id}/unapprove", response_model=OperationResponse)
async def unapprove_timesheet(
    ops: Operations,
    actor_id: ActorId,
    timesheet_id: TimesheetId,
    payload: UnapproveRequest,
) -> JSONResponse:
    """Admin reversal of an approval; requires X-Actor-ID and a reason."""
    result = await ops.unapprove_timesheet(timesheet_id, actor_id, payload.reason)
    return envelope(result)


@router.patch("/{timesheet_id}/hours", response_model=OperationResponse)
async def correct_timesheet_hours(
    ops: Operations,
    actor_id: ActorId,
    timesheet_id: TimesheetId,
    payload: HoursCorrectionRequest,
) -> JSONResponse:
    result = await ops.correct_timesheet_hours(
        timesheet_id,
        clock_in=payload.clock_in,
        clock_out=payload.clock_out,
        break_minutes=payload.break_minutes,
        hourly_rate=payload.hourly_rate,
        notes=payload.notes,
        actor_id=actor_id,
    )
    return envelope(result)
