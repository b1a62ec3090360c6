"""Pydantic schemas for API request/response models."""

import datetime as dt
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


# ============================================================================
# Envelope
# ============================================================================


class OperationResponse(BaseModel):
    """Envelope every operation endpoint returns, success or not."""

    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: dt.datetime
    database: str
    version: str


# ============================================================================
# Timesheet schemas
# ============================================================================


class TimesheetGenerateRequest(BaseModel):
    """Generate one timesheet from the day's clock events."""

    worker_id: UUID
    project_id: UUID
    date: dt.date
    rounding: str | None = Field(
        default=None, description="standard | exact_minute | quarter_hour"
    )
    round_to_standard_day: bool | None = None


class TimesheetBatchGenerateRequest(BaseModel):
    """Generate timesheets for every worker clocked on a project/date."""

    project_id: UUID
    date: dt.date
    rounding: str | None = None
    round_to_standard_day: bool | None = None


class ManualTimesheetRequest(BaseModel):
    worker_id: UUID
    project_id: UUID
    date: dt.date
    clock_in: dt.datetime
    clock_out: dt.datetime
    break_minutes: int = Field(default=0, ge=0)
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class HoursCorrectionRequest(BaseModel):
    clock_in: dt.datetime | None = None
    clock_out: dt.datetime | None = None
    break_minutes: int | None = Field(default=None, ge=0)
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class TimesheetIdsRequest(BaseModel):
    timesheet_ids: list[UUID] = Field(min_length=1)


class RejectRequest(BaseModel):
    reason: str | None = None


class UnapproveRequest(BaseModel):
    reason: str = Field(min_length=1)


# ============================================================================
# Payroll schemas
# ============================================================================


class PayrollGenerateRequest(BaseModel):
    """Aggregate a worker's pay period, given explicitly or by a date inside it."""

    worker_id: UUID
    period_start: dt.date | None = None
    period_end: dt.date | None = None
    date: dt.date | None = None
    regenerate: bool = False


class PayrollBatchItem(BaseModel):
    worker_id: UUID
    date: dt.date


class PayrollBatchRequest(BaseModel):
    items: list[PayrollBatchItem] = Field(min_length=1)
    regenerate: bool = False


class StatusUpdateRequest(BaseModel):
    """Bulk payroll status change."""

    payroll_ids: list[UUID] = Field(min_length=1)
    status: str
    allow_pending_timesheets: bool = False
    auto_settle: bool = False
    reason: str | None = None


class PayrollIdsRequest(BaseModel):
    payroll_ids: list[UUID] = Field(min_length=1)


class PaymentRequest(BaseModel):
    amount: Decimal
    payment_date: dt.date | None = None
    notes: str | None = None


class PaymentTotalRequest(BaseModel):
    total_amount: Decimal
    notes: str | None = None


class VoidPaymentRequest(BaseModel):
    reason: str | None = None
