"""Error taxonomy for the time-to-pay pipeline.

Every error carries a stable ``code`` so callers (the operations facade and
the HTTP layer) can report it without inspecting the class hierarchy:

- ValidationError: bad amount, bad date range, malformed policy
- StateConflictError: wrong status for a transition, refused overwrite
- NotFoundError: missing worker, payroll record, timesheet
- IntegrityGuardError: would break a balance or uniqueness invariant
"""

from __future__ import annotations

from typing import Any


class PayrollError(Exception):
    """Base class for all pipeline errors."""

    code = "PAYROLL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(PayrollError):
    code = "VALIDATION_ERROR"


class StateConflictError(PayrollError):
    code = "STATE_CONFLICT"


class NotFoundError(PayrollError):
    code = "NOT_FOUND"


class IntegrityGuardError(PayrollError):
    code = "INTEGRITY_GUARD"


class NoValidPairsError(ValidationError):
    """No completed clock_in/clock_out pair and no open shift."""

    code = "NO_VALID_PAIRS"


class TimesheetExistsError(StateConflictError):
    """A timesheet already exists for the worker/project/date."""

    code = "TIMESHEET_EXISTS"


class OpenShiftError(StateConflictError):
    """Worker is still clocked in; a final timesheet cannot be persisted."""

    code = "OPEN_SHIFT"


class InvalidTransitionError(StateConflictError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg, {"from_status": from_status, "to_status": to_status}
        )


class RegenerationRequiredError(StateConflictError):
    """Payroll already confirmed/paid; overwrite needs explicit regeneration."""

    code = "REGENERATION_REQUIRED"


class UnresolvedTimesheetsError(StateConflictError):
    """Pending timesheets exist in the payroll's worker/period."""

    code = "PENDING_TIMESHEETS"

    def __init__(self, count: int, details: dict[str, Any] | None = None):
        self.count = count
        super().__init__(
            f"{count} pending timesheet(s) found, continue anyway?",
            {"pending_timesheets": count, **(details or {})},
        )


class LockTimeoutError(StateConflictError):
    code = "LOCK_TIMEOUT"
