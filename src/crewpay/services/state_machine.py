"""Timesheet approval and payroll status state machines."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from crewpay.errors import InvalidTransitionError

if TYPE_CHECKING:
    from crewpay.models import PayrollRecord


class TimesheetApproval(str, Enum):
    """Timesheet supervisor approval values."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PayrollStatus(str, Enum):
    """Payroll record status values."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    VOID = "void"


def status_value(status: str) -> str:
    """Plain string for a status; enum members hash by name, not value."""
    return status.value if isinstance(status, Enum) else status


class TimesheetStateMachine:
    """State machine for timesheet approval.

    Allowed transitions:
    - pending → approved
    - pending → rejected
    - approved → pending (unapprove, admin only)
    - rejected → pending (reset)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        "pending": ["approved", "rejected"],
        "approved": ["pending"],
        "rejected": ["pending"],
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return status_value(to_status) in cls.VALID_TRANSITIONS.get(status_value(from_status), [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(status_value(from_status), status_value(to_status))

    @classmethod
    def are_hours_locked(cls, status: str) -> bool:
        """Hour fields are write-locked once approved."""
        return status == TimesheetApproval.APPROVED

    @classmethod
    def is_unapprove(cls, from_status: str, to_status: str) -> bool:
        return from_status == TimesheetApproval.APPROVED and to_status == TimesheetApproval.PENDING


class PayrollStateMachine:
    """State machine for payroll record status.

    Allowed transitions:
    - pending → confirmed
    - confirmed → paid
    - confirmed → pending (reversal)
    - paid → confirmed (reversal)
    - pending → void
    - confirmed → void
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        "pending": ["confirmed", "void"],
        "confirmed": ["paid", "pending", "void"],
        "paid": ["confirmed"],
        "void": [],  # Terminal state
    }

    # Statuses where ledger payments are accepted
    PAYMENTS_ALLOWED = {"confirmed", "paid"}

    # Statuses the aggregator may overwrite without explicit regeneration
    RECOMPUTE_ALLOWED = {"pending"}

    # Statuses whose record (and ledger) may be discarded
    DISCARD_ALLOWED = {"pending", "void"}

    REVERSALS = {
        ("confirmed", "pending"),
        ("paid", "confirmed"),
    }

    # Source statuses a bulk transition accepts, in precedence order; every
    # member of one batch must share the same source status
    BULK_SOURCE_STATUSES = {
        "confirmed": ("pending", "paid"),
        "paid": ("confirmed",),
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return status_value(to_status) in cls.VALID_TRANSITIONS.get(status_value(from_status), [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(status_value(from_status), status_value(to_status))

    @classmethod
    def is_reversal(cls, from_status: str, to_status: str) -> bool:
        return (status_value(from_status), status_value(to_status)) in cls.REVERSALS

    @classmethod
    def accepts_payments(cls, status: str) -> bool:
        return status_value(status) in cls.PAYMENTS_ALLOWED

    @classmethod
    def can_recompute(cls, status: str) -> bool:
        return status_value(status) in cls.RECOMPUTE_ALLOWED

    @classmethod
    def can_discard(cls, status: str) -> bool:
        return status_value(status) in cls.DISCARD_ALLOWED

    @classmethod
    def bulk_source_statuses(cls, to_status: str) -> tuple[str, ...]:
        return cls.BULK_SOURCE_STATUSES.get(status_value(to_status), ())

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(status_value(current_status), [])

    @classmethod
    def validate_record_for_transition(
        cls, record: PayrollRecord, to_status: str
    ) -> list[str]:
        """Validate a payroll record for a specific transition.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = record.status

        if not cls.can_transition(from_status, to_status):
            errors.append(
                f"Cannot transition from '{from_status}' to '{status_value(to_status)}'"
            )
            return errors

        if to_status == PayrollStatus.CONFIRMED and from_status == PayrollStatus.PENDING:
            if record.gross_pay <= 0:
                errors.append("Payroll has no gross pay")

        return errors
