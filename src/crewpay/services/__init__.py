"""Time-to-pay services."""

from crewpay.services.aggregation_service import PayrollAggregator
from crewpay.services.approval_service import TimesheetApprovalGate
from crewpay.services.ledger_service import PaymentLedger
from crewpay.services.locking_service import RecordLockService
from crewpay.services.payroll_status_service import PayrollStatusService
from crewpay.services.settings_service import SettingsProvider
from crewpay.services.state_machine import (
    PayrollStateMachine,
    PayrollStatus,
    TimesheetApproval,
    TimesheetStateMachine,
)
from crewpay.services.timesheet_service import TimesheetService

__all__ = [
    "PayrollAggregator",
    "TimesheetApprovalGate",
    "PaymentLedger",
    "RecordLockService",
    "PayrollStatusService",
    "SettingsProvider",
    "PayrollStateMachine",
    "PayrollStatus",
    "TimesheetApproval",
    "TimesheetStateMachine",
    "TimesheetService",
]
