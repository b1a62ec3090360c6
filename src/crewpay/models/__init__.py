"""ORM models."""

from crewpay.models.audit import AuditEvent
from crewpay.models.base import Base
from crewpay.models.company import Company, DeductionRule
from crewpay.models.payroll import PayrollPayment, PayrollRecord
from crewpay.models.timesheet import Timesheet
from crewpay.models.workforce import ClockEvent, Project, Worker

__all__ = [
    "AuditEvent",
    "Base",
    "ClockEvent",
    "Company",
    "DeductionRule",
    "PayrollPayment",
    "PayrollRecord",
    "Project",
    "Timesheet",
    "Worker",
]
