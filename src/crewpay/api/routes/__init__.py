"""API routes."""

from crewpay.api.routes.health import router as health_router
from crewpay.api.routes.payroll import router as payroll_router
from crewpay.api.routes.timesheets import router as timesheets_router

__all__ = ["health_router", "payroll_router", "timesheets_router"]
