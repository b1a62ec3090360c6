"""Company and worker settings provider.

Maps settings rows to the frozen DTOs the calculators take, so the pipeline
never reads configuration from ambient state.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewpay.calculators.types import (
    DeductionRuleConfig,
    DeductionRuleType,
    DeductionSettings,
    PaymentBasis,
    PayPeriodSettings,
    PayrollSettings,
    PeriodType,
    RoundingPolicy,
    TimesheetPolicy,
    WorkerProfile,
)
from crewpay.errors import NotFoundError
from crewpay.models import Company, DeductionRule, Worker


class SettingsProvider:
    """Read-only access to company payroll settings and worker profiles."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_payroll_settings(self, company_id: UUID) -> PayrollSettings:
        company = await self.session.get(Company, company_id)
        if company is None:
            raise NotFoundError(f"Company {company_id} not found", {"company_id": str(company_id)})

        result = await self.session.execute(
            select(DeductionRule)
            .where(DeductionRule.company_id == company_id)
            .order_by(DeductionRule.name)
        )
        rules = tuple(
            DeductionRuleConfig(
                name=rule.name,
                rule_type=DeductionRuleType(rule.rule_type),
                value=rule.value,
                applies_to_overtime=rule.applies_to_overtime,
                is_active=rule.is_active,
            )
            for rule in result.scalars().all()
        )

        return PayrollSettings(
            company_id=company.company_id,
            timesheet_policy=TimesheetPolicy(
                rounding=RoundingPolicy.parse(company.rounding_policy),
                round_to_standard_day=company.round_to_standard_day,
                standard_day_hours=company.standard_day_hours,
                overtime_multiplier=company.overtime_multiplier,
            ),
            deductions=DeductionSettings(
                nib_enabled=company.nib_enabled,
                nib_rate=company.nib_rate,
                nib_insurable_ceiling=company.nib_insurable_ceiling,
                rules=rules,
            ),
            periods=PayPeriodSettings(
                period_type=PeriodType(company.period_type),
                week_start_day=company.week_start_day,
                anchor_date=company.period_anchor_date,
            ),
            payment_basis=PaymentBasis(company.payment_basis),
            require_full_settlement=company.require_full_settlement,
        )

    async def get_worker_profile(self, worker_id: UUID) -> WorkerProfile:
        worker = await self.session.get(Worker, worker_id)
        if worker is None:
            raise NotFoundError(f"Worker {worker_id} not found", {"worker_id": str(worker_id)})
        return WorkerProfile(
            worker_id=worker.worker_id,
            company_id=worker.company_id,
            hourly_rate=worker.hourly_rate,
            nib_exempt=worker.nib_exempt,
        )
