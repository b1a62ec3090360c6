"""Pytest fixtures for crewpay tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crewpay.models import (
    Base,
    ClockEvent,
    Company,
    DeductionRule,
    PayrollRecord,
    Project,
    Timesheet,
    Worker,
)
from crewpay.operations import PayrollOperations
from crewpay.services.locking_service import KeyedLockRegistry

# In-memory SQLite shared across the connections of one test engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Monday inside the Saturday-Friday week 2026-02-28 .. 2026-03-06
WORK_DAY = date(2026, 3, 2)
PERIOD_START = date(2026, 2, 28)
PERIOD_END = date(2026, 3, 6)


@pytest.fixture
async def engine():
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def ops_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Separate session for the operations facade.

    The facade commits and rolls back on its own; fixture rows stay
    loaded in ``session``.
    """
    async with session_factory() as ops_session:
        yield ops_session


@pytest.fixture
def ops(ops_session: AsyncSession) -> PayrollOperations:
    return PayrollOperations(ops_session, lock_timeout=1.0, registry=KeyedLockRegistry())


@pytest.fixture
async def company(session: AsyncSession) -> Company:
    """Company with default settings: NIB 3.9%, standard rounding, weekly periods."""
    company = Company(company_id=uuid4(), name="Harbour Builders")
    session.add(company)
    await session.commit()
    return company


@pytest.fixture
async def worker(session: AsyncSession, company: Company) -> Worker:
    worker = Worker(
        worker_id=uuid4(),
        company_id=company.company_id,
        name="Dario Ferguson",
        hourly_rate=Decimal("20.00"),
    )
    session.add(worker)
    await session.commit()
    return worker


@pytest.fixture
async def project(session: AsyncSession, company: Company) -> Project:
    project = Project(project_id=uuid4(), company_id=company.company_id, name="Marina Block C")
    session.add(project)
    await session.commit()
    return project


@pytest.fixture
async def other_project(session: AsyncSession, company: Company) -> Project:
    project = Project(project_id=uuid4(), company_id=company.company_id, name="Bay Road Depot")
    session.add(project)
    await session.commit()
    return project


def at(day: date, hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=timezone.utc)


async def add_clock_events(
    session: AsyncSession,
    worker_id: UUID,
    project_id: UUID,
    events: list[tuple[str, datetime]],
) -> None:
    for event_type, when in events:
        session.add(
            ClockEvent(
                worker_id=worker_id,
                project_id=project_id,
                event_type=event_type,
                event_time=when,
            )
        )
    await session.commit()


async def add_shift(
    session: AsyncSession,
    worker_id: UUID,
    project_id: UUID,
    day: date,
    minutes: int,
    start_hour: int = 7,
) -> None:
    """One clock_in/clock_out pair lasting ``minutes``."""
    start = at(day, start_hour)
    await add_clock_events(
        session,
        worker_id,
        project_id,
        [("clock_in", start), ("clock_out", start + timedelta(minutes=minutes))],
    )


async def add_timesheet(
    session: AsyncSession,
    company_id: UUID,
    worker_id: UUID,
    project_id: UUID,
    day: date,
    hours: str,
    rate: str = "20.00",
    approval: str = "approved",
) -> Timesheet:
    """Timesheet with hours already split at 8 and priced at 1.5x overtime."""
    total = Decimal(hours)
    regular = min(total, Decimal("8"))
    overtime = total - regular
    hourly = Decimal(rate)
    timesheet = Timesheet(
        timesheet_id=uuid4(),
        company_id=company_id,
        worker_id=worker_id,
        project_id=project_id,
        date=day,
        clock_in=at(day, 7),
        clock_out=at(day, 7) + timedelta(hours=float(total)),
        break_minutes=0,
        regular_hours=regular,
        overtime_hours=overtime,
        total_hours=total,
        hourly_rate=hourly,
        total_pay=(regular * hourly + overtime * hourly * Decimal("1.5")).quantize(
            Decimal("0.01")
        ),
        supervisor_approval=approval,
        source="manual",
    )
    session.add(timesheet)
    await session.commit()
    return timesheet


async def add_payroll(
    session: AsyncSession,
    company_id: UUID,
    worker_id: UUID,
    gross: str,
    net: str | None = None,
    status: str = "confirmed",
    payment_basis: str = "net_pay",
    period_start: date = PERIOD_START,
    period_end: date = PERIOD_END,
) -> PayrollRecord:
    """Payroll record with explicit money fields, bypassing aggregation."""
    gross_pay = Decimal(gross)
    net_pay = Decimal(net) if net is not None else gross_pay
    record = PayrollRecord(
        payroll_id=uuid4(),
        company_id=company_id,
        worker_id=worker_id,
        pay_period_start=period_start,
        pay_period_end=period_end,
        regular_hours=Decimal("40"),
        overtime_hours=Decimal("0"),
        total_hours=Decimal("40"),
        gross_pay=gross_pay,
        nib_deduction=gross_pay - net_pay,
        other_deductions=Decimal("0"),
        total_deductions=gross_pay - net_pay,
        net_pay=net_pay,
        status=status,
        payment_basis=payment_basis,
        total_paid=Decimal("0"),
        remaining_balance=net_pay if payment_basis == "net_pay" else gross_pay,
    )
    session.add(record)
    await session.commit()
    return record


async def add_deduction_rule(
    session: AsyncSession,
    company_id: UUID,
    name: str,
    rule_type: str,
    value: str,
    applies_to_overtime: bool = True,
) -> DeductionRule:
    rule = DeductionRule(
        company_id=company_id,
        name=name,
        rule_type=rule_type,
        value=Decimal(value),
        applies_to_overtime=applies_to_overtime,
    )
    session.add(rule)
    await session.commit()
    return rule
