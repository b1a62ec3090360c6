"""Tests for the operations facade: envelopes, transactions and rollback."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import func, select

from crewpay.errors import NotFoundError
from crewpay.models import PayrollPayment, PayrollRecord, Timesheet
from crewpay.operations import OperationResult
from tests.conftest import (
    PERIOD_END,
    PERIOD_START,
    WORK_DAY,
    add_clock_events,
    add_payroll,
    add_shift,
    add_timesheet,
    at,
)


async def count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar()


class TestOperationResult:
    def test_failure_from_error(self):
        result = OperationResult.failure(NotFoundError("Payroll x not found", {"payroll_id": "x"}))

        assert result.success is False
        assert result.error_code == "NOT_FOUND"
        assert result.details == {"payroll_id": "x"}

    def test_ok_with_details(self):
        result = OperationResult.ok([1, 2], processed=2)
        assert result.success is True
        assert result.details == {"processed": 2}


class TestTimesheetOperations:
    async def test_generate_then_duplicate(self, session, ops, company, worker, project):
        await add_shift(session, worker.worker_id, project.project_id, WORK_DAY, 546)

        created = await ops.generate_timesheet(
            company.company_id, worker.worker_id, project.project_id, WORK_DAY
        )
        duplicate = await ops.generate_timesheet(
            company.company_id, worker.worker_id, project.project_id, WORK_DAY
        )

        assert created.success is True
        assert created.data["total_pay"] == Decimal("190.00")
        assert created.data["supervisor_approval"] == "pending"
        assert duplicate.success is False
        assert duplicate.error_code == "TIMESHEET_EXISTS"
        assert duplicate.details["timesheet_id"] == str(created.data["timesheet_id"])
        assert await count(session, Timesheet) == 1

    async def test_open_shift_reported(self, session, ops, company, worker, project):
        await add_clock_events(
            session, worker.worker_id, project.project_id, [("clock_in", at(WORK_DAY, 7))]
        )

        result = await ops.generate_timesheet(
            company.company_id, worker.worker_id, project.project_id, WORK_DAY
        )

        assert result.success is False
        assert result.error_code == "OPEN_SHIFT"

    async def test_generate_for_date(self, session, ops, company, worker, project):
        await add_shift(session, worker.worker_id, project.project_id, WORK_DAY, 480)

        result = await ops.generate_timesheets_for_date(
            company.company_id, project.project_id, WORK_DAY
        )

        assert result.success is True
        assert len(result.data["created"]) == 1
        assert result.data["errors"] == {}

    async def test_live_hours(self, session, ops, company, worker, project):
        await add_clock_events(
            session, worker.worker_id, project.project_id, [("clock_in", at(WORK_DAY, 7))]
        )

        result = await ops.live_hours(
            company.company_id,
            worker.worker_id,
            project.project_id,
            WORK_DAY,
            now=at(WORK_DAY, 16, 6),
        )

        assert result.success is True
        assert result.data["is_open"] is True
        assert result.data["total_hours"] == Decimal("9.0000")
        assert await count(session, Timesheet) == 0

    async def test_manual_then_correct(self, session, ops, company, worker, project):
        created = await ops.create_manual_timesheet(
            company.company_id,
            worker.worker_id,
            project.project_id,
            WORK_DAY,
            clock_in=at(WORK_DAY, 7),
            clock_out=at(WORK_DAY, 15),
        )
        assert created.success is True

        corrected = await ops.correct_timesheet_hours(
            created.data["timesheet_id"], clock_out=at(WORK_DAY, 16), notes="Stayed late"
        )

        assert corrected.success is True
        assert corrected.data["total_hours"] == Decimal("9.0000")
        assert corrected.data["notes"] == "Stayed late"

    async def test_correct_approved_refused(self, session, ops, company, worker, project):
        timesheet = await add_timesheet(
            session, company.company_id, worker.worker_id, project.project_id, WORK_DAY, "8"
        )

        result = await ops.correct_timesheet_hours(
            timesheet.timesheet_id, clock_out=at(WORK_DAY, 16)
        )

        assert result.success is False
        assert result.error_code == "STATE_CONFLICT"


class TestApprovalOperations:
    async def test_approve_builds_payroll(self, session, ops, company, worker, project):
        timesheet = await add_timesheet(
            session,
            company.company_id,
            worker.worker_id,
            project.project_id,
            WORK_DAY,
            "9",
            approval="pending",
        )

        result = await ops.approve_timesheet(timesheet.timesheet_id, actor_id=uuid4())

        assert result.success is True
        assert result.data["timesheet"]["supervisor_approval"] == "approved"
        assert result.data["payroll"]["net_pay"] == Decimal("182.59")
        assert result.data["needs_regeneration"] is False
        assert await count(session, PayrollRecord) == 1

    async def test_approve_with_confirmed_payroll(self, session, ops, company, worker, project):
        await add_payroll(session, company.company_id, worker.worker_id, "160.00")
        timesheet = await add_timesheet(
            session,
            company.company_id,
            worker.worker_id,
            project.project_id,
            WORK_DAY,
            "9",
            approval="pending",
        )

        result = await ops.approve_timesheet(timesheet.timesheet_id)

        assert result.success is True
        assert result.data["needs_regeneration"] is True
        assert result.data["payroll_error_code"] == "REGENERATION_REQUIRED"

    async def test_bulk_approve(self, session, ops, company, worker, project):
        ids = []
        for offset in range(3):
            timesheet = await add_timesheet(
                session,
                company.company_id,
                worker.worker_id,
                project.project_id,
                WORK_DAY + timedelta(days=offset),
                "8",
                approval="pending",
            )
            ids.append(timesheet.timesheet_id)

        result = await ops.approve_timesheets(ids)

        assert result.success is True
        assert len(result.data["approved"]) == 3
        assert len(result.data["payrolls"]) == 1
        assert result.data["payrolls"][0]["payroll"]["gross_pay"] == Decimal("480.00")

    async def test_unapprove_needs_reason(self, session, ops, company, worker, project):
        timesheet = await add_timesheet(
            session, company.company_id, worker.worker_id, project.project_id, WORK_DAY, "8"
        )

        result = await ops.unapprove_timesheet(timesheet.timesheet_id, uuid4(), "")

        assert result.success is False
        assert result.error_code == "VALIDATION_ERROR"

    async def test_reject_and_reset(self, session, ops, company, worker, project):
        timesheet = await add_timesheet(
            session,
            company.company_id,
            worker.worker_id,
            project.project_id,
            WORK_DAY,
            "8",
            approval="pending",
        )

        rejected = await ops.reject_timesheet(timesheet.timesheet_id, reason="Wrong site")
        reset = await ops.reset_timesheet(timesheet.timesheet_id)
        again = await ops.reset_timesheet(timesheet.timesheet_id)

        assert rejected.data["supervisor_approval"] == "rejected"
        assert reset.data["supervisor_approval"] == "pending"
        assert again.error_code == "INVALID_TRANSITION"


class TestPayrollOperations:
    async def test_generate_by_period_and_by_day(self, session, ops, company, worker, project):
        await add_timesheet(
            session, company.company_id, worker.worker_id, project.project_id, WORK_DAY, "8"
        )

        by_period = await ops.generate_payroll_for_worker_and_period(
            company.company_id, worker.worker_id, PERIOD_START, PERIOD_END
        )
        by_day = await ops.generate_payroll_for_worker_and_period(
            company.company_id, worker.worker_id, day=WORK_DAY
        )

        assert by_period.success is True
        assert by_day.data["payroll_id"] == by_period.data["payroll_id"]
        assert by_day.data["basis_amount"] == Decimal("153.76")

    async def test_generate_failures(self, session, ops, company, worker):
        missing = await ops.generate_payroll_for_worker_and_period(
            company.company_id, worker.worker_id, PERIOD_START, PERIOD_END
        )
        misaligned = await ops.generate_payroll_for_worker_and_period(
            company.company_id, worker.worker_id, WORK_DAY, WORK_DAY + timedelta(days=6)
        )
        no_period = await ops.generate_payroll_for_worker_and_period(
            company.company_id, worker.worker_id
        )

        assert missing.error_code == "NOT_FOUND"
        assert misaligned.error_code == "VALIDATION_ERROR"
        assert no_period.error_code == "VALIDATION_ERROR"

    async def test_batch_reports_each_pair(self, session, ops, company, worker, project):
        await add_timesheet(
            session, company.company_id, worker.worker_id, project.project_id, WORK_DAY, "8"
        )
        idle_worker = uuid4()

        result = await ops.generate_payroll_batch(
            company.company_id,
            [
                (worker.worker_id, WORK_DAY),
                (worker.worker_id, WORK_DAY + timedelta(days=1)),
                (idle_worker, WORK_DAY),
            ],
        )

        assert result.success is True
        assert result.details == {"processed": 2, "failed": 1}
        assert [item["success"] for item in result.data] == [True, False]
        assert result.data[1]["error_code"] == "NOT_FOUND"

    async def test_discard_then_get(self, session, ops, company, worker):
        record = await add_payroll(
            session, company.company_id, worker.worker_id, "160.00", status="pending"
        )
        payroll_id = record.payroll_id

        discarded = await ops.discard_payroll(payroll_id)
        fetched = await ops.get_payroll(payroll_id)

        assert discarded.success is True
        assert fetched.success is False
        assert fetched.error_code == "NOT_FOUND"


class TestLedgerOperations:
    async def test_overpayment_rolls_back(self, session, ops, company, worker):
        record = await add_payroll(
            session, company.company_id, worker.worker_id, "1200.00", "1000.00"
        )

        first = await ops.add_payroll_payment(record.payroll_id, Decimal("400.00"))
        second = await ops.add_payroll_payment(record.payroll_id, Decimal("650.00"))

        assert first.success is True
        assert first.data["payroll"]["remaining_balance"] == Decimal("600.00")
        assert second.success is False
        assert second.error_code == "INTEGRITY_GUARD"
        assert await count(session, PayrollPayment) == 1

        balance = await ops.payroll_balance(record.payroll_id)
        assert balance.data["total_paid"] == Decimal("400.00")
        assert balance.data["remaining_balance"] == Decimal("600.00")

    async def test_set_amount_and_void(self, session, ops, company, worker):
        record = await add_payroll(
            session, company.company_id, worker.worker_id, "1200.00", "1000.00"
        )
        payment = await ops.add_payroll_payment(record.payroll_id, Decimal("400.00"))

        lowered = await ops.set_payroll_payment_amount(record.payroll_id, Decimal("100.00"))
        assert lowered.success is True
        assert lowered.data["total_paid"] == Decimal("100.00")

        # The original payment was voided by the reduction
        again = await ops.void_payroll_payment(payment.data["payment"]["payment_id"])
        assert again.error_code == "STATE_CONFLICT"

    async def test_void_unknown_payment(self, ops):
        result = await ops.void_payroll_payment(uuid4())

        assert result.success is False
        assert result.error_code == "NOT_FOUND"

    async def test_payment_on_pending_refused(self, session, ops, company, worker):
        record = await add_payroll(
            session, company.company_id, worker.worker_id, "160.00", status="pending"
        )

        result = await ops.add_payroll_payment(record.payroll_id, Decimal("10.00"))

        assert result.success is False
        assert result.error_code == "STATE_CONFLICT"
