"""SQL repository tests against a real SQLite database."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_core.errors import ImmutableRecordError, NotFoundError
from payroll_core.records import (
    ApprovalStep,
    ApprovalWorkflowRecord,
    PayrollAdjustment,
    PayrollCalculation,
    PayrollPeriod,
)
from payroll_core.status import (
    AdjustmentStatus,
    CalculationStatus,
    PeriodStatus,
    StepStatus,
    WorkflowStatus,
)

from tests.conftest import ANA_ID, BEN_ID, NOV_FIRST_HALF, NOV_SECOND_HALF


class TestCalculationLock:
    """The period's calculation lock is a compare-and-swap on one column."""

    async def test_single_holder(self, repository):
        period = await repository.add_period(PayrollPeriod(**NOV_FIRST_HALF))
        first, second = uuid4(), uuid4()

        assert await repository.try_acquire_calculation_lock(period.id, first) is True
        assert await repository.try_acquire_calculation_lock(period.id, second) is False

        stored = await repository.get_period(period.id)
        assert stored.running_calculation_id == first

    async def test_release_only_by_holder(self, repository):
        period = await repository.add_period(PayrollPeriod(**NOV_FIRST_HALF))
        holder = uuid4()
        await repository.try_acquire_calculation_lock(period.id, holder)

        assert await repository.release_calculation_lock(period.id, uuid4()) is False
        assert await repository.release_calculation_lock(period.id, holder) is True
        assert await repository.try_acquire_calculation_lock(period.id, uuid4()) is True

    async def test_period_update_keeps_lock(self, repository):
        period = await repository.add_period(PayrollPeriod(**NOV_FIRST_HALF))
        holder = uuid4()
        await repository.try_acquire_calculation_lock(period.id, holder)

        period.name = "Renamed"
        updated = await repository.update_period(period)

        assert updated.name == "Renamed"
        assert updated.running_calculation_id == holder


class TestRoundTrips:
    async def test_period(self, repository, clock):
        period = PayrollPeriod(**NOV_FIRST_HALF, name="Nov 1-15, 2025", created_at=clock.now())
        await repository.add_period(period)

        stored = await repository.get_period(period.id)

        assert stored.status == PeriodStatus.DRAFT
        assert stored.start_date == NOV_FIRST_HALF["start_date"]
        assert stored.created_at == clock.now()
        assert stored.total_net_pay == Decimal("0")

    async def test_update_unknown_period(self, repository):
        with pytest.raises(NotFoundError):
            await repository.update_period(PayrollPeriod(**NOV_FIRST_HALF))

    async def test_list_and_previous(self, repository):
        first = await repository.add_period(PayrollPeriod(**NOV_FIRST_HALF))
        second = await repository.add_period(PayrollPeriod(**NOV_SECOND_HALF))

        assert [p.id for p in await repository.list_periods()] == [second.id, first.id]
        assert await repository.get_previous_period(second) is None

        first.active_calculation_id = uuid4()
        await repository.update_period(first)
        previous = await repository.get_previous_period(second)
        assert previous.id == first.id

    async def test_previous_period_matches_type(self, repository):
        second = await repository.add_period(PayrollPeriod(**NOV_SECOND_HALF))
        weekly = PayrollPeriod(
            period_type="weekly",
            start_date=date(2025, 11, 3),
            end_date=date(2025, 11, 9),
            cutoff_date=date(2025, 11, 9),
            pay_date=date(2025, 11, 12),
            active_calculation_id=uuid4(),
        )
        await repository.add_period(weekly)

        assert await repository.get_previous_period(second) is None

    async def test_adjustment_filters(self, repository, clock):
        period = await repository.add_period(PayrollPeriod(**NOV_FIRST_HALF))
        pending = PayrollAdjustment(
            period_id=period.id,
            employee_id=ANA_ID,
            adjustment_type="earning",
            amount=Decimal("5000.00"),
            reason="Bonus",
            requested_at=clock.now(),
        )
        approved = PayrollAdjustment(
            period_id=period.id,
            employee_id=BEN_ID,
            adjustment_type="deduction",
            amount=Decimal("250.00"),
            reason="Cash advance",
            status=AdjustmentStatus.APPROVED,
            requested_at=clock.now() + timedelta(minutes=1),
        )
        await repository.add_adjustment(pending)
        await repository.add_adjustment(approved)

        found = await repository.list_adjustments(
            period_id=period.id, statuses={AdjustmentStatus.APPROVED}
        )
        assert [a.id for a in found] == [approved.id]
        assert found[0].amount == Decimal("250.00")
        assert [a.id for a in await repository.list_adjustments(employee_id=ANA_ID)] == [
            pending.id
        ]

    async def test_workflow_steps_replaced_on_save(self, repository):
        period = await repository.add_period(PayrollPeriod(**NOV_FIRST_HALF))
        workflow = ApprovalWorkflowRecord(
            period_id=period.id,
            steps=[
                ApprovalStep(step_number=1, role="Payroll Officer"),
                ApprovalStep(step_number=2, role="Payroll Manager"),
            ],
        )
        await repository.save_workflow(workflow)

        workflow.steps[0].status = StepStatus.APPROVED
        workflow.steps[0].approver = "officer"
        workflow.status = WorkflowStatus.IN_PROGRESS
        await repository.save_workflow(workflow)

        stored = await repository.get_workflow(period.id)
        assert stored.status == WorkflowStatus.IN_PROGRESS
        assert [(s.step_number, s.status) for s in stored.steps] == [
            (1, StepStatus.APPROVED),
            (2, StepStatus.PENDING),
        ]
        by_step = await repository.find_workflow_by_step(workflow.steps[1].id)
        assert by_step.id == workflow.id

    async def test_delete_period_removes_children(self, repository):
        period = await repository.add_period(PayrollPeriod(**NOV_FIRST_HALF))
        adjustment = PayrollAdjustment(
            period_id=period.id,
            employee_id=ANA_ID,
            adjustment_type="earning",
            amount=Decimal("100.00"),
            reason="Late OT",
        )
        await repository.add_adjustment(adjustment)
        await repository.save_workflow(
            ApprovalWorkflowRecord(
                period_id=period.id, steps=[ApprovalStep(step_number=1, role="Payroll Officer")]
            )
        )

        await repository.delete_period(period.id)

        assert await repository.get_period(period.id) is None
        assert await repository.get_adjustment(adjustment.id) is None
        assert await repository.get_workflow(period.id) is None

    async def test_stalled_calculations(self, repository, clock):
        period = await repository.add_period(PayrollPeriod(**NOV_FIRST_HALF))
        stale = PayrollCalculation(
            period_id=period.id,
            calculation_type="regular",
            status=CalculationStatus.PROCESSING,
            created_at=clock.now() - timedelta(minutes=20),
            heartbeat_at=clock.now() - timedelta(minutes=10),
        )
        fresh = PayrollCalculation(
            period_id=period.id,
            calculation_type="regular",
            status=CalculationStatus.PROCESSING,
            created_at=clock.now() - timedelta(minutes=20),
            heartbeat_at=clock.now() - timedelta(minutes=1),
        )
        finished = PayrollCalculation(
            period_id=period.id,
            calculation_type="regular",
            status=CalculationStatus.COMPLETED,
            created_at=clock.now() - timedelta(hours=1),
        )
        for calc in (stale, fresh, finished):
            await repository.add_calculation(calc)

        stalled = await repository.list_stalled_calculations(clock.now() - timedelta(minutes=5))

        assert [c.id for c in stalled] == [stale.id]


class TestLifecycleOverSql:
    """The full period lifecycle with state stored in the database."""

    async def test_calculation_persists_lines(self, service, calculated_period):
        detail = await service.get_calculation(calculated_period.active_calculation_id)

        assert detail.calculation.status == CalculationStatus.COMPLETED
        assert calculated_period.status == PeriodStatus.CALCULATED
        assert calculated_period.running_calculation_id is None
        assert calculated_period.total_net_pay == Decimal("85173.10")
        assert len(detail.lines) == 3
        assert sum(line.net_pay for line in detail.lines) == Decimal("85173.10")
        assert all(line.line_hash for line in detail.lines)

    async def test_rerun_reproduces_hashes(self, service, calculated_period):
        first = await service.get_calculation(calculated_period.active_calculation_id)

        rerun = await service.recalculate(calculated_period.id)
        await service.wait_for_calculation(rerun.id)
        second = await service.get_calculation(rerun.id)

        assert {line.line_hash for line in first.lines} == {
            line.line_hash for line in second.lines
        }
        superseded = await service.get_calculation(first.calculation.id)
        assert superseded.calculation.superseded_by == rerun.id
        assert superseded.calculation.inputs_hash == second.calculation.inputs_hash

    async def test_approve_pay_close(self, service, reviewing_period):
        for approver in ("officer", "manager", "director"):
            await service.approve_period(reviewing_period.id, approver)
        await service.mark_paid(reviewing_period.id, "treasury")

        closed = await service.close_period(reviewing_period.id, "treasury")

        assert closed.status == PeriodStatus.CLOSED
        assert closed.is_locked is True
        with pytest.raises(ImmutableRecordError):
            await service.update_period(closed.id, name="Renamed")

    async def test_applied_adjustment(self, service, period, run_calculation):
        adjustment = await service.create_adjustment(
            period.id,
            {"employee_id": ANA_ID, "type": "earning", "amount": "5000", "reason": "Bonus"},
        )
        await service.approve_adjustment(adjustment.id, "hr.manager")

        calc = await run_calculation(period.id)

        stored = await service.get_adjustment(adjustment.id)
        assert stored.status == AdjustmentStatus.APPLIED
        assert stored.applied_calculation_id == calc.id
        assert calc.applied_adjustment_ids == [adjustment.id]
        assert calc.total_gross_pay == Decimal("108500.00")
