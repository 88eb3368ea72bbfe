"""Tests for the sequential approval workflow."""

from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_core.config import WorkflowConfig
from payroll_core.errors import (
    AlreadyApprovedError,
    DomainStateError,
    InvalidTransitionError,
    NotFoundError,
    OutOfOrderError,
    ValidationError,
)
from payroll_core.events import ExceptionsDetected, WorkflowStepApproved, WorkflowStepRejected
from payroll_core.status import PeriodStatus, StepStatus, WorkflowStatus

from tests.conftest import ANA_ID, NOV_SECOND_HALF


@pytest.fixture
async def steps(repository, reviewing_period):
    workflow = await repository.get_workflow(reviewing_period.id)
    return workflow.steps


class TestOpen:
    async def test_default_steps(self, service, repository, reviewing_period):
        workflow = await repository.get_workflow(reviewing_period.id)

        assert [(s.step_number, s.role) for s in workflow.steps] == [
            (1, "Payroll Officer"),
            (2, "Payroll Manager"),
            (3, "Finance Director"),
        ]
        assert all(s.status == StepStatus.PENDING for s in workflow.steps)
        assert workflow.status == WorkflowStatus.PENDING
        assert workflow.calculation_id == reviewing_period.active_calculation_id
        assert reviewing_period.status == PeriodStatus.REVIEWING

    def test_config_rejects_empty_steps(self):
        with pytest.raises(ValueError):
            WorkflowConfig(steps=())

    async def test_submit_requires_completed_calculation(self, service, period):
        with pytest.raises(InvalidTransitionError):
            await service.submit_for_review(period.id, "hr.officer")


class TestApproveSteps:
    """Steps are approved strictly in order."""

    async def test_approve_in_order(self, service, reviewing_period, steps, recorder):
        await service.approve_step(steps[0].id, "officer", "Looks right")
        workflow = await service.approve_step(steps[1].id, "manager")

        assert workflow.status == WorkflowStatus.IN_PROGRESS
        assert workflow.steps[0].approver == "officer"
        assert workflow.steps[0].comments == "Looks right"
        assert workflow.current_step.step_number == 3
        assert (await service.get_period(reviewing_period.id)).status == PeriodStatus.REVIEWING

        workflow = await service.approve_step(steps[2].id, "director")

        assert workflow.status == WorkflowStatus.APPROVED
        period = await service.get_period(reviewing_period.id)
        assert period.status == PeriodStatus.APPROVED
        assert period.approved_by == "director"
        events = recorder.of_type(WorkflowStepApproved)
        assert [e.final for e in events] == [False, False, True]

    async def test_out_of_order(self, service, steps):
        with pytest.raises(OutOfOrderError) as exc_info:
            await service.approve_step(steps[1].id, "manager")

        assert exc_info.value.step_number == 2
        assert exc_info.value.blocking_step == 1
        assert exc_info.value.code == "OUT_OF_ORDER"

    async def test_out_of_order_names_first_blocking_step(self, service, steps):
        with pytest.raises(OutOfOrderError) as exc_info:
            await service.approve_step(steps[2].id, "director")

        assert exc_info.value.blocking_step == 1

    async def test_already_approved(self, service, steps):
        await service.approve_step(steps[0].id, "officer")

        with pytest.raises(AlreadyApprovedError):
            await service.approve_step(steps[0].id, "officer")

    async def test_unknown_step(self, service, reviewing_period):
        with pytest.raises(NotFoundError):
            await service.approve_step(uuid4(), "officer")

    async def test_approve_period_uses_current_step(self, service, reviewing_period, repository):
        await service.approve_period(reviewing_period.id, "officer")

        workflow = await repository.get_workflow(reviewing_period.id)
        assert workflow.steps[0].status == StepStatus.APPROVED
        assert workflow.current_step.step_number == 2

    async def test_approve_period_not_reviewing(self, service, calculated_period):
        with pytest.raises(InvalidTransitionError):
            await service.approve_period(calculated_period.id, "officer")


class TestRejectSteps:
    async def test_reject_resets_workflow(self, service, reviewing_period, steps, recorder):
        await service.approve_step(steps[0].id, "officer")

        workflow = await service.reject_step(steps[1].id, "manager", "discrepancy found")

        assert workflow.status == WorkflowStatus.REJECTED
        assert workflow.rejection_reason == "discrepancy found"
        assert all(s.status == StepStatus.PENDING for s in workflow.steps)
        assert all(s.approver is None for s in workflow.steps)

        period = await service.get_period(reviewing_period.id)
        assert period.status == PeriodStatus.CALCULATED
        assert period.rejection_reason == "discrepancy found"
        assert period.rejected_by == "manager"
        assert recorder.of_type(WorkflowStepRejected)[0].step_number == 2

    async def test_reject_needs_reason(self, service, steps):
        with pytest.raises(ValidationError):
            await service.reject_step(steps[0].id, "officer", "")

    async def test_reject_approved_step(self, service, steps):
        await service.approve_step(steps[0].id, "officer")

        with pytest.raises(AlreadyApprovedError):
            await service.reject_step(steps[0].id, "officer", "changed my mind")

    async def test_no_approval_after_rejection(self, service, steps):
        await service.reject_step(steps[0].id, "officer", "wrong totals")

        with pytest.raises(InvalidTransitionError):
            await service.approve_step(steps[0].id, "officer")

    async def test_reject_period(self, service, reviewing_period):
        period = await service.reject_period(reviewing_period.id, "officer", "missing OT")

        assert period.status == PeriodStatus.CALCULATED
        assert period.rejection_reason == "missing OT"

    async def test_resubmit_restarts_steps(self, service, repository, reviewing_period, recorder):
        await service.reject_period(reviewing_period.id, "officer", "missing OT")

        period = await service.submit_for_review(reviewing_period.id, "hr.officer")

        workflow = await repository.get_workflow(period.id)
        assert period.status == PeriodStatus.REVIEWING
        assert workflow.status == WorkflowStatus.PENDING
        assert all(s.status == StepStatus.PENDING for s in workflow.steps)
        # Exceptions are detected once per calculation
        assert len(recorder.of_type(ExceptionsDetected)) == 1


class TestReviewSummary:
    async def test_summary(self, service, reviewing_period):
        review = await service.get_review(reviewing_period.id)

        assert review.current_step.step_number == 1
        assert review.can_approve is True
        assert review.can_reject is True
        assert review.requires_override is False
        assert review.exceptions == []
        assert review.totals["total_net_pay"] == Decimal("85173.10")
        assert review.totals["total_employees"] == 3

    async def test_summary_outside_review(self, service, calculated_period):
        review = await service.get_review(calculated_period.id)

        assert review.workflow is None
        assert review.can_approve is False
        assert review.can_reject is False

    async def test_critical_exception_needs_acknowledgement(
        self, service, calculated_period, run_calculation
    ):
        second = await service.create_period(**NOV_SECOND_HALF)
        bonus = await service.create_adjustment(
            second.id,
            {"employee_id": ANA_ID, "type": "earning", "amount": "40000", "reason": "Bonus"},
        )
        await service.approve_adjustment(bonus.id, "hr.manager")
        await run_calculation(second.id)
        await service.submit_for_review(second.id, "hr.officer")

        review = await service.get_review(second.id)
        assert [e.exception_type for e in review.exceptions] == ["variance"]
        assert review.exceptions[0].severity.value == "critical"
        assert review.requires_override is True
        assert review.can_approve is False

        workflow = await service.acknowledge_exceptions(second.id, "finance.head", "Bonus")
        assert workflow.override_by == "finance.head"

        review = await service.get_review(second.id)
        assert review.requires_override is False
        assert review.can_approve is True

    async def test_exceptions_do_not_block_approval(
        self, service, calculated_period, run_calculation
    ):
        second = await service.create_period(**NOV_SECOND_HALF)
        bonus = await service.create_adjustment(
            second.id,
            {"employee_id": ANA_ID, "type": "earning", "amount": "40000", "reason": "Bonus"},
        )
        await service.approve_adjustment(bonus.id, "hr.manager")
        await run_calculation(second.id)
        await service.submit_for_review(second.id, "hr.officer")

        for approver in ("officer", "manager", "director"):
            await service.approve_period(second.id, approver)

        assert (await service.get_period(second.id)).status == PeriodStatus.APPROVED

    async def test_acknowledge_outside_review(self, service, calculated_period):
        with pytest.raises(DomainStateError):
            await service.acknowledge_exceptions(calculated_period.id, "finance.head")
