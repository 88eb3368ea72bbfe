"""Sequential multi-step approval of a payroll period under review."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from payroll_core.clock import Clock
from payroll_core.config import ReviewPolicy, WorkflowConfig
from payroll_core.errors import (
    AlreadyApprovedError,
    DomainStateError,
    InvalidTransitionError,
    NotFoundError,
    OutOfOrderError,
    ValidationError,
)
from payroll_core.events import (
    EventEmitter,
    EventMetadata,
    WorkflowStepApproved,
    WorkflowStepRejected,
)
from payroll_core.records import (
    ApprovalStep,
    ApprovalWorkflowRecord,
    ComplianceException,
    PayrollPeriod,
)
from payroll_core.repositories.base import PayrollRepository
from payroll_core.services.state_machine import PeriodStateMachine
from payroll_core.status import PeriodStatus, StepStatus, WorkflowStatus

if TYPE_CHECKING:
    from payroll_core.services.period_manager import PeriodManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewSummary:
    """Everything a reviewer needs to act on a period."""

    period: PayrollPeriod
    workflow: ApprovalWorkflowRecord | None
    current_step: ApprovalStep | None
    exceptions: list[ComplianceException] = field(default_factory=list)
    can_approve: bool = False
    can_reject: bool = False
    requires_override: bool = False
    totals: dict[str, Decimal | int] = field(default_factory=dict)


class ApprovalWorkflow:
    """Drives the ordered sign-off steps of a period's review.

    Steps must be approved in ``step_number`` order. Approving the last step
    approves the period; rejecting any pending step resets every step and
    returns the period to ``calculated``.
    """

    def __init__(
        self,
        repository: PayrollRepository,
        periods: PeriodManager,
        emitter: EventEmitter,
        clock: Clock,
        config: WorkflowConfig | None = None,
        policy: ReviewPolicy | None = None,
    ):
        self.repository = repository
        self.periods = periods
        self.emitter = emitter
        self.clock = clock
        self.config = config or WorkflowConfig()
        self.policy = policy or ReviewPolicy()

    async def open(self, period: PayrollPeriod, calculation_id: UUID) -> ApprovalWorkflowRecord:
        """Create the period's workflow, or restart an existing one."""
        workflow = await self.repository.get_workflow(period.id)
        if workflow is None:
            workflow = ApprovalWorkflowRecord(
                period_id=period.id,
                steps=[
                    ApprovalStep(step_number=number, role=role)
                    for number, role in enumerate(self.config.steps, start=1)
                ],
            )
        else:
            self._restart(workflow)
        workflow.calculation_id = calculation_id
        workflow.override_by = None
        workflow.override_at = None
        workflow.override_notes = None
        return await self.repository.save_workflow(workflow)

    async def reset(self, period_id: UUID) -> ApprovalWorkflowRecord | None:
        """Put every step back to pending; used when a review is recalculated."""
        workflow = await self.repository.get_workflow(period_id)
        if workflow is None:
            return None
        self._restart(workflow)
        return await self.repository.save_workflow(workflow)

    async def get_workflow(self, period_id: UUID) -> ApprovalWorkflowRecord:
        workflow = await self.repository.get_workflow(period_id)
        if workflow is None:
            raise NotFoundError("ApprovalWorkflow", period_id)
        return workflow

    async def approve_step(
        self, step_id: UUID, approver: str, comments: str | None = None
    ) -> ApprovalWorkflowRecord:
        """Approve one step.

        Raises:
            NotFoundError: Unknown step.
            ImmutableRecordError: Period is locked.
            InvalidTransitionError: Period is not under review.
            AlreadyApprovedError: Step was approved before.
            OutOfOrderError: An earlier step is still pending.
        """
        workflow, period = await self._load_for_step(step_id)
        PeriodStateMachine.ensure_unlocked(period, "approve workflow steps")
        if period.status != PeriodStatus.REVIEWING:
            raise InvalidTransitionError(
                period.status, PeriodStatus.APPROVED, "period is not under review"
            )

        step = workflow.get_step(step_id)
        if step.status == StepStatus.APPROVED:
            raise AlreadyApprovedError(step.step_number)
        blocking = next(
            (
                s
                for s in workflow.steps
                if s.step_number < step.step_number and s.status != StepStatus.APPROVED
            ),
            None,
        )
        if blocking is not None:
            raise OutOfOrderError(step.step_number, blocking.step_number)

        step.status = StepStatus.APPROVED
        step.approver = approver
        step.acted_at = self.clock.now()
        step.comments = comments
        final = workflow.current_step is None
        workflow.status = WorkflowStatus.APPROVED if final else WorkflowStatus.IN_PROGRESS
        workflow = await self.repository.save_workflow(workflow)

        logger.info(
            "Step %d (%s) of period %s approved by %s",
            step.step_number,
            step.role,
            period.id,
            approver,
        )
        self.emitter.emit(
            WorkflowStepApproved(
                metadata=EventMetadata.create(self.clock.now(), actor=approver),
                period_id=period.id,
                step_id=step.id,
                step_number=step.step_number,
                role=step.role,
                approver=approver,
                final=final,
            )
        )

        if final:
            await self.periods.apply_approval(period.id, approver)
        return workflow

    async def reject_step(
        self, step_id: UUID, approver: str, reason: str
    ) -> ApprovalWorkflowRecord:
        """Reject a pending step and send the period back to ``calculated``."""
        if not reason or not reason.strip():
            raise ValidationError({"reason": "a rejection reason is required"})

        workflow, period = await self._load_for_step(step_id)
        PeriodStateMachine.ensure_unlocked(period, "reject workflow steps")
        if period.status != PeriodStatus.REVIEWING:
            raise InvalidTransitionError(
                period.status, PeriodStatus.CALCULATED, "period is not under review"
            )

        step = workflow.get_step(step_id)
        if step.status == StepStatus.APPROVED:
            raise AlreadyApprovedError(step.step_number)

        now = self.clock.now()
        for s in workflow.steps:
            s.reset()
        workflow.status = WorkflowStatus.REJECTED
        workflow.rejection_reason = reason.strip()
        workflow.rejected_by = approver
        workflow.rejected_at = now
        workflow = await self.repository.save_workflow(workflow)

        logger.info(
            "Step %d of period %s rejected by %s: %s",
            step.step_number,
            period.id,
            approver,
            workflow.rejection_reason,
        )
        self.emitter.emit(
            WorkflowStepRejected(
                metadata=EventMetadata.create(now, actor=approver),
                period_id=period.id,
                step_id=step.id,
                step_number=step.step_number,
                approver=approver,
                reason=workflow.rejection_reason,
            )
        )

        await self.periods.apply_rejection(period.id, approver, workflow.rejection_reason)
        return workflow

    async def acknowledge_exceptions(
        self, period_id: UUID, acknowledged_by: str, notes: str | None = None
    ) -> ApprovalWorkflowRecord:
        """Record an override for exceptions that need one before approval."""
        period = await self._get_period(period_id)
        PeriodStateMachine.ensure_unlocked(period, "acknowledge exceptions")
        if period.status != PeriodStatus.REVIEWING:
            raise DomainStateError(f"Period {period_id} is not under review")
        workflow = await self.get_workflow(period_id)
        workflow.override_by = acknowledged_by
        workflow.override_at = self.clock.now()
        workflow.override_notes = notes
        return await self.repository.save_workflow(workflow)

    async def get_review(self, period_id: UUID) -> ReviewSummary:
        period = await self._get_period(period_id)
        workflow = await self.repository.get_workflow(period_id)
        exceptions: list[ComplianceException] = []
        if period.active_calculation_id is not None:
            exceptions = await self.repository.list_exceptions(period.active_calculation_id)

        current = workflow.current_step if workflow else None
        requires_override = any(
            e.severity.value in self.policy.override_severities for e in exceptions
        ) and (workflow is None or workflow.override_by is None)
        actionable = (
            period.status == PeriodStatus.REVIEWING
            and not period.is_locked
            and current is not None
        )

        return ReviewSummary(
            period=period,
            workflow=workflow,
            current_step=current,
            exceptions=exceptions,
            can_approve=actionable and not requires_override,
            can_reject=actionable,
            requires_override=requires_override,
            totals={
                "total_employees": period.total_employees,
                "total_gross_pay": period.total_gross_pay,
                "total_deductions": period.total_deductions,
                "total_net_pay": period.total_net_pay,
                "total_employer_cost": period.total_employer_cost,
            },
        )

    @staticmethod
    def _restart(workflow: ApprovalWorkflowRecord) -> None:
        for step in workflow.steps:
            step.reset()
        workflow.status = WorkflowStatus.PENDING

    async def _load_for_step(self, step_id: UUID) -> tuple[ApprovalWorkflowRecord, PayrollPeriod]:
        workflow = await self.repository.find_workflow_by_step(step_id)
        if workflow is None:
            raise NotFoundError("ApprovalStep", step_id)
        period = await self._get_period(workflow.period_id)
        return workflow, period

    async def _get_period(self, period_id: UUID) -> PayrollPeriod:
        period = await self.repository.get_period(period_id)
        if period is None:
            raise NotFoundError("PayrollPeriod", period_id)
        return period
