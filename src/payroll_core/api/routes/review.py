"""Review and approval workflow API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path

from payroll_core.api.dependencies import Payroll
from payroll_core.api.schemas import (
    AcknowledgeRequest,
    ActorRequest,
    ApprovalStepResponse,
    ComplianceExceptionResponse,
    ErrorResponse,
    PeriodResponse,
    ReviewResponse,
    StepApproveRequest,
    StepRejectRequest,
    WorkflowResponse,
)

router = APIRouter(tags=["review"])

_ERRORS = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


@router.post(
    "/periods/{period_id}/submit-review",
    response_model=PeriodResponse,
    responses=_ERRORS,
)
async def submit_for_review(
    service: Payroll,
    period_id: Annotated[UUID, Path()],
    payload: ActorRequest,
) -> PeriodResponse:
    """Detect exceptions and open the approval workflow."""
    return PeriodResponse.model_validate(await service.submit_for_review(period_id, payload.actor))


@router.get(
    "/periods/{period_id}/review",
    response_model=ReviewResponse,
    responses=_ERRORS,
)
async def get_review(service: Payroll, period_id: Annotated[UUID, Path()]) -> ReviewResponse:
    summary = await service.get_review(period_id)
    return ReviewResponse(
        period=PeriodResponse.model_validate(summary.period),
        workflow=WorkflowResponse.model_validate(summary.workflow) if summary.workflow else None,
        current_step=(
            ApprovalStepResponse.model_validate(summary.current_step)
            if summary.current_step
            else None
        ),
        exceptions=[ComplianceExceptionResponse.model_validate(e) for e in summary.exceptions],
        can_approve=summary.can_approve,
        can_reject=summary.can_reject,
        requires_override=summary.requires_override,
        totals=summary.totals,
    )


@router.post(
    "/periods/{period_id}/approve",
    response_model=PeriodResponse,
    responses=_ERRORS,
)
async def approve_period(
    service: Payroll,
    period_id: Annotated[UUID, Path()],
    payload: StepApproveRequest,
) -> PeriodResponse:
    """Approve the period's current workflow step."""
    period = await service.approve_period(period_id, payload.approver, payload.comments)
    return PeriodResponse.model_validate(period)


@router.post(
    "/periods/{period_id}/reject",
    response_model=PeriodResponse,
    responses=_ERRORS,
)
async def reject_period(
    service: Payroll,
    period_id: Annotated[UUID, Path()],
    payload: StepRejectRequest,
) -> PeriodResponse:
    period = await service.reject_period(period_id, payload.approver, payload.reason)
    return PeriodResponse.model_validate(period)


@router.post(
    "/periods/{period_id}/acknowledge-exceptions",
    response_model=WorkflowResponse,
    responses=_ERRORS,
)
async def acknowledge_exceptions(
    service: Payroll,
    period_id: Annotated[UUID, Path()],
    payload: AcknowledgeRequest,
) -> WorkflowResponse:
    workflow = await service.acknowledge_exceptions(
        period_id, payload.acknowledged_by, payload.notes
    )
    return WorkflowResponse.model_validate(workflow)


@router.post(
    "/workflow-steps/{step_id}/approve",
    response_model=WorkflowResponse,
    responses=_ERRORS,
)
async def approve_step(
    service: Payroll,
    step_id: Annotated[UUID, Path()],
    payload: StepApproveRequest,
) -> WorkflowResponse:
    workflow = await service.approve_step(step_id, payload.approver, payload.comments)
    return WorkflowResponse.model_validate(workflow)


@router.post(
    "/workflow-steps/{step_id}/reject",
    response_model=WorkflowResponse,
    responses=_ERRORS,
)
async def reject_step(
    service: Payroll,
    step_id: Annotated[UUID, Path()],
    payload: StepRejectRequest,
) -> WorkflowResponse:
    """Reject a step; every step resets and the period returns to calculated."""
    workflow = await service.reject_step(step_id, payload.approver, payload.reason)
    return WorkflowResponse.model_validate(workflow)
