"""Adjustment API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from payroll_core.api.dependencies import Payroll
from payroll_core.api.schemas import (
    AdjustmentCreate,
    AdjustmentResponse,
    AdjustmentReview,
    AdjustmentUpdate,
    ErrorResponse,
)

router = APIRouter(tags=["adjustments"])


@router.get("/adjustments", response_model=list[AdjustmentResponse])
async def list_adjustments(
    service: Payroll,
    period_id: UUID | None = None,
    employee_id: UUID | None = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[AdjustmentResponse]:
    adjustments = await service.list_adjustments(period_id, employee_id, status_filter)
    return [AdjustmentResponse.model_validate(a) for a in adjustments]


@router.post(
    "/periods/{period_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def create_adjustment(
    service: Payroll,
    period_id: Annotated[UUID, Path()],
    payload: AdjustmentCreate,
) -> AdjustmentResponse:
    """Request an adjustment; it stays pending until reviewed."""
    data = payload.model_dump(exclude={"requested_by"}, exclude_none=True)
    adjustment = await service.create_adjustment(period_id, data, payload.requested_by)
    return AdjustmentResponse.model_validate(adjustment)


@router.get(
    "/adjustments/{adjustment_id}",
    response_model=AdjustmentResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_adjustment(
    service: Payroll, adjustment_id: Annotated[UUID, Path()]
) -> AdjustmentResponse:
    return AdjustmentResponse.model_validate(await service.get_adjustment(adjustment_id))


@router.patch(
    "/adjustments/{adjustment_id}",
    response_model=AdjustmentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_adjustment(
    service: Payroll,
    adjustment_id: Annotated[UUID, Path()],
    payload: AdjustmentUpdate,
) -> AdjustmentResponse:
    adjustment = await service.update_adjustment(
        adjustment_id, payload.model_dump(exclude_unset=True)
    )
    return AdjustmentResponse.model_validate(adjustment)


@router.delete(
    "/adjustments/{adjustment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_adjustment(
    service: Payroll, adjustment_id: Annotated[UUID, Path()]
) -> Response:
    await service.delete_adjustment(adjustment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/adjustments/{adjustment_id}/approve",
    response_model=AdjustmentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_adjustment(
    service: Payroll,
    adjustment_id: Annotated[UUID, Path()],
    payload: AdjustmentReview,
) -> AdjustmentResponse:
    adjustment = await service.approve_adjustment(adjustment_id, payload.reviewer, payload.notes)
    return AdjustmentResponse.model_validate(adjustment)


@router.post(
    "/adjustments/{adjustment_id}/reject",
    response_model=AdjustmentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reject_adjustment(
    service: Payroll,
    adjustment_id: Annotated[UUID, Path()],
    payload: AdjustmentReview,
) -> AdjustmentResponse:
    """Reject a pending adjustment; notes are required."""
    adjustment = await service.reject_adjustment(
        adjustment_id, payload.reviewer, payload.notes or ""
    )
    return AdjustmentResponse.model_validate(adjustment)
