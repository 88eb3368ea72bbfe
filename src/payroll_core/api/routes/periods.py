"""Payroll period API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from payroll_core.api.dependencies import Payroll
from payroll_core.api.schemas import (
    ActorRequest,
    ErrorResponse,
    LockRequest,
    PayslipResponse,
    PeriodCreate,
    PeriodListResponse,
    PeriodResponse,
    PeriodUpdate,
)

router = APIRouter(prefix="/periods", tags=["periods"])


# ============================================================================
# Period CRUD
# ============================================================================


@router.post(
    "",
    response_model=PeriodResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_period(service: Payroll, payload: PeriodCreate) -> PeriodResponse:
    """Create a new period in draft status."""
    period = await service.create_period(
        payload.period_type,
        payload.start_date,
        payload.end_date,
        payload.cutoff_date,
        payload.pay_date,
        payload.name,
    )
    return PeriodResponse.model_validate(period)


@router.get("", response_model=PeriodListResponse)
async def list_periods(
    service: Payroll,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> PeriodListResponse:
    """List periods, newest first."""
    periods = await service.list_periods(status_filter)
    return PeriodListResponse(
        items=[PeriodResponse.model_validate(p) for p in periods],
        total=len(periods),
    )


@router.get(
    "/{period_id}",
    response_model=PeriodResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_period(service: Payroll, period_id: Annotated[UUID, Path()]) -> PeriodResponse:
    return PeriodResponse.model_validate(await service.get_period(period_id))


@router.patch(
    "/{period_id}",
    response_model=PeriodResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_period(
    service: Payroll,
    period_id: Annotated[UUID, Path()],
    payload: PeriodUpdate,
) -> PeriodResponse:
    """Edit name, type or dates of a draft or calculated period."""
    period = await service.update_period(period_id, **payload.model_dump(exclude_unset=True))
    return PeriodResponse.model_validate(period)


@router.delete(
    "/{period_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_period(service: Payroll, period_id: Annotated[UUID, Path()]) -> Response:
    await service.delete_period(period_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Finalization
# ============================================================================


@router.post(
    "/{period_id}/lock",
    response_model=PeriodResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def lock_period(
    service: Payroll,
    period_id: Annotated[UUID, Path()],
    payload: LockRequest,
) -> PeriodResponse:
    """Lock the period permanently."""
    period = await service.lock_period(period_id, payload.locked_by, payload.reason)
    return PeriodResponse.model_validate(period)


@router.post(
    "/{period_id}/mark-paid",
    response_model=PeriodResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def mark_paid(
    service: Payroll,
    period_id: Annotated[UUID, Path()],
    payload: ActorRequest,
) -> PeriodResponse:
    return PeriodResponse.model_validate(await service.mark_paid(period_id, payload.actor))


@router.post(
    "/{period_id}/close",
    response_model=PeriodResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def close_period(
    service: Payroll,
    period_id: Annotated[UUID, Path()],
    payload: ActorRequest,
) -> PeriodResponse:
    return PeriodResponse.model_validate(await service.close_period(period_id, payload.actor))


@router.get(
    "/{period_id}/payslips",
    response_model=list[PayslipResponse],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def export_payslips(
    service: Payroll, period_id: Annotated[UUID, Path()]
) -> list[PayslipResponse]:
    """Payslips of the approved calculation."""
    payslips = await service.export_payslips(period_id)
    return [PayslipResponse.model_validate(p) for p in payslips]
