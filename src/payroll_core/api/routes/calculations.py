"""Calculation run API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from payroll_core.api.dependencies import Payroll
from payroll_core.api.schemas import (
    CalculationCreate,
    CalculationDetailResponse,
    CalculationLineResponse,
    CalculationResponse,
    ErrorResponse,
)

router = APIRouter(tags=["calculations"])


@router.post(
    "/periods/{period_id}/calculations",
    response_model=CalculationResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def start_calculation(
    service: Payroll,
    period_id: Annotated[UUID, Path()],
    payload: CalculationCreate,
) -> CalculationResponse:
    """Queue a calculation run; poll GET /calculations/{id} for progress."""
    calc = await service.start_calculation(
        period_id, payload.calculation_type, payload.requested_by
    )
    return CalculationResponse.model_validate(calc)


@router.post(
    "/periods/{period_id}/recalculate",
    response_model=CalculationResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def recalculate(
    service: Payroll, period_id: Annotated[UUID, Path()]
) -> CalculationResponse:
    return CalculationResponse.model_validate(await service.recalculate(period_id))


@router.get(
    "/periods/{period_id}/calculations",
    response_model=list[CalculationResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_calculations(
    service: Payroll, period_id: Annotated[UUID, Path()]
) -> list[CalculationResponse]:
    calcs = await service.list_calculations(period_id)
    return [CalculationResponse.model_validate(c) for c in calcs]


@router.get(
    "/calculations/{calculation_id}",
    response_model=CalculationDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_calculation(
    service: Payroll, calculation_id: Annotated[UUID, Path()]
) -> CalculationDetailResponse:
    """Status, progress, totals and per-employee lines."""
    detail = await service.get_calculation(calculation_id)
    return CalculationDetailResponse(
        calculation=CalculationResponse.model_validate(detail.calculation),
        lines=[CalculationLineResponse.model_validate(line) for line in detail.lines],
    )


@router.post(
    "/calculations/{calculation_id}/cancel",
    response_model=CalculationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_calculation(
    service: Payroll, calculation_id: Annotated[UUID, Path()]
) -> CalculationResponse:
    return CalculationResponse.model_validate(await service.cancel_calculation(calculation_id))
