"""Pytest fixtures for payroll core tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from payroll_core.calculators import ContributionTableRegistry
from payroll_core.clock import FixedClock
from payroll_core.config import EngineConfig
from payroll_core.events import EventEmitter, EventRecorder
from payroll_core.payroll import PayrollService
from payroll_core.records import EmployeePayInput, PayrollCalculation, PayrollPeriod
from payroll_core.repositories import InMemoryPayrollRepository
from payroll_core.services import StaticEmployeeSource

ANA_ID = UUID("00000000-0000-0000-0000-00000000a001")
BEN_ID = UUID("00000000-0000-0000-0000-00000000a002")
CARLA_ID = UUID("00000000-0000-0000-0000-00000000a003")

NOV_FIRST_HALF = {
    "period_type": "semi_monthly",
    "start_date": date(2025, 11, 1),
    "end_date": date(2025, 11, 15),
    "cutoff_date": date(2025, 11, 15),
    "pay_date": date(2025, 11, 20),
}

NOV_SECOND_HALF = {
    "period_type": "semi_monthly",
    "start_date": date(2025, 11, 16),
    "end_date": date(2025, 11, 30),
    "cutoff_date": date(2025, 11, 30),
    "pay_date": date(2025, 12, 5),
}


def make_employee(
    employee_id: UUID,
    basic_salary: str,
    number: str = "EMP-000",
    name: str = "Test Employee",
    **kwargs,
) -> EmployeePayInput:
    """Build employee pay inputs with string money values."""
    for key in ("overtime_pay", "allowances", "deminimis"):
        if key in kwargs:
            kwargs[key] = Decimal(kwargs[key])
    return EmployeePayInput(
        employee_id=employee_id,
        basic_salary=Decimal(basic_salary),
        employee_number=number,
        name=name,
        department="Operations",
        position="Staff",
        **kwargs,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 11, 16, 8, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def registry() -> ContributionTableRegistry:
    return ContributionTableRegistry.default()


@pytest.fixture
def repository() -> InMemoryPayrollRepository:
    return InMemoryPayrollRepository()


@pytest.fixture
def employees() -> StaticEmployeeSource:
    """Three regular employees on semi-monthly pay."""
    return StaticEmployeeSource(
        [
            make_employee(ANA_ID, "50000", "EMP-001", "Ana Santos"),
            make_employee(
                BEN_ID,
                "20000",
                "EMP-002",
                "Ben Cruz",
                overtime_pay="1500",
                allowances="2000",
                deminimis="1000",
            ),
            make_employee(CARLA_ID, "30000", "EMP-003", "Carla Reyes"),
        ]
    )


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def emitter(recorder: EventRecorder) -> EventEmitter:
    emitter = EventEmitter()
    emitter.on_all(recorder)
    return emitter


@pytest.fixture
async def service(
    repository: InMemoryPayrollRepository,
    employees: StaticEmployeeSource,
    registry: ContributionTableRegistry,
    clock: FixedClock,
    emitter: EventEmitter,
) -> AsyncGenerator[PayrollService, None]:
    """PayrollService over the in-memory repository."""
    service = PayrollService(
        repository,
        employees,
        registry=registry,
        clock=clock,
        emitter=emitter,
        engine_config=EngineConfig(max_parallel_lines=2, heartbeat_timeout_seconds=300),
    )
    yield service
    await service.shutdown()


@pytest.fixture
async def period(service: PayrollService) -> PayrollPeriod:
    """Draft semi-monthly period for Nov 1-15, 2025."""
    return await service.create_period(**NOV_FIRST_HALF)


@pytest.fixture
def run_calculation(
    service: PayrollService,
) -> Callable[..., Awaitable[PayrollCalculation]]:
    """Start a calculation and wait for it to reach a terminal status."""

    async def _run(
        period_id: UUID, calculation_type: str = "regular", requested_by: str = "hr.officer"
    ) -> PayrollCalculation:
        calc = await service.start_calculation(period_id, calculation_type, requested_by)
        return await service.wait_for_calculation(calc.id)

    return _run


@pytest.fixture
async def calculated_period(
    service: PayrollService, period: PayrollPeriod, run_calculation
) -> PayrollPeriod:
    """Period with one completed regular calculation."""
    await run_calculation(period.id)
    return await service.get_period(period.id)


@pytest.fixture
async def reviewing_period(
    service: PayrollService, calculated_period: PayrollPeriod
) -> PayrollPeriod:
    """Period submitted for review with a fresh three-step workflow."""
    return await service.submit_for_review(calculated_period.id, "hr.officer")
