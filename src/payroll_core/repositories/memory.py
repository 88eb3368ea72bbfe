"""In-memory repository for tests, demos and single-process use."""

from __future__ import annotations

import copy
from datetime import datetime
from uuid import UUID

from payroll_core.errors import NotFoundError
from payroll_core.records import (
    ApprovalWorkflowRecord,
    ComplianceException,
    EmployeeCalculationLine,
    PayrollAdjustment,
    PayrollCalculation,
    PayrollPeriod,
)
from payroll_core.status import AdjustmentStatus, CalculationStatus, PeriodStatus


class InMemoryPayrollRepository:
    """Dict-backed :class:`PayrollRepository`.

    Records are deep-copied on the way in and out so callers never share
    state with the store. Each method body runs without awaiting, which
    makes the lock compare-and-swap atomic under asyncio.
    """

    def __init__(self) -> None:
        self._periods: dict[UUID, PayrollPeriod] = {}
        self._calculations: dict[UUID, PayrollCalculation] = {}
        self._lines: dict[UUID, list[EmployeeCalculationLine]] = {}
        self._adjustments: dict[UUID, PayrollAdjustment] = {}
        self._workflows: dict[UUID, ApprovalWorkflowRecord] = {}
        self._exceptions: dict[UUID, list[ComplianceException]] = {}

    # Periods

    async def add_period(self, period: PayrollPeriod) -> PayrollPeriod:
        self._periods[period.id] = copy.deepcopy(period)
        return copy.deepcopy(period)

    async def get_period(self, period_id: UUID) -> PayrollPeriod | None:
        period = self._periods.get(period_id)
        return copy.deepcopy(period) if period else None

    async def list_periods(self, status: PeriodStatus | None = None) -> list[PayrollPeriod]:
        periods = [p for p in self._periods.values() if status is None or p.status == status]
        periods.sort(key=lambda p: p.start_date, reverse=True)
        return copy.deepcopy(periods)

    async def update_period(self, period: PayrollPeriod) -> PayrollPeriod:
        stored = self._periods.get(period.id)
        if stored is None:
            raise NotFoundError("PayrollPeriod", period.id)
        updated = copy.deepcopy(period)
        updated.running_calculation_id = stored.running_calculation_id
        self._periods[period.id] = updated
        return copy.deepcopy(updated)

    async def delete_period(self, period_id: UUID) -> None:
        self._periods.pop(period_id, None)
        self._workflows.pop(period_id, None)
        self._adjustments = {
            k: a for k, a in self._adjustments.items() if a.period_id != period_id
        }

    async def get_previous_period(self, period: PayrollPeriod) -> PayrollPeriod | None:
        candidates = [
            p
            for p in self._periods.values()
            if p.id != period.id
            and p.period_type == period.period_type
            and p.end_date < period.start_date
            and p.active_calculation_id is not None
        ]
        if not candidates:
            return None
        return copy.deepcopy(max(candidates, key=lambda p: p.end_date))

    # Calculation lock

    async def try_acquire_calculation_lock(self, period_id: UUID, calculation_id: UUID) -> bool:
        period = self._periods.get(period_id)
        if period is None:
            raise NotFoundError("PayrollPeriod", period_id)
        if period.running_calculation_id is not None:
            return False
        period.running_calculation_id = calculation_id
        return True

    async def release_calculation_lock(self, period_id: UUID, calculation_id: UUID) -> bool:
        period = self._periods.get(period_id)
        if period is None or period.running_calculation_id != calculation_id:
            return False
        period.running_calculation_id = None
        return True

    # Calculations

    async def add_calculation(self, calculation: PayrollCalculation) -> PayrollCalculation:
        self._calculations[calculation.id] = copy.deepcopy(calculation)
        return copy.deepcopy(calculation)

    async def get_calculation(self, calculation_id: UUID) -> PayrollCalculation | None:
        calculation = self._calculations.get(calculation_id)
        return copy.deepcopy(calculation) if calculation else None

    async def update_calculation(self, calculation: PayrollCalculation) -> PayrollCalculation:
        if calculation.id not in self._calculations:
            raise NotFoundError("PayrollCalculation", calculation.id)
        self._calculations[calculation.id] = copy.deepcopy(calculation)
        return copy.deepcopy(calculation)

    async def list_calculations(self, period_id: UUID) -> list[PayrollCalculation]:
        return copy.deepcopy([c for c in self._calculations.values() if c.period_id == period_id])

    async def list_stalled_calculations(self, before: datetime) -> list[PayrollCalculation]:
        stalled = []
        for calc in self._calculations.values():
            if calc.status not in (CalculationStatus.PENDING, CalculationStatus.PROCESSING):
                continue
            last_seen = calc.heartbeat_at or calc.created_at
            if last_seen is not None and last_seen < before:
                stalled.append(calc)
        return copy.deepcopy(stalled)

    # Lines

    async def add_lines(self, lines: list[EmployeeCalculationLine]) -> None:
        for line in lines:
            self._lines.setdefault(line.calculation_id, []).append(copy.deepcopy(line))

    async def list_lines(self, calculation_id: UUID) -> list[EmployeeCalculationLine]:
        return copy.deepcopy(self._lines.get(calculation_id, []))

    # Adjustments

    async def add_adjustment(self, adjustment: PayrollAdjustment) -> PayrollAdjustment:
        self._adjustments[adjustment.id] = copy.deepcopy(adjustment)
        return copy.deepcopy(adjustment)

    async def get_adjustment(self, adjustment_id: UUID) -> PayrollAdjustment | None:
        adjustment = self._adjustments.get(adjustment_id)
        return copy.deepcopy(adjustment) if adjustment else None

    async def update_adjustment(self, adjustment: PayrollAdjustment) -> PayrollAdjustment:
        if adjustment.id not in self._adjustments:
            raise NotFoundError("PayrollAdjustment", adjustment.id)
        self._adjustments[adjustment.id] = copy.deepcopy(adjustment)
        return copy.deepcopy(adjustment)

    async def delete_adjustment(self, adjustment_id: UUID) -> None:
        self._adjustments.pop(adjustment_id, None)

    async def list_adjustments(
        self,
        period_id: UUID | None = None,
        employee_id: UUID | None = None,
        statuses: set[AdjustmentStatus] | None = None,
    ) -> list[PayrollAdjustment]:
        return copy.deepcopy(
            [
                a
                for a in self._adjustments.values()
                if (period_id is None or a.period_id == period_id)
                and (employee_id is None or a.employee_id == employee_id)
                and (statuses is None or a.status in statuses)
            ]
        )

    # Review

    async def get_workflow(self, period_id: UUID) -> ApprovalWorkflowRecord | None:
        workflow = self._workflows.get(period_id)
        return copy.deepcopy(workflow) if workflow else None

    async def find_workflow_by_step(self, step_id: UUID) -> ApprovalWorkflowRecord | None:
        for workflow in self._workflows.values():
            if workflow.get_step(step_id) is not None:
                return copy.deepcopy(workflow)
        return None

    async def save_workflow(self, workflow: ApprovalWorkflowRecord) -> ApprovalWorkflowRecord:
        self._workflows[workflow.period_id] = copy.deepcopy(workflow)
        return copy.deepcopy(workflow)

    async def add_exceptions(self, exceptions: list[ComplianceException]) -> None:
        for exc in exceptions:
            self._exceptions.setdefault(exc.calculation_id, []).append(copy.deepcopy(exc))

    async def list_exceptions(self, calculation_id: UUID) -> list[ComplianceException]:
        return copy.deepcopy(self._exceptions.get(calculation_id, []))
