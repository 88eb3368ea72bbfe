"""Persistence boundary for payroll state.

Services talk to storage only through :class:`PayrollRepository`. Reads
return detached copies; callers mutate a copy and write it back with the
matching ``update_*``/``save_*`` method.

The per-period calculation lock (``PayrollPeriod.running_calculation_id``)
is owned by :meth:`PayrollRepository.try_acquire_calculation_lock` and
:meth:`PayrollRepository.release_calculation_lock`; ``update_period`` never
writes it, so a stale period copy cannot clobber a lock taken meanwhile.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from payroll_core.records import (
    ApprovalWorkflowRecord,
    ComplianceException,
    EmployeeCalculationLine,
    PayrollAdjustment,
    PayrollCalculation,
    PayrollPeriod,
)
from payroll_core.status import AdjustmentStatus, PeriodStatus


class PayrollRepository(Protocol):
    """Async storage operations used by the payroll services."""

    # Periods

    async def add_period(self, period: PayrollPeriod) -> PayrollPeriod: ...

    async def get_period(self, period_id: UUID) -> PayrollPeriod | None: ...

    async def list_periods(self, status: PeriodStatus | None = None) -> list[PayrollPeriod]: ...

    async def update_period(self, period: PayrollPeriod) -> PayrollPeriod: ...

    async def delete_period(self, period_id: UUID) -> None: ...

    async def get_previous_period(self, period: PayrollPeriod) -> PayrollPeriod | None:
        """Latest period of the same type ending before ``period`` starts.

        Only periods with an active calculation qualify.
        """
        ...

    # Calculation lock

    async def try_acquire_calculation_lock(self, period_id: UUID, calculation_id: UUID) -> bool:
        """Compare-and-swap the period lock from empty to ``calculation_id``."""
        ...

    async def release_calculation_lock(self, period_id: UUID, calculation_id: UUID) -> bool:
        """Clear the lock if ``calculation_id`` holds it; False otherwise."""
        ...

    # Calculations

    async def add_calculation(self, calculation: PayrollCalculation) -> PayrollCalculation: ...

    async def get_calculation(self, calculation_id: UUID) -> PayrollCalculation | None: ...

    async def update_calculation(self, calculation: PayrollCalculation) -> PayrollCalculation: ...

    async def list_calculations(self, period_id: UUID) -> list[PayrollCalculation]: ...

    async def list_stalled_calculations(self, before: datetime) -> list[PayrollCalculation]:
        """Pending/processing calculations whose heartbeat is older than ``before``."""
        ...

    # Lines

    async def add_lines(self, lines: list[EmployeeCalculationLine]) -> None: ...

    async def list_lines(self, calculation_id: UUID) -> list[EmployeeCalculationLine]: ...

    # Adjustments

    async def add_adjustment(self, adjustment: PayrollAdjustment) -> PayrollAdjustment: ...

    async def get_adjustment(self, adjustment_id: UUID) -> PayrollAdjustment | None: ...

    async def update_adjustment(self, adjustment: PayrollAdjustment) -> PayrollAdjustment: ...

    async def delete_adjustment(self, adjustment_id: UUID) -> None: ...

    async def list_adjustments(
        self,
        period_id: UUID | None = None,
        employee_id: UUID | None = None,
        statuses: set[AdjustmentStatus] | None = None,
    ) -> list[PayrollAdjustment]: ...

    # Review

    async def get_workflow(self, period_id: UUID) -> ApprovalWorkflowRecord | None: ...

    async def find_workflow_by_step(self, step_id: UUID) -> ApprovalWorkflowRecord | None: ...

    async def save_workflow(self, workflow: ApprovalWorkflowRecord) -> ApprovalWorkflowRecord: ...

    async def add_exceptions(self, exceptions: list[ComplianceException]) -> None: ...

    async def list_exceptions(self, calculation_id: UUID) -> list[ComplianceException]: ...
