"""PayrollService - the operations the core exposes to the surrounding portal.

Wires the repository, employee source, contribution tables, clock and event
emitter into the services and delegates to them. API routes and the CLI talk
only to this class.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from uuid import UUID

from payroll_core.calculators import CalculationEngine, ContributionTableRegistry
from payroll_core.clock import Clock, SystemClock
from payroll_core.config import EngineConfig, ReviewPolicy, Settings, WorkflowConfig
from payroll_core.errors import ValidationError
from payroll_core.events import EventEmitter
from payroll_core.records import (
    ApprovalWorkflowRecord,
    PayrollAdjustment,
    PayrollCalculation,
    PayrollPeriod,
    Payslip,
)
from payroll_core.repositories.base import PayrollRepository
from payroll_core.services import (
    ADJUSTMENT_FIELD_MAP,
    AdjustmentLedger,
    CalculationDetail,
    CalculationRunner,
    EmployeeSource,
    LockingService,
    PayslipExporter,
    PeriodManager,
    ReviewSummary,
    map_adjustment_fields,
)

logger = logging.getLogger(__name__)

REQUIRED_ADJUSTMENT_FIELDS = ("employee_id", "type", "amount", "reason")


class PayrollService:
    """Facade over the payroll core services."""

    def __init__(
        self,
        repository: PayrollRepository,
        employees: EmployeeSource,
        registry: ContributionTableRegistry | None = None,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
        engine_config: EngineConfig | None = None,
        review_policy: ReviewPolicy | None = None,
        workflow_config: WorkflowConfig | None = None,
    ):
        self.repository = repository
        self.employees = employees
        self.registry = registry or ContributionTableRegistry.default()
        self.clock = clock or SystemClock()
        self.emitter = emitter or EventEmitter()
        self.config = engine_config or EngineConfig()

        self.ledger = AdjustmentLedger(repository, employees, self.emitter, self.clock)
        self.locking = LockingService(repository, employees, self.ledger)
        self.engine = CalculationEngine(self.config.engine_version)
        self.runner = CalculationRunner(
            repository,
            self.engine,
            self.registry,
            self.locking,
            self.ledger,
            self.emitter,
            self.clock,
            self.config,
        )
        self.periods = PeriodManager(
            repository,
            self.runner,
            self.locking,
            self.ledger,
            self.emitter,
            self.clock,
            self.config,
            review_policy,
            workflow_config,
        )
        self.workflow = self.periods.workflow
        self.exporter = PayslipExporter(repository, self.clock)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        repository: PayrollRepository,
        employees: EmployeeSource,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
    ) -> PayrollService:
        """Build a service using environment-driven policy and tables."""
        return cls(
            repository,
            employees,
            registry=ContributionTableRegistry.default(settings.contribution_tables_path),
            clock=clock,
            emitter=emitter,
            engine_config=settings.engine_config(),
            review_policy=settings.review_policy(),
            workflow_config=settings.workflow_config(),
        )

    # Periods

    async def create_period(
        self,
        period_type: str,
        start_date: date,
        end_date: date,
        cutoff_date: date,
        pay_date: date,
        name: str | None = None,
    ) -> PayrollPeriod:
        return await self.periods.create_period(
            period_type, start_date, end_date, cutoff_date, pay_date, name
        )

    async def get_period(self, period_id: UUID) -> PayrollPeriod:
        return await self.periods.get_period(period_id)

    async def list_periods(self, status: str | None = None) -> list[PayrollPeriod]:
        return await self.periods.list_periods(status)

    async def update_period(self, period_id: UUID, **fields: Any) -> PayrollPeriod:
        return await self.periods.update_period(period_id, **fields)

    async def delete_period(self, period_id: UUID) -> None:
        await self.periods.delete_period(period_id)

    async def lock_period(
        self, period_id: UUID, locked_by: str, reason: str | None = None
    ) -> PayrollPeriod:
        return await self.periods.lock_period(period_id, locked_by, reason)

    async def mark_paid(self, period_id: UUID, finalized_by: str) -> PayrollPeriod:
        return await self.periods.mark_paid(period_id, finalized_by)

    async def close_period(self, period_id: UUID, closed_by: str) -> PayrollPeriod:
        return await self.periods.close_period(period_id, closed_by)

    # Calculations

    async def start_calculation(
        self,
        period_id: UUID,
        calculation_type: str = "regular",
        requested_by: str | None = None,
    ) -> PayrollCalculation:
        return await self.periods.start_calculation(period_id, calculation_type, requested_by)

    async def recalculate(
        self, period_id: UUID, requested_by: str | None = None
    ) -> PayrollCalculation:
        return await self.periods.recalculate(period_id, requested_by)

    async def get_calculation(self, calculation_id: UUID) -> CalculationDetail:
        return await self.periods.get_calculation(calculation_id)

    async def list_calculations(self, period_id: UUID) -> list[PayrollCalculation]:
        return await self.periods.list_calculations(period_id)

    async def cancel_calculation(self, calculation_id: UUID) -> PayrollCalculation:
        return await self.periods.cancel_calculation(calculation_id)

    async def wait_for_calculation(self, calculation_id: UUID) -> PayrollCalculation | None:
        """Block until a queued run reaches a terminal status."""
        return await self.runner.wait(calculation_id)

    async def reap_stalled(self) -> list[UUID]:
        return await self.periods.reap_stalled()

    async def shutdown(self) -> None:
        await self.runner.shutdown()

    # Adjustments

    async def list_adjustments(
        self,
        period_id: UUID | None = None,
        employee_id: UUID | None = None,
        status: str | None = None,
    ) -> list[PayrollAdjustment]:
        return await self.ledger.list_adjustments(period_id, employee_id, status)

    async def get_adjustment(self, adjustment_id: UUID) -> PayrollAdjustment:
        return await self.ledger.get_adjustment(adjustment_id)

    async def create_adjustment(
        self, period_id: UUID, data: dict[str, Any], requested_by: str | None = None
    ) -> PayrollAdjustment:
        """Create an adjustment from API-named fields (see ADJUSTMENT_FIELD_MAP)."""
        missing = [name for name in REQUIRED_ADJUSTMENT_FIELDS if data.get(name) in (None, "")]
        if missing:
            raise ValidationError({name: "is required" for name in missing})
        return await self.ledger.create_adjustment(
            period_id, requested_by=requested_by, **map_adjustment_fields(data)
        )

    async def update_adjustment(
        self, adjustment_id: UUID, data: dict[str, Any]
    ) -> PayrollAdjustment:
        unknown = set(data) - set(ADJUSTMENT_FIELD_MAP)
        if unknown:
            raise ValidationError({name: "unknown field" for name in sorted(unknown)})
        return await self.ledger.update_adjustment(adjustment_id, **map_adjustment_fields(data))

    async def delete_adjustment(self, adjustment_id: UUID) -> None:
        await self.ledger.delete_adjustment(adjustment_id)

    async def approve_adjustment(
        self, adjustment_id: UUID, reviewer: str, notes: str | None = None
    ) -> PayrollAdjustment:
        return await self.ledger.approve_adjustment(adjustment_id, reviewer, notes)

    async def reject_adjustment(
        self, adjustment_id: UUID, reviewer: str, notes: str
    ) -> PayrollAdjustment:
        return await self.ledger.reject_adjustment(adjustment_id, reviewer, notes)

    # Review

    async def submit_for_review(
        self, period_id: UUID, submitted_by: str | None = None
    ) -> PayrollPeriod:
        return await self.periods.submit_for_review(period_id, submitted_by)

    async def get_review(self, period_id: UUID) -> ReviewSummary:
        return await self.workflow.get_review(period_id)

    async def approve_step(
        self, step_id: UUID, approver: str, comments: str | None = None
    ) -> ApprovalWorkflowRecord:
        return await self.workflow.approve_step(step_id, approver, comments)

    async def reject_step(
        self, step_id: UUID, approver: str, reason: str
    ) -> ApprovalWorkflowRecord:
        return await self.workflow.reject_step(step_id, approver, reason)

    async def approve_period(
        self, period_id: UUID, approver: str, comments: str | None = None
    ) -> PayrollPeriod:
        return await self.periods.approve_period(period_id, approver, comments)

    async def reject_period(self, period_id: UUID, approver: str, reason: str) -> PayrollPeriod:
        return await self.periods.reject_period(period_id, approver, reason)

    async def acknowledge_exceptions(
        self, period_id: UUID, acknowledged_by: str, notes: str | None = None
    ) -> ApprovalWorkflowRecord:
        return await self.workflow.acknowledge_exceptions(period_id, acknowledged_by, notes)

    # Export

    async def export_payslips(self, period_id: UUID) -> list[Payslip]:
        return await self.exporter.export(period_id)
