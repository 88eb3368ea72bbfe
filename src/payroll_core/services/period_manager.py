"""Payroll period lifecycle.

PeriodManager owns every period status change except the ones a running
calculation makes on its own completion (see CalculationRunner). Transitions
are checked by PeriodStateMachine; locked periods only move forward through
approved -> paid -> closed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from payroll_core.clock import Clock
from payroll_core.config import EngineConfig, ReviewPolicy, WorkflowConfig
from payroll_core.errors import (
    CalculationInProgressError,
    DomainStateError,
    ImmutableRecordError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from payroll_core.events import (
    CalculationStarted,
    EventEmitter,
    EventMetadata,
    ExceptionsDetected,
    PeriodCreated,
    PeriodLocked,
    PeriodStatusChanged,
)
from payroll_core.records import (
    EmployeeCalculationLine,
    PayrollCalculation,
    PayrollPeriod,
)
from payroll_core.repositories.base import PayrollRepository
from payroll_core.services.adjustment_ledger import AdjustmentLedger
from payroll_core.services.approval_workflow import ApprovalWorkflow
from payroll_core.services.calculation_runner import CalculationRunner
from payroll_core.services.exception_detector import ExceptionDetector
from payroll_core.services.locking_service import LockingService
from payroll_core.services.state_machine import CalculationStateMachine, PeriodStateMachine
from payroll_core.status import (
    CalculationStatus,
    CalculationType,
    PeriodStatus,
    PeriodType,
    Severity,
)

logger = logging.getLogger(__name__)

# Fields update_period accepts
EDITABLE_FIELDS = {"name", "period_type", "start_date", "end_date", "cutoff_date", "pay_date"}


@dataclass(frozen=True)
class CalculationDetail:
    """A calculation with its per-employee lines."""

    calculation: PayrollCalculation
    lines: list[EmployeeCalculationLine] = field(default_factory=list)


def default_period_name(start: date, end: date) -> str:
    """'Nov 1-15, 2025', 'Dec 29, 2025 - Jan 4, 2026' and so on."""
    if start.year != end.year:
        return f"{start:%b} {start.day}, {start.year} - {end:%b} {end.day}, {end.year}"
    if start.month != end.month:
        return f"{start:%b} {start.day} - {end:%b} {end.day}, {end.year}"
    return f"{start:%b} {start.day}-{end.day}, {end.year}"


class PeriodManager:
    """Service for managing the payroll period lifecycle.

    Operations:
    - create_period / update_period / delete_period
    - start_calculation / recalculate / cancel_calculation
    - submit_for_review, approve_period / reject_period (via ApprovalWorkflow)
    - mark_paid, close_period, lock_period
    - reap_stalled: time out runs that stopped reporting progress
    """

    def __init__(
        self,
        repository: PayrollRepository,
        runner: CalculationRunner,
        locking: LockingService,
        ledger: AdjustmentLedger,
        emitter: EventEmitter,
        clock: Clock,
        config: EngineConfig | None = None,
        review_policy: ReviewPolicy | None = None,
        workflow_config: WorkflowConfig | None = None,
    ):
        self.repository = repository
        self.runner = runner
        self.locking = locking
        self.ledger = ledger
        self.emitter = emitter
        self.clock = clock
        self.config = config or EngineConfig()
        self.review_policy = review_policy or ReviewPolicy()
        self.detector = ExceptionDetector(repository, self.review_policy, clock)
        self.workflow = ApprovalWorkflow(
            repository, self, emitter, clock, workflow_config, self.review_policy
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
        """Create a period in ``draft``.

        Raises:
            ValidationError: Dates or type are invalid, or the period
                overlaps another period of the same type.
        """
        values = {
            "period_type": period_type,
            "start_date": start_date,
            "end_date": end_date,
            "cutoff_date": cutoff_date,
            "pay_date": pay_date,
        }
        await self._validate_structure(values, exclude_id=None)

        now = self.clock.now()
        period = PayrollPeriod(
            period_type=values["period_type"],
            start_date=start_date,
            end_date=end_date,
            cutoff_date=cutoff_date,
            pay_date=pay_date,
            name=(name or "").strip() or default_period_name(start_date, end_date),
            created_at=now,
            updated_at=now,
        )
        period = await self.repository.add_period(period)
        logger.info("Created %s period %s (%s)", period.period_type.value, period.id, period.name)
        self.emitter.emit(
            PeriodCreated(
                metadata=EventMetadata.create(now),
                period_id=period.id,
                period_type=period.period_type.value,
                start_date=period.start_date,
                end_date=period.end_date,
                pay_date=period.pay_date,
            )
        )
        return period

    async def get_period(self, period_id: UUID) -> PayrollPeriod:
        period = await self.repository.get_period(period_id)
        if period is None:
            raise NotFoundError("PayrollPeriod", period_id)
        return period

    async def list_periods(self, status: str | None = None) -> list[PayrollPeriod]:
        return await self.repository.list_periods(PeriodStatus(status) if status else None)

    async def update_period(self, period_id: UUID, **fields: Any) -> PayrollPeriod:
        """Edit name, type or dates while the period is ``draft``/``calculated``."""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError({name: "field cannot be updated" for name in sorted(unknown)})

        period = await self.get_period(period_id)
        PeriodStateMachine.ensure_unlocked(period, "edit the period")
        if not PeriodStateMachine.can_edit_structure(period.status):
            raise DomainStateError(
                f"Period {period.id} is {period.status.value}; only draft or calculated "
                "periods can be edited"
            )

        values = {
            "period_type": fields.get("period_type", period.period_type),
            "start_date": fields.get("start_date", period.start_date),
            "end_date": fields.get("end_date", period.end_date),
            "cutoff_date": fields.get("cutoff_date", period.cutoff_date),
            "pay_date": fields.get("pay_date", period.pay_date),
        }
        await self._validate_structure(values, exclude_id=period.id)

        period.period_type = values["period_type"]
        period.start_date = values["start_date"]
        period.end_date = values["end_date"]
        period.cutoff_date = values["cutoff_date"]
        period.pay_date = values["pay_date"]
        if "name" in fields:
            period.name = (fields["name"] or "").strip() or default_period_name(
                period.start_date, period.end_date
            )
        period.updated_at = self.clock.now()
        return await self.repository.update_period(period)

    async def delete_period(self, period_id: UUID) -> None:
        """Delete a draft period that was never calculated."""
        period = await self.get_period(period_id)
        PeriodStateMachine.ensure_unlocked(period, "delete the period")
        if period.status != PeriodStatus.DRAFT:
            raise DomainStateError(
                f"Only draft periods can be deleted; {period.id} is {period.status.value}"
            )
        if await self.repository.list_calculations(period.id):
            raise DomainStateError(f"Period {period.id} has calculations and cannot be deleted")
        await self.repository.delete_period(period.id)
        logger.info("Deleted period %s", period.id)

    # Calculations

    async def start_calculation(
        self,
        period_id: UUID,
        calculation_type: str = CalculationType.REGULAR,
        requested_by: str | None = None,
    ) -> PayrollCalculation:
        """Start a calculation run and return it in ``pending``.

        The job runs in the background; poll :meth:`get_calculation`.

        Raises:
            ImmutableRecordError: Period is locked.
            InvalidTransitionError: The period status does not allow this
                calculation type.
            CalculationInProgressError: Another run holds the period.
        """
        try:
            calculation_type = CalculationType(calculation_type)
        except ValueError:
            allowed = ", ".join(t.value for t in CalculationType)
            raise ValidationError({"calculation_type": f"must be one of: {allowed}"}) from None

        period = await self.get_period(period_id)
        if period.running_calculation_id is not None:
            raise CalculationInProgressError(period.id, period.running_calculation_id)
        PeriodStateMachine.validate_calculation_start(period, calculation_type)

        now = self.clock.now()
        calc = PayrollCalculation(
            period_id=period.id,
            calculation_type=calculation_type,
            previous_period_status=period.status,
            requested_by=requested_by,
            created_at=now,
            heartbeat_at=now,
        )
        await self.locking.acquire(period.id, calc.id)

        try:
            # Re-check under the lock; a run may have finished in between
            period = await self.get_period(period_id)
            PeriodStateMachine.validate_calculation_start(period, calculation_type)
            calc.previous_period_status = period.status
            snapshot = await self.locking.snapshot_inputs(
                period, self.runner.engine.engine_version
            )
            calc.total_employees = len(snapshot.employees)
            calc.inputs_hash = snapshot.inputs_hash

            for prior in await self.repository.list_calculations(period.id):
                if prior.superseded_by is not None:
                    continue
                prior.superseded_by = calc.id
                await self.repository.update_calculation(prior)
            calc.supersedes = period.active_calculation_id
            calc = await self.repository.add_calculation(calc)

            from_status = period.status
            period.status = PeriodStatus.CALCULATING
            period.active_calculation_id = calc.id
            period.clear_totals()
            period.updated_at = now
            if from_status == PeriodStatus.REVIEWING:
                await self.workflow.reset(period.id)
            period = await self.repository.update_period(period)
        except Exception:
            await self.locking.release(period_id, calc.id)
            raise

        self.runner.submit(calc, period, snapshot)
        self._emit_status_change(period.id, from_status, PeriodStatus.CALCULATING)
        self.emitter.emit(
            CalculationStarted(
                metadata=EventMetadata.create(now, actor=requested_by),
                calculation_id=calc.id,
                period_id=period.id,
                calculation_type=calc.calculation_type.value,
                total_employees=calc.total_employees,
                supersedes=calc.supersedes,
            )
        )
        return calc

    async def recalculate(
        self, period_id: UUID, requested_by: str | None = None
    ) -> PayrollCalculation:
        """Start a ``re-calculation`` run superseding the active calculation."""
        return await self.start_calculation(period_id, CalculationType.RECALCULATION, requested_by)

    async def get_calculation(self, calculation_id: UUID) -> CalculationDetail:
        calc = await self.repository.get_calculation(calculation_id)
        if calc is None:
            raise NotFoundError("PayrollCalculation", calculation_id)
        lines = await self.repository.list_lines(calc.id)
        return CalculationDetail(calculation=calc, lines=lines)

    async def list_calculations(self, period_id: UUID) -> list[PayrollCalculation]:
        await self.get_period(period_id)
        calcs = await self.repository.list_calculations(period_id)
        return sorted(calcs, key=lambda c: (c.created_at is None, c.created_at))

    async def cancel_calculation(self, calculation_id: UUID) -> PayrollCalculation:
        """Cancel a pending or processing run.

        Waits for the in-flight chunk, restores the period's previous status
        and the superseded calculation, then releases the lock.
        """
        calc = await self.repository.get_calculation(calculation_id)
        if calc is None:
            raise NotFoundError("PayrollCalculation", calculation_id)
        if not CalculationStateMachine.can_cancel(calc.status):
            raise InvalidTransitionError(calc.status, CalculationStatus.CANCELLED)

        result = await self.runner.cancel(calculation_id)
        if result.status != CalculationStatus.CANCELLED:
            raise InvalidTransitionError(
                result.status,
                CalculationStatus.CANCELLED,
                "the run finished before the cancellation took effect",
            )
        return result

    # Review

    async def submit_for_review(
        self, period_id: UUID, submitted_by: str | None = None
    ) -> PayrollPeriod:
        """Move a calculated period into review and open its workflow.

        Exceptions are detected once per calculation; resubmitting after a
        rejection reuses them.
        """
        period = await self.get_period(period_id)
        PeriodStateMachine.validate_period_transition(period, PeriodStatus.REVIEWING)
        calc = (
            await self.repository.get_calculation(period.active_calculation_id)
            if period.active_calculation_id
            else None
        )
        if calc is None or calc.status != CalculationStatus.COMPLETED:
            raise DomainStateError(
                f"Period {period.id} has no completed calculation to review"
            )

        if calc.exceptions_detected_at is None:
            exceptions = await self.detector.detect(calc, period)
            await self.repository.add_exceptions(exceptions)
            calc.exceptions_detected_at = self.clock.now()
            await self.repository.update_calculation(calc)
            self.emitter.emit(
                ExceptionsDetected(
                    metadata=EventMetadata.create(self.clock.now(), actor=submitted_by),
                    calculation_id=calc.id,
                    period_id=period.id,
                    exception_count=len(exceptions),
                    critical_count=sum(1 for e in exceptions if e.severity == Severity.CRITICAL),
                )
            )

        await self.workflow.open(period, calc.id)
        return await self._transition(period, PeriodStatus.REVIEWING, actor=submitted_by)

    async def approve_period(
        self, period_id: UUID, approver: str, comments: str | None = None
    ) -> PayrollPeriod:
        """Approve the current pending workflow step."""
        period = await self.get_period(period_id)
        step = await self._current_step(period, PeriodStatus.APPROVED)
        await self.workflow.approve_step(step.id, approver, comments)
        return await self.get_period(period_id)

    async def reject_period(self, period_id: UUID, approver: str, reason: str) -> PayrollPeriod:
        """Reject the current pending workflow step."""
        if not reason or not reason.strip():
            raise ValidationError({"reason": "a rejection reason is required"})
        period = await self.get_period(period_id)
        step = await self._current_step(period, PeriodStatus.CALCULATED)
        await self.workflow.reject_step(step.id, approver, reason)
        return await self.get_period(period_id)

    async def apply_approval(self, period_id: UUID, approver: str) -> PayrollPeriod:
        """Final workflow approval: reviewing -> approved."""
        period = await self.get_period(period_id)
        period.approved_by = approver
        period.approved_at = self.clock.now()
        return await self._transition(period, PeriodStatus.APPROVED, actor=approver)

    async def apply_rejection(self, period_id: UUID, approver: str, reason: str) -> PayrollPeriod:
        """Workflow rejection: reviewing -> calculated, reason kept on the period."""
        period = await self.get_period(period_id)
        period.rejection_reason = reason
        period.rejected_by = approver
        period.rejected_at = self.clock.now()
        return await self._transition(
            period, PeriodStatus.CALCULATED, reason=reason, actor=approver
        )

    # Finalization

    async def mark_paid(self, period_id: UUID, finalized_by: str) -> PayrollPeriod:
        period = await self.get_period(period_id)
        period.finalized_by = finalized_by
        period.finalized_at = self.clock.now()
        return await self._transition(period, PeriodStatus.PAID, actor=finalized_by)

    async def close_period(self, period_id: UUID, closed_by: str) -> PayrollPeriod:
        """paid -> closed, locking the period in the same write."""
        period = await self.get_period(period_id)
        PeriodStateMachine.validate_period_transition(period, PeriodStatus.CLOSED)

        now = self.clock.now()
        from_status = period.status
        period.status = PeriodStatus.CLOSED
        self._set_lock(period, closed_by, "Period closed", now)
        period = await self.repository.update_period(period)

        logger.info("Period %s closed and locked by %s", period.id, closed_by)
        self._emit_status_change(period.id, from_status, PeriodStatus.CLOSED, actor=closed_by)
        self._emit_locked(period, now)
        return period

    async def lock_period(
        self, period_id: UUID, locked_by: str, reason: str | None = None
    ) -> PayrollPeriod:
        """Make the period permanently immutable. Allowed once approved.

        Payment and closing are transitions too, so a period locked before
        it is paid stays at its current status.
        """
        period = await self.get_period(period_id)
        if period.is_locked:
            raise ImmutableRecordError("PayrollPeriod", period.id, "period is already locked")
        if not PeriodStateMachine.can_lock(period.status):
            raise InvalidTransitionError(
                period.status, "locked", "only approved, paid or closed periods can be locked"
            )

        now = self.clock.now()
        self._set_lock(period, locked_by, reason, now)
        period = await self.repository.update_period(period)

        logger.info("Period %s locked by %s", period.id, locked_by)
        self._emit_locked(period, now)
        return period

    @staticmethod
    def _set_lock(
        period: PayrollPeriod, locked_by: str, reason: str | None, now: datetime
    ) -> None:
        period.is_locked = True
        period.locked_by = locked_by
        period.locked_at = now
        period.lock_reason = reason
        period.updated_at = now

    def _emit_locked(self, period: PayrollPeriod, now: datetime) -> None:
        self.emitter.emit(
            PeriodLocked(
                metadata=EventMetadata.create(now, actor=period.locked_by),
                period_id=period.id,
                locked_by=period.locked_by,
                reason=period.lock_reason,
            )
        )

    async def reap_stalled(self) -> list[UUID]:
        return await self.runner.reap_stalled()

    # Helpers

    async def _transition(
        self,
        period: PayrollPeriod,
        to_status: PeriodStatus,
        reason: str | None = None,
        actor: str | None = None,
    ) -> PayrollPeriod:
        PeriodStateMachine.validate_period_transition(period, to_status)
        from_status = period.status
        period.status = to_status
        period.updated_at = self.clock.now()
        period = await self.repository.update_period(period)
        logger.info(
            "Period %s moved from %s to %s", period.id, from_status.value, to_status.value
        )
        self._emit_status_change(period.id, from_status, to_status, reason, actor)
        return period

    def _emit_status_change(
        self,
        period_id: UUID,
        from_status: PeriodStatus,
        to_status: PeriodStatus,
        reason: str | None = None,
        actor: str | None = None,
    ) -> None:
        self.emitter.emit(
            PeriodStatusChanged(
                metadata=EventMetadata.create(self.clock.now(), actor=actor),
                period_id=period_id,
                from_status=from_status.value,
                to_status=to_status.value,
                reason=reason,
            )
        )

    async def _current_step(self, period: PayrollPeriod, target: PeriodStatus):
        PeriodStateMachine.ensure_unlocked(period, "change workflow steps")
        workflow = await self.repository.get_workflow(period.id)
        step = workflow.current_step if workflow else None
        if period.status != PeriodStatus.REVIEWING or step is None:
            raise InvalidTransitionError(period.status, target, "no approval step is pending")
        return step

    async def _validate_structure(self, values: dict[str, Any], exclude_id: UUID | None) -> None:
        """Validate type and dates in place; raises ValidationError."""
        errors: dict[str, str] = {}
        try:
            values["period_type"] = PeriodType(values["period_type"])
        except ValueError:
            allowed = ", ".join(t.value for t in PeriodType)
            errors["period_type"] = f"must be one of: {allowed}"

        start, end = values["start_date"], values["end_date"]
        cutoff, pay = values["cutoff_date"], values["pay_date"]
        grace = self.config.pay_date_grace_days
        if end <= start:
            errors["end_date"] = "must be after start_date"
        if pay <= end:
            errors["pay_date"] = "must be after end_date"
        elif pay > end + timedelta(days=grace):
            errors["pay_date"] = f"must be within {grace} days after end_date"
        if not start <= cutoff <= pay:
            errors["cutoff_date"] = "must fall between start_date and pay_date"

        if not errors:
            for other in await self.repository.list_periods():
                if other.id == exclude_id or other.period_type != values["period_type"]:
                    continue
                if other.start_date <= end and start <= other.end_date:
                    errors["start_date"] = f"overlaps period '{other.name}'"
                    break

        if errors:
            raise ValidationError(errors)
