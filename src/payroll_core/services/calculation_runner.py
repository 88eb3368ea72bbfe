"""Background execution of payroll calculation runs.

Each run is an ``asyncio.Task`` owned by the runner. Employee lines are
computed in chunks of ``EngineConfig.max_parallel_lines`` on worker threads;
between chunks the job records a heartbeat and checks for a cancel request.
Every terminal outcome (completed, failed, cancelled, timed out) goes
through a ``_finalize_*`` method that re-reads the calculation, skips it if
another path already finished it, writes aggregates once and releases the
period's calculation lock.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from datetime import timedelta
from uuid import UUID

from payroll_core.calculators.contribution_tables import (
    ContributionTableRegistry,
    ContributionTables,
)
from payroll_core.calculators.engine import CalculationEngine
from payroll_core.calculators.line_builder import CalculationTotals, LineBuilder
from payroll_core.clock import Clock
from payroll_core.config import EngineConfig
from payroll_core.errors import FatalRunError
from payroll_core.events import (
    CalculationCancelled,
    CalculationCompleted,
    CalculationFailed,
    CalculationProgressed,
    EventEmitter,
    EventMetadata,
    PeriodStatusChanged,
)
from payroll_core.records import (
    EmployeeCalculationLine,
    EmployeePayInput,
    PayrollAdjustment,
    PayrollCalculation,
    PayrollPeriod,
)
from payroll_core.repositories.base import PayrollRepository
from payroll_core.services.adjustment_ledger import AdjustmentLedger
from payroll_core.services.locking_service import LockingService, RunSnapshot
from payroll_core.services.state_machine import CalculationStateMachine
from payroll_core.status import CalculationStatus, PeriodStatus

logger = logging.getLogger(__name__)

TIMEOUT_CODE = "TIMEOUT"
UNEXPECTED_CODE = "UNEXPECTED_ERROR"


class CalculationRunner:
    """Runs calculation jobs and owns their terminal transitions."""

    def __init__(
        self,
        repository: PayrollRepository,
        engine: CalculationEngine,
        registry: ContributionTableRegistry,
        locking: LockingService,
        ledger: AdjustmentLedger,
        emitter: EventEmitter,
        clock: Clock,
        config: EngineConfig | None = None,
    ):
        self.repository = repository
        self.engine = engine
        self.registry = registry
        self.locking = locking
        self.ledger = ledger
        self.emitter = emitter
        self.clock = clock
        self.config = config or EngineConfig()
        self._tasks: dict[UUID, asyncio.Task] = {}
        self._cancel_requested: set[UUID] = set()

    def submit(
        self,
        calculation: PayrollCalculation,
        period: PayrollPeriod,
        snapshot: RunSnapshot,
    ) -> asyncio.Task:
        """Schedule a run. Returns without waiting for any line."""
        task = asyncio.create_task(
            self._run(calculation.id, period, snapshot),
            name=f"payroll-calculation-{calculation.id}",
        )
        self._tasks[calculation.id] = task
        logger.info(
            "Queued %s calculation %s for period %s (%d employees)",
            calculation.calculation_type.value,
            calculation.id,
            period.id,
            len(snapshot.employees),
        )
        return task

    async def wait(self, calculation_id: UUID) -> PayrollCalculation | None:
        """Wait for a queued run to finish and return its final state."""
        task = self._tasks.get(calculation_id)
        if task is not None:
            await asyncio.wait({task})
        return await self.repository.get_calculation(calculation_id)

    async def cancel(self, calculation_id: UUID) -> PayrollCalculation | None:
        """Request cooperative cancellation and wait for it to take effect.

        A running job stops after its in-flight chunk. A run with no live
        task in this process is cancelled directly.
        """
        task = self._tasks.get(calculation_id)
        if task is not None and not task.done():
            self._cancel_requested.add(calculation_id)
            await asyncio.wait({task})
        else:
            await self._finalize_cancel(calculation_id)
        return await self.repository.get_calculation(calculation_id)

    async def reap_stalled(self) -> list[UUID]:
        """Fail runs whose heartbeat is older than the configured timeout.

        Returns the ids of the calculations that were timed out.
        """
        cutoff = self.clock.now() - timedelta(seconds=self.config.heartbeat_timeout_seconds)
        reaped: list[UUID] = []
        for calc in await self.repository.list_stalled_calculations(cutoff):
            logger.warning(
                "Calculation %s on period %s has no heartbeat since %s; timing out",
                calc.id,
                calc.period_id,
                calc.heartbeat_at or calc.created_at,
            )
            if await self._finalize_fatal(calc.id, calc.period_id, TIMEOUT_CODE, "Timeout"):
                reaped.append(calc.id)
            task = self._tasks.get(calc.id)
            if task is not None and not task.done():
                task.cancel()
                await asyncio.wait({task})
        return reaped

    async def run_reaper(self, interval_seconds: float) -> None:
        """Call :meth:`reap_stalled` forever, every ``interval_seconds``."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.reap_stalled()
            except Exception:
                logger.exception("Stalled calculation sweep failed")

    async def shutdown(self) -> None:
        """Cancel all live tasks; their calculations are left for the reaper."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # Job body

    async def _run(
        self, calculation_id: UUID, period: PayrollPeriod, snapshot: RunSnapshot
    ) -> None:
        try:
            calc = await self.repository.get_calculation(calculation_id)
            if calc is None or calc.status.is_terminal:
                return
            if calculation_id in self._cancel_requested:
                await self._finalize_cancel(calculation_id)
                return

            CalculationStateMachine.validate_transition(calc.status, CalculationStatus.PROCESSING)
            now = self.clock.now()
            calc.status = CalculationStatus.PROCESSING
            calc.started_at = now
            calc.heartbeat_at = now
            calc.total_employees = len(snapshot.employees)

            # Resolved once; a missing table fails the run before any line
            tables = self.registry.resolve(period.end_date)
            tables.withholding_for(period.period_type)
            calc.tables_version = tables.version
            await self.repository.update_calculation(calc)

            lines = await self._compute_lines(calculation_id, period, snapshot, tables)
            if lines is None:
                return
            await self._finalize_lines(calculation_id, period.id, lines, snapshot)
        except asyncio.CancelledError:
            raise
        except FatalRunError as e:
            await self._finalize_fatal(calculation_id, period.id, e.code, str(e))
        except Exception as e:
            logger.exception("Calculation %s aborted by an unexpected error", calculation_id)
            await self._finalize_fatal(calculation_id, period.id, UNEXPECTED_CODE, str(e))
        finally:
            self._tasks.pop(calculation_id, None)
            self._cancel_requested.discard(calculation_id)

    async def _compute_lines(
        self,
        calculation_id: UUID,
        period: PayrollPeriod,
        snapshot: RunSnapshot,
        tables: ContributionTables,
    ) -> list[EmployeeCalculationLine] | None:
        """Compute every line chunk by chunk; None if the run stopped early."""
        employees = snapshot.employees
        size = self.config.max_parallel_lines
        lines: list[EmployeeCalculationLine] = []

        for start in range(0, len(employees), size):
            chunk = employees[start : start + size]
            results = await asyncio.gather(
                *(
                    asyncio.to_thread(
                        self._compute_safely,
                        employee,
                        period,
                        snapshot.adjustments_for(employee.employee_id),
                        tables,
                    )
                    for employee in chunk
                )
            )
            lines.extend(results)

            if not await self._record_progress(calculation_id, lines, len(employees)):
                return None
            if calculation_id in self._cancel_requested:
                await self._finalize_cancel(calculation_id)
                return None

        if calculation_id in self._cancel_requested:
            await self._finalize_cancel(calculation_id)
            return None
        return lines

    def _compute_safely(
        self,
        employee: EmployeePayInput,
        period: PayrollPeriod,
        adjustments: Sequence[PayrollAdjustment],
        tables: ContributionTables,
    ) -> EmployeeCalculationLine:
        """Compute one line; anything but a fatal error becomes a failed line."""
        try:
            return self.engine.compute(employee, period, adjustments, tables)
        except FatalRunError:
            raise
        except Exception as e:
            logger.exception("Line for employee %s failed unexpectedly", employee.employee_id)
            line = LineBuilder.failed_line(employee, f"Unexpected error: {e}")
            line.line_hash = LineBuilder.compute_line_hash(
                line, tables.version, self.engine.engine_version
            )
            return line

    async def _record_progress(
        self, calculation_id: UUID, lines: list[EmployeeCalculationLine], total: int
    ) -> bool:
        """Write the heartbeat; False if the run was finished elsewhere."""
        calc = await self.repository.get_calculation(calculation_id)
        if calc is None or calc.status.is_terminal:
            logger.info("Calculation %s finished elsewhere; stopping job", calculation_id)
            return False
        calc.processed_employees = len(lines)
        calc.failed_employees = sum(1 for line in lines if not line.succeeded)
        calc.heartbeat_at = self.clock.now()
        await self.repository.update_calculation(calc)
        self.emitter.emit(
            CalculationProgressed(
                metadata=EventMetadata.create(self.clock.now()),
                calculation_id=calculation_id,
                processed_employees=calc.processed_employees,
                failed_employees=calc.failed_employees,
                total_employees=total,
            )
        )
        return True

    # Terminal transitions

    async def _finalize_lines(
        self,
        calculation_id: UUID,
        period_id: UUID,
        lines: list[EmployeeCalculationLine],
        snapshot: RunSnapshot,
    ) -> None:
        calc = await self.repository.get_calculation(calculation_id)
        if calc is None or calc.status.is_terminal:
            return

        for line in lines:
            line.calculation_id = calc.id
        await self.repository.add_lines(lines)

        totals = LineBuilder.summarize(lines)
        self._apply_totals(calc, totals)
        now = self.clock.now()
        calc.completed_at = now
        calc.heartbeat_at = now
        if totals.failed_employees == 0:
            calc.status = CalculationStatus.COMPLETED
            calc.applied_adjustment_ids = snapshot.adjustment_ids
            to_status = PeriodStatus.CALCULATED
        else:
            calc.status = CalculationStatus.FAILED
            calc.error_message = (
                f"{totals.failed_employees} of {totals.total_employees} employee lines failed"
            )
            to_status = PeriodStatus.FAILED
        await self.repository.update_calculation(calc)

        period = await self.repository.get_period(period_id)
        from_status = period.status
        period.status = to_status
        period.apply_totals(calc)
        period.updated_at = now
        await self.repository.update_period(period)

        if calc.status == CalculationStatus.COMPLETED:
            await self.ledger.mark_applied(calc.applied_adjustment_ids, calc.id)
            await self._check_reproduced(calc, lines)
        await self.locking.release(period_id, calc.id)

        self._emit_status_change(period_id, from_status, to_status)
        if calc.status == CalculationStatus.COMPLETED:
            logger.info(
                "Calculation %s completed: %d employees, net pay %s",
                calc.id,
                calc.total_employees,
                calc.total_net_pay,
            )
            self.emitter.emit(
                CalculationCompleted(
                    metadata=EventMetadata.create(now),
                    calculation_id=calc.id,
                    period_id=period_id,
                    total_employees=calc.total_employees,
                    total_gross_pay=calc.total_gross_pay,
                    total_net_pay=calc.total_net_pay,
                )
            )
        else:
            logger.warning("Calculation %s failed: %s", calc.id, calc.error_message)
            self.emitter.emit(
                CalculationFailed(
                    metadata=EventMetadata.create(now),
                    calculation_id=calc.id,
                    period_id=period_id,
                    error_code="LINE_FAILURES",
                    error_message=calc.error_message,
                    failed_employees=calc.failed_employees,
                    fatal=False,
                )
            )

    async def _check_reproduced(
        self, calc: PayrollCalculation, lines: list[EmployeeCalculationLine]
    ) -> list[UUID]:
        """Compare line hashes with the superseded run when inputs match.

        Returns the employees whose lines diverged. Identical ``inputs_hash``
        and ``tables_version`` must give identical lines.
        """
        if calc.supersedes is None or calc.inputs_hash is None:
            return []
        prior = await self.repository.get_calculation(calc.supersedes)
        if (
            prior is None
            or prior.status != CalculationStatus.COMPLETED
            or prior.inputs_hash != calc.inputs_hash
            or prior.tables_version != calc.tables_version
        ):
            return []

        previous_lines = await self.repository.list_lines(prior.id)
        before = {line.employee_id: line.line_hash for line in previous_lines}
        diverged = sorted(
            (line.employee_id for line in lines if before.get(line.employee_id) != line.line_hash),
            key=str,
        )
        if diverged:
            logger.error(
                "Calculation %s diverged from %s on identical inputs %s for %d employees: %s",
                calc.id,
                prior.id,
                calc.inputs_hash,
                len(diverged),
                ", ".join(str(e) for e in diverged),
            )
        else:
            logger.debug("Calculation %s reproduced %s", calc.id, prior.id)
        return diverged

    async def _finalize_fatal(
        self, calculation_id: UUID, period_id: UUID, code: str, message: str
    ) -> bool:
        """Fail the whole run. Returns False if it had already finished."""
        calc = await self.repository.get_calculation(calculation_id)
        if calc is None or calc.status.is_terminal:
            return False

        now = self.clock.now()
        calc.status = CalculationStatus.FAILED
        calc.error_message = message
        calc.completed_at = now
        await self.repository.update_calculation(calc)

        period = await self.repository.get_period(period_id)
        from_status = period.status
        period.status = PeriodStatus.FAILED
        period.apply_totals(calc)
        period.updated_at = now
        await self.repository.update_period(period)
        await self.locking.release(period_id, calc.id)

        logger.error("Calculation %s failed fatally [%s]: %s", calc.id, code, message)
        self._emit_status_change(period_id, from_status, PeriodStatus.FAILED, message)
        self.emitter.emit(
            CalculationFailed(
                metadata=EventMetadata.create(now),
                calculation_id=calc.id,
                period_id=period_id,
                error_code=code,
                error_message=message,
                failed_employees=calc.failed_employees,
                fatal=True,
            )
        )
        return True

    async def _finalize_cancel(self, calculation_id: UUID) -> None:
        calc = await self.repository.get_calculation(calculation_id)
        if calc is None or calc.status.is_terminal:
            return

        now = self.clock.now()
        calc.status = CalculationStatus.CANCELLED
        calc.completed_at = now

        reinstated = None
        if calc.supersedes is not None:
            reinstated = await self.repository.get_calculation(calc.supersedes)
            if reinstated is not None:
                reinstated.superseded_by = None
                await self.repository.update_calculation(reinstated)
                # The cancelled run yields to the calculation it replaced
                calc.superseded_by = reinstated.id
        await self.repository.update_calculation(calc)

        period = await self.repository.get_period(calc.period_id)
        from_status = period.status
        restored = calc.previous_period_status or PeriodStatus.DRAFT
        period.status = restored
        period.active_calculation_id = reinstated.id if reinstated else None
        if reinstated is not None:
            period.apply_totals(reinstated)
        else:
            period.clear_totals()
        period.updated_at = now
        await self.repository.update_period(period)
        await self.locking.release(calc.period_id, calc.id)

        logger.info(
            "Calculation %s cancelled; period %s restored to %s",
            calc.id,
            calc.period_id,
            restored.value,
        )
        self._emit_status_change(calc.period_id, from_status, restored, "calculation cancelled")
        self.emitter.emit(
            CalculationCancelled(
                metadata=EventMetadata.create(now),
                calculation_id=calc.id,
                period_id=calc.period_id,
                restored_status=restored.value,
                reinstated_calculation_id=reinstated.id if reinstated else None,
            )
        )

    @staticmethod
    def _apply_totals(calc: PayrollCalculation, totals: CalculationTotals) -> None:
        calc.total_employees = totals.total_employees
        calc.processed_employees = totals.processed_employees
        calc.failed_employees = totals.failed_employees
        calc.total_gross_pay = totals.total_gross_pay
        calc.total_deductions = totals.total_deductions
        calc.total_net_pay = totals.total_net_pay
        calc.total_employer_cost = totals.total_employer_cost

    def _emit_status_change(
        self,
        period_id: UUID,
        from_status: PeriodStatus,
        to_status: PeriodStatus,
        reason: str | None = None,
    ) -> None:
        self.emitter.emit(
            PeriodStatusChanged(
                metadata=EventMetadata.create(self.clock.now()),
                period_id=period_id,
                from_status=from_status.value,
                to_status=to_status.value,
                reason=reason,
            )
        )
