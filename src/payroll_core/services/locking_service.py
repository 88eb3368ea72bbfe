"""Calculation lock and input snapshot service."""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from payroll_core.errors import CalculationInProgressError, LockBackendUnavailableError
from payroll_core.records import EmployeePayInput, PayrollAdjustment, PayrollPeriod
from payroll_core.repositories.base import PayrollRepository
from payroll_core.services.adjustment_ledger import AdjustmentLedger
from payroll_core.services.employee_source import EmployeeSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunSnapshot:
    """Inputs frozen when a calculation run starts.

    Adjustments approved after the snapshot is taken wait for the next run.
    """

    employees: tuple[EmployeePayInput, ...]
    adjustments: tuple[PayrollAdjustment, ...]
    inputs_hash: str = ""
    _by_employee: dict[UUID, list[PayrollAdjustment]] = field(
        default_factory=dict, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        for adjustment in self.adjustments:
            self._by_employee.setdefault(adjustment.employee_id, []).append(adjustment)

    def adjustments_for(self, employee_id: UUID) -> list[PayrollAdjustment]:
        return list(self._by_employee.get(employee_id, ()))

    @property
    def adjustment_ids(self) -> list[UUID]:
        return [a.id for a in self.adjustments]


class LockingService:
    """Owns the per-period calculation lock and run input snapshots.

    The lock is the period's ``running_calculation_id``: acquired by a
    compare-and-swap in the repository, so of two concurrent starts on the
    same period exactly one wins and the other gets
    CalculationInProgressError.
    """

    def __init__(
        self,
        repository: PayrollRepository,
        employees: EmployeeSource,
        ledger: AdjustmentLedger,
    ):
        self.repository = repository
        self.employees = employees
        self.ledger = ledger

    async def acquire(self, period_id: UUID, calculation_id: UUID) -> None:
        """Take the calculation lock for ``calculation_id``.

        Raises:
            CalculationInProgressError: Another run holds the lock.
            LockBackendUnavailableError: The lock store failed.
        """
        acquired = await self.repository.try_acquire_calculation_lock(period_id, calculation_id)
        if not acquired:
            period = await self.repository.get_period(period_id)
            holder = period.running_calculation_id if period else None
            raise CalculationInProgressError(period_id, holder)
        logger.debug("Calculation %s locked period %s", calculation_id, period_id)

    async def release(self, period_id: UUID, calculation_id: UUID) -> bool:
        """Release the lock if ``calculation_id`` still holds it."""
        try:
            released = await self.repository.release_calculation_lock(period_id, calculation_id)
        except LockBackendUnavailableError:
            logger.exception(
                "Could not release calculation lock on period %s for %s",
                period_id,
                calculation_id,
            )
            raise
        if not released:
            logger.warning(
                "Calculation %s did not hold the lock on period %s", calculation_id, period_id
            )
        return released

    async def snapshot_inputs(
        self, period: PayrollPeriod, engine_version: str = ""
    ) -> RunSnapshot:
        """Read employees and run-eligible adjustments for a new run.

        The snapshot carries a fingerprint of every pay input and the engine
        version, so two runs with the same ``inputs_hash`` over the same
        table version must produce the same lines.
        """
        employees = tuple(await self.employees.list_employees(period))
        adjustments = tuple(await self.ledger.snapshot_for_run(period.id))
        inputs_hash = self.compute_inputs_hash(
            {
                "engine_version": engine_version,
                "period": {
                    "period_type": period.period_type,
                    "start_date": period.start_date,
                    "end_date": period.end_date,
                },
                "employees": sorted(
                    (dataclasses.asdict(e) for e in employees),
                    key=lambda e: str(e["employee_id"]),
                ),
                "adjustments": sorted(
                    (
                        {
                            "id": a.id,
                            "employee_id": a.employee_id,
                            "type": a.adjustment_type,
                            "direction": a.direction,
                            "amount": a.amount,
                        }
                        for a in adjustments
                    ),
                    key=lambda a: str(a["id"]),
                ),
            }
        )
        return RunSnapshot(employees=employees, adjustments=adjustments, inputs_hash=inputs_hash)

    @staticmethod
    def compute_inputs_hash(data: dict[str, Any]) -> str:
        """Fingerprint of run inputs, independent of key order."""
        json_str = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]
