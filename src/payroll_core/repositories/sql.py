"""SQLAlchemy async implementation of the payroll repository."""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from payroll_core.errors import LockBackendUnavailableError, NotFoundError
from payroll_core.models import (
    ApprovalStepRow,
    ApprovalWorkflowRow,
    ComplianceExceptionRow,
    EmployeeCalculationLineRow,
    PayrollAdjustmentRow,
    PayrollCalculationRow,
    PayrollPeriodRow,
)
from payroll_core.records import (
    ApprovalStep,
    ApprovalWorkflowRecord,
    ComplianceException,
    EmployeeCalculationLine,
    PayrollAdjustment,
    PayrollCalculation,
    PayrollPeriod,
)
from payroll_core.status import AdjustmentStatus, CalculationStatus, PeriodStatus, PeriodType

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Record fields persisted as JSON lists of UUID strings
UUID_LIST_FIELDS = {"applied_adjustment_ids", "adjustment_ids"}


def _column_values(record: Any, exclude: set[str] = frozenset()) -> dict[str, Any]:
    """Record dataclass -> column values (enums to strings, UUID lists to str)."""
    values: dict[str, Any] = {}
    for f in dataclasses.fields(record):
        if f.name in exclude:
            continue
        value = getattr(record, f.name)
        if isinstance(value, Enum):
            value = value.value
        elif f.name in UUID_LIST_FIELDS:
            value = [str(v) for v in value]
        values[f.name] = value
    return values


def _to_record(record_cls: type[R], row: Any, exclude: set[str] = frozenset()) -> R:
    """ORM row -> record dataclass."""
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(record_cls):
        if f.name in exclude:
            continue
        value = getattr(row, f.name)
        if f.name in UUID_LIST_FIELDS:
            value = [UUID(v) for v in value or []]
        kwargs[f.name] = value
    return record_cls(**kwargs)


class SqlPayrollRepository:
    """:class:`PayrollRepository` over SQLAlchemy 2.0 async sessions.

    Each call runs in its own transaction. The calculation lock is a
    conditional ``UPDATE ... WHERE running_calculation_id IS NULL``, which is
    atomic on every backend without advisory locks.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # Periods

    async def add_period(self, period: PayrollPeriod) -> PayrollPeriod:
        async with self._session_factory() as session, session.begin():
            session.add(PayrollPeriodRow(**_column_values(period)))
        return period

    async def get_period(self, period_id: UUID) -> PayrollPeriod | None:
        async with self._session_factory() as session:
            row = await session.get(PayrollPeriodRow, period_id)
            return _to_record(PayrollPeriod, row) if row else None

    async def list_periods(self, status: PeriodStatus | None = None) -> list[PayrollPeriod]:
        stmt = select(PayrollPeriodRow).order_by(PayrollPeriodRow.start_date.desc())
        if status is not None:
            stmt = stmt.where(PayrollPeriodRow.status == PeriodStatus(status).value)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(PayrollPeriod, r) for r in rows]

    async def update_period(self, period: PayrollPeriod) -> PayrollPeriod:
        values = _column_values(period, exclude={"id", "running_calculation_id"})
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(PayrollPeriodRow).where(PayrollPeriodRow.id == period.id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("PayrollPeriod", period.id)
            row = await session.get(PayrollPeriodRow, period.id, populate_existing=True)
            return _to_record(PayrollPeriod, row)

    async def delete_period(self, period_id: UUID) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(PayrollAdjustmentRow).where(PayrollAdjustmentRow.period_id == period_id)
            )
            workflow = (
                await session.execute(
                    select(ApprovalWorkflowRow).where(ApprovalWorkflowRow.period_id == period_id)
                )
            ).scalar_one_or_none()
            if workflow is not None:
                await session.execute(
                    delete(ApprovalStepRow).where(ApprovalStepRow.workflow_id == workflow.id)
                )
                await session.delete(workflow)
            await session.execute(delete(PayrollPeriodRow).where(PayrollPeriodRow.id == period_id))

    async def get_previous_period(self, period: PayrollPeriod) -> PayrollPeriod | None:
        stmt = (
            select(PayrollPeriodRow)
            .where(
                PayrollPeriodRow.id != period.id,
                PayrollPeriodRow.period_type == PeriodType(period.period_type).value,
                PayrollPeriodRow.end_date < period.start_date,
                PayrollPeriodRow.active_calculation_id.is_not(None),
            )
            .order_by(PayrollPeriodRow.end_date.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _to_record(PayrollPeriod, row) if row else None

    # Calculation lock

    async def try_acquire_calculation_lock(self, period_id: UUID, calculation_id: UUID) -> bool:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(PayrollPeriodRow)
                    .where(
                        PayrollPeriodRow.id == period_id,
                        PayrollPeriodRow.running_calculation_id.is_(None),
                    )
                    .values(running_calculation_id=calculation_id)
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error("Calculation lock acquire failed for period %s: %s", period_id, e)
            raise LockBackendUnavailableError(f"Cannot acquire calculation lock: {e}") from e

    async def release_calculation_lock(self, period_id: UUID, calculation_id: UUID) -> bool:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(PayrollPeriodRow)
                    .where(
                        PayrollPeriodRow.id == period_id,
                        PayrollPeriodRow.running_calculation_id == calculation_id,
                    )
                    .values(running_calculation_id=None)
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error("Calculation lock release failed for period %s: %s", period_id, e)
            raise LockBackendUnavailableError(f"Cannot release calculation lock: {e}") from e

    # Calculations

    async def add_calculation(self, calculation: PayrollCalculation) -> PayrollCalculation:
        async with self._session_factory() as session, session.begin():
            session.add(PayrollCalculationRow(**_column_values(calculation)))
        return calculation

    async def get_calculation(self, calculation_id: UUID) -> PayrollCalculation | None:
        async with self._session_factory() as session:
            row = await session.get(PayrollCalculationRow, calculation_id)
            return _to_record(PayrollCalculation, row) if row else None

    async def update_calculation(self, calculation: PayrollCalculation) -> PayrollCalculation:
        values = _column_values(calculation, exclude={"id"})
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(PayrollCalculationRow)
                .where(PayrollCalculationRow.id == calculation.id)
                .values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("PayrollCalculation", calculation.id)
        return calculation

    async def list_calculations(self, period_id: UUID) -> list[PayrollCalculation]:
        stmt = (
            select(PayrollCalculationRow)
            .where(PayrollCalculationRow.period_id == period_id)
            .order_by(PayrollCalculationRow.created_at)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(PayrollCalculation, r) for r in rows]

    async def list_stalled_calculations(self, before: datetime) -> list[PayrollCalculation]:
        stmt = select(PayrollCalculationRow).where(
            PayrollCalculationRow.status.in_(
                [CalculationStatus.PENDING.value, CalculationStatus.PROCESSING.value]
            ),
            or_(
                PayrollCalculationRow.heartbeat_at < before,
                (PayrollCalculationRow.heartbeat_at.is_(None))
                & (PayrollCalculationRow.created_at < before),
            ),
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(PayrollCalculation, r) for r in rows]

    # Lines

    async def add_lines(self, lines: list[EmployeeCalculationLine]) -> None:
        async with self._session_factory() as session, session.begin():
            for position, line in enumerate(lines):
                session.add(
                    EmployeeCalculationLineRow(position_in_run=position, **_column_values(line))
                )

    async def list_lines(self, calculation_id: UUID) -> list[EmployeeCalculationLine]:
        stmt = (
            select(EmployeeCalculationLineRow)
            .where(EmployeeCalculationLineRow.calculation_id == calculation_id)
            .order_by(EmployeeCalculationLineRow.position_in_run)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(EmployeeCalculationLine, r) for r in rows]

    # Adjustments

    async def add_adjustment(self, adjustment: PayrollAdjustment) -> PayrollAdjustment:
        async with self._session_factory() as session, session.begin():
            session.add(PayrollAdjustmentRow(**_column_values(adjustment)))
        return adjustment

    async def get_adjustment(self, adjustment_id: UUID) -> PayrollAdjustment | None:
        async with self._session_factory() as session:
            row = await session.get(PayrollAdjustmentRow, adjustment_id)
            return _to_record(PayrollAdjustment, row) if row else None

    async def update_adjustment(self, adjustment: PayrollAdjustment) -> PayrollAdjustment:
        values = _column_values(adjustment, exclude={"id"})
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(PayrollAdjustmentRow)
                .where(PayrollAdjustmentRow.id == adjustment.id)
                .values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("PayrollAdjustment", adjustment.id)
        return adjustment

    async def delete_adjustment(self, adjustment_id: UUID) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(PayrollAdjustmentRow).where(PayrollAdjustmentRow.id == adjustment_id)
            )

    async def list_adjustments(
        self,
        period_id: UUID | None = None,
        employee_id: UUID | None = None,
        statuses: set[AdjustmentStatus] | None = None,
    ) -> list[PayrollAdjustment]:
        stmt = select(PayrollAdjustmentRow).order_by(PayrollAdjustmentRow.requested_at)
        if period_id is not None:
            stmt = stmt.where(PayrollAdjustmentRow.period_id == period_id)
        if employee_id is not None:
            stmt = stmt.where(PayrollAdjustmentRow.employee_id == employee_id)
        if statuses is not None:
            stmt = stmt.where(
                PayrollAdjustmentRow.status.in_([AdjustmentStatus(s).value for s in statuses])
            )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(PayrollAdjustment, r) for r in rows]

    # Review

    async def get_workflow(self, period_id: UUID) -> ApprovalWorkflowRecord | None:
        stmt = (
            select(ApprovalWorkflowRow)
            .where(ApprovalWorkflowRow.period_id == period_id)
            .options(selectinload(ApprovalWorkflowRow.steps))
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            workflow = _to_record(ApprovalWorkflowRecord, row, exclude={"steps"})
            workflow.steps = [_to_record(ApprovalStep, s) for s in row.steps]
            return workflow

    async def find_workflow_by_step(self, step_id: UUID) -> ApprovalWorkflowRecord | None:
        async with self._session_factory() as session:
            period_id = (
                await session.execute(
                    select(ApprovalWorkflowRow.period_id)
                    .join(ApprovalStepRow, ApprovalStepRow.workflow_id == ApprovalWorkflowRow.id)
                    .where(ApprovalStepRow.id == step_id)
                )
            ).scalar_one_or_none()
        if period_id is None:
            return None
        return await self.get_workflow(period_id)

    async def save_workflow(self, workflow: ApprovalWorkflowRecord) -> ApprovalWorkflowRecord:
        values = _column_values(workflow, exclude={"id", "steps"})
        async with self._session_factory() as session, session.begin():
            row = await session.get(ApprovalWorkflowRow, workflow.id)
            if row is None:
                session.add(ApprovalWorkflowRow(id=workflow.id, **values))
            else:
                for name, value in values.items():
                    setattr(row, name, value)
                await session.execute(
                    delete(ApprovalStepRow).where(ApprovalStepRow.workflow_id == workflow.id)
                )
            await session.flush()
            for step in workflow.steps:
                session.add(ApprovalStepRow(workflow_id=workflow.id, **_column_values(step)))
        return workflow

    async def add_exceptions(self, exceptions: list[ComplianceException]) -> None:
        async with self._session_factory() as session, session.begin():
            for position, exc in enumerate(exceptions):
                session.add(ComplianceExceptionRow(position_in_run=position, **_column_values(exc)))

    async def list_exceptions(self, calculation_id: UUID) -> list[ComplianceException]:
        stmt = (
            select(ComplianceExceptionRow)
            .where(ComplianceExceptionRow.calculation_id == calculation_id)
            .order_by(ComplianceExceptionRow.position_in_run)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(ComplianceException, r) for r in rows]
