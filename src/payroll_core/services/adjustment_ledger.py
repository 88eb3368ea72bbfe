"""Adjustment ledger - requests that feed corrections into calculation runs.

Lifecycle: pending -> approved | rejected; approved -> applied. Only
approved and applied adjustments enter a run. Applied adjustments are tied
to the calculation that consumed them and can no longer change.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from payroll_core.clock import Clock
from payroll_core.errors import (
    DomainStateError,
    ImmutableRecordError,
    NotFoundError,
    ValidationError,
)
from payroll_core.events import (
    AdjustmentApplied,
    AdjustmentRequested,
    AdjustmentReviewed,
    EventEmitter,
    EventMetadata,
)
from payroll_core.records import PayrollAdjustment, PayrollPeriod
from payroll_core.repositories.base import PayrollRepository
from payroll_core.services.employee_source import EmployeeSource
from payroll_core.services.state_machine import AdjustmentStateMachine, PeriodStateMachine
from payroll_core.status import AdjustmentDirection, AdjustmentStatus, AdjustmentType

# API field name -> PayrollAdjustment attribute
ADJUSTMENT_FIELD_MAP: dict[str, str] = {
    "employee_id": "employee_id",
    "type": "adjustment_type",
    "direction": "direction",
    "category": "category",
    "amount": "amount",
    "reason": "reason",
    "reference_number": "reference_number",
}

# Fields that may change while an adjustment is pending
UPDATABLE_FIELDS = {
    "adjustment_type",
    "direction",
    "category",
    "amount",
    "reason",
    "reference_number",
}

# Direction implied by each type; corrections must state theirs
IMPLIED_DIRECTION = {
    AdjustmentType.EARNING: AdjustmentDirection.INCREASE,
    AdjustmentType.BACKPAY: AdjustmentDirection.INCREASE,
    AdjustmentType.REFUND: AdjustmentDirection.INCREASE,
    AdjustmentType.DEDUCTION: AdjustmentDirection.DECREASE,
}


def map_adjustment_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Translate API field names to record attributes; unknown names are dropped."""
    return {ADJUSTMENT_FIELD_MAP[k]: v for k, v in data.items() if k in ADJUSTMENT_FIELD_MAP}


class AdjustmentLedger:
    """Creates, reviews and applies payroll adjustments."""

    def __init__(
        self,
        repository: PayrollRepository,
        employees: EmployeeSource,
        emitter: EventEmitter,
        clock: Clock,
    ):
        self.repository = repository
        self.employees = employees
        self.emitter = emitter
        self.clock = clock

    async def create_adjustment(
        self,
        period_id: UUID,
        employee_id: UUID,
        adjustment_type: str,
        amount: Decimal | str | int,
        reason: str,
        direction: str | None = None,
        category: str | None = None,
        reference_number: str | None = None,
        requested_by: str | None = None,
    ) -> PayrollAdjustment:
        """Record a pending adjustment request.

        Raises:
            NotFoundError: Unknown period.
            ValidationError: Bad amount, type, direction, reason or employee.
            ImmutableRecordError: Period is locked.
            DomainStateError: Period is paid or closed.
        """
        period = await self._get_period(period_id)

        errors: dict[str, str] = {}
        values = self._validate_fields(
            {
                "adjustment_type": adjustment_type,
                "amount": amount,
                "reason": reason,
                "direction": direction,
            },
            errors,
        )
        if await self.employees.get_employee(employee_id) is None:
            errors["employee_id"] = f"unknown employee {employee_id}"
        if errors:
            raise ValidationError(errors)

        self._ensure_open(period, "request adjustments")

        adjustment = PayrollAdjustment(
            period_id=period_id,
            employee_id=employee_id,
            adjustment_type=values["adjustment_type"],
            amount=values["amount"],
            reason=values["reason"],
            direction=values["direction"],
            category=category,
            reference_number=reference_number,
            requested_by=requested_by,
            requested_at=self.clock.now(),
        )
        adjustment = await self.repository.add_adjustment(adjustment)

        self.emitter.emit(
            AdjustmentRequested(
                metadata=EventMetadata.create(self.clock.now(), actor=requested_by),
                adjustment_id=adjustment.id,
                period_id=period_id,
                employee_id=employee_id,
                adjustment_type=adjustment.adjustment_type.value,
                amount=adjustment.amount,
            )
        )
        return adjustment

    async def approve_adjustment(
        self, adjustment_id: UUID, reviewer: str, notes: str | None = None
    ) -> PayrollAdjustment:
        """Approve a pending adjustment; it joins the next calculation run."""
        return await self._review(adjustment_id, AdjustmentStatus.APPROVED, reviewer, notes)

    async def reject_adjustment(
        self, adjustment_id: UUID, reviewer: str, notes: str
    ) -> PayrollAdjustment:
        """Reject a pending adjustment. Notes are required."""
        if not notes or not notes.strip():
            raise ValidationError({"notes": "a rejection reason is required"})
        return await self._review(adjustment_id, AdjustmentStatus.REJECTED, reviewer, notes)

    async def update_adjustment(self, adjustment_id: UUID, **fields: Any) -> PayrollAdjustment:
        """Edit a pending adjustment."""
        adjustment = await self.get_adjustment(adjustment_id)
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError({name: "field cannot be updated" for name in sorted(unknown)})

        if adjustment.status == AdjustmentStatus.APPLIED:
            raise ImmutableRecordError(
                "PayrollAdjustment", adjustment.id, "applied adjustments cannot change"
            )
        if adjustment.status not in AdjustmentStateMachine.EDITABLE:
            raise DomainStateError(
                f"Adjustment {adjustment.id} is {adjustment.status.value}; only pending "
                "adjustments can be updated"
            )

        merged = {
            "adjustment_type": adjustment.adjustment_type,
            "amount": adjustment.amount,
            "reason": adjustment.reason,
            "direction": None if "adjustment_type" in fields else adjustment.direction,
        }
        merged.update({k: v for k, v in fields.items() if k in merged})
        errors: dict[str, str] = {}
        values = self._validate_fields(merged, errors)
        if errors:
            raise ValidationError(errors)

        period = await self._get_period(adjustment.period_id)
        self._ensure_open(period, "update adjustments")

        adjustment.adjustment_type = values["adjustment_type"]
        adjustment.amount = values["amount"]
        adjustment.reason = values["reason"]
        adjustment.direction = values["direction"]
        if "category" in fields:
            adjustment.category = fields["category"]
        if "reference_number" in fields:
            adjustment.reference_number = fields["reference_number"]
        return await self.repository.update_adjustment(adjustment)

    async def delete_adjustment(self, adjustment_id: UUID) -> None:
        """Delete a pending or rejected adjustment."""
        adjustment = await self.get_adjustment(adjustment_id)
        if adjustment.status == AdjustmentStatus.APPLIED:
            raise ImmutableRecordError(
                "PayrollAdjustment", adjustment.id, "applied adjustments cannot be deleted"
            )
        if adjustment.status not in AdjustmentStateMachine.DELETABLE:
            raise DomainStateError(
                f"Adjustment {adjustment.id} is {adjustment.status.value}; only pending or "
                "rejected adjustments can be deleted"
            )
        period = await self._get_period(adjustment.period_id)
        PeriodStateMachine.ensure_unlocked(period, "delete adjustments")
        await self.repository.delete_adjustment(adjustment_id)

    async def get_adjustment(self, adjustment_id: UUID) -> PayrollAdjustment:
        adjustment = await self.repository.get_adjustment(adjustment_id)
        if adjustment is None:
            raise NotFoundError("PayrollAdjustment", adjustment_id)
        return adjustment

    async def list_adjustments(
        self,
        period_id: UUID | None = None,
        employee_id: UUID | None = None,
        status: str | None = None,
    ) -> list[PayrollAdjustment]:
        statuses = {AdjustmentStatus(status)} if status else None
        return await self.repository.list_adjustments(
            period_id=period_id, employee_id=employee_id, statuses=statuses
        )

    async def snapshot_for_run(self, period_id: UUID) -> list[PayrollAdjustment]:
        """Approved and applied adjustments, in stable order.

        Applied adjustments stay in every later recalculation of the period
        so reruns over the same inputs reproduce the same lines.
        """
        adjustments = await self.repository.list_adjustments(
            period_id=period_id, statuses=set(AdjustmentStateMachine.RUN_ELIGIBLE)
        )
        return sorted(adjustments, key=lambda a: str(a.id))

    async def mark_applied(
        self, adjustment_ids: Iterable[UUID], calculation_id: UUID
    ) -> list[UUID]:
        """Move approved adjustments to applied. Already applied ones are left alone.

        Returns the ids that changed.
        """
        applied: list[UUID] = []
        period_id = None
        for adjustment_id in adjustment_ids:
            adjustment = await self.repository.get_adjustment(adjustment_id)
            if adjustment is None or adjustment.status != AdjustmentStatus.APPROVED:
                continue
            AdjustmentStateMachine.validate_transition(adjustment.status, AdjustmentStatus.APPLIED)
            adjustment.status = AdjustmentStatus.APPLIED
            adjustment.applied_at = self.clock.now()
            adjustment.applied_calculation_id = calculation_id
            await self.repository.update_adjustment(adjustment)
            applied.append(adjustment.id)
            period_id = adjustment.period_id

        if applied:
            self.emitter.emit(
                AdjustmentApplied(
                    metadata=EventMetadata.create(self.clock.now()),
                    calculation_id=calculation_id,
                    period_id=period_id,
                    adjustment_ids=tuple(applied),
                )
            )
        return applied

    async def _review(
        self,
        adjustment_id: UUID,
        to_status: AdjustmentStatus,
        reviewer: str,
        notes: str | None,
    ) -> PayrollAdjustment:
        adjustment = await self.get_adjustment(adjustment_id)
        period = await self._get_period(adjustment.period_id)
        self._ensure_open(period, "review adjustments")
        AdjustmentStateMachine.validate_transition(adjustment.status, to_status)

        adjustment.status = to_status
        adjustment.reviewed_by = reviewer
        adjustment.reviewed_at = self.clock.now()
        adjustment.review_notes = notes
        adjustment = await self.repository.update_adjustment(adjustment)

        self.emitter.emit(
            AdjustmentReviewed(
                metadata=EventMetadata.create(self.clock.now(), actor=reviewer),
                adjustment_id=adjustment.id,
                period_id=adjustment.period_id,
                status=to_status.value,
                reviewed_by=reviewer,
                notes=notes,
            )
        )
        return adjustment

    async def _get_period(self, period_id: UUID) -> PayrollPeriod:
        period = await self.repository.get_period(period_id)
        if period is None:
            raise NotFoundError("PayrollPeriod", period_id)
        return period

    @staticmethod
    def _ensure_open(period: PayrollPeriod, action: str) -> None:
        PeriodStateMachine.ensure_unlocked(period, action)
        if not PeriodStateMachine.accepts_adjustments(period.status):
            raise DomainStateError(
                f"Period {period.id} is {period.status.value}; cannot {action}"
            )

    @staticmethod
    def _validate_fields(values: dict[str, Any], errors: dict[str, str]) -> dict[str, Any]:
        """Validate and normalize type, amount, reason and direction."""
        out: dict[str, Any] = {}

        try:
            adjustment_type = AdjustmentType(values["adjustment_type"])
        except ValueError:
            allowed = ", ".join(t.value for t in AdjustmentType)
            errors["adjustment_type"] = f"must be one of: {allowed}"
            adjustment_type = None
        out["adjustment_type"] = adjustment_type

        try:
            amount = Decimal(str(values["amount"]))
        except (InvalidOperation, ValueError):
            errors["amount"] = "must be a number"
            amount = None
        if amount is not None:
            if not amount.is_finite() or amount <= 0:
                errors["amount"] = "must be greater than zero"
            elif amount.as_tuple().exponent < -2:
                errors["amount"] = "must have at most 2 decimal places"
            else:
                amount = amount.quantize(Decimal("0.01"))
        out["amount"] = amount

        reason = values.get("reason")
        if not reason or not str(reason).strip():
            errors["reason"] = "is required"
        out["reason"] = reason.strip() if isinstance(reason, str) else reason

        raw_direction = values.get("direction")
        direction = None
        if raw_direction is not None:
            try:
                direction = AdjustmentDirection(raw_direction)
            except ValueError:
                errors["direction"] = "must be 'increase' or 'decrease'"
        if adjustment_type == AdjustmentType.CORRECTION:
            if raw_direction is None:
                errors["direction"] = "is required for corrections"
        elif adjustment_type is not None:
            implied = IMPLIED_DIRECTION[adjustment_type]
            if direction is not None and direction != implied:
                errors["direction"] = (
                    f"'{adjustment_type.value}' adjustments always {implied.value} pay"
                )
            direction = implied
        out["direction"] = direction
        return out
