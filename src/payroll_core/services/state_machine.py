"""Payroll period, calculation and adjustment state machines."""

from __future__ import annotations

from typing import TYPE_CHECKING

from payroll_core.errors import ImmutableRecordError, InvalidTransitionError
from payroll_core.status import (
    AdjustmentStatus,
    CalculationStatus,
    CalculationType,
    PeriodStatus,
)

if TYPE_CHECKING:
    from payroll_core.records import PayrollPeriod


class PeriodStateMachine:
    """State machine for payroll period status transitions.

    Allowed transitions:
    - draft → calculating
    - calculating → calculated | failed
    - calculating → draft | calculated | failed | reviewing (cancelled run
      restores the status the period had when the run started)
    - calculated → calculating | reviewing
    - failed → calculating
    - reviewing → approved
    - reviewing → calculated (rejection)
    - reviewing → calculating (adjustment runs only)
    - approved → paid
    - paid → closed

    ``is_locked`` is orthogonal to status and can be set once the period is
    approved. A locked period accepts no transition at all: the normal flow
    locks after payment, and closing a paid period locks it in the same
    write. Locking earlier freezes the period where it stands.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PeriodStatus.DRAFT: [PeriodStatus.CALCULATING],
        PeriodStatus.CALCULATING: [
            PeriodStatus.CALCULATED,
            PeriodStatus.FAILED,
            PeriodStatus.DRAFT,
            PeriodStatus.REVIEWING,
        ],
        PeriodStatus.CALCULATED: [PeriodStatus.CALCULATING, PeriodStatus.REVIEWING],
        PeriodStatus.FAILED: [PeriodStatus.CALCULATING],
        PeriodStatus.REVIEWING: [
            PeriodStatus.APPROVED,
            PeriodStatus.CALCULATED,
            PeriodStatus.CALCULATING,
        ],
        PeriodStatus.APPROVED: [PeriodStatus.PAID],
        PeriodStatus.PAID: [PeriodStatus.CLOSED],
        PeriodStatus.CLOSED: [],  # Terminal state
    }

    # Statuses from which any calculation type may start
    CALCULATION_ALLOWED = {
        PeriodStatus.DRAFT,
        PeriodStatus.CALCULATED,
        PeriodStatus.FAILED,
    }

    # Reviewing periods only accept adjustment runs
    REVIEW_CALCULATION_TYPES = {CalculationType.ADJUSTMENT}

    # Statuses where dates and period type may be edited
    STRUCTURE_EDITABLE = {
        PeriodStatus.DRAFT,
        PeriodStatus.CALCULATED,
    }

    # Statuses where adjustments can no longer be requested or reviewed
    ADJUSTMENTS_CLOSED = {
        PeriodStatus.PAID,
        PeriodStatus.CLOSED,
    }

    # Statuses at or beyond approval, where the period may be locked
    LOCKABLE = {
        PeriodStatus.APPROVED,
        PeriodStatus.PAID,
        PeriodStatus.CLOSED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_start_calculation(cls, status: str, calculation_type: str) -> bool:
        """Check if a calculation of this type may start in this status."""
        if status in cls.CALCULATION_ALLOWED:
            return True
        return status == PeriodStatus.REVIEWING and calculation_type in cls.REVIEW_CALCULATION_TYPES

    @classmethod
    def can_edit_structure(cls, status: str) -> bool:
        """Check if dates/period type may be edited."""
        return status in cls.STRUCTURE_EDITABLE

    @classmethod
    def accepts_adjustments(cls, status: str) -> bool:
        """Check if adjustments may be requested or reviewed."""
        return status not in cls.ADJUSTMENTS_CLOSED

    @classmethod
    def can_lock(cls, status: str) -> bool:
        return status in cls.LOCKABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def ensure_unlocked(cls, period: PayrollPeriod, action: str) -> None:
        """Raise ImmutableRecordError if the period is locked."""
        if period.is_locked:
            raise ImmutableRecordError(
                "PayrollPeriod", period.id, f"period is locked; cannot {action}"
            )

    @classmethod
    def validate_calculation_start(cls, period: PayrollPeriod, calculation_type: str) -> None:
        """Validate that a calculation run may start on this period."""
        cls.ensure_unlocked(period, "start a calculation")
        if not cls.can_start_calculation(period.status, calculation_type):
            reason = f"'{CalculationType(calculation_type).value}' runs are not allowed"
            if period.status == PeriodStatus.REVIEWING:
                reason += "; reject the review first or start an 'adjustment' run"
            raise InvalidTransitionError(period.status, PeriodStatus.CALCULATING, reason)

    @classmethod
    def validate_period_transition(cls, period: PayrollPeriod, to_status: str) -> None:
        """Validate a transition for a specific period, including its lock."""
        if period.is_locked:
            raise ImmutableRecordError(
                "PayrollPeriod",
                period.id,
                f"period is locked; cannot move from '{period.status.value}' "
                f"to '{PeriodStatus(to_status).value}'",
            )
        cls.validate_transition(period.status, to_status)


class CalculationStateMachine:
    """Transitions for a single calculation run."""

    VALID_TRANSITIONS: dict[str, list[str]] = {
        CalculationStatus.PENDING: [
            CalculationStatus.PROCESSING,
            CalculationStatus.FAILED,
            CalculationStatus.CANCELLED,
        ],
        CalculationStatus.PROCESSING: [
            CalculationStatus.COMPLETED,
            CalculationStatus.FAILED,
            CalculationStatus.CANCELLED,
        ],
        CalculationStatus.COMPLETED: [],
        CalculationStatus.FAILED: [],
        CalculationStatus.CANCELLED: [],
    }

    CANCELLABLE = {CalculationStatus.PENDING, CalculationStatus.PROCESSING}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_cancel(cls, status: str) -> bool:
        return status in cls.CANCELLABLE


class AdjustmentStateMachine:
    """Adjustment lifecycle: pending → approved | rejected; approved → applied."""

    VALID_TRANSITIONS: dict[str, list[str]] = {
        AdjustmentStatus.PENDING: [AdjustmentStatus.APPROVED, AdjustmentStatus.REJECTED],
        AdjustmentStatus.APPROVED: [AdjustmentStatus.APPLIED],
        AdjustmentStatus.REJECTED: [],
        AdjustmentStatus.APPLIED: [],
    }

    # Statuses included in a calculation snapshot
    RUN_ELIGIBLE = {AdjustmentStatus.APPROVED, AdjustmentStatus.APPLIED}

    EDITABLE = {AdjustmentStatus.PENDING}
    DELETABLE = {AdjustmentStatus.PENDING, AdjustmentStatus.REJECTED}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)
