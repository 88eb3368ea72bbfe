"""Closed status and type vocabularies for payroll records."""

from __future__ import annotations

from enum import Enum


class PeriodType(str, Enum):
    """Pay frequency of a payroll period."""

    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    SEMI_MONTHLY = "semi_monthly"
    MONTHLY = "monthly"


class PeriodStatus(str, Enum):
    """Payroll period status values."""

    DRAFT = "draft"
    CALCULATING = "calculating"
    CALCULATED = "calculated"
    REVIEWING = "reviewing"
    APPROVED = "approved"
    PAID = "paid"
    CLOSED = "closed"
    FAILED = "failed"


class CalculationType(str, Enum):
    """Kind of calculation run."""

    REGULAR = "regular"
    ADJUSTMENT = "adjustment"
    FINAL = "final"
    RECALCULATION = "re-calculation"


class CalculationStatus(str, Enum):
    """Calculation run status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            CalculationStatus.COMPLETED,
            CalculationStatus.FAILED,
            CalculationStatus.CANCELLED,
        )


class LineStatus(str, Enum):
    """Per-employee line outcome."""

    COMPLETED = "completed"
    FAILED = "failed"


class AdjustmentType(str, Enum):
    """Adjustment request types."""

    EARNING = "earning"
    DEDUCTION = "deduction"
    CORRECTION = "correction"
    BACKPAY = "backpay"
    REFUND = "refund"


class AdjustmentDirection(str, Enum):
    """Whether an adjustment raises or lowers the employee's pay."""

    INCREASE = "increase"
    DECREASE = "decrease"


class AdjustmentStatus(str, Enum):
    """Adjustment lifecycle values."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"


class StepStatus(str, Enum):
    """Approval step status values."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WorkflowStatus(str, Enum):
    """Approval workflow status values."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"


class Severity(str, Enum):
    """Compliance exception severity."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
