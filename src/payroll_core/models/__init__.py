"""SQLAlchemy ORM models."""

from payroll_core.models.base import Base, UTCDateTime
from payroll_core.models.payroll import (
    ApprovalStepRow,
    ApprovalWorkflowRow,
    ComplianceExceptionRow,
    EmployeeCalculationLineRow,
    PayrollAdjustmentRow,
    PayrollCalculationRow,
    PayrollPeriodRow,
)

__all__ = [
    "ApprovalStepRow",
    "ApprovalWorkflowRow",
    "Base",
    "ComplianceExceptionRow",
    "EmployeeCalculationLineRow",
    "PayrollAdjustmentRow",
    "PayrollCalculationRow",
    "PayrollPeriodRow",
    "UTCDateTime",
]
