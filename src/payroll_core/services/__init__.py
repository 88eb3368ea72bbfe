"""Payroll services: period lifecycle, calculation runs, adjustments and review."""

from payroll_core.services.adjustment_ledger import (
    ADJUSTMENT_FIELD_MAP,
    AdjustmentLedger,
    map_adjustment_fields,
)
from payroll_core.services.approval_workflow import ApprovalWorkflow, ReviewSummary
from payroll_core.services.calculation_runner import CalculationRunner
from payroll_core.services.employee_source import EmployeeSource, StaticEmployeeSource
from payroll_core.services.exception_detector import (
    ExceptionDetector,
    ExceptionRule,
    NewHireRule,
    TaxAnomalyRule,
    VarianceRule,
)
from payroll_core.services.locking_service import LockingService, RunSnapshot
from payroll_core.services.payslip_exporter import PayslipExporter
from payroll_core.services.period_manager import CalculationDetail, PeriodManager
from payroll_core.services.state_machine import (
    AdjustmentStateMachine,
    CalculationStateMachine,
    PeriodStateMachine,
)

__all__ = [
    "ADJUSTMENT_FIELD_MAP",
    "AdjustmentLedger",
    "AdjustmentStateMachine",
    "ApprovalWorkflow",
    "CalculationDetail",
    "CalculationRunner",
    "CalculationStateMachine",
    "EmployeeSource",
    "ExceptionDetector",
    "ExceptionRule",
    "LockingService",
    "NewHireRule",
    "PayslipExporter",
    "PeriodManager",
    "PeriodStateMachine",
    "ReviewSummary",
    "RunSnapshot",
    "StaticEmployeeSource",
    "TaxAnomalyRule",
    "VarianceRule",
    "map_adjustment_fields",
]
