"""Entity records for payroll periods, calculations, adjustments and reviews.

Records are plain dataclasses so the services stay storage-agnostic; the
repositories translate them to and from their backing store. Status fields
are coerced to their enums on construction, so a record rebuilt from raw
column values compares and serializes the same as one built in code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from payroll_core.status import (
    AdjustmentDirection,
    AdjustmentStatus,
    AdjustmentType,
    CalculationStatus,
    CalculationType,
    LineStatus,
    PeriodStatus,
    PeriodType,
    Severity,
    StepStatus,
    WorkflowStatus,
)

ZERO = Decimal("0.00")


@dataclass
class PayrollPeriod:
    """A pay period and its lifecycle state."""

    period_type: PeriodType
    start_date: date
    end_date: date
    cutoff_date: date
    pay_date: date
    name: str = ""
    id: UUID = field(default_factory=uuid4)
    status: PeriodStatus = PeriodStatus.DRAFT
    is_locked: bool = False

    # Aggregates mirrored from the active calculation
    total_employees: int = 0
    total_gross_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_employer_cost: Decimal = ZERO

    active_calculation_id: UUID | None = None
    # Per-period calculation lock; set while a run owns the period
    running_calculation_id: UUID | None = None

    approved_by: str | None = None
    approved_at: datetime | None = None
    finalized_by: str | None = None
    finalized_at: datetime | None = None
    rejection_reason: str | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    locked_by: str | None = None
    locked_at: datetime | None = None
    lock_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.period_type = PeriodType(self.period_type)
        self.status = PeriodStatus(self.status)

    @property
    def period_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def apply_totals(self, calculation: PayrollCalculation) -> None:
        """Mirror a calculation's aggregates onto the period."""
        self.total_employees = calculation.total_employees
        self.total_gross_pay = calculation.total_gross_pay
        self.total_deductions = calculation.total_deductions
        self.total_net_pay = calculation.total_net_pay
        self.total_employer_cost = calculation.total_employer_cost

    def clear_totals(self) -> None:
        self.total_employees = 0
        self.total_gross_pay = ZERO
        self.total_deductions = ZERO
        self.total_net_pay = ZERO
        self.total_employer_cost = ZERO


@dataclass
class PayrollCalculation:
    """One calculation run over a period."""

    period_id: UUID
    calculation_type: CalculationType
    id: UUID = field(default_factory=uuid4)
    status: CalculationStatus = CalculationStatus.PENDING

    total_employees: int = 0
    processed_employees: int = 0
    failed_employees: int = 0

    total_gross_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_employer_cost: Decimal = ZERO

    error_message: str | None = None
    superseded_by: UUID | None = None
    supersedes: UUID | None = None
    previous_period_status: PeriodStatus | None = None
    tables_version: str | None = None
    inputs_hash: str | None = None
    requested_by: str | None = None
    applied_adjustment_ids: list[UUID] = field(default_factory=list)

    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    heartbeat_at: datetime | None = None
    exceptions_detected_at: datetime | None = None

    def __post_init__(self) -> None:
        self.calculation_type = CalculationType(self.calculation_type)
        self.status = CalculationStatus(self.status)
        if self.previous_period_status is not None:
            self.previous_period_status = PeriodStatus(self.previous_period_status)

    @property
    def is_active(self) -> bool:
        return self.superseded_by is None

    @property
    def progress_percentage(self) -> int:
        if self.total_employees == 0:
            return 100 if self.status.is_terminal else 0
        return int(self.processed_employees * 100 / self.total_employees)


@dataclass
class EmployeeCalculationLine:
    """One employee's gross-to-net breakdown within a calculation."""

    employee_id: UUID
    calculation_id: UUID | None = None
    id: UUID = field(default_factory=uuid4)
    employee_number: str | None = None
    employee_name: str | None = None
    department: str | None = None
    position: str | None = None

    basic_salary: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    allowances: Decimal = ZERO
    adjustment_earnings: Decimal = ZERO
    gross_pay: Decimal = ZERO

    sss_contribution: Decimal = ZERO
    philhealth_contribution: Decimal = ZERO
    pagibig_contribution: Decimal = ZERO
    employer_contributions: Decimal = ZERO
    taxable_income: Decimal = ZERO
    withholding_tax: Decimal = ZERO
    adjustment_deductions: Decimal = ZERO
    total_deductions: Decimal = ZERO
    net_pay: Decimal = ZERO

    status: LineStatus = LineStatus.COMPLETED
    error_message: str | None = None
    adjustment_ids: list[UUID] = field(default_factory=list)
    line_hash: str | None = None

    def __post_init__(self) -> None:
        self.status = LineStatus(self.status)

    @property
    def statutory_contributions(self) -> Decimal:
        return self.sss_contribution + self.philhealth_contribution + self.pagibig_contribution

    @property
    def succeeded(self) -> bool:
        return self.status == LineStatus.COMPLETED


@dataclass
class PayrollAdjustment:
    """A correction, earning, deduction, backpay or refund request."""

    period_id: UUID
    employee_id: UUID
    adjustment_type: AdjustmentType
    amount: Decimal
    reason: str
    direction: AdjustmentDirection | None = None
    category: str | None = None
    reference_number: str | None = None
    id: UUID = field(default_factory=uuid4)
    status: AdjustmentStatus = AdjustmentStatus.PENDING
    requested_by: str | None = None
    requested_at: datetime | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    applied_at: datetime | None = None
    applied_calculation_id: UUID | None = None

    def __post_init__(self) -> None:
        self.adjustment_type = AdjustmentType(self.adjustment_type)
        self.status = AdjustmentStatus(self.status)
        if self.direction is not None:
            self.direction = AdjustmentDirection(self.direction)


@dataclass
class ApprovalStep:
    """A single sign-off step owned by a workflow."""

    step_number: int
    role: str
    id: UUID = field(default_factory=uuid4)
    status: StepStatus = StepStatus.PENDING
    approver: str | None = None
    acted_at: datetime | None = None
    comments: str | None = None

    def __post_init__(self) -> None:
        self.status = StepStatus(self.status)

    def reset(self) -> None:
        self.status = StepStatus.PENDING
        self.approver = None
        self.acted_at = None
        self.comments = None


@dataclass
class ApprovalWorkflowRecord:
    """Ordered approval steps gating a period from reviewing to approved."""

    period_id: UUID
    steps: list[ApprovalStep] = field(default_factory=list)
    id: UUID = field(default_factory=uuid4)
    status: WorkflowStatus = WorkflowStatus.PENDING
    calculation_id: UUID | None = None
    rejection_reason: str | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    override_by: str | None = None
    override_at: datetime | None = None
    override_notes: str | None = None

    def __post_init__(self) -> None:
        self.status = WorkflowStatus(self.status)
        self.steps.sort(key=lambda s: s.step_number)

    @property
    def current_step(self) -> ApprovalStep | None:
        """First step still pending, or None when all are approved."""
        return next((s for s in self.steps if s.status != StepStatus.APPROVED), None)

    def get_step(self, step_id: UUID) -> ApprovalStep | None:
        return next((s for s in self.steps if s.id == step_id), None)


@dataclass
class ComplianceException:
    """Advisory anomaly found while reviewing a completed calculation."""

    calculation_id: UUID
    exception_type: str
    severity: Severity
    description: str
    employee_id: UUID | None = None
    employee_name: str | None = None
    id: UUID = field(default_factory=uuid4)
    action_required: bool = False
    action_description: str | None = None
    affected_amount: Decimal | None = None
    previous_value: Decimal | None = None
    current_value: Decimal | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        self.severity = Severity(self.severity)


@dataclass(frozen=True)
class EmployeePayInput:
    """Compensation inputs for one employee, supplied by the employee directory.

    ``basic_salary`` is the full-period amount; the engine prorates it for
    mid-period hires and terminations. ``deminimis`` is the non-taxable part
    of ``allowances``.
    """

    employee_id: UUID
    basic_salary: Decimal
    employee_number: str | None = None
    name: str | None = None
    department: str | None = None
    position: str | None = None
    category: str = "regular"
    overtime_pay: Decimal = ZERO
    allowances: Decimal = ZERO
    deminimis: Decimal = ZERO
    hire_date: date | None = None
    termination_date: date | None = None


@dataclass(frozen=True)
class Payslip:
    """Per-employee payslip payload for an approved calculation."""

    period_id: UUID
    period_name: str
    pay_date: date
    calculation_id: UUID
    employee_id: UUID
    employee_number: str | None
    employee_name: str | None
    department: str | None
    position: str | None
    basic_salary: Decimal
    overtime_pay: Decimal
    allowances: Decimal
    adjustment_earnings: Decimal
    gross_pay: Decimal
    sss_contribution: Decimal
    philhealth_contribution: Decimal
    pagibig_contribution: Decimal
    withholding_tax: Decimal
    adjustment_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    generated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """Serialize with JSON-friendly values."""
        out: dict[str, Any] = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            if isinstance(value, (UUID, Decimal)):
                value = str(value)
            elif isinstance(value, (date, datetime)):
                value = value.isoformat()
            out[name] = value
        return out
