"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

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

# ============================================================================
# Common
# ============================================================================


class ErrorResponse(BaseModel):
    """Error body returned for every handled failure."""

    code: str
    detail: str
    errors: dict[str, str] | None = None


class ActorRequest(BaseModel):
    """Body for transitions that only record who acted."""

    actor: str = Field(min_length=1)


# ============================================================================
# Period schemas
# ============================================================================


class PeriodCreate(BaseModel):
    """Schema for creating a payroll period."""

    period_type: str
    start_date: date
    end_date: date
    cutoff_date: date
    pay_date: date
    name: str | None = None


class PeriodUpdate(BaseModel):
    """Fields editable while a period is draft or calculated."""

    name: str | None = None
    period_type: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    cutoff_date: date | None = None
    pay_date: date | None = None


class PeriodResponse(BaseModel):
    """Schema for payroll period response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    period_type: PeriodType
    start_date: date
    end_date: date
    cutoff_date: date
    pay_date: date
    status: PeriodStatus
    is_locked: bool
    total_employees: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    total_employer_cost: Decimal
    active_calculation_id: UUID | None = None
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


class PeriodListResponse(BaseModel):
    """Schema for listing periods."""

    items: list[PeriodResponse]
    total: int


class LockRequest(BaseModel):
    locked_by: str = Field(min_length=1)
    reason: str | None = None


# ============================================================================
# Calculation schemas
# ============================================================================


class CalculationCreate(BaseModel):
    """Schema for starting a calculation run."""

    calculation_type: str = CalculationType.REGULAR.value
    requested_by: str | None = None


class CalculationResponse(BaseModel):
    """Schema for calculation response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    period_id: UUID
    calculation_type: CalculationType
    status: CalculationStatus
    total_employees: int
    processed_employees: int
    failed_employees: int
    progress_percentage: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    total_employer_cost: Decimal
    error_message: str | None = None
    superseded_by: UUID | None = None
    supersedes: UUID | None = None
    tables_version: str | None = None
    inputs_hash: str | None = None
    requested_by: str | None = None
    applied_adjustment_ids: list[UUID] = []
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class CalculationLineResponse(BaseModel):
    """Schema for one employee line."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    employee_id: UUID
    employee_number: str | None = None
    employee_name: str | None = None
    department: str | None = None
    position: str | None = None
    basic_salary: Decimal
    overtime_pay: Decimal
    allowances: Decimal
    adjustment_earnings: Decimal
    gross_pay: Decimal
    sss_contribution: Decimal
    philhealth_contribution: Decimal
    pagibig_contribution: Decimal
    employer_contributions: Decimal
    taxable_income: Decimal
    withholding_tax: Decimal
    adjustment_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    status: LineStatus
    error_message: str | None = None
    adjustment_ids: list[UUID] = []
    line_hash: str | None = None


class CalculationDetailResponse(BaseModel):
    """A calculation with its per-employee lines."""

    model_config = ConfigDict(from_attributes=True)

    calculation: CalculationResponse
    lines: list[CalculationLineResponse]


# ============================================================================
# Adjustment schemas
# ============================================================================


class AdjustmentCreate(BaseModel):
    """Schema for requesting an adjustment."""

    employee_id: UUID
    type: str
    amount: Decimal
    reason: str
    direction: str | None = None
    category: str | None = None
    reference_number: str | None = None
    requested_by: str | None = None


class AdjustmentUpdate(BaseModel):
    """Fields editable while an adjustment is pending."""

    type: str | None = None
    amount: Decimal | None = None
    reason: str | None = None
    direction: str | None = None
    category: str | None = None
    reference_number: str | None = None


class AdjustmentReview(BaseModel):
    reviewer: str = Field(min_length=1)
    notes: str | None = None


class AdjustmentResponse(BaseModel):
    """Schema for adjustment response; record fields use their API names."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    period_id: UUID
    employee_id: UUID
    type: AdjustmentType = Field(validation_alias=AliasChoices("adjustment_type", "type"))
    direction: AdjustmentDirection | None = None
    category: str | None = None
    amount: Decimal
    reason: str
    reference_number: str | None = None
    status: AdjustmentStatus
    requested_by: str | None = None
    requested_at: datetime | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    notes: str | None = Field(
        default=None, validation_alias=AliasChoices("review_notes", "notes")
    )
    applied_at: datetime | None = None
    applied_calculation_id: UUID | None = None


# ============================================================================
# Review schemas
# ============================================================================


class StepApproveRequest(BaseModel):
    approver: str = Field(min_length=1)
    comments: str | None = None


class StepRejectRequest(BaseModel):
    approver: str = Field(min_length=1)
    reason: str


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = Field(min_length=1)
    notes: str | None = None


class ApprovalStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    step_number: int
    role: str
    status: StepStatus
    approver: str | None = None
    acted_at: datetime | None = None
    comments: str | None = None


class WorkflowResponse(BaseModel):
    """Schema for an approval workflow."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    period_id: UUID
    status: WorkflowStatus
    calculation_id: UUID | None = None
    steps: list[ApprovalStepResponse]
    rejection_reason: str | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    override_by: str | None = None
    override_at: datetime | None = None
    override_notes: str | None = None


class ComplianceExceptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    calculation_id: UUID
    exception_type: str
    severity: Severity
    description: str
    employee_id: UUID | None = None
    employee_name: str | None = None
    action_required: bool
    action_description: str | None = None
    affected_amount: Decimal | None = None
    previous_value: Decimal | None = None
    current_value: Decimal | None = None


class ReviewResponse(BaseModel):
    """Review summary for a period."""

    model_config = ConfigDict(from_attributes=True)

    period: PeriodResponse
    workflow: WorkflowResponse | None = None
    current_step: ApprovalStepResponse | None = None
    exceptions: list[ComplianceExceptionResponse]
    can_approve: bool
    can_reject: bool
    requires_override: bool
    totals: dict[str, Decimal]


# ============================================================================
# Payslip schemas
# ============================================================================


class PayslipResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period_id: UUID
    period_name: str
    pay_date: date
    calculation_id: UUID
    employee_id: UUID
    employee_number: str | None = None
    employee_name: str | None = None
    department: str | None = None
    position: str | None = None
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
