"""Payroll period, calculation, adjustment and review tables."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_core.models.base import Base

MONEY = Numeric(14, 2)


# ===== Periods & Calculations =====


class PayrollPeriodRow(Base):
    """Payroll period with mirrored totals and the calculation lock column."""

    __tablename__ = "payroll_period"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False, default="")
    period_type: Mapped[str] = mapped_column(String, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    cutoff_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_employer_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    active_calculation_id: Mapped[UUID | None] = mapped_column(nullable=True)
    running_calculation_id: Mapped[UUID | None] = mapped_column(nullable=True)

    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalized_by: Mapped[str | None] = mapped_column(String, nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    locked_by: Mapped[str | None] = mapped_column(String, nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    lock_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "period_type IN ('weekly', 'bi_weekly', 'semi_monthly', 'monthly')",
            name="payroll_period_type_check",
        ),
        CheckConstraint(
            "status IN ('draft', 'calculating', 'calculated', 'reviewing', "
            "'approved', 'paid', 'closed', 'failed')",
            name="payroll_period_status_check",
        ),
        CheckConstraint("end_date > start_date", name="payroll_period_dates_check"),
    )


class PayrollCalculationRow(Base):
    """One calculation run over a period."""

    __tablename__ = "payroll_calculation"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    calculation_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")

    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_employer_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    superseded_by: Mapped[UUID | None] = mapped_column(nullable=True)
    supersedes: Mapped[UUID | None] = mapped_column(nullable=True)
    previous_period_status: Mapped[str | None] = mapped_column(String, nullable=True)
    tables_version: Mapped[str | None] = mapped_column(String, nullable=True)
    inputs_hash: Mapped[str | None] = mapped_column(String(32), nullable=True)
    requested_by: Mapped[str | None] = mapped_column(String, nullable=True)
    applied_adjustment_ids: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    heartbeat_at: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    exceptions_detected_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "calculation_type IN ('regular', 'adjustment', 'final', 're-calculation')",
            name="payroll_calculation_type_check",
        ),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="payroll_calculation_status_check",
        ),
    )


class EmployeeCalculationLineRow(Base):
    """Per-employee gross-to-net line."""

    __tablename__ = "employee_calculation_line"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    calculation_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_calculation.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_number: Mapped[str | None] = mapped_column(String, nullable=True)
    employee_name: Mapped[str | None] = mapped_column(String, nullable=True)
    department: Mapped[str | None] = mapped_column(String, nullable=True)
    position: Mapped[str | None] = mapped_column(String, nullable=True)

    basic_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    overtime_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    allowances: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    adjustment_earnings: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    gross_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    sss_contribution: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    philhealth_contribution: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    pagibig_contribution: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    employer_contributions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    taxable_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    withholding_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    adjustment_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String, nullable=False, default="completed")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    adjustment_ids: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    line_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    position_in_run: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("calculation_id", "employee_id", name="calculation_line_employee_unique"),
        CheckConstraint("status IN ('completed', 'failed')", name="calculation_line_status_check"),
    )


# ===== Adjustments =====


class PayrollAdjustmentRow(Base):
    """Adjustment request against a period and employee."""

    __tablename__ = "payroll_adjustment"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    adjustment_type: Mapped[str] = mapped_column(String, nullable=False)
    direction: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    requested_by: Mapped[str | None] = mapped_column(String, nullable=True)
    requested_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    applied_calculation_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="payroll_adjustment_amount_check"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'applied')",
            name="payroll_adjustment_status_check",
        ),
    )


# ===== Review =====


class ApprovalWorkflowRow(Base):
    """Approval workflow for a period; one per period."""

    __tablename__ = "approval_workflow"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    calculation_id: Mapped[UUID | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    override_by: Mapped[str | None] = mapped_column(String, nullable=True)
    override_at: Mapped[datetime | None] = mapped_column(nullable=True)
    override_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    steps: Mapped[list[ApprovalStepRow]] = relationship(
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="ApprovalStepRow.step_number",
    )


class ApprovalStepRow(Base):
    """Single sign-off step."""

    __tablename__ = "approval_step"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    workflow_id: Mapped[UUID] = mapped_column(
        ForeignKey("approval_workflow.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    approver: Mapped[str | None] = mapped_column(String, nullable=True)
    acted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    workflow: Mapped[ApprovalWorkflowRow] = relationship(back_populates="steps")

    __table_args__ = (
        UniqueConstraint("workflow_id", "step_number", name="approval_step_number_unique"),
    )


class ComplianceExceptionRow(Base):
    """Advisory exception raised for a completed calculation."""

    __tablename__ = "compliance_exception"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    calculation_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_calculation.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    exception_type: Mapped[str] = mapped_column(String, nullable=False)
    severity: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    employee_id: Mapped[UUID | None] = mapped_column(nullable=True)
    employee_name: Mapped[str | None] = mapped_column(String, nullable=True)
    action_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    action_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    affected_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    previous_value: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    current_value: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    position_in_run: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint(
            "severity IN ('info', 'warning', 'critical')",
            name="compliance_exception_severity_check",
        ),
    )
