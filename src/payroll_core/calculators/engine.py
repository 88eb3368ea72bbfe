"""Payroll calculation engine - per-employee gross-to-net pipeline."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from payroll_core.calculators.contribution_tables import ContributionTables
from payroll_core.calculators.line_builder import LineBuilder
from payroll_core.calculators.tax_calculator import WithholdingTaxCalculator
from payroll_core.calculators.types import ContributionTable
from payroll_core.errors import (
    ContributionBracketNotFoundError,
    LineComputationError,
    NegativeNetPayError,
)
from payroll_core.records import (
    EmployeeCalculationLine,
    EmployeePayInput,
    PayrollAdjustment,
    PayrollPeriod,
)
from payroll_core.status import AdjustmentDirection, AdjustmentType, LineStatus

EARNING_TYPES = {AdjustmentType.EARNING, AdjustmentType.BACKPAY, AdjustmentType.REFUND}


@dataclass
class AdjustmentTotals:
    """Approved adjustments for one employee, split by effect."""

    earnings: Decimal = Decimal("0.00")
    deductions: Decimal = Decimal("0.00")
    refunds: Decimal = Decimal("0.00")  # Subset of earnings; non-taxable
    ids: tuple[UUID, ...] = ()


class CalculationEngine:
    """Computes one employee line for a period.

    Calculation pipeline (stable order per employee):
    1) Prorate basic salary by calendar days employed within the period
    2) Gross = basic + overtime + allowances + earning/backpay/refund and
       increase-correction adjustments
    3) SSS, PhilHealth and Pag-IBIG shares from the contribution base
       (gross minus refunds) and the employee category; the monthly
       schedules are applied pro rata to the period's pay frequency
    4) Taxable income = gross - exempt de minimis - refunds - employee
       contributions, floored at zero; withholding from the period's brackets
    5) Deductions = contributions + tax + deduction/decrease-correction
       adjustments
    6) Net = gross - deductions; a negative net fails the line

    The engine holds no state between calls: identical inputs give
    identical lines, including ``line_hash``.
    """

    def __init__(self, engine_version: str = "1.0.0"):
        self.engine_version = engine_version

    def compute(
        self,
        employee: EmployeePayInput,
        period: PayrollPeriod,
        adjustments: Iterable[PayrollAdjustment],
        tables: ContributionTables,
    ) -> EmployeeCalculationLine:
        """Compute the line for one employee.

        ``adjustments`` are the employee's approved adjustments for the
        period. Line-level failures come back as a ``failed`` line; only
        table configuration errors raise.
        """
        withholding = tables.withholding_for(period.period_type)
        totals = self.split_adjustments(adjustments)
        round_to_cents = LineBuilder.round_to_cents

        line = EmployeeCalculationLine(
            employee_id=employee.employee_id,
            employee_number=employee.employee_number,
            employee_name=employee.name,
            department=employee.department,
            position=employee.position,
            adjustment_ids=list(totals.ids),
        )
        line.basic_salary = self.prorate_basic(employee, period)
        line.overtime_pay = round_to_cents(employee.overtime_pay)
        line.allowances = round_to_cents(employee.allowances)
        line.adjustment_earnings = round_to_cents(totals.earnings)
        line.gross_pay = (
            line.basic_salary + line.overtime_pay + line.allowances + line.adjustment_earnings
        )

        try:
            contribution_base = line.gross_pay - totals.refunds
            line.sss_contribution, sss_er = self._contribution(
                tables.sss, "SSS", contribution_base, employee.category, period.period_type
            )
            line.philhealth_contribution, philhealth_er = self._contribution(
                tables.philhealth,
                "PhilHealth",
                contribution_base,
                employee.category,
                period.period_type,
            )
            line.pagibig_contribution, pagibig_er = self._contribution(
                tables.pagibig,
                "Pag-IBIG",
                contribution_base,
                employee.category,
                period.period_type,
            )
            line.employer_contributions = sss_er + philhealth_er + pagibig_er

            exempt = WithholdingTaxCalculator.exempt_deminimis(withholding, employee.deminimis)
            taxable = line.gross_pay - exempt - totals.refunds - line.statutory_contributions
            line.taxable_income = round_to_cents(max(taxable, Decimal("0")))
            line.withholding_tax = WithholdingTaxCalculator.calculate(
                withholding, line.taxable_income
            )

            line.adjustment_deductions = round_to_cents(totals.deductions)
            line.total_deductions = (
                line.statutory_contributions + line.withholding_tax + line.adjustment_deductions
            )
            line.net_pay = line.gross_pay - line.total_deductions
            if line.net_pay < 0:
                raise NegativeNetPayError(line.net_pay)
        except LineComputationError as e:
            line.status = LineStatus.FAILED
            line.error_message = str(e)

        line.line_hash = LineBuilder.compute_line_hash(line, tables.version, self.engine_version)
        return line

    @staticmethod
    def _contribution(
        table: ContributionTable, name: str, base: Decimal, category: str, period_type: str
    ) -> tuple[Decimal, Decimal]:
        shares = table.compute(base, category, period_type)
        if shares is None:
            raise ContributionBracketNotFoundError(name, base, category)
        return shares

    @staticmethod
    def days_employed(employee: EmployeePayInput, period: PayrollPeriod) -> int:
        """Calendar days within the period the employee was employed."""
        first: date = period.start_date
        last: date = period.end_date
        if employee.hire_date and employee.hire_date > first:
            first = employee.hire_date
        if employee.termination_date and employee.termination_date < last:
            last = employee.termination_date
        return max((last - first).days + 1, 0)

    @classmethod
    def prorate_basic(cls, employee: EmployeePayInput, period: PayrollPeriod) -> Decimal:
        """Basic salary for the days employed; unchanged for a full period."""
        days = cls.days_employed(employee, period)
        if days >= period.period_days:
            return LineBuilder.round_to_cents(employee.basic_salary)
        return LineBuilder.round_to_cents(employee.basic_salary * days / period.period_days)

    @staticmethod
    def split_adjustments(adjustments: Iterable[PayrollAdjustment]) -> AdjustmentTotals:
        """Sum adjustments into earnings, deductions and refunds."""
        totals = AdjustmentTotals()
        ids: list[UUID] = []
        for adj in sorted(adjustments, key=lambda a: str(a.id)):
            ids.append(adj.id)
            if adj.adjustment_type in EARNING_TYPES or (
                adj.adjustment_type == AdjustmentType.CORRECTION
                and adj.direction == AdjustmentDirection.INCREASE
            ):
                totals.earnings += adj.amount
                if adj.adjustment_type == AdjustmentType.REFUND:
                    totals.refunds += adj.amount
            else:
                totals.deductions += adj.amount
        totals.ids = tuple(ids)
        return totals
