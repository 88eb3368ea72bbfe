"""Employee line helpers: rounding, deterministic hashing and aggregation."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from payroll_core.records import EmployeeCalculationLine, EmployeePayInput
from payroll_core.status import LineStatus

MONEY_FIELDS = (
    "basic_salary",
    "overtime_pay",
    "allowances",
    "adjustment_earnings",
    "gross_pay",
    "sss_contribution",
    "philhealth_contribution",
    "pagibig_contribution",
    "employer_contributions",
    "taxable_income",
    "withholding_tax",
    "adjustment_deductions",
    "total_deductions",
    "net_pay",
)


@dataclass(frozen=True)
class CalculationTotals:
    """Aggregates over a calculation's lines (completed lines only)."""

    total_employees: int
    processed_employees: int
    failed_employees: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    total_employer_cost: Decimal


class LineBuilder:
    """Builds employee lines with deterministic hashing.

    Identities every completed line satisfies:
    - gross_pay = basic_salary + overtime_pay + allowances + adjustment_earnings
    - total_deductions = sss + philhealth + pagibig + withholding_tax
      + adjustment_deductions
    - net_pay = gross_pay - total_deductions

    Amounts are rounded to cents (ROUND_HALF_UP) before the identities are
    applied, so they hold exactly.
    """

    OUTPUT_PRECISION = Decimal("0.01")

    @staticmethod
    def round_to_cents(amount: Decimal) -> Decimal:
        """Round amount to 2 decimal places (cents)."""
        return amount.quantize(LineBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def to_canonical_dict(line: EmployeeCalculationLine) -> dict[str, Any]:
        """Return canonical dict for hashing and comparison.

        Excludes storage identity (line id, calculation id) so two runs over
        identical inputs compare equal.
        """
        canonical: dict[str, Any] = {
            "employee_id": str(line.employee_id),
            "status": line.status.value,
            "error_message": line.error_message,
            "adjustment_ids": sorted(str(a) for a in line.adjustment_ids),
        }
        for name in MONEY_FIELDS:
            canonical[name] = str(getattr(line, name))
        return canonical

    @staticmethod
    def compute_line_hash(
        line: EmployeeCalculationLine, tables_version: str, engine_version: str
    ) -> str:
        """Compute deterministic hash for a line.

        Identical inputs, table version and engine version produce identical
        hashes.
        """
        canonical = LineBuilder.to_canonical_dict(line)
        canonical["tables_version"] = tables_version
        canonical["engine_version"] = engine_version
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def failed_line(employee: EmployeePayInput, message: str) -> EmployeeCalculationLine:
        """Create a failed line carrying only the employee identity."""
        return EmployeeCalculationLine(
            employee_id=employee.employee_id,
            employee_number=employee.employee_number,
            employee_name=employee.name,
            department=employee.department,
            position=employee.position,
            status=LineStatus.FAILED,
            error_message=message,
        )

    @staticmethod
    def validate_line(line: EmployeeCalculationLine) -> list[str]:
        """Check the gross/deduction/net identities.

        Returns list of error messages (empty if all valid).
        """
        errors: list[str] = []
        gross = line.basic_salary + line.overtime_pay + line.allowances + line.adjustment_earnings
        if gross != line.gross_pay:
            errors.append(f"gross_pay {line.gross_pay} != components {gross}")
        deductions = (
            line.statutory_contributions + line.withholding_tax + line.adjustment_deductions
        )
        if deductions != line.total_deductions:
            errors.append(f"total_deductions {line.total_deductions} != components {deductions}")
        if line.gross_pay - line.total_deductions != line.net_pay:
            errors.append(
                f"net_pay {line.net_pay} != gross {line.gross_pay}"
                f" - deductions {line.total_deductions}"
            )
        return errors

    @staticmethod
    def summarize(lines: list[EmployeeCalculationLine]) -> CalculationTotals:
        """Aggregate lines into calculation totals.

        Monetary totals cover completed lines only; failed lines count toward
        ``failed_employees``.
        """
        gross = deductions = net = employer_cost = Decimal("0.00")
        failed = 0
        for line in lines:
            if not line.succeeded:
                failed += 1
                continue
            gross += line.gross_pay
            deductions += line.total_deductions
            net += line.net_pay
            employer_cost += line.gross_pay + line.employer_contributions
        return CalculationTotals(
            total_employees=len(lines),
            processed_employees=len(lines),
            failed_employees=failed,
            total_gross_pay=gross,
            total_deductions=deductions,
            total_net_pay=net,
            total_employer_cost=employer_cost,
        )
