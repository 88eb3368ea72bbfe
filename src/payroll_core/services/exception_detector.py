"""Compliance exception detection for completed calculations.

Rules are small objects evaluated per employee line. Exceptions are advisory:
they inform reviewers and never block approval by themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol
from uuid import UUID

from payroll_core.calculators.types import frequency_factor
from payroll_core.clock import Clock
from payroll_core.config import ReviewPolicy
from payroll_core.records import (
    ComplianceException,
    EmployeeCalculationLine,
    PayrollCalculation,
    PayrollPeriod,
)
from payroll_core.repositories.base import PayrollRepository
from payroll_core.status import Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionContext:
    """What a rule may look at besides the line itself."""

    period: PayrollPeriod
    calculation: PayrollCalculation
    policy: ReviewPolicy
    # None when there is no earlier calculated period to compare against
    previous_lines: dict[UUID, EmployeeCalculationLine] | None

    def previous_line(self, employee_id: UUID) -> EmployeeCalculationLine | None:
        if self.previous_lines is None:
            return None
        return self.previous_lines.get(employee_id)


class ExceptionRule(Protocol):
    """A single anomaly check."""

    exception_type: str

    def evaluate(
        self, line: EmployeeCalculationLine, context: DetectionContext
    ) -> ComplianceException | None: ...


def _percent(ratio: Decimal) -> Decimal:
    return (ratio * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


class VarianceRule:
    """Net pay moved too far from the previous period."""

    exception_type = "variance"

    def evaluate(
        self, line: EmployeeCalculationLine, context: DetectionContext
    ) -> ComplianceException | None:
        previous = context.previous_line(line.employee_id)
        if previous is None or previous.net_pay == 0:
            return None

        change = line.net_pay - previous.net_pay
        variance = abs(change) / previous.net_pay
        policy = context.policy
        if variance <= policy.variance_threshold:
            return None

        severity = Severity.WARNING
        if (
            policy.critical_variance_threshold is not None
            and variance > policy.critical_variance_threshold
        ):
            severity = Severity.CRITICAL

        return ComplianceException(
            calculation_id=context.calculation.id,
            exception_type=self.exception_type,
            severity=severity,
            description=(
                f"Net pay changed by {_percent(variance)}% from the previous period "
                f"({previous.net_pay} -> {line.net_pay})"
            ),
            employee_id=line.employee_id,
            employee_name=line.employee_name,
            action_required=True,
            action_description="Confirm the net pay change with the employee's records",
            affected_amount=change,
            previous_value=previous.net_pay,
            current_value=line.net_pay,
        )


class NewHireRule:
    """Employee has no line in the previous period."""

    exception_type = "new_hire"

    def evaluate(
        self, line: EmployeeCalculationLine, context: DetectionContext
    ) -> ComplianceException | None:
        if context.previous_lines is None or line.employee_id in context.previous_lines:
            return None
        return ComplianceException(
            calculation_id=context.calculation.id,
            exception_type=self.exception_type,
            severity=Severity.INFO,
            description="Employee was not paid in the previous period",
            employee_id=line.employee_id,
            employee_name=line.employee_name,
            current_value=line.net_pay,
        )


class TaxAnomalyRule:
    """
    Withholding tax outside the expected share of gross pay.

    Bands are keyed on monthly-equivalent gross so one policy serves every
    pay frequency.
    """

    exception_type = "tax_anomaly"

    def evaluate(
        self, line: EmployeeCalculationLine, context: DetectionContext
    ) -> ComplianceException | None:
        if line.gross_pay <= 0:
            return None
        monthly_gross = line.gross_pay * frequency_factor(context.period.period_type, "monthly")
        band = next((b for b in context.policy.tax_ratio_bands if b.contains(monthly_gross)), None)
        if band is None:
            return None

        ratio = line.withholding_tax / line.gross_pay
        if band.min_ratio <= ratio <= band.max_ratio:
            return None

        return ComplianceException(
            calculation_id=context.calculation.id,
            exception_type=self.exception_type,
            severity=Severity.WARNING,
            description=(
                f"Withholding tax is {_percent(ratio)}% of gross pay; expected "
                f"{_percent(band.min_ratio)}%-{_percent(band.max_ratio)}%"
            ),
            employee_id=line.employee_id,
            employee_name=line.employee_name,
            action_required=True,
            action_description="Check the employee's tax inputs and de minimis benefits",
            affected_amount=line.withholding_tax,
            current_value=line.withholding_tax,
        )


DEFAULT_RULES: tuple[ExceptionRule, ...] = (VarianceRule(), NewHireRule(), TaxAnomalyRule())


class ExceptionDetector:
    """Evaluates the rule list over a completed calculation."""

    def __init__(
        self,
        repository: PayrollRepository,
        policy: ReviewPolicy,
        clock: Clock,
        rules: Sequence[ExceptionRule] = DEFAULT_RULES,
    ):
        self.repository = repository
        self.policy = policy
        self.clock = clock
        self.rules = tuple(rules)

    async def detect(
        self, calculation: PayrollCalculation, period: PayrollPeriod
    ) -> list[ComplianceException]:
        """Evaluate every rule against the calculation's completed lines.

        Results are returned, not stored; callers persist them.
        """
        lines = await self.repository.list_lines(calculation.id)
        lines = [line for line in lines if line.succeeded]
        context = DetectionContext(
            period=period,
            calculation=calculation,
            policy=self.policy,
            previous_lines=await self._previous_lines(period),
        )

        now = self.clock.now()
        found: list[ComplianceException] = []
        for line in lines:
            for rule in self.rules:
                exception = rule.evaluate(line, context)
                if exception is not None:
                    exception.created_at = now
                    found.append(exception)

        logger.info(
            "Detected %d exceptions for calculation %s (%d lines)",
            len(found),
            calculation.id,
            len(lines),
        )
        return found

    async def _previous_lines(
        self, period: PayrollPeriod
    ) -> dict[UUID, EmployeeCalculationLine] | None:
        previous = await self.repository.get_previous_period(period)
        if previous is None or previous.active_calculation_id is None:
            return None
        lines = await self.repository.list_lines(previous.active_calculation_id)
        return {line.employee_id: line for line in lines if line.succeeded}
