"""Payslip export from a period's approved calculation."""

from __future__ import annotations

import logging
from uuid import UUID

from payroll_core.clock import Clock
from payroll_core.errors import DomainStateError, NotFoundError
from payroll_core.records import Payslip
from payroll_core.repositories.base import PayrollRepository
from payroll_core.status import PeriodStatus

logger = logging.getLogger(__name__)

EXPORTABLE_STATUSES = {PeriodStatus.APPROVED, PeriodStatus.PAID, PeriodStatus.CLOSED}


class PayslipExporter:
    """Builds one payslip per completed line of the active calculation."""

    def __init__(self, repository: PayrollRepository, clock: Clock):
        self.repository = repository
        self.clock = clock

    async def export(self, period_id: UUID) -> list[Payslip]:
        period = await self.repository.get_period(period_id)
        if period is None:
            raise NotFoundError("PayrollPeriod", period_id)
        if period.status not in EXPORTABLE_STATUSES or period.active_calculation_id is None:
            raise DomainStateError(
                f"Payslips are available once a period is approved; {period.id} is "
                f"{period.status.value}"
            )

        generated_at = self.clock.now()
        payslips = [
            Payslip(
                period_id=period.id,
                period_name=period.name,
                pay_date=period.pay_date,
                calculation_id=line.calculation_id,
                employee_id=line.employee_id,
                employee_number=line.employee_number,
                employee_name=line.employee_name,
                department=line.department,
                position=line.position,
                basic_salary=line.basic_salary,
                overtime_pay=line.overtime_pay,
                allowances=line.allowances,
                adjustment_earnings=line.adjustment_earnings,
                gross_pay=line.gross_pay,
                sss_contribution=line.sss_contribution,
                philhealth_contribution=line.philhealth_contribution,
                pagibig_contribution=line.pagibig_contribution,
                withholding_tax=line.withholding_tax,
                adjustment_deductions=line.adjustment_deductions,
                total_deductions=line.total_deductions,
                net_pay=line.net_pay,
                generated_at=generated_at,
            )
            for line in await self.repository.list_lines(period.active_calculation_id)
            if line.succeeded
        ]
        logger.info("Exported %d payslips for period %s", len(payslips), period.id)
        return payslips
