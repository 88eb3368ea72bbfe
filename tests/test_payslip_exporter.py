"""Tests for payslip export."""

from decimal import Decimal

import pytest

from payroll_core.errors import DomainStateError

from tests.conftest import ANA_ID


@pytest.fixture
async def approved_period(service, reviewing_period):
    for approver in ("officer", "manager", "director"):
        await service.approve_period(reviewing_period.id, approver)
    return await service.get_period(reviewing_period.id)


class TestPayslipExport:
    async def test_one_payslip_per_line(self, service, approved_period):
        payslips = await service.export_payslips(approved_period.id)

        assert len(payslips) == 3
        assert sum(p.net_pay for p in payslips) == approved_period.total_net_pay
        ana = next(p for p in payslips if p.employee_id == ANA_ID)
        assert ana.employee_number == "EMP-001"
        assert ana.period_name == "Nov 1-15, 2025"
        assert ana.calculation_id == approved_period.active_calculation_id
        assert ana.net_pay == Decimal("39931.30")

    async def test_serialization(self, service, approved_period):
        payslips = await service.export_payslips(approved_period.id)
        data = next(p.to_dict() for p in payslips if p.employee_id == ANA_ID)

        assert data["employee_id"] == str(ANA_ID)
        assert data["net_pay"] == "39931.30"
        assert data["pay_date"] == "2025-11-20"

    async def test_still_available_once_paid(self, service, approved_period):
        await service.mark_paid(approved_period.id, "treasury")

        assert len(await service.export_payslips(approved_period.id)) == 3

    async def test_not_before_approval(self, service, reviewing_period):
        with pytest.raises(DomainStateError):
            await service.export_payslips(reviewing_period.id)
