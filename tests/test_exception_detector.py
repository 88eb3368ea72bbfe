"""Tests for compliance exception rules and detection."""

import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_core.config import DEFAULT_TAX_RATIO_BANDS, ReviewPolicy, Settings, TaxRatioBand
from payroll_core.records import EmployeeCalculationLine, PayrollCalculation, PayrollPeriod
from payroll_core.services import NewHireRule, TaxAnomalyRule, VarianceRule
from payroll_core.services.exception_detector import DetectionContext
from payroll_core.status import LineStatus, Severity

from tests.conftest import ANA_ID, BEN_ID, NOV_FIRST_HALF, NOV_SECOND_HALF, make_employee


def _line(employee_id=ANA_ID, net="1000.00", gross="1500.00", tax="100.00"):
    return EmployeeCalculationLine(
        employee_id=employee_id,
        employee_name="Ana Santos",
        gross_pay=Decimal(gross),
        withholding_tax=Decimal(tax),
        net_pay=Decimal(net),
    )


def _context(previous=None, policy=None, period_type="semi_monthly") -> DetectionContext:
    period = PayrollPeriod(**dict(NOV_SECOND_HALF, period_type=period_type))
    return DetectionContext(
        period=period,
        calculation=PayrollCalculation(period_id=period.id, calculation_type="regular"),
        policy=policy or ReviewPolicy(),
        previous_lines=previous,
    )


class TestVarianceRule:
    """Net pay change against the previous period."""

    def test_within_threshold(self):
        context = _context({ANA_ID: _line(net="1000.00")})
        assert VarianceRule().evaluate(_line(net="1150.00"), context) is None

    def test_warning(self):
        context = _context({ANA_ID: _line(net="1000.00")})

        exception = VarianceRule().evaluate(_line(net="1300.00"), context)

        assert exception.severity == Severity.WARNING
        assert exception.exception_type == "variance"
        assert exception.affected_amount == Decimal("300.00")
        assert exception.previous_value == Decimal("1000.00")
        assert exception.action_required is True
        assert "30.0%" in exception.description

    def test_decrease_counts(self):
        context = _context({ANA_ID: _line(net="1000.00")})

        exception = VarianceRule().evaluate(_line(net="700.00"), context)

        assert exception.affected_amount == Decimal("-300.00")

    def test_critical(self):
        context = _context({ANA_ID: _line(net="1000.00")})

        exception = VarianceRule().evaluate(_line(net="1600.00"), context)

        assert exception.severity == Severity.CRITICAL

    def test_escalation_disabled(self):
        policy = ReviewPolicy(critical_variance_threshold=None)
        context = _context({ANA_ID: _line(net="1000.00")}, policy)

        exception = VarianceRule().evaluate(_line(net="5000.00"), context)

        assert exception.severity == Severity.WARNING

    def test_no_baseline(self):
        assert VarianceRule().evaluate(_line(), _context(None)) is None
        assert VarianceRule().evaluate(_line(), _context({ANA_ID: _line(net="0")})) is None

    def test_policy_validation(self):
        with pytest.raises(ValueError):
            ReviewPolicy(
                variance_threshold=Decimal("0.50"),
                critical_variance_threshold=Decimal("0.20"),
            )


class TestNewHireRule:
    def test_not_in_previous_period(self):
        exception = NewHireRule().evaluate(_line(), _context({BEN_ID: _line(BEN_ID)}))

        assert exception.severity == Severity.INFO
        assert exception.action_required is False

    def test_paid_previously(self):
        assert NewHireRule().evaluate(_line(), _context({ANA_ID: _line()})) is None

    def test_first_period_ever(self):
        assert NewHireRule().evaluate(_line(), _context(None)) is None


class TestTaxAnomalyRule:
    def test_expected_ratio(self):
        assert TaxAnomalyRule().evaluate(_line(gross="50000", tax="7500"), _context()) is None

    def test_above_band(self):
        exception = TaxAnomalyRule().evaluate(_line(gross="10000", tax="4000"), _context())

        assert exception.severity == Severity.WARNING
        assert exception.affected_amount == Decimal("4000")
        assert "40.0%" in exception.description

    def test_band_minimum(self):
        policy = ReviewPolicy(
            tax_ratio_bands=(
                TaxRatioBand(Decimal("50000"), None, Decimal("0.10"), Decimal("0.35")),
            )
        )

        assert TaxAnomalyRule().evaluate(_line(gross="60000", tax="0"), _context(policy=policy))
        # Gross outside every band is not checked
        low = _line(gross="20000", tax="0")
        assert TaxAnomalyRule().evaluate(low, _context(policy=policy)) is None

    def test_zero_gross(self):
        assert TaxAnomalyRule().evaluate(_line(gross="0", tax="0"), _context()) is None

    def test_zero_tax_on_high_gross(self):
        exception = TaxAnomalyRule().evaluate(_line(gross="500000", tax="0"), _context())

        assert exception.exception_type == "tax_anomaly"
        assert "expected 20.0%-35.0%" in exception.description

    def test_low_earner_owes_no_tax(self):
        exception = TaxAnomalyRule().evaluate(_line(gross="9000", tax="450"), _context())

        assert "expected 0.0%-0.0%" in exception.description

    def test_band_uses_monthly_equivalent(self):
        rule = TaxAnomalyRule()
        line = _line(gross="25000", tax="0")

        # 50,000 a month leaves room for zero tax; 108,333 a month does not
        assert rule.evaluate(line, _context()) is None
        assert rule.evaluate(line, _context(period_type="weekly")) is not None


class TestPolicySettings:
    def test_default_bands(self, monkeypatch):
        monkeypatch.delenv("TAX_RATIO_BANDS", raising=False)

        policy = Settings.from_env().review_policy()

        assert policy.tax_ratio_bands == DEFAULT_TAX_RATIO_BANDS
        assert policy.tax_ratio_bands[-1].max_gross is None

    def test_bands_from_environment(self, monkeypatch):
        bands = [
            {"min_gross": 0, "max_gross": 100000, "min_ratio": "0", "max_ratio": "0.10"},
            {"min_gross": 100000, "max_gross": None, "min_ratio": "0.15", "max_ratio": "0.30"},
        ]
        monkeypatch.setenv("TAX_RATIO_BANDS", json.dumps(bands))

        policy = Settings.from_env().review_policy()

        assert policy.tax_ratio_bands == (
            TaxRatioBand(Decimal("0"), Decimal("100000"), Decimal("0"), Decimal("0.10")),
            TaxRatioBand(Decimal("100000"), None, Decimal("0.15"), Decimal("0.30")),
        )
        line = _line(gross="60000", tax="6000")
        assert TaxAnomalyRule().evaluate(line, _context(policy=policy)) is not None

    def test_inverted_band_rejected(self):
        with pytest.raises(ValueError):
            TaxRatioBand(Decimal("0"), None, Decimal("0.30"), Decimal("0.10"))


class TestDetection:
    """Exceptions are detected when a period is submitted for review."""

    async def test_first_period_has_no_comparisons(self, service, repository, reviewing_period):
        calc_id = reviewing_period.active_calculation_id
        assert await repository.list_exceptions(calc_id) == []
        assert (await service.get_calculation(calc_id)).calculation.exceptions_detected_at

    async def test_new_hire_and_variance(
        self, service, employees, repository, calculated_period, run_calculation
    ):
        newcomer = uuid4()
        employees.put(make_employee(newcomer, "25000", "EMP-010", "Eli Tan"))
        employees.put(make_employee(BEN_ID, "30000", "EMP-002", "Ben Cruz"))
        second = await service.create_period(**NOV_SECOND_HALF)
        await run_calculation(second.id)

        period = await service.submit_for_review(second.id, "hr.officer")

        exceptions = await repository.list_exceptions(period.active_calculation_id)
        found = {(e.employee_id, e.exception_type) for e in exceptions}
        assert (newcomer, "new_hire") in found
        assert (BEN_ID, "variance") in found
        assert (ANA_ID, "variance") not in found

    async def test_baseline_must_share_period_type(
        self, service, employees, repository, calculated_period, run_calculation
    ):
        employees.put(make_employee(uuid4(), "25000", "EMP-010", "Eli Tan"))
        weekly = await service.create_period(
            period_type="weekly",
            start_date=date(2025, 11, 17),
            end_date=date(2025, 11, 23),
            cutoff_date=date(2025, 11, 23),
            pay_date=date(2025, 11, 26),
        )
        await run_calculation(weekly.id)

        assert await repository.get_previous_period(weekly) is None
        period = await service.submit_for_review(weekly.id, "hr.officer")

        exceptions = await repository.list_exceptions(period.active_calculation_id)
        assert not {e.exception_type for e in exceptions} & {"new_hire", "variance"}

    async def test_failed_lines_skipped(self, service, repository, period):
        detector = service.periods.detector
        calc = PayrollCalculation(period_id=period.id, calculation_type="regular")
        failed = _line(net="0", gross="0")
        failed.status = LineStatus.FAILED
        failed.calculation_id = calc.id
        await repository.add_lines([failed])

        assert await detector.detect(calc, PayrollPeriod(**NOV_FIRST_HALF)) == []
