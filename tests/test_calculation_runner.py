"""Tests for background calculation runs: locking, cancellation, timeouts, failures."""

import asyncio
import logging
import threading
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_core.calculators import CalculationEngine, ContributionTableRegistry
from payroll_core.calculators.ph_tables import PH_2025
from payroll_core.errors import CalculationInProgressError, InvalidTransitionError
from payroll_core.events import (
    CalculationCancelled,
    CalculationFailed,
    CalculationProgressed,
)
from payroll_core.status import CalculationStatus, LineStatus, PeriodStatus

from tests.conftest import ANA_ID, make_employee


class GatedEngine(CalculationEngine):
    """Engine whose lines block until the test opens the gate."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.gate = threading.Event()

    def compute(self, employee, period, adjustments, tables):
        self.started.set()
        self.gate.wait(timeout=5)
        return super().compute(employee, period, adjustments, tables)


class ExplodingEngine(CalculationEngine):
    def compute(self, employee, period, adjustments, tables):
        if employee.employee_number == "EMP-002":
            raise RuntimeError("boom")
        return super().compute(employee, period, adjustments, tables)


class DriftingEngine(CalculationEngine):
    """Engine whose line hashes change on every call."""

    def __init__(self):
        super().__init__()
        self.calls = 0

    def compute(self, employee, period, adjustments, tables):
        line = super().compute(employee, period, adjustments, tables)
        self.calls += 1
        line.line_hash = f"{line.line_hash[:-4]}{self.calls:04d}"
        return line


@pytest.fixture
def gated(service) -> GatedEngine:
    engine = GatedEngine()
    service.runner.engine = engine
    yield engine
    engine.gate.set()


class TestCalculationLock:
    """One run per period at a time."""

    async def test_concurrent_starts(self, service, period):
        results = await asyncio.gather(
            service.start_calculation(period.id, "regular", "alice"),
            service.start_calculation(period.id, "regular", "bob"),
            return_exceptions=True,
        )

        started = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, Exception)]
        assert len(started) == 1
        assert len(refused) == 1
        assert isinstance(refused[0], CalculationInProgressError)

        await service.wait_for_calculation(started[0].id)
        calcs = await service.list_calculations(period.id)
        assert [c.id for c in calcs] == [started[0].id]

        # Lock released on completion
        rerun = await service.recalculate(period.id)
        assert rerun.status == CalculationStatus.PENDING
        await service.wait_for_calculation(rerun.id)

    async def test_progress_per_chunk(self, service, period, run_calculation, recorder):
        await run_calculation(period.id)

        progress = recorder.of_type(CalculationProgressed)
        # max_parallel_lines=2 over three employees
        assert [p.processed_employees for p in progress] == [2, 3]
        assert all(p.total_employees == 3 for p in progress)


class TestCancellation:
    async def test_cancel_before_first_chunk(self, service, period, recorder):
        calc = await service.start_calculation(period.id)

        cancelled = await service.cancel_calculation(calc.id)

        assert cancelled.status == CalculationStatus.CANCELLED
        current = await service.get_period(period.id)
        assert current.status == PeriodStatus.DRAFT
        assert current.active_calculation_id is None
        assert current.running_calculation_id is None
        event = recorder.of_type(CalculationCancelled)[0]
        assert event.restored_status == "draft"
        assert event.reinstated_calculation_id is None

    async def test_cancel_mid_run(self, service, period, gated):
        calc = await service.start_calculation(period.id)
        assert await asyncio.to_thread(gated.started.wait, 5)

        cancel = asyncio.create_task(service.cancel_calculation(calc.id))
        await asyncio.sleep(0)
        gated.gate.set()
        cancelled = await cancel

        assert cancelled.status == CalculationStatus.CANCELLED
        assert cancelled.processed_employees == 2
        detail = await service.get_calculation(calc.id)
        assert detail.lines == []
        current = await service.get_period(period.id)
        assert current.status == PeriodStatus.DRAFT
        assert current.running_calculation_id is None

    async def test_cancel_recalculation_reinstates_previous(self, service, calculated_period):
        first_id = calculated_period.active_calculation_id

        calc = await service.recalculate(calculated_period.id)
        await service.cancel_calculation(calc.id)

        current = await service.get_period(calculated_period.id)
        first = (await service.get_calculation(first_id)).calculation
        assert current.status == PeriodStatus.CALCULATED
        assert current.active_calculation_id == first_id
        assert current.total_net_pay == Decimal("85173.10")
        assert first.superseded_by is None
        calcs = await service.list_calculations(calculated_period.id)
        assert [c.id for c in calcs if c.superseded_by is None] == [first_id]
        cancelled = (await service.get_calculation(calc.id)).calculation
        assert cancelled.status == CalculationStatus.CANCELLED
        assert cancelled.superseded_by == first_id

    async def test_cancel_finished_run(self, service, calculated_period):
        with pytest.raises(InvalidTransitionError):
            await service.cancel_calculation(calculated_period.active_calculation_id)


class TestTimeout:
    async def test_stalled_run_times_out(self, service, period, gated, clock, recorder):
        calc = await service.start_calculation(period.id)
        assert await asyncio.to_thread(gated.started.wait, 5)

        clock.advance(301)
        reaped = await service.reap_stalled()

        assert reaped == [calc.id]
        failed = (await service.get_calculation(calc.id)).calculation
        assert failed.status == CalculationStatus.FAILED
        assert failed.error_message == "Timeout"
        current = await service.get_period(period.id)
        assert current.status == PeriodStatus.FAILED
        assert current.running_calculation_id is None
        event = recorder.of_type(CalculationFailed)[0]
        assert event.error_code == "TIMEOUT"
        assert event.fatal is True

        # Failed periods can be recalculated
        gated.gate.set()
        rerun = await service.recalculate(period.id)
        rerun = await service.wait_for_calculation(rerun.id)
        assert rerun.status == CalculationStatus.COMPLETED

    async def test_recent_heartbeat_not_reaped(self, service, period, gated, clock):
        calc = await service.start_calculation(period.id)
        assert await asyncio.to_thread(gated.started.wait, 5)

        clock.advance(299)
        assert await service.reap_stalled() == []

        gated.gate.set()
        done = await service.wait_for_calculation(calc.id)
        assert done.status == CalculationStatus.COMPLETED


class TestFailures:
    async def test_line_failure_fails_run(self, service, employees, period, run_calculation):
        consultant_id = uuid4()
        employees.put(make_employee(consultant_id, "40000", "EMP-004", category="consultant"))

        calc = await run_calculation(period.id)

        assert calc.status == CalculationStatus.FAILED
        assert calc.total_employees == 4
        assert calc.processed_employees == 4
        assert calc.failed_employees == 1
        assert calc.error_message == "1 of 4 employee lines failed"
        # Totals cover completed lines only
        assert calc.total_gross_pay == Decimal("103500.00")

        detail = await service.get_calculation(calc.id)
        failed = [line for line in detail.lines if line.status == LineStatus.FAILED]
        assert [line.employee_id for line in failed] == [consultant_id]
        assert "consultant" in failed[0].error_message

        current = await service.get_period(period.id)
        assert current.status == PeriodStatus.FAILED
        assert current.running_calculation_id is None

    async def test_missing_tables_fail_whole_run(self, service, period, run_calculation, recorder):
        later = dict(PH_2025, version="PH-2026.1", effective_from="2026-01-01")
        service.runner.registry = ContributionTableRegistry.from_payloads([later])

        calc = await run_calculation(period.id)

        assert calc.status == CalculationStatus.FAILED
        assert "not configured" in calc.error_message
        assert (await service.get_calculation(calc.id)).lines == []
        assert (await service.get_period(period.id)).status == PeriodStatus.FAILED
        event = recorder.of_type(CalculationFailed)[0]
        assert event.error_code == "CONTRIBUTION_TABLE_MISSING"

    async def test_unexpected_line_error_isolated(self, service, period, run_calculation):
        service.runner.engine = ExplodingEngine()

        calc = await run_calculation(period.id)

        assert calc.failed_employees == 1
        detail = await service.get_calculation(calc.id)
        failed = next(line for line in detail.lines if line.status == LineStatus.FAILED)
        assert failed.error_message == "Unexpected error: boom"
        assert failed.line_hash is not None

    async def test_negative_net_pay_line(self, service, period, run_calculation):
        adjustment = await service.create_adjustment(
            period.id,
            {"employee_id": ANA_ID, "type": "deduction", "amount": "60000", "reason": "Loan"},
        )
        await service.approve_adjustment(adjustment.id, "hr.manager")

        calc = await run_calculation(period.id)

        assert calc.status == CalculationStatus.FAILED
        detail = await service.get_calculation(calc.id)
        ana = next(line for line in detail.lines if line.employee_id == ANA_ID)
        assert ana.status == LineStatus.FAILED
        assert ana.error_message.startswith("NegativeNetPay")
        # Failed runs do not consume adjustments
        adjustment = await service.get_adjustment(adjustment.id)
        assert adjustment.status.value == "approved"


class TestReproducibility:
    """Runs over identical inputs share an inputs hash and identical lines."""

    async def test_rerun_keeps_inputs_hash(self, service, calculated_period, caplog):
        first_id = calculated_period.active_calculation_id

        rerun = await service.recalculate(calculated_period.id)
        rerun = await service.wait_for_calculation(rerun.id)

        first = (await service.get_calculation(first_id)).calculation
        assert len(first.inputs_hash) == 32
        assert rerun.inputs_hash == first.inputs_hash
        assert "diverged" not in caplog.text

    async def test_approved_adjustment_changes_inputs_hash(
        self, service, calculated_period, run_calculation
    ):
        first_id = calculated_period.active_calculation_id
        adjustment = await service.create_adjustment(
            calculated_period.id,
            {"employee_id": ANA_ID, "type": "earning", "amount": "5000", "reason": "Bonus"},
        )
        await service.approve_adjustment(adjustment.id, "hr.manager")

        rerun = await run_calculation(calculated_period.id, "re-calculation")

        first = (await service.get_calculation(first_id)).calculation
        assert rerun.inputs_hash != first.inputs_hash

    async def test_engine_version_changes_inputs_hash(self, service, calculated_period):
        first_id = calculated_period.active_calculation_id
        service.runner.engine = CalculationEngine(engine_version="2.0.0")

        rerun = await service.recalculate(calculated_period.id)
        rerun = await service.wait_for_calculation(rerun.id)

        first = (await service.get_calculation(first_id)).calculation
        assert rerun.inputs_hash != first.inputs_hash

    async def test_divergent_lines_logged(self, service, calculated_period, caplog):
        first_id = calculated_period.active_calculation_id
        service.runner.engine = DriftingEngine()

        with caplog.at_level(logging.ERROR, logger="payroll_core.services.calculation_runner"):
            rerun = await service.recalculate(calculated_period.id)
            rerun = await service.wait_for_calculation(rerun.id)

        assert rerun.status == CalculationStatus.COMPLETED
        assert f"diverged from {first_id}" in caplog.text
        assert "for 3 employees" in caplog.text
