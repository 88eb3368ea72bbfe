"""Tests for period, calculation and adjustment state machines."""

from datetime import date

import pytest

from payroll_core.errors import ImmutableRecordError, InvalidTransitionError
from payroll_core.records import PayrollPeriod
from payroll_core.services.state_machine import (
    AdjustmentStateMachine,
    CalculationStateMachine,
    PeriodStateMachine,
)
from payroll_core.status import (
    AdjustmentStatus,
    CalculationStatus,
    CalculationType,
    PeriodStatus,
)


def _period(status: PeriodStatus, locked: bool = False) -> PayrollPeriod:
    return PayrollPeriod(
        period_type="semi_monthly",
        start_date=date(2025, 11, 1),
        end_date=date(2025, 11, 15),
        cutoff_date=date(2025, 11, 15),
        pay_date=date(2025, 11, 20),
        status=status,
        is_locked=locked,
    )


class TestPeriodStateMachine:
    """Test period status transitions."""

    def test_valid_transitions(self):
        """Test that the forward lifecycle is allowed."""
        assert PeriodStateMachine.can_transition("draft", "calculating") is True
        assert PeriodStateMachine.can_transition("calculating", "calculated") is True
        assert PeriodStateMachine.can_transition("calculating", "failed") is True
        assert PeriodStateMachine.can_transition("calculated", "reviewing") is True
        assert PeriodStateMachine.can_transition("reviewing", "approved") is True
        assert PeriodStateMachine.can_transition("approved", "paid") is True
        assert PeriodStateMachine.can_transition("paid", "closed") is True

        # Rejection and recalculation
        assert PeriodStateMachine.can_transition("reviewing", "calculated") is True
        assert PeriodStateMachine.can_transition("calculated", "calculating") is True
        assert PeriodStateMachine.can_transition("failed", "calculating") is True

    def test_invalid_transitions(self):
        """Test that skipping steps and going backwards is blocked."""
        assert PeriodStateMachine.can_transition("draft", "approved") is False
        assert PeriodStateMachine.can_transition("draft", "reviewing") is False
        assert PeriodStateMachine.can_transition("calculated", "approved") is False
        assert PeriodStateMachine.can_transition("approved", "reviewing") is False
        assert PeriodStateMachine.can_transition("paid", "approved") is False

        # Closed is terminal
        assert PeriodStateMachine.get_next_statuses("closed") == []

    def test_validate_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            PeriodStateMachine.validate_transition("draft", "paid")

        assert exc_info.value.from_status == "draft"
        assert exc_info.value.to_status == "paid"
        assert exc_info.value.code == "INVALID_TRANSITION"

    def test_calculation_start_by_status(self):
        """Any run type starts from draft, calculated or failed."""
        for status in ("draft", "calculated", "failed"):
            for calc_type in CalculationType:
                assert PeriodStateMachine.can_start_calculation(status, calc_type) is True

        assert PeriodStateMachine.can_start_calculation("calculating", "regular") is False
        assert PeriodStateMachine.can_start_calculation("approved", "regular") is False

    def test_reviewing_accepts_only_adjustment_runs(self):
        assert PeriodStateMachine.can_start_calculation("reviewing", "adjustment") is True
        assert PeriodStateMachine.can_start_calculation("reviewing", "regular") is False
        assert PeriodStateMachine.can_start_calculation("reviewing", "re-calculation") is False

        with pytest.raises(InvalidTransitionError, match="adjustment"):
            PeriodStateMachine.validate_calculation_start(
                _period(PeriodStatus.REVIEWING), CalculationType.REGULAR
            )

    def test_locked_period_blocks_calculation(self):
        period = _period(PeriodStatus.APPROVED, locked=True)

        with pytest.raises(ImmutableRecordError):
            PeriodStateMachine.validate_calculation_start(period, CalculationType.REGULAR)

    @pytest.mark.parametrize(
        "status,to_status",
        [
            (PeriodStatus.APPROVED, PeriodStatus.PAID),
            (PeriodStatus.PAID, PeriodStatus.CLOSED),
            (PeriodStatus.REVIEWING, PeriodStatus.APPROVED),
        ],
    )
    def test_locked_period_accepts_no_transition(self, status, to_status):
        with pytest.raises(ImmutableRecordError, match="locked"):
            PeriodStateMachine.validate_period_transition(_period(status, locked=True), to_status)

    def test_unlocked_paid_period_closes(self):
        PeriodStateMachine.validate_period_transition(
            _period(PeriodStatus.PAID), PeriodStatus.CLOSED
        )

    def test_structure_editable_statuses(self):
        assert PeriodStateMachine.can_edit_structure("draft") is True
        assert PeriodStateMachine.can_edit_structure("calculated") is True
        assert PeriodStateMachine.can_edit_structure("reviewing") is False
        assert PeriodStateMachine.can_edit_structure("approved") is False

    def test_lockable_statuses(self):
        assert PeriodStateMachine.can_lock("approved") is True
        assert PeriodStateMachine.can_lock("closed") is True
        assert PeriodStateMachine.can_lock("reviewing") is False
        assert PeriodStateMachine.can_lock("draft") is False

    def test_adjustments_closed_after_payment(self):
        assert PeriodStateMachine.accepts_adjustments("reviewing") is True
        assert PeriodStateMachine.accepts_adjustments("approved") is True
        assert PeriodStateMachine.accepts_adjustments("paid") is False
        assert PeriodStateMachine.accepts_adjustments("closed") is False


class TestCalculationStateMachine:
    """Test calculation run transitions."""

    def test_run_lifecycle(self):
        assert CalculationStateMachine.can_transition("pending", "processing") is True
        assert CalculationStateMachine.can_transition("processing", "completed") is True
        assert CalculationStateMachine.can_transition("processing", "failed") is True
        assert CalculationStateMachine.can_transition("processing", "cancelled") is True

    def test_terminal_statuses(self):
        for status in ("completed", "failed", "cancelled"):
            assert CalculationStateMachine.VALID_TRANSITIONS[status] == []
            assert CalculationStatus(status).is_terminal is True

        with pytest.raises(InvalidTransitionError):
            CalculationStateMachine.validate_transition("completed", "processing")

    def test_cancellable(self):
        assert CalculationStateMachine.can_cancel("pending") is True
        assert CalculationStateMachine.can_cancel("processing") is True
        assert CalculationStateMachine.can_cancel("completed") is False


class TestAdjustmentStateMachine:
    """Test adjustment lifecycle transitions."""

    def test_review_then_apply(self):
        assert AdjustmentStateMachine.can_transition("pending", "approved") is True
        assert AdjustmentStateMachine.can_transition("pending", "rejected") is True
        assert AdjustmentStateMachine.can_transition("approved", "applied") is True

    def test_no_way_back(self):
        assert AdjustmentStateMachine.can_transition("approved", "pending") is False
        assert AdjustmentStateMachine.can_transition("rejected", "approved") is False
        assert AdjustmentStateMachine.can_transition("pending", "applied") is False

        with pytest.raises(InvalidTransitionError):
            AdjustmentStateMachine.validate_transition("applied", "approved")

    def test_run_eligible(self):
        assert AdjustmentStateMachine.RUN_ELIGIBLE == {
            AdjustmentStatus.APPROVED,
            AdjustmentStatus.APPLIED,
        }
