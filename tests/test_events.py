"""Tests for domain events and the event emitter."""

import json
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_core.events import (
    CalculationCompleted,
    EventCategory,
    EventEmitter,
    EventMetadata,
    EventRecorder,
    PeriodStatusChanged,
    WorkflowStepRejected,
)

NOW = datetime(2025, 11, 16, 8, 0, tzinfo=timezone.utc)


def _status_changed(to_status="calculating") -> PeriodStatusChanged:
    return PeriodStatusChanged(
        metadata=EventMetadata.create(NOW, actor="hr.officer"),
        period_id=uuid4(),
        from_status="draft",
        to_status=to_status,
    )


def _completed() -> CalculationCompleted:
    return CalculationCompleted(
        metadata=EventMetadata.create(NOW),
        calculation_id=uuid4(),
        period_id=uuid4(),
        total_employees=3,
        total_gross_pay=Decimal("103500.00"),
        total_net_pay=Decimal("83659.35"),
    )


class TestDomainEvents:
    """Test event payloads and serialization."""

    def test_type_and_category(self):
        event = _completed()

        assert event.event_type == "CalculationCompleted"
        assert event.category == EventCategory.CALCULATION

    def test_immutable(self):
        event = _status_changed()

        with pytest.raises(AttributeError):
            event.to_status = "approved"

    def test_to_json(self):
        event = _completed()

        data = json.loads(event.to_json())

        assert data["event_type"] == "CalculationCompleted"
        assert data["category"] == "calculation"
        assert data["total_net_pay"] == "83659.35"
        assert data["metadata"]["timestamp"] == "2025-11-16T08:00:00+00:00"
        assert data["metadata"]["source_service"] == "payroll_core"

    def test_metadata_ids_unique(self):
        first = EventMetadata.create(NOW)
        second = EventMetadata.create(NOW)

        assert first.event_id != second.event_id
        assert first.timestamp == second.timestamp


class TestEventEmitter:
    """Test subscription routing."""

    def test_by_type(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on(CalculationCompleted, recorder)

        emitter.emit(_status_changed())
        emitter.emit(_completed())

        assert recorder.types() == ["CalculationCompleted"]

    def test_by_category(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on_category([EventCategory.PERIOD, EventCategory.APPROVAL], recorder)

        emitter.emit(_status_changed())
        emitter.emit(_completed())
        emitter.emit(
            WorkflowStepRejected(
                metadata=EventMetadata.create(NOW),
                period_id=uuid4(),
                step_id=uuid4(),
                step_number=2,
                approver="manager",
                reason="discrepancy found",
            )
        )

        assert recorder.types() == ["PeriodStatusChanged", "WorkflowStepRejected"]

    def test_off(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on_all(recorder)
        emitter.off(recorder)

        emitter.emit(_completed())

        assert recorder.events == []

    def test_failing_subscriber_isolated(self, caplog):
        emitter = EventEmitter()
        recorder = EventRecorder()

        def broken(event):
            raise RuntimeError("mail server down")

        emitter.on_all(broken)
        emitter.on_all(recorder)

        errors = emitter.emit(_completed())

        assert [str(e) for e in errors] == ["mail server down"]
        assert recorder.types() == ["CalculationCompleted"]
        assert "failed on CalculationCompleted" in caplog.text


class TestDeferredDelivery:
    def test_delivered_in_order_on_exit(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on_all(recorder)

        with emitter.deferred() as held:
            emitter.emit(_status_changed("calculating"))
            emitter.emit(_status_changed("calculated"))
            assert recorder.events == []
            assert len(held) == 2

        assert [e.to_status for e in recorder.of_type(PeriodStatusChanged)] == [
            "calculating",
            "calculated",
        ]

    def test_dropped_when_block_raises(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on_all(recorder)

        with pytest.raises(ValueError):
            with emitter.deferred():
                emitter.emit(_completed())
                raise ValueError("rolled back")

        assert recorder.events == []
        emitter.emit(_completed())
        assert len(recorder.events) == 1

    def test_nested_blocks_deliver_once(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on_all(recorder)

        with emitter.deferred():
            with emitter.deferred():
                emitter.emit(_completed())
            assert recorder.events == []

        assert len(recorder.events) == 1


class TestEventRecorder:
    def test_of_type_and_clear(self):
        recorder = EventRecorder()
        recorder(_completed())
        recorder(_status_changed())

        assert len(recorder.of_type(PeriodStatusChanged)) == 1

        recorder.clear()
        assert recorder.events == []
