"""Domain event types for the payroll lifecycle.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata
- Serializable for audit storage

Audit-log storage itself lives outside this package; subscribers receive
these events through the :class:`~payroll_core.events.emitter.EventEmitter`.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    PERIOD = "period"
    CALCULATION = "calculation"
    ADJUSTMENT = "adjustment"
    APPROVAL = "approval"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID  # Links related events
    actor: str | None  # User or system that triggered
    source_service: str  # Service that emitted
    version: int = 1  # Schema version for evolution

    @classmethod
    def create(
        cls,
        timestamp: datetime,
        actor: str | None = None,
        correlation_id: UUID | None = None,
        source_service: str = "payroll_core",
    ) -> EventMetadata:
        """Create metadata with auto-generated ids.

        ``timestamp`` comes from the caller's clock so tests stay
        deterministic.
        """
        return cls(
            event_id=uuid4(),
            timestamp=timestamp,
            correlation_id=correlation_id or uuid4(),
            actor=actor,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize_dict(asdict(self))
        data["event_type"] = self.event_type
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Period Events
# =============================================================================


@dataclass(frozen=True)
class PeriodCreated(DomainEvent):
    """A payroll period was created in draft."""

    period_id: UUID
    period_type: str
    start_date: date
    end_date: date
    pay_date: date

    @property
    def category(self) -> EventCategory:
        return EventCategory.PERIOD


@dataclass(frozen=True)
class PeriodStatusChanged(DomainEvent):
    """A payroll period moved between lifecycle states."""

    period_id: UUID
    from_status: str
    to_status: str
    reason: str | None = None

    @property
    def category(self) -> EventCategory:
        return EventCategory.PERIOD


@dataclass(frozen=True)
class PeriodLocked(DomainEvent):
    """A payroll period was locked; permanent."""

    period_id: UUID
    locked_by: str
    reason: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.PERIOD


# =============================================================================
# Calculation Events
# =============================================================================


@dataclass(frozen=True)
class CalculationStarted(DomainEvent):
    """A calculation run was enqueued."""

    calculation_id: UUID
    period_id: UUID
    calculation_type: str
    total_employees: int
    supersedes: UUID | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.CALCULATION


@dataclass(frozen=True)
class CalculationProgressed(DomainEvent):
    """A chunk of employee lines finished."""

    calculation_id: UUID
    processed_employees: int
    failed_employees: int
    total_employees: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.CALCULATION


@dataclass(frozen=True)
class CalculationCompleted(DomainEvent):
    """Every line completed; totals written."""

    calculation_id: UUID
    period_id: UUID
    total_employees: int
    total_gross_pay: Decimal
    total_net_pay: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.CALCULATION


@dataclass(frozen=True)
class CalculationFailed(DomainEvent):
    """A run failed: line failures (fatal=False) or a run-level error (fatal=True)."""

    calculation_id: UUID
    period_id: UUID
    error_code: str
    error_message: str
    failed_employees: int
    fatal: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.CALCULATION


@dataclass(frozen=True)
class CalculationCancelled(DomainEvent):
    """A run was cancelled and the period restored."""

    calculation_id: UUID
    period_id: UUID
    restored_status: str
    reinstated_calculation_id: UUID | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.CALCULATION


# =============================================================================
# Adjustment Events
# =============================================================================


@dataclass(frozen=True)
class AdjustmentRequested(DomainEvent):
    """An adjustment request was recorded as pending."""

    adjustment_id: UUID
    period_id: UUID
    employee_id: UUID
    adjustment_type: str
    amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.ADJUSTMENT


@dataclass(frozen=True)
class AdjustmentReviewed(DomainEvent):
    """An adjustment was approved or rejected."""

    adjustment_id: UUID
    period_id: UUID
    status: str
    reviewed_by: str
    notes: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.ADJUSTMENT


@dataclass(frozen=True)
class AdjustmentApplied(DomainEvent):
    """Approved adjustments were consumed by a completed calculation."""

    calculation_id: UUID
    period_id: UUID
    adjustment_ids: tuple[UUID, ...]

    @property
    def category(self) -> EventCategory:
        return EventCategory.ADJUSTMENT


# =============================================================================
# Approval Events
# =============================================================================


@dataclass(frozen=True)
class ExceptionsDetected(DomainEvent):
    """Review-time exception detection ran for a calculation."""

    calculation_id: UUID
    period_id: UUID
    exception_count: int
    critical_count: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.APPROVAL


@dataclass(frozen=True)
class WorkflowStepApproved(DomainEvent):
    """A workflow step was approved."""

    period_id: UUID
    step_id: UUID
    step_number: int
    role: str
    approver: str
    final: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.APPROVAL


@dataclass(frozen=True)
class WorkflowStepRejected(DomainEvent):
    """A workflow step was rejected and the workflow reset."""

    period_id: UUID
    step_id: UUID
    step_number: int
    approver: str
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.APPROVAL
