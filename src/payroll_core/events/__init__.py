"""Payroll domain events.

Every state change in the period lifecycle emits a typed, immutable event.
Subscribers (audit log, notifications) register on an EventEmitter.
"""

from payroll_core.events.emitter import EventEmitter, EventHandler, EventRecorder, Subscription
from payroll_core.events.types import (
    AdjustmentApplied,
    AdjustmentRequested,
    AdjustmentReviewed,
    CalculationCancelled,
    CalculationCompleted,
    CalculationFailed,
    CalculationProgressed,
    CalculationStarted,
    DomainEvent,
    EventCategory,
    EventMetadata,
    ExceptionsDetected,
    PeriodCreated,
    PeriodLocked,
    PeriodStatusChanged,
    WorkflowStepApproved,
    WorkflowStepRejected,
)

__all__ = [
    # Base
    "DomainEvent",
    "EventCategory",
    "EventMetadata",
    # Emitter
    "EventEmitter",
    "EventHandler",
    "EventRecorder",
    "Subscription",
    # Period
    "PeriodCreated",
    "PeriodLocked",
    "PeriodStatusChanged",
    # Calculation
    "CalculationCancelled",
    "CalculationCompleted",
    "CalculationFailed",
    "CalculationProgressed",
    "CalculationStarted",
    # Adjustment
    "AdjustmentApplied",
    "AdjustmentRequested",
    "AdjustmentReviewed",
    # Approval
    "ExceptionsDetected",
    "WorkflowStepApproved",
    "WorkflowStepRejected",
]
