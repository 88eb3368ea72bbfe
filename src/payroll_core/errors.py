"""Typed error taxonomy for the payroll core.

Every error carries a machine-readable ``code`` so callers (and the API
layer) can branch on type instead of parsing messages.

    PayrollError
    +-- ValidationError              caller data malformed, field-level detail
    +-- NotFoundError
    +-- DomainStateError             preconditions not met, retryable
    |   +-- InvalidTransitionError
    |   +-- CalculationInProgressError
    |   +-- OutOfOrderError
    |   +-- AlreadyApprovedError
    |   +-- ImmutableRecordError
    +-- LineComputationError         isolated to one employee line
    |   +-- ContributionBracketNotFoundError
    |   +-- NegativeNetPayError
    +-- FatalRunError                aborts the whole calculation run
        +-- ContributionTableMissingError
        +-- LockBackendUnavailableError
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID


class PayrollError(Exception):
    """Base class for all payroll core errors."""

    code: str = "PAYROLL_ERROR"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": str(self)}


class ValidationError(PayrollError):
    """Caller-supplied data is malformed; nothing was changed."""

    code = "VALIDATION_ERROR"

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = dict(field_errors)
        summary = "; ".join(f"{name}: {msg}" for name, msg in sorted(self.field_errors.items()))
        super().__init__(f"Validation failed: {summary}")

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": str(self), "errors": self.field_errors}


class NotFoundError(PayrollError):
    """Referenced record does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class DomainStateError(PayrollError):
    """Operation not allowed in the current state of the record."""

    code = "DOMAIN_STATE_ERROR"


class InvalidTransitionError(DomainStateError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = str(getattr(from_status, "value", from_status))
        self.to_status = str(getattr(to_status, "value", to_status))
        self.reason = reason
        msg = f"Invalid transition from '{self.from_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CalculationInProgressError(DomainStateError):
    """Another calculation already holds the period's calculation lock."""

    code = "CALCULATION_IN_PROGRESS"

    def __init__(self, period_id: UUID, running_calculation_id: UUID | None = None):
        self.period_id = period_id
        self.running_calculation_id = running_calculation_id
        msg = f"A calculation is already running for period {period_id}"
        if running_calculation_id:
            msg += f" (calculation {running_calculation_id})"
        super().__init__(msg)


class OutOfOrderError(DomainStateError):
    """Workflow step acted on before its predecessor was approved."""

    code = "OUT_OF_ORDER"

    def __init__(self, step_number: int, blocking_step: int):
        self.step_number = step_number
        self.blocking_step = blocking_step
        super().__init__(
            f"Step {step_number} cannot be approved before step {blocking_step} is approved"
        )


class AlreadyApprovedError(DomainStateError):
    """Workflow step was approved already."""

    code = "ALREADY_APPROVED"

    def __init__(self, step_number: int):
        self.step_number = step_number
        super().__init__(f"Step {step_number} is already approved")


class ImmutableRecordError(DomainStateError):
    """Record (or its owning period) is locked or applied and cannot change."""

    code = "IMMUTABLE_RECORD"

    def __init__(self, entity: str, entity_id: Any, reason: str):
        self.entity = entity
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity} {entity_id} is immutable: {reason}")


class LineComputationError(PayrollError):
    """Failure computing one employee line; recorded, never propagated."""

    code = "LINE_COMPUTATION_ERROR"


class ContributionBracketNotFoundError(LineComputationError):
    """No contribution band matches the compensation and category."""

    code = "CONTRIBUTION_BRACKET_NOT_FOUND"

    def __init__(self, contribution: str, amount: Decimal, category: str):
        self.contribution = contribution
        self.amount = amount
        self.category = category
        super().__init__(
            f"No {contribution} contribution bracket for compensation {amount} "
            f"(category '{category}')"
        )


class NegativeNetPayError(LineComputationError):
    """Deductions exceed gross pay."""

    code = "NEGATIVE_NET_PAY"

    def __init__(self, net_pay: Decimal):
        self.net_pay = net_pay
        super().__init__(f"NegativeNetPay: computed net pay {net_pay} is below zero")


class FatalRunError(PayrollError):
    """Failure that invalidates the whole calculation run."""

    code = "FATAL_RUN_ERROR"


class ContributionTableMissingError(FatalRunError):
    """No contribution/tax table version applies to the run."""

    code = "CONTRIBUTION_TABLE_MISSING"

    def __init__(self, table: str, as_of: date | None = None):
        self.table = table
        self.as_of = as_of
        msg = f"Contribution table '{table}' is not configured"
        if as_of is not None:
            msg += f" for {as_of}"
        super().__init__(msg)


class LockBackendUnavailableError(FatalRunError):
    """The calculation lock could not be read or written."""

    code = "LOCK_BACKEND_UNAVAILABLE"
