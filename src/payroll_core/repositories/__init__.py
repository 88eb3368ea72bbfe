"""Payroll state storage."""

from payroll_core.repositories.base import PayrollRepository
from payroll_core.repositories.memory import InMemoryPayrollRepository
from payroll_core.repositories.sql import SqlPayrollRepository

__all__ = [
    "InMemoryPayrollRepository",
    "PayrollRepository",
    "SqlPayrollRepository",
]
