"""Employee directory boundary.

The directory itself (employee master data, salary setup) lives outside
this package; calculations only need per-period compensation inputs.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol
from uuid import UUID

from payroll_core.records import EmployeePayInput, PayrollPeriod

logger = logging.getLogger(__name__)

MONEY_KEYS = ("basic_salary", "overtime_pay", "allowances", "deminimis")
DATE_KEYS = ("hire_date", "termination_date")


class EmployeeSource(Protocol):
    """Supplies compensation inputs for the employees in a period."""

    async def list_employees(self, period: PayrollPeriod) -> list[EmployeePayInput]:
        """Employees employed at any point during the period, in stable order."""
        ...

    async def get_employee(self, employee_id: UUID) -> EmployeePayInput | None: ...


class StaticEmployeeSource:
    """Employee source over a fixed set of inputs."""

    def __init__(self, employees: Iterable[EmployeePayInput] = ()):
        self._employees: dict[UUID, EmployeePayInput] = {}
        for employee in employees:
            self.put(employee)

    def put(self, employee: EmployeePayInput) -> None:
        """Add or replace an employee's inputs."""
        self._employees[employee.employee_id] = employee

    async def list_employees(self, period: PayrollPeriod) -> list[EmployeePayInput]:
        employed = [
            e
            for e in self._employees.values()
            if (e.hire_date is None or e.hire_date <= period.end_date)
            and (e.termination_date is None or e.termination_date >= period.start_date)
        ]
        return sorted(employed, key=lambda e: (e.employee_number or "", str(e.employee_id)))

    async def get_employee(self, employee_id: UUID) -> EmployeePayInput | None:
        return self._employees.get(employee_id)

    @staticmethod
    def parse_employee(payload: dict[str, Any]) -> EmployeePayInput:
        """Build pay inputs from a JSON object (money as strings, ISO dates)."""
        values = dict(payload)
        values["employee_id"] = UUID(str(values["employee_id"]))
        for key in MONEY_KEYS:
            if values.get(key) is not None:
                values[key] = Decimal(str(values[key]))
        for key in DATE_KEYS:
            if values.get(key):
                values[key] = date.fromisoformat(values[key])
        return EmployeePayInput(**values)

    def load_file(self, path: str | Path) -> int:
        """Add the employees stored in a JSON list; returns how many were read."""
        payloads = json.loads(Path(path).read_text(encoding="utf-8"))
        for payload in payloads:
            self.put(self.parse_employee(payload))
        logger.info("Loaded %d employees from %s", len(payloads), path)
        return len(payloads)
