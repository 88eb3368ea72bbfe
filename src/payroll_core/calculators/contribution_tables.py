"""Versioned statutory contribution and withholding tables.

A table version is a JSON payload effective from a date:
{
    "version": "PH-2025.1",
    "effective_from": "2025-01-01",
    "contributions": {
        "sss": {"frequency": "monthly", "employee_max": 1750, "bands": [...]},
        "philhealth": {...},
        "pagibig": {...}
    },
    "withholding": {
        "monthly": {"deminimis_ceiling": 10000, "brackets": [...]},
        "semi_monthly": {...}
    }
}

Versions are immutable once loaded; a calculation run resolves one version
by the period end date and uses it for every line.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from payroll_core.calculators.ph_tables import DEFAULT_TABLES
from payroll_core.calculators.types import ContributionTable, WithholdingTable
from payroll_core.errors import ContributionTableMissingError

logger = logging.getLogger(__name__)

CONTRIBUTIONS = ("sss", "philhealth", "pagibig")


@dataclass(frozen=True)
class ContributionTables:
    """One effective version of every statutory table."""

    version: str
    effective_from: date
    sss: ContributionTable
    philhealth: ContributionTable
    pagibig: ContributionTable
    withholding: Mapping[str, WithholdingTable]

    def withholding_for(self, period_type: str) -> WithholdingTable:
        """Withholding schedule for a pay frequency.

        Raises:
            ContributionTableMissingError: No schedule for this frequency.
        """
        key = str(getattr(period_type, "value", period_type))
        table = self.withholding.get(key)
        if table is None:
            raise ContributionTableMissingError(f"withholding:{key}", self.effective_from)
        return table

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ContributionTables:
        contributions = payload.get("contributions", {})
        for name in CONTRIBUTIONS:
            if name not in contributions:
                raise ContributionTableMissingError(name)
        return cls(
            version=str(payload["version"]),
            effective_from=date.fromisoformat(payload["effective_from"]),
            sss=ContributionTable.from_payload("sss", contributions["sss"]),
            philhealth=ContributionTable.from_payload("philhealth", contributions["philhealth"]),
            pagibig=ContributionTable.from_payload("pagibig", contributions["pagibig"]),
            withholding={
                period_type: WithholdingTable.from_payload(period_type, table)
                for period_type, table in payload.get("withholding", {}).items()
            },
        )


class ContributionTableRegistry:
    """Resolves the table version effective on a date."""

    def __init__(self, versions: Iterable[ContributionTables] = ()):
        self._versions: list[ContributionTables] = sorted(
            versions, key=lambda t: t.effective_from
        )

    @property
    def versions(self) -> list[ContributionTables]:
        return list(self._versions)

    def register(self, tables: ContributionTables) -> None:
        if any(t.version == tables.version for t in self._versions):
            raise ValueError(f"Table version {tables.version} already registered")
        self._versions.append(tables)
        self._versions.sort(key=lambda t: t.effective_from)

    def resolve(self, as_of: date) -> ContributionTables:
        """Latest version effective on ``as_of``.

        Raises:
            ContributionTableMissingError: No version is effective yet.
        """
        match = None
        for tables in self._versions:
            if tables.effective_from > as_of:
                break
            match = tables
        if match is None:
            raise ContributionTableMissingError("contribution_tables", as_of)
        return match

    @classmethod
    def from_payloads(cls, payloads: Iterable[dict[str, Any]]) -> ContributionTableRegistry:
        return cls(ContributionTables.from_payload(p) for p in payloads)

    def load_file(self, path: str | Path) -> None:
        """Register the version(s) stored in a JSON file (object or list)."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        payloads = data if isinstance(data, list) else [data]
        for payload in payloads:
            tables = ContributionTables.from_payload(payload)
            self.register(tables)
            logger.info(
                "Loaded contribution tables %s effective %s from %s",
                tables.version,
                tables.effective_from,
                path,
            )

    @classmethod
    def default(cls, extra_path: str | Path | None = None) -> ContributionTableRegistry:
        """Bundled tables plus an optional file of additional versions."""
        registry = cls.from_payloads(DEFAULT_TABLES)
        if extra_path:
            registry.load_file(extra_path)
        return registry
