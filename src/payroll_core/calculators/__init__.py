"""Payroll calculators: statutory tables, withholding tax and the line engine."""

from payroll_core.calculators.contribution_tables import (
    ContributionTableRegistry,
    ContributionTables,
)
from payroll_core.calculators.engine import CalculationEngine
from payroll_core.calculators.line_builder import CalculationTotals, LineBuilder
from payroll_core.calculators.tax_calculator import WithholdingTaxCalculator
from payroll_core.calculators.types import (
    ContributionBand,
    ContributionTable,
    TaxBracket,
    WithholdingTable,
)

__all__ = [
    "CalculationEngine",
    "CalculationTotals",
    "ContributionBand",
    "ContributionTable",
    "ContributionTableRegistry",
    "ContributionTables",
    "LineBuilder",
    "TaxBracket",
    "WithholdingTable",
    "WithholdingTaxCalculator",
]
