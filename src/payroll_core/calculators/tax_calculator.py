"""Withholding tax calculation from bracket tables."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from payroll_core.calculators.types import TaxBracket, WithholdingTable


class WithholdingTaxCalculator:
    """Calculates withholding tax using per-frequency bracket tables.

    Tables use the graduated withholding layout where each bracket states
    the tax due at its lower bound plus a rate on the excess:
    {
        "deminimis_ceiling": 10000,
        "brackets": [
            {"min": 0, "max": 20833, "rate": 0, "flat": 0},
            {"min": 20833, "max": 33333, "rate": 0.15, "flat": 0},
            {"min": 33333, "max": 66667, "rate": 0.20, "flat": 1875},
            ...
        ]
    }
    """

    @staticmethod
    def find_bracket(table: WithholdingTable, taxable: Decimal) -> TaxBracket | None:
        """Highest bracket whose lower bound is at or below the taxable amount."""
        match = None
        for bracket in table.brackets:
            if bracket.min_amount > taxable:
                break
            match = bracket
        return match

    @classmethod
    def calculate(cls, table: WithholdingTable, taxable: Decimal) -> Decimal:
        """Calculate withholding on taxable income for one period."""
        if taxable <= 0:
            return Decimal("0.00")

        bracket = cls.find_bracket(table, taxable)
        if bracket is None:
            return Decimal("0.00")

        tax = bracket.flat_amount + (taxable - bracket.min_amount) * bracket.rate
        return tax.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @staticmethod
    def exempt_deminimis(table: WithholdingTable, deminimis: Decimal) -> Decimal:
        """Portion of de minimis benefits excluded from taxable income."""
        if deminimis <= 0:
            return Decimal("0.00")
        return min(deminimis, table.deminimis_ceiling)
