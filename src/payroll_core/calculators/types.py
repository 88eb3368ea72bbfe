"""Type definitions for the contribution and withholding tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

CENTS = Decimal("0.01")

# Pay periods per year, used to move amounts between pay frequencies
PERIODS_PER_YEAR = {"weekly": 52, "bi_weekly": 26, "semi_monthly": 24, "monthly": 12}


def _money(value: Any) -> Decimal:
    return Decimal(str(value))


def _optional_money(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def frequency_factor(period_type: str, frequency: str) -> Decimal:
    """How many ``period_type`` pay periods make up one ``frequency`` period."""
    period_type = str(getattr(period_type, "value", period_type))
    if period_type not in PERIODS_PER_YEAR or frequency not in PERIODS_PER_YEAR:
        raise ValueError(f"Unknown pay frequency: {period_type} or {frequency}")
    return Decimal(PERIODS_PER_YEAR[period_type]) / Decimal(PERIODS_PER_YEAR[frequency])


@dataclass(frozen=True)
class ContributionBand:
    """One compensation band of a statutory contribution schedule.

    A band covers ``min_amount <= compensation < max_amount`` (``max_amount``
    None = no upper limit). Each share is either a fixed amount or a rate
    applied to ``basis`` (the salary credit) when set, else to the
    compensation itself.
    """

    min_amount: Decimal
    max_amount: Decimal | None
    employee_rate: Decimal = Decimal("0")
    employer_rate: Decimal = Decimal("0")
    employee_fixed: Decimal | None = None
    employer_fixed: Decimal | None = None
    basis: Decimal | None = None
    categories: frozenset[str] | None = None  # None = every category

    def matches(self, amount: Decimal, category: str) -> bool:
        if amount < self.min_amount:
            return False
        if self.max_amount is not None and amount >= self.max_amount:
            return False
        return self.categories is None or category in self.categories

    def shares(self, amount: Decimal) -> tuple[Decimal, Decimal]:
        """Return (employee, employer) shares before caps."""
        base = self.basis if self.basis is not None else amount
        employee = (
            self.employee_fixed if self.employee_fixed is not None else base * self.employee_rate
        )
        employer = (
            self.employer_fixed if self.employer_fixed is not None else base * self.employer_rate
        )
        return employee, employer

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ContributionBand:
        categories = payload.get("categories")
        return cls(
            min_amount=_money(payload["min"]),
            max_amount=_optional_money(payload.get("max")),
            employee_rate=_money(payload.get("employee_rate", 0)),
            employer_rate=_money(payload.get("employer_rate", 0)),
            employee_fixed=_optional_money(payload.get("employee_fixed")),
            employer_fixed=_optional_money(payload.get("employer_fixed")),
            basis=_optional_money(payload.get("basis")),
            categories=frozenset(categories) if categories is not None else None,
        )


@dataclass(frozen=True)
class ContributionTable:
    """A statutory contribution schedule (SSS, PhilHealth, Pag-IBIG).

    Bands and caps are stated per ``frequency`` pay period (monthly for the
    bundled tables). Compensation for another pay frequency is scaled to the
    table frequency to pick the band, and the resulting shares and caps are
    prorated back, so the shares of all pay periods in a month add up to the
    monthly schedule.
    """

    name: str
    bands: tuple[ContributionBand, ...]
    employee_max: Decimal | None = None
    employer_max: Decimal | None = None
    frequency: str = "monthly"

    def __post_init__(self) -> None:
        if self.frequency not in PERIODS_PER_YEAR:
            raise ValueError(f"Unknown frequency for {self.name}: {self.frequency}")

    def find_band(self, amount: Decimal, category: str) -> ContributionBand | None:
        return next((b for b in self.bands if b.matches(amount, category)), None)

    def compute(
        self, amount: Decimal, category: str, period_type: str | None = None
    ) -> tuple[Decimal, Decimal] | None:
        """Return capped, cent-rounded (employee, employer) shares.

        ``amount`` is compensation for one ``period_type`` pay period
        (default: the table frequency). None when no band matches the
        compensation and category.
        """
        factor = frequency_factor(period_type or self.frequency, self.frequency)
        scaled = amount * factor
        band = self.find_band(scaled, category)
        if band is None:
            return None
        employee, employer = band.shares(scaled)
        if self.employee_max is not None:
            employee = min(employee, self.employee_max)
        if self.employer_max is not None:
            employer = min(employer, self.employer_max)
        employee, employer = employee / factor, employer / factor
        return (
            employee.quantize(CENTS, rounding=ROUND_HALF_UP),
            employer.quantize(CENTS, rounding=ROUND_HALF_UP),
        )

    @classmethod
    def from_payload(cls, name: str, payload: dict[str, Any]) -> ContributionTable:
        bands = tuple(
            sorted(
                (ContributionBand.from_payload(b) for b in payload.get("bands", [])),
                key=lambda b: b.min_amount,
            )
        )
        return cls(
            name=name,
            bands=bands,
            employee_max=_optional_money(payload.get("employee_max")),
            employer_max=_optional_money(payload.get("employer_max")),
            frequency=payload.get("frequency", "monthly"),
        )


@dataclass(frozen=True)
class TaxBracket:
    """Tax bracket for progressive withholding."""

    min_amount: Decimal
    max_amount: Decimal | None  # None = no upper limit
    rate: Decimal  # Applied to the excess over min_amount
    flat_amount: Decimal = Decimal("0")  # Tax due at bracket start


@dataclass(frozen=True)
class WithholdingTable:
    """Withholding tax schedule for one pay frequency."""

    period_type: str
    brackets: tuple[TaxBracket, ...] = field(default_factory=tuple)
    deminimis_ceiling: Decimal = Decimal("0")

    @classmethod
    def from_payload(cls, period_type: str, payload: dict[str, Any]) -> WithholdingTable:
        brackets = []
        for b in payload.get("brackets", []):
            brackets.append(
                TaxBracket(
                    min_amount=_money(b["min"]),
                    max_amount=_optional_money(b.get("max")),
                    rate=_money(b["rate"]),
                    flat_amount=_money(b.get("flat", 0)),
                )
            )
        return cls(
            period_type=period_type,
            brackets=tuple(sorted(brackets, key=lambda b: b.min_amount)),
            deminimis_ceiling=_money(payload.get("deminimis_ceiling", 0)),
        )
