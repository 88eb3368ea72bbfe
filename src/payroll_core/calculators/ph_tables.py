"""Bundled Philippine statutory tables.

Contribution schedules are monthly. SSS follows the 2025 schedule (5%
employee, 10% employer of the monthly salary credit, credits 5,000 to
35,000 in 500 steps). PhilHealth is 5% of basic split evenly, floored at a
10,000 base and capped at 5,000 total. Pag-IBIG is 1% (2% above 1,500)
employee and 2% employer, each capped at 100. Withholding follows the
graduated BIR tables per pay frequency.
"""

from __future__ import annotations

from typing import Any

SSS_CATEGORIES = ["regular", "probationary", "contractual", "part_time"]


def _sss_bands() -> list[dict[str, Any]]:
    bands: list[dict[str, Any]] = [
        {
            "min": 0,
            "max": 5250,
            "basis": 5000,
            "employee_rate": "0.05",
            "employer_rate": "0.10",
            "categories": SSS_CATEGORIES,
        }
    ]
    lower = 5250
    credit = 5500
    while credit < 35000:
        bands.append(
            {
                "min": lower,
                "max": lower + 500,
                "basis": credit,
                "employee_rate": "0.05",
                "employer_rate": "0.10",
                "categories": SSS_CATEGORIES,
            }
        )
        lower += 500
        credit += 500
    bands.append(
        {
            "min": lower,
            "max": None,
            "basis": 35000,
            "employee_rate": "0.05",
            "employer_rate": "0.10",
            "categories": SSS_CATEGORIES,
        }
    )
    return bands


PH_2025: dict[str, Any] = {
    "version": "PH-2025.1",
    "effective_from": "2025-01-01",
    "contributions": {
        "sss": {
            "frequency": "monthly",
            "employee_max": 1750,
            "employer_max": 3500,
            "bands": _sss_bands(),
        },
        "philhealth": {
            "frequency": "monthly",
            "employee_max": 2500,
            "employer_max": 2500,
            "bands": [
                {"min": 0, "max": 10000, "employee_fixed": 250, "employer_fixed": 250},
                {"min": 10000, "max": None, "employee_rate": "0.025", "employer_rate": "0.025"},
            ],
        },
        "pagibig": {
            "frequency": "monthly",
            "employee_max": 100,
            "employer_max": 100,
            "bands": [
                {"min": 0, "max": 1500, "employee_rate": "0.01", "employer_rate": "0.02"},
                {"min": 1500, "max": None, "employee_rate": "0.02", "employer_rate": "0.02"},
            ],
        },
    },
    "withholding": {
        "weekly": {
            "deminimis_ceiling": 2500,
            "brackets": [
                {"min": 0, "max": 4808, "rate": 0, "flat": 0},
                {"min": 4808, "max": 7692, "rate": "0.15", "flat": 0},
                {"min": 7692, "max": 15385, "rate": "0.20", "flat": "432.60"},
                {"min": 15385, "max": 38462, "rate": "0.25", "flat": "1971.20"},
                {"min": 38462, "max": 153846, "rate": "0.30", "flat": "7740.45"},
                {"min": 153846, "max": None, "rate": "0.35", "flat": "42355.65"},
            ],
        },
        "bi_weekly": {
            "deminimis_ceiling": 5000,
            "brackets": [
                {"min": 0, "max": 9616, "rate": 0, "flat": 0},
                {"min": 9616, "max": 15384, "rate": "0.15", "flat": 0},
                {"min": 15384, "max": 30770, "rate": "0.20", "flat": "865.20"},
                {"min": 30770, "max": 76924, "rate": "0.25", "flat": "3942.40"},
                {"min": 76924, "max": 307692, "rate": "0.30", "flat": "15480.90"},
                {"min": 307692, "max": None, "rate": "0.35", "flat": "84711.30"},
            ],
        },
        "semi_monthly": {
            "deminimis_ceiling": 5000,
            "brackets": [
                {"min": 0, "max": 10417, "rate": 0, "flat": 0},
                {"min": 10417, "max": 16667, "rate": "0.15", "flat": 0},
                {"min": 16667, "max": 33333, "rate": "0.20", "flat": "937.50"},
                {"min": 33333, "max": 83333, "rate": "0.25", "flat": "4270.70"},
                {"min": 83333, "max": 333333, "rate": "0.30", "flat": "16770.70"},
                {"min": 333333, "max": None, "rate": "0.35", "flat": "91770.70"},
            ],
        },
        "monthly": {
            "deminimis_ceiling": 10000,
            "brackets": [
                {"min": 0, "max": 20833, "rate": 0, "flat": 0},
                {"min": 20833, "max": 33333, "rate": "0.15", "flat": 0},
                {"min": 33333, "max": 66667, "rate": "0.20", "flat": "1875.00"},
                {"min": 66667, "max": 166667, "rate": "0.25", "flat": "8541.80"},
                {"min": 166667, "max": 666667, "rate": "0.30", "flat": "33541.80"},
                {"min": 666667, "max": None, "rate": "0.35", "flat": "183541.80"},
            ],
        },
    },
}

DEFAULT_TABLES: list[dict[str, Any]] = [PH_2025]
