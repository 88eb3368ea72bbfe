"""Payroll period lifecycle, calculation and approval engine."""

__version__ = "0.1.0"
