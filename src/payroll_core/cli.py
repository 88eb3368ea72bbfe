"""Payroll core command line interface.

Provides operational tools for:
- Contribution table inspection
- Schema creation
- Stalled calculation sweeps
- Payslip export
- Single-line previews against the bundled tables

Usage:
    python -m payroll_core.cli tables --as-of 2025-11-15
    python -m payroll_core.cli init-db
    python -m payroll_core.cli reap-stalled
    python -m payroll_core.cli export-payslips --period-id X --output payslips.jsonl
    python -m payroll_core.cli preview-line --basic-salary 25000 --period-type semi_monthly \
        --start 2025-11-01 --end 2025-11-15
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from payroll_core.calculators import CalculationEngine, ContributionTableRegistry
from payroll_core.config import Settings, get_settings
from payroll_core.errors import PayrollError
from payroll_core.records import EmployeePayInput, PayrollPeriod

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


class PayrollCli:
    """Payroll core command line interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self.parser = self._build_parser()

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="payroll-core",
            description="Payroll core operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        tables = subparsers.add_parser("tables", help="List contribution table versions")
        tables.add_argument(
            "--as-of", type=parse_date, help="Show the version effective on this date"
        )
        tables.add_argument("--file", help="Extra JSON table file to load")

        init_db = subparsers.add_parser("init-db", help="Create missing database tables")
        init_db.add_argument("--database-url", help="Overrides DATABASE_URL")

        reap = subparsers.add_parser("reap-stalled", help="Time out calculations with no heartbeat")
        reap.add_argument("--database-url", help="Overrides DATABASE_URL")

        export = subparsers.add_parser("export-payslips", help="Export payslips of a period")
        export.add_argument("--period-id", type=parse_uuid, required=True)
        export.add_argument("--output", help="JSON Lines file (default: stdout)")
        export.add_argument("--database-url", help="Overrides DATABASE_URL")

        preview = subparsers.add_parser(
            "preview-line", help="Compute one employee line without storing anything"
        )
        preview.add_argument("--basic-salary", type=Decimal, required=True)
        preview.add_argument("--overtime-pay", type=Decimal, default=Decimal("0"))
        preview.add_argument("--allowances", type=Decimal, default=Decimal("0"))
        preview.add_argument("--deminimis", type=Decimal, default=Decimal("0"))
        preview.add_argument("--category", default="regular")
        preview.add_argument("--period-type", default="semi_monthly")
        preview.add_argument("--start", type=parse_date, required=True)
        preview.add_argument("--end", type=parse_date, required=True)

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "tables": self._cmd_tables,
            "init-db": self._cmd_init_db,
            "reap-stalled": self._cmd_reap_stalled,
            "export-payslips": self._cmd_export_payslips,
            "preview-line": self._cmd_preview_line,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1
        try:
            return handler(parsed)
        except PayrollError as e:
            print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
            return 2

    def _registry(self, extra_path: str | None = None) -> ContributionTableRegistry:
        path = extra_path or self.settings.contribution_tables_path
        return ContributionTableRegistry.default(path)

    def _cmd_tables(self, args: argparse.Namespace) -> int:
        """List table versions, or the one effective on --as-of."""
        registry = self._registry(args.file)
        if args.as_of:
            tables = registry.resolve(args.as_of)
            print(f"{tables.version} (effective {tables.effective_from.isoformat()})")
            for period_type in sorted(tables.withholding):
                print(f"  withholding: {period_type}")
            return 0

        print("Contribution Tables")
        print("=" * 40)
        for tables in registry.versions:
            print(f"  {tables.version:<16} effective {tables.effective_from.isoformat()}")
        return 0

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        from payroll_core.database import create_all, dispose_db, init_db

        async def _init() -> None:
            engine, _ = init_db(args.database_url or self.settings.database_url)
            try:
                await create_all(engine)
            finally:
                await dispose_db()

        asyncio.run(_init())
        print("Database tables created.")
        return 0

    def _cmd_reap_stalled(self, args: argparse.Namespace) -> int:
        async def _reap() -> list[UUID]:
            service = await self._sql_service(args.database_url)
            try:
                return await service.reap_stalled()
            finally:
                await self._dispose()

        reaped = asyncio.run(_reap())
        print(f"Timed out {len(reaped)} calculation(s)")
        for calculation_id in reaped:
            print(f"  - {calculation_id}")
        return 0

    def _cmd_export_payslips(self, args: argparse.Namespace) -> int:
        async def _export():
            service = await self._sql_service(args.database_url)
            try:
                return await service.export_payslips(args.period_id)
            finally:
                await self._dispose()

        payslips = asyncio.run(_export())
        lines = [json.dumps(p.to_dict(), sort_keys=True) for p in payslips]
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.writelines(line + "\n" for line in lines)
            print(f"Exported {len(lines)} payslips to {args.output}")
        else:
            for line in lines:
                print(line)
        return 0

    def _cmd_preview_line(self, args: argparse.Namespace) -> int:
        period = PayrollPeriod(
            period_type=args.period_type,
            start_date=args.start,
            end_date=args.end,
            cutoff_date=args.end,
            pay_date=args.end,
        )
        employee = EmployeePayInput(
            employee_id=uuid4(),
            basic_salary=args.basic_salary,
            category=args.category,
            overtime_pay=args.overtime_pay,
            allowances=args.allowances,
            deminimis=args.deminimis,
        )
        tables = self._registry().resolve(period.end_date)
        line = CalculationEngine(self.settings.engine_version).compute(employee, period, [], tables)

        print(f"Tables: {tables.version}")
        for name in (
            "gross_pay",
            "sss_contribution",
            "philhealth_contribution",
            "pagibig_contribution",
            "taxable_income",
            "withholding_tax",
            "total_deductions",
            "net_pay",
        ):
            print(f"  {name:<24} {getattr(line, name):>14,.2f}")
        if not line.succeeded:
            print(f"  FAILED: {line.error_message}")
            return 1
        return 0

    async def _sql_service(self, database_url: str | None):
        from payroll_core.database import init_db
        from payroll_core.payroll import PayrollService
        from payroll_core.repositories import SqlPayrollRepository
        from payroll_core.services import StaticEmployeeSource

        _, session_factory = init_db(database_url or self.settings.database_url)
        employees = StaticEmployeeSource()
        if self.settings.employees_path:
            employees.load_file(self.settings.employees_path)
        return PayrollService.from_settings(
            self.settings, SqlPayrollRepository(session_factory), employees
        )

    async def _dispose(self) -> None:
        from payroll_core.database import dispose_db

        await dispose_db()


def main() -> None:
    """Entry point."""
    logging.basicConfig(level=get_settings().log_level)
    sys.exit(PayrollCli().run())


if __name__ == "__main__":
    main()
