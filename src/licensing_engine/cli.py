"""Licensing engine command line interface.

Operational tools for:
- Payment status lookups
- Re-running the license trigger after a partial failure
- Group count reporting

Usage:
    python -m licensing_engine.cli payment-status --applicant-id 42
    python -m licensing_engine.cli reissue-license --applicant-id 42
    python -m licensing_engine.cli group-counts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from contextlib import AbstractAsyncContextManager
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from licensing_engine.config import get_settings
from licensing_engine.database import get_session
from licensing_engine.errors import LicensingError
from licensing_engine.services import build_services

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _json_default(value: Any) -> str:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


class LicensingCli:
    """Licensing engine command line interface."""

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self.parser = self._build_parser()
        self.session_factory = session_factory or get_session

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m licensing_engine.cli",
            description="Licensing engine operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        status = subparsers.add_parser(
            "payment-status",
            help="Show the derived payment status of an applicant",
        )
        status.add_argument("--applicant-id", type=int, required=True, help="Applicant ID")

        reissue = subparsers.add_parser(
            "reissue-license",
            help="Re-run the license trigger for an applicant",
        )
        reissue.add_argument("--applicant-id", type=int, required=True, help="Applicant ID")
        reissue.add_argument("--actor", type=str, help="Username recorded on the license")

        subparsers.add_parser(
            "group-counts",
            help="Print applicant counts per review group",
        )
        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        return asyncio.run(self.run_async(args))

    async def run_async(self, args: list[str] | None = None) -> int:
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[..., Awaitable[int]]] = {
            "payment-status": self._cmd_payment_status,
            "reissue-license": self._cmd_reissue_license,
            "group-counts": self._cmd_group_counts,
        }
        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            async with self.session_factory() as session:
                return await handler(session, parsed)
        except LicensingError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 2

    async def _cmd_payment_status(self, session: AsyncSession, args: argparse.Namespace) -> int:
        services = build_services(session, subscribe_alerts=False)
        result = await services.payments.get_payment_status(args.applicant_id)
        print(json.dumps(result.to_dict(), default=_json_default, indent=2))
        return 0

    async def _cmd_reissue_license(self, session: AsyncSession, args: argparse.Namespace) -> int:
        services = build_services(session, subscribe_alerts=False)
        license_ = await services.licenses.create_or_update_license(args.applicant_id, args.actor)
        if license_ is None:
            print(
                f"Applicant {args.applicant_id} is not in 'Download License'; nothing issued",
                file=sys.stderr,
            )
            return 1
        await session.commit()
        print(f"License {license_.license_number or '<untracked>'} issued for applicant {args.applicant_id}")
        return 0

    async def _cmd_group_counts(self, session: AsyncSession, args: argparse.Namespace) -> int:
        services = build_services(session, subscribe_alerts=False)
        counts = await services.workflow.group_counts()
        for group, count in counts.items():
            print(f"{group:<20} {count:>6}")
        return 0


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(level=get_settings().log_level)
    cli = LicensingCli()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
