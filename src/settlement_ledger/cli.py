"""Settlement ledger command line interface.

Provides operational tools for:
- Reconciling pending gateway payments
- Auditing wallet balances against their histories
- Commission summaries
- Wallet balance queries
- Serving the HTTP API

Usage:
    settlement-ledger reconcile --older-than-minutes 10
    settlement-ledger audit-wallets
    settlement-ledger summary --since 2024-01-01T00:00:00+00:00 --json
    settlement-ledger balance --driver-id drv-1
    settlement-ledger serve
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Callable
from datetime import datetime, timedelta

from settlement_ledger.__main__ import main as serve_api
from settlement_ledger.config import get_settings
from settlement_ledger.errors import LedgerError
from settlement_ledger.ledger import SettlementLedger


def parse_datetime(s: str) -> datetime:
    """Parse ISO datetime string."""
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


class LedgerCli:
    """Settlement ledger command line interface."""

    def __init__(self, ledger_factory: Callable[[], SettlementLedger] | None = None) -> None:
        self.parser = self._build_parser()
        self._ledger_factory = ledger_factory or (
            lambda: SettlementLedger.from_settings(get_settings())
        )

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="settlement-ledger",
            description="Settlement ledger operational tools",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            default=None,
            help="Logging level (default: LOG_LEVEL from the environment)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # reconcile command
        reconcile = subparsers.add_parser(
            "reconcile",
            help="Settle pending digital payments from the gateway's records",
        )
        reconcile.add_argument(
            "--older-than-minutes",
            type=int,
            default=0,
            help="Skip payments younger than this (default: 0)",
        )
        reconcile.add_argument("--json", action="store_true", help="Print JSON output")

        # audit-wallets command
        audit = subparsers.add_parser(
            "audit-wallets",
            help="Compare wallet balances with their replayed histories",
        )
        audit.add_argument("--driver-id", type=str, help="Audit a single wallet")

        # summary command
        summary = subparsers.add_parser(
            "summary",
            help="Commission totals for completed trips",
        )
        summary.add_argument(
            "--since",
            type=parse_datetime,
            help="Include trips completed at or after this timestamp (ISO format)",
        )
        summary.add_argument(
            "--until",
            type=parse_datetime,
            help="Include trips completed before this timestamp (ISO format)",
        )
        summary.add_argument("--json", action="store_true", help="Print JSON output")

        # balance command
        balance = subparsers.add_parser(
            "balance",
            help="Show a driver's wallet balance and cash eligibility",
        )
        balance.add_argument("--driver-id", type=str, required=True, help="Driver ID")

        # serve command
        subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        logging.basicConfig(
            level=(parsed.log_level or get_settings().log_level).upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "reconcile": self._cmd_reconcile,
            "audit-wallets": self._cmd_audit_wallets,
            "summary": self._cmd_summary,
            "balance": self._cmd_balance,
            "serve": self._cmd_serve,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1
        try:
            return handler(parsed)
        except LedgerError as exc:
            print(f"Error ({exc.code}): {exc}", file=sys.stderr)
            return 2

    def _cmd_reconcile(self, args: argparse.Namespace) -> int:
        """Reconcile pending payments."""
        ledger = self._ledger_factory()
        result = ledger.reconcile(timedelta(minutes=args.older_than_minutes))

        if args.json:
            print(
                json.dumps(
                    {
                        "started_at": result.started_at.isoformat(),
                        "payments_checked": result.payments_checked,
                        "payments_completed": result.payments_completed,
                        "payments_failed": result.payments_failed,
                        "recharges_expired": result.recharges_expired,
                        "still_pending": result.still_pending,
                        "errors": result.errors,
                    },
                    indent=2,
                )
            )
        else:
            print("Reconciliation")
            print("=" * 40)
            print(f"  Checked:   {result.payments_checked}")
            print(f"  Completed: {result.payments_completed}")
            print(f"  Failed:    {result.payments_failed}")
            print(f"  Expired:   {result.recharges_expired}")
            print(f"  Pending:   {result.still_pending}")
            for error in result.errors:
                print(f"  ! {error['reference']}: {error['code']} {error['message']}")

        return 0 if result.success else 1

    def _cmd_audit_wallets(self, args: argparse.Namespace) -> int:
        """Audit wallet balances."""
        ledger = self._ledger_factory()
        if args.driver_id:
            audits = [ledger.verify_wallet(args.driver_id)]
        else:
            audits = ledger.verify_all_wallets()

        drifted = [a for a in audits if not a.consistent]
        for audit in audits:
            mark = "OK" if audit.consistent else "DRIFT"
            print(
                f"{mark:>5}  {audit.driver_id}  balance={audit.balance}  "
                f"replayed={audit.replayed}  drift={audit.drift}"
            )
        print(f"\n{len(audits)} wallets audited, {len(drifted)} inconsistent")
        return 1 if drifted else 0

    def _cmd_summary(self, args: argparse.Namespace) -> int:
        """Print commission totals."""
        ledger = self._ledger_factory()
        summary = ledger.commission_summary(args.since, args.until)

        if args.json:
            print(json.dumps(summary.to_dict(), indent=2))
            return 0

        print("Commission Summary")
        print("=" * 40)
        print(f"  Trips:        {summary.trips}")
        print(f"  Gross:        {summary.gross_total:>15,}")
        print(f"  Commission:   {summary.commission_total:>15,}")
        print(f"  Collected:    {summary.collected:>15,}")
        print(f"  Average rate: {summary.average_rate}")
        for method, amount in sorted(summary.by_method.items()):
            print(f"    {method:<14}{amount:>15,}")
        return 0

    def _cmd_balance(self, args: argparse.Namespace) -> int:
        """Show a wallet balance."""
        ledger = self._ledger_factory()
        wallet = ledger.get_wallet(args.driver_id)
        decision = ledger.can_accept_cash(args.driver_id)

        print(f"Wallet for driver: {wallet.driver_id}")
        print(f"  Balance:         {wallet.balance:>12,} {wallet.currency}")
        print(f"  Minimum:         {wallet.minimum_balance:>12,}")
        print(f"  Recharge active: {wallet.recharge_active}")
        print(f"  Accepts cash:    {decision.allowed} ({decision.reason})")
        return 0

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        """Run the API server."""
        serve_api()
        return 0


def main() -> int:
    """CLI entry point."""
    cli = LedgerCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
