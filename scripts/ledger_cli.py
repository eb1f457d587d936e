#!/usr/bin/env python3
"""
Ledger maintenance CLI.

Usage:
    python scripts/ledger_cli.py [--config-dir DIR] [--set NAME] [--database-url URL] verify
    python scripts/ledger_cli.py ... rebuild
    python scripts/ledger_cli.py ... summary [--department D002] [--hospital H001]

Commands:
    verify   Replay the persisted log from empty state and compare it with
             the persisted stock table.  Exit code 1 on any mismatch.
    rebuild  Replay the log and rewrite the stock table where it disagrees.
    summary  Print the dashboard tiles as JSON.

``--database-url`` overrides the configuration set's ``database_url``;
verify and rebuild read the database directly, without loading the ledger
(loading repairs the stock table), so they need a durable database.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict, replace
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from inventory_config import get_active_settings, get_reference_data
from inventory_kernel.db.repository import SqlLedgerRepository
from inventory_kernel.exceptions import InventoryKernelError
from inventory_kernel.logging_config import configure_logging
from inventory_kernel.services.recovery import RecoveryService
from inventory_services import InventoryLedgerService


def _report_dict(report) -> dict:
    return {
        "consistent": report.consistent,
        "repaired": report.repaired,
        "transaction_count": report.transaction_count,
        "record_count": report.record_count,
        "last_seq": report.last_seq,
        "mismatches": [
            {
                "key": str(m.key),
                "persisted": None if m.persisted is None else {
                    "quantity": m.persisted.quantity, "reserved": m.persisted.reserved,
                },
                "replayed": None if m.replayed is None else {
                    "quantity": m.replayed.quantity, "reserved": m.replayed.reserved,
                },
            }
            for m in report.mismatches
        ],
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Verify, rebuild or summarize an inventory ledger.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Configuration sets directory (default: inventory_config/sets)",
    )
    parser.add_argument("--set", dest="set_name", default="default", help="Configuration set name")
    parser.add_argument("--database-url", default=None, help="Override the set's database_url")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("verify", help="Replay the log and compare with the stock table")
    commands.add_parser("rebuild", help="Replay the log and rewrite the stock table")
    summary = commands.add_parser("summary", help="Print dashboard tiles as JSON")
    summary.add_argument("--department", default=None)
    summary.add_argument("--hospital", default=None)
    return parser


def _recover(settings, rebuild: bool) -> int:
    """Check the persisted tables as found, before any ledger load repairs them."""
    if not settings.database_url:
        print("ERROR: verify and rebuild need a database_url", file=sys.stderr)
        return 2
    repository = SqlLedgerRepository.from_url(settings.database_url)
    try:
        recovery = RecoveryService(repository)
        report = recovery.rebuild() if rebuild else recovery.verify()
    finally:
        repository.close()
    print(json.dumps(_report_dict(report), indent=2))
    return 0 if report.consistent or report.repaired else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_active_settings(args.config_dir, args.set_name)
    if args.database_url:
        settings = replace(settings, database_url=args.database_url)
    configure_logging(level=settings.log_level)

    try:
        if args.command in ("verify", "rebuild"):
            return _recover(settings, rebuild=args.command == "rebuild")
        reference = get_reference_data(args.config_dir, args.set_name)
        with InventoryLedgerService(settings=settings, reference=reference) as ledger:
            summary = ledger.dashboard_summary(args.department, args.hospital)
        print(json.dumps(asdict(summary), indent=2))
        return 0
    except InventoryKernelError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
