from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

from stockledger.application.container import build_container
from stockledger.config import LedgerSettings, get_app_paths
from stockledger.logging_config import setup_logging


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stockledger", description="Inventory ledger maintenance.")
    parser.add_argument("--db", type=Path, default=None, help="Database file (defaults to the app data dir).")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create or migrate the database.")
    sub.add_parser("health", help="Run integrity and stock consistency checks.")

    rec = sub.add_parser("reconcile", help="List products whose stock differs from their lots.")
    rec.add_argument("--repair", action="store_true", help="Rewrite aggregate stock from lot totals.")

    rep = sub.add_parser("export-report", help="Write the stock workbook.")
    rep.add_argument("path", type=Path)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parser().parse_args(argv)

    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)
    container = build_container(args.db or paths.db_path, settings=LedgerSettings.from_env())

    if args.command == "init":
        print(f"Database ready: {container.repo.db_path}")
        return 0

    if args.command == "health":
        report = container.operations.run_health_check()
        print(f"integrity={report.sqlite_integrity} size={report.db_size_bytes} drifted={report.drifted_products}")
        return 0 if report.healthy else 1

    if args.command == "reconcile":
        drift = container.inventory.reconcile()
        for d in drift:
            print(f"product={d.product_id} recorded={d.recorded} lots={d.actual}")
            if args.repair:
                container.inventory.repair_product_stock(d.product_id)
        if not drift:
            print("All products in sync.")
        return 0 if (not drift or args.repair) else 1

    container.reporting.export_stock_report_excel(str(args.path))
    print(f"Report written: {args.path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
