#!/usr/bin/env python3
"""
View batch stock from the database.

Without a material id, lists the materials that have batches.  With one,
prints the material's totals, the per-key summary and its active batches,
and optionally its batch history and stock transactions.

Usage:
    python3 scripts/stock_report.py
    python3 scripts/stock_report.py AL-2040
    python3 scripts/stock_report.py AL-2040 --length 12 --length-unit ft --gauge 1.2
    python3 scripts/stock_report.py AL-2040 --history --transactions
    python3 scripts/stock_report.py AL-2040 --db-url sqlite:///other.db --json
"""

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

W = 96


def _print_report(report: dict, currency: str) -> None:
    totals = report["aggregatedTotals"]
    print()
    print("=" * W)
    print(f"STOCK REPORT  {report['materialId']}".center(W))
    print("=" * W)
    print(f"  Current stock     {totals['totalCurrentStock']} pcs")
    print(f"  Current weight    {totals['totalCurrentWeight']}")
    print(f"  Current value     {currency} {totals['totalCurrentValue']}")
    print(f"  Avg rate/piece    {currency} {totals['averageRatePerPiece']}")
    print(f"  Avg rate/kg       {currency} {totals['averageRatePerKg']}")
    print(f"  Active batches    {totals['activeBatchCount']}")
    print()

    if report["summaryByKey"]:
        print(f"  {'Length':<14} {'Gauge':<10} {'Batches':>8} {'Stock':>8} {'Weight':>14} {'Value':>16}")
        print(f"  {'-' * 14} {'-' * 10} {'-' * 8} {'-' * 8} {'-' * 14} {'-' * 16}")
        for row in report["summaryByKey"]:
            length = f"{row['length']} {row['lengthUnit']}" if row["length"] else "-"
            print(
                f"  {length:<14} {row['gauge'] or '-':<10} {row['batchCount']:>8} "
                f"{row['totalStock']:>8} {row['totalWeight']:>14} {row['totalValue']:>16}"
            )
        print()

    _print_batches("ACTIVE BATCHES", report["activeBatches"])


def _print_batches(title: str, batches: list[dict]) -> None:
    print(f"  {title}")
    if not batches:
        print("  (none)")
        print()
        return
    print(f"  {'Batch':<22} {'Received':<20} {'Qty':>9} {'Weight':>12} {'Rate/pc':>12} {'Status':<9} Supplier")
    print(f"  {'-' * 22} {'-' * 20} {'-' * 9} {'-' * 12} {'-' * 12} {'-' * 9} {'-' * 8}")
    for b in batches:
        qty = f"{b['currentQuantity']}/{b['originalQuantity']}"
        print(
            f"  {b['batchId']:<22} {b['receivedAt'][:19]:<20} {qty:>9} "
            f"{b['currentWeight']:>12} {b['ratePerPiece']:>12} {b['status']:<9} {b['supplier'] or ''}"
        )
    print()


def _print_transactions(transactions: list[dict]) -> None:
    print("  STOCK TRANSACTIONS")
    if not transactions:
        print("  (none)")
        print()
        return
    for t in transactions:
        kind = t["transactionType"]
        if t["consumptionType"]:
            kind = f"{kind}/{t['consumptionType']}"
        print(
            f"  {t['transactionId']:<22} {t['occurredAt'][:19]:<20} {kind:<22} "
            f"qty {t['totalQuantity']:>6}  weight {t['totalWeight']:>12}  cost {t['totalCost']:>14}"
        )
        if t["reversesTransactionId"]:
            print(f"      reverses {t['reversesTransactionId']}")
        for line in t["lines"]:
            print(f"      {line['batchId']:<22} {line['quantity']:>6} {line['weight']:>12} {line['cost']:>14}")
    print()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Batch stock report")
    parser.add_argument("material_id", nargs="?", help="Material to report")
    parser.add_argument("--length", help="Filter by length")
    parser.add_argument("--length-unit", help="Unit of --length")
    parser.add_argument("--gauge", help="Filter by gauge")
    parser.add_argument("--history", action="store_true", help="Include batch history")
    parser.add_argument("--transactions", action="store_true", help="Include stock transactions")
    parser.add_argument("--db-url", help="Database URL (default from config)")
    parser.add_argument("--config", help="Configuration set YAML")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args(argv)

    from fab_config import get_active_config
    from fab_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
        reset_engine,
    )
    from fab_kernel.exceptions import FabricationError
    from fab_kernel.logging_config import configure_logging
    from fab_services import boundary
    from fab_services.batch_ledger import BatchStockLedger
    from fab_services.record_store import SqlAlchemyRecordStore

    configure_logging(level=logging.WARNING)

    config = get_active_config(args.config)
    db_url = args.db_url or config.database_url
    if not db_url:
        print("  ERROR: no database URL given or configured", file=sys.stderr)
        return 1

    try:
        init_engine_from_url(db_url, echo=False)
        create_tables()
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        reset_engine()
        return 1

    try:
        ledger = BatchStockLedger(
            SqlAlchemyRecordStore(get_session_factory()),
            config=config.inventory,
        )

        if args.material_id is None:
            materials = ledger.material_ids()
            if args.json:
                print(json.dumps({"materials": materials}, indent=2))
            elif not materials:
                print("  No batches found.")
            else:
                print()
                for material in materials:
                    print(f"  {material}")
                print()
            return 0

        filters = {
            "length": args.length,
            "lengthUnit": args.length_unit,
            "gauge": args.gauge,
        }
        report = boundary.stock_report(ledger, args.material_id, filters)
        if args.history:
            report["batchHistory"] = boundary.batch_history(ledger, args.material_id)["batches"]
        if args.transactions:
            report["transactions"] = boundary.consumption_history(
                ledger, args.material_id
            )["transactions"]
    except FabricationError as exc:
        if args.json:
            print(json.dumps(boundary.error_response(exc), indent=2))
        else:
            print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        reset_engine()

    if args.json:
        print(json.dumps(report, indent=2))
        return 0

    _print_report(report, config.inventory.currency)
    if args.history:
        _print_batches("BATCH HISTORY", report["batchHistory"])
    if args.transactions:
        _print_transactions(report["transactions"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
