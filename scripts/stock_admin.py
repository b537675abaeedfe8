#!/usr/bin/env python3
"""
Operator CLI for the stock kernel.

Schema setup, product seeding, carrier issuance, scans and adjustments,
consistency checks and ledger history, all against the configured
datastore.

Usage:
  python3 scripts/stock_admin.py [--config FILE] [--db-url URL] <command> ...

Commands:
  init-db       create tables and ledger immutability triggers
  add-product   register a product (optionally with initial stock)
  issue         issue carriers (barcode labels) for a product
  scan          submit a barcode scan (IN or OUT)
  adjust        record a manual stock change
  lookup        show a carrier, its product and current stock
  verify        compare cached stock with ledger/carrier truth
  repair        overwrite cached stock with truth for one product
  sweep         verify every product, repairing drift
  history       page through ledger movements, newest first

Exit codes: 0 success, 1 configuration/datastore error, 2 rejected.
"""

import argparse
import os
import sys
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from stock_config import get_active_config  # noqa: E402
from stock_config.bridges import (  # noqa: E402
    build_reconciler,
    build_stock_engine,
    init_database,
)
from stock_kernel.db.engine import create_tables, get_session  # noqa: E402
from stock_kernel.exceptions import (  # noqa: E402
    StockKernelError,
    StockRejection,
    UnknownProductError,
)
from stock_kernel.models.product import Product  # noqa: E402
from stock_kernel.selectors.stock_selector import StockSelector  # noqa: E402
from stock_kernel.services.ledger_service import REFERENCE_INITIAL_STOCK  # noqa: E402

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_REJECTED = 2


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Warehouse stock kernel administration")
    p.add_argument("--config", help="YAML file overlaid on the packaged defaults")
    p.add_argument("--db-url", help="Database URL (overrides config and DATABASE_URL)")
    p.add_argument("--actor", default=os.environ.get("USER", "stock-admin"))
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables and triggers")

    add = sub.add_parser("add-product", help="Register a product")
    add.add_argument("sku")
    add.add_argument("--name", default="")
    add.add_argument("--price", default="0")
    add.add_argument("--initial-stock", type=int, default=0)

    issue = sub.add_parser("issue", help="Issue carriers for a product")
    issue.add_argument("sku")
    issue.add_argument("--count", type=int, default=1)
    issue.add_argument("--units", type=int, default=1, help="Units per carrier")

    scan = sub.add_parser("scan", help="Submit a barcode scan")
    scan.add_argument("code")
    scan.add_argument("direction", choices=["IN", "OUT", "in", "out"])
    scan.add_argument("--note")

    adjust = sub.add_parser("adjust", help="Manual stock change")
    adjust.add_argument("sku")
    adjust.add_argument("direction", choices=["IN", "OUT", "in", "out"])
    adjust.add_argument("quantity", type=int)
    adjust.add_argument("--note")
    adjust.add_argument("--reference")

    lookup = sub.add_parser("lookup", help="Show a carrier")
    lookup.add_argument("code")

    verify = sub.add_parser("verify", help="Check one product")
    verify.add_argument("sku")

    repair = sub.add_parser("repair", help="Repair one product")
    repair.add_argument("sku")

    sub.add_parser("sweep", help="Verify and repair every product")

    history = sub.add_parser("history", help="Ledger movements, newest first")
    history.add_argument("--sku")
    history.add_argument("--direction", choices=["IN", "OUT", "in", "out"])
    history.add_argument("--page", type=int, default=1)
    history.add_argument("--limit", type=int, default=20)

    return p.parse_args(argv)


def _product_id(sku: str):
    session = get_session()
    try:
        product_id = StockSelector(session).product_id_for_sku(sku)
    finally:
        session.close()
    if product_id is None:
        raise UnknownProductError(sku)
    return product_id


def _print_report(report) -> None:
    print(f"  product:             {report.product_id}")
    print(f"  carrier units:       {report.carrier_units}")
    print(f"  adjustment net:      {report.adjustment_net}")
    print(f"  truth (carriers):    {report.truth_from_carriers}")
    print(f"  truth (ledger):      {report.truth_from_ledger}")
    print(f"  cached (product):    {report.cached_product_value}")
    print(f"  cached (snapshot):   {report.cached_snapshot_value}")
    if report.defective_carriers:
        print(f"  zero-unit carriers:  {', '.join(report.defective_carriers)}")
    print(f"  consistent:          {'yes' if report.is_consistent else 'NO'}")
    if report.ledger_carrier_mismatch:
        print("  ALARM: ledger and carrier truth disagree")


def _add_product(args, engine) -> int:
    session = get_session()
    try:
        product = Product(
            sku=args.sku,
            name=args.name,
            price=Decimal(args.price),
            aggregate_stock=0,
            created_by=args.actor,
        )
        session.add(product)
        session.commit()
        product_id = product.id
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    print(f"  product {args.sku} -> {product_id}")
    if args.initial_stock > 0:
        result = engine.submit_adjustment(
            product_id,
            "IN",
            args.initial_stock,
            args.actor,
            note="initial stock",
            reference=REFERENCE_INITIAL_STOCK,
        )
        print(f"  initial stock: {result.new_quantity}")
    return EXIT_OK


def _run(args, config) -> int:
    if args.command == "init-db":
        create_tables()
        print("  tables and triggers installed")
        return EXIT_OK

    engine = build_stock_engine(config)
    try:
        return _dispatch(args, config, engine)
    finally:
        engine.stop()


def _dispatch(args, config, engine) -> int:
    if args.command == "add-product":
        return _add_product(args, engine)

    if args.command == "issue":
        carriers = engine.issue_carriers(
            _product_id(args.sku), args.count, args.units, actor=args.actor
        )
        for carrier in carriers:
            print(f"  {carrier.code}  units={carrier.units_assigned}")
        return EXIT_OK

    if args.command == "scan":
        outcome = engine.submit_scan(
            args.code, args.direction.upper(), args.actor, note=args.note
        )
        if not outcome.accepted:
            print(f"  REJECTED [{outcome.rejection.kind.value}] {outcome.rejection.message}")
            return EXIT_REJECTED
        movement = outcome.movement
        print(
            f"  {movement.entry.direction.value} {movement.entry.quantity} "
            f"-> stock {movement.new_quantity} (seq {movement.entry.seq})"
        )
        return EXIT_OK

    if args.command == "adjust":
        result = engine.submit_adjustment(
            _product_id(args.sku),
            args.direction.upper(),
            args.quantity,
            args.actor,
            note=args.note,
            reference=args.reference,
        )
        print(f"  stock {result.new_quantity} (seq {result.entry.seq})")
        return EXIT_OK

    if args.command == "lookup":
        view = engine.lookup_carrier(args.code)
        print(f"  code:    {view.code}")
        print(f"  product: {view.sku} {view.product_name}")
        print(f"  units:   {view.units_assigned}")
        print(f"  state:   {view.state.value}")
        print(f"  stock:   {view.aggregate_stock}")
        return EXIT_OK

    if args.command in ("verify", "repair"):
        product_id = _product_id(args.sku)
        session = get_session()
        try:
            reconciler = build_reconciler(config, session, bus=engine.bus)
            if args.command == "verify":
                report = reconciler.verify(product_id)
            else:
                report = reconciler.repair(product_id)
        finally:
            session.close()
        _print_report(report)
        return EXIT_OK

    if args.command == "sweep":
        result = engine.sweep()
        if result is None:
            print("  sweep failed; see log", file=sys.stderr)
            return EXIT_ERROR
        print(
            f"  checked {result.checked}, repaired {len(result.repaired)}, "
            f"mismatched {len(result.mismatched)}"
        )
        return EXIT_OK

    if args.command == "history":
        product_id = _product_id(args.sku) if args.sku else None
        direction = args.direction.upper() if args.direction else None
        page = engine.movement_history(
            product_id=product_id, direction=direction, page=args.page, limit=args.limit
        )
        for entry in page.items:
            print(
                f"  {entry.seq:>8}  {entry.created_at:%Y-%m-%d %H:%M:%S}  "
                f"{entry.direction.value:<3} {entry.quantity:>6}  "
                f"{entry.reference:<24} {entry.actor}"
            )
        print(f"  page {page.page}/{page.total_pages} ({page.total} movements)")
        return EXIT_OK

    raise ValueError(f"unknown command {args.command!r}")


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    env = dict(os.environ)
    if args.db_url:
        env["DATABASE_URL"] = args.db_url

    try:
        config = get_active_config(path=args.config, env=env)
        init_database(config)
    except (OSError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return EXIT_ERROR

    try:
        return _run(args, config)
    except StockRejection as exc:
        print(f"  REJECTED [{exc.kind.value}] {exc}", file=sys.stderr)
        return EXIT_REJECTED
    except StockKernelError as exc:
        print(f"  ERROR [{exc.code}] {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
