"""
Ledger CLI Utility

Simple command-line interface for the ledger database.
No UI required - designed for scripting and inspection.

Usage Examples:
    # Create the database
    stockbook init

    # Export the whole ledger
    stockbook export ledger.json

    # Replace the ledger with a snapshot
    stockbook import ledger.json

    # Show remaining stock and its value
    stockbook stock --type raw_material

    # Show cash balances and outstanding debt
    stockbook balance
"""

import argparse
import logging

from ..models import PaymentMethod, StockType
from ..services import batch_service, cash_ledger_service, loan_service, snapshot_service
from ..services.database import initialize_app_database
from ..services.exceptions import ServiceError
from .config import get_config


def init_db() -> int:
    """Create the database tables."""
    config = get_config()
    print(f"Initializing database at {config.database_path}...")
    initialize_app_database()
    print("Database initialized successfully")
    return 0


def export_ledger(output_file: str) -> int:
    """Export the whole ledger to a JSON file."""
    print(f"Exporting ledger to {output_file}...")
    try:
        result = snapshot_service.save_snapshot(output_file)
    except (OSError, ServiceError) as e:
        print(f"ERROR: {e}")
        return 1
    print(result.get_summary())
    return 0


def import_ledger(input_file: str) -> int:
    """Replace the ledger with the contents of a JSON file."""
    print(f"Importing ledger from {input_file} (existing data will be replaced)...")
    try:
        result = snapshot_service.load_snapshot(input_file)
    except (OSError, ServiceError) as e:
        print(f"ERROR: {e}")
        return 1
    print(result.get_summary())
    return 0


def show_stock(stock_type=None, threshold=None) -> int:
    """Print batches with remaining stock, oldest first."""
    batches = batch_service.list_batches(stock_type=stock_type, include_empty=False)
    if not batches:
        print("No stock on hand")
        return 0

    low_ids = {b.id for b in batch_service.get_low_stock_batches(threshold, stock_type)}
    print(f"{'ID':>5}  {'Product':<30} {'Type':<13} {'Remaining':>12} {'Unit cost':>12}")
    for batch in batches:
        flag = "  LOW" if batch.id in low_ids else ""
        print(
            f"{batch.id:>5}  {batch.product_name:<30} {batch.stock_type:<13} "
            f"{batch.current_quantity:>12} {batch.unit_cost:>12}{flag}"
        )
        for variant in batch.variants:
            print(f"{'':>7}- {variant.label}: {variant.quantity}")

    print("")
    print(f"Inventory value: {batch_service.get_inventory_value(stock_type)}")
    return 0


def show_balance() -> int:
    """Print cash balances per payment method and outstanding debt."""
    for method in PaymentMethod:
        balance = cash_ledger_service.get_cash_balance(method.value)
        print(f"{method.value:<6} {balance:>14}")
    print(f"{'TOTAL':<6} {cash_ledger_service.get_cash_balance():>14}")
    print(f"{'DEBT':<6} {loan_service.get_total_debt():>14}")
    return 0


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="stockbook",
        description="Inventory and cash ledger for a small production business",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Export the whole ledger:
    stockbook export ledger.json

  Replace the ledger with a snapshot:
    stockbook import ledger.json

  Show finished goods on hand:
    stockbook stock --type finished_good
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init", help="Create the database")

    export_parser = subparsers.add_parser("export", help="Export the ledger to JSON")
    export_parser.add_argument("file", help="JSON file path")

    import_parser = subparsers.add_parser("import", help="Replace the ledger from JSON")
    import_parser.add_argument("file", help="JSON file path")

    stock_parser = subparsers.add_parser("stock", help="Show remaining stock")
    stock_parser.add_argument(
        "-t",
        "--type",
        dest="stock_type",
        choices=[t.value for t in StockType],
        help="Only show one stock type",
    )
    stock_parser.add_argument(
        "--threshold",
        type=float,
        help="Low stock threshold (default from config)",
    )

    subparsers.add_parser("balance", help="Show cash balances and debt")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "init":
        return init_db()

    # Initialize database (required for all other operations)
    initialize_app_database()

    if args.command == "export":
        return export_ledger(args.file)
    elif args.command == "import":
        return import_ledger(args.file)
    elif args.command == "stock":
        return show_stock(args.stock_type, args.threshold)
    elif args.command == "balance":
        return show_balance()
    else:
        print(f"Unknown command: {args.command}")
        return 1
