"""
Command-line interface for the budget engine.

Commands:
    category  Add or list categories
    txn       Add or list transactions
    budget    Set (upsert), edit with auto-save, show, list available
              categories, or delete budgets
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from budgeting import BudgetViewModel
from config_manager import get_alert_thresholds, get_budget_category_type, get_debounce_seconds, load_config
from database_ops import DatabaseManager, SQLRecordStore
from debounce import DebounceCoordinator, FormState
from exceptions import CategoryNotFoundError, FinanceAppError
from models import Category, Transaction, TransactionType
from periods import current_period_key, parse_period_key, period_year, shift_period
from reconciler import BudgetReconciler
from record_store import RecordStore, unwrap_single
from utils import resolve_connection_string, resolve_log_path

# Configure module-level logger
logger = logging.getLogger(__name__)

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: dict) -> None:
    """
    Configure logging based on config settings.

    Unknown levels fall back to INFO, formats without a timestamp get one,
    and a log file that cannot be opened leaves console logging in place.

    Args:
        config: Configuration dictionary with logging settings
    """
    log_config = config.get("logging") or {}
    level_name = str(log_config.get("level") or "INFO").upper()
    log_level = getattr(logging, level_name, None)
    if not isinstance(log_level, int):
        logger.warning(f"Unknown log level '{level_name}', using INFO")
        log_level = logging.INFO

    log_format = log_config.get("format") or DEFAULT_LOG_FORMAT
    if "%(asctime)s" not in log_format:
        log_format = "%(asctime)s - " + log_format

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = log_config.get("file")
    if log_file:
        try:
            handlers.append(logging.FileHandler(resolve_log_path(log_file)))
        except OSError as exc:
            logger.warning(f"Unable to open log file '{log_file}': {exc}; logging to console only")

    logging.basicConfig(level=log_level, format=log_format, handlers=handlers, force=True)


def build_store(config: dict) -> SQLRecordStore:
    """Create the SQL-backed record store described by the config."""
    db_manager = DatabaseManager(resolve_connection_string(config))
    db_manager.create_tables()
    return SQLRecordStore(db_manager)


def _resolve_month(month: Optional[str], offset: int = 0) -> str:
    if not month:
        month = current_period_key()
    else:
        parse_period_key(month)
    return shift_period(month, offset) if offset else month


async def _category_id(store: RecordStore, name: str) -> int:
    matches = await store.categories.find_by_name(name)
    if not matches:
        raise CategoryNotFoundError("Category not found", details={"category": name})
    return matches[0].id


async def handle_category_command(args: argparse.Namespace, store: RecordStore) -> None:
    """Handle category add/list."""
    if args.category_action == "add":
        category = Category(
            id=None,
            name=args.name.strip(),
            type=TransactionType(args.type),
            color=args.color or "",
            is_custom=True,
        )
        created = unwrap_single(await store.categories.create(category), "create category")
        print(f"Created category {created.id}: {created.name} ({created.type.value})")
        return

    if args.type:
        categories = await store.categories.list_by_type(args.type)
    else:
        categories = await store.categories.list_all()
    if not categories:
        print("No categories found.")
        return
    print(f"{'ID':<5} {'Name':<25} {'Type':<10} {'Color':<10}")
    print("-" * 52)
    for category in categories:
        print(f"{category.id:<5} {category.name:<25} {category.type.value:<10} {category.color:<10}")


async def handle_txn_command(args: argparse.Namespace, store: RecordStore) -> None:
    """Handle transaction add/list."""
    if args.txn_action == "add":
        txn_type = TransactionType(args.type) if args.type else (
            TransactionType.EXPENSE if args.amount < 0 else TransactionType.INCOME
        )
        # sign encodes direction, so keep it consistent with the type
        amount = -abs(args.amount) if txn_type is TransactionType.EXPENSE else abs(args.amount)
        txn_date = datetime.strptime(args.date, "%Y-%m-%d").date() if args.date else datetime.now().date()
        transaction = Transaction(
            id=None,
            amount=amount,
            type=txn_type,
            description=args.description or "",
            date=txn_date,
            category=await _category_id(store, args.category),
        )
        created = unwrap_single(await store.transactions.create(transaction), "create transaction")
        print(f"Created transaction {created.id}: {created.amount:,.2f} on {created.date}")
        return

    month = _resolve_month(args.month, args.offset)
    transactions = await store.transactions.list_by_period(month)
    if not transactions:
        print(f"No transactions found for {month}.")
        return
    print(f"{'ID':<5} {'Date':<12} {'Amount':>12} {'Type':<8} {'Category':<20} Description")
    print("-" * 90)
    for txn in transactions:
        category = txn.category_ref().name or ""
        print(f"{txn.id:<5} {str(txn.date):<12} {txn.amount:>12,.2f} {txn.type.value:<8} {category:<20} {txn.description}")


async def run_budget_editor(
    reconciler: BudgetReconciler,
    config: Dict[str, Any],
    month: str,
    stream: Optional[TextIO] = None
) -> DebounceCoordinator:
    """
    Feed form edits read from a stream into a debounced auto-save.

    Each line is ``category <name>``, ``limit <amount>`` or ``save``.
    Pending edits are saved when the stream ends.
    """
    stream = stream or sys.stdin
    coordinator = DebounceCoordinator(
        reconciler,
        quiet_interval=get_debounce_seconds(config),
        period_provider=lambda: month,
        on_saved=lambda budget: print(f"Saved budget {budget.id} '{budget.name}': {budget.monthly_limit:,.2f}"),
        on_error=lambda error: print(f"Error: {error}", file=sys.stderr),
    )

    while True:
        line = await asyncio.to_thread(stream.readline)
        if not line:
            break
        field, _, value = line.strip().partition(" ")
        if field == "category":
            coordinator.edit(category=value)
        elif field == "limit":
            coordinator.edit(monthly_limit=value)
        elif field == "save":
            await coordinator.flush()
        elif field:
            print(f"Unknown field '{field}' (use category, limit or save)", file=sys.stderr)

    if coordinator.state is FormState.PENDING:
        await coordinator.flush()
    await coordinator.wait_idle()
    coordinator.close()
    return coordinator


async def handle_budget_command(args: argparse.Namespace, store: RecordStore, config: Dict[str, Any]) -> None:
    """Handle budget set/status/available/delete."""
    category_type = get_budget_category_type(config)
    reconciler = BudgetReconciler(store.categories, store.budgets, category_type=category_type)
    view_model = BudgetViewModel(store, category_type=category_type, thresholds=get_alert_thresholds(config))

    if args.budget_action == "set":
        month = _resolve_month(args.month)
        budget = await reconciler.upsert(args.category, args.limit, month, period_year(month))
        print(f"Saved budget {budget.id} '{budget.name}': {budget.monthly_limit:,.2f}")

    elif args.budget_action == "edit":
        coordinator = await run_budget_editor(reconciler, config, _resolve_month(args.month))
        if coordinator.last_error is not None:
            raise coordinator.last_error

    elif args.budget_action == "status":
        overview = await view_model.load(_resolve_month(args.month, args.offset))
        if not overview.rows:
            print(f"No budgets set for {overview.period_key}.")
            return
        frame = overview.to_frame()
        print(f"\nBUDGET STATUS {overview.period_key}")
        print(frame.to_string(index=False, float_format=lambda value: f"{value:,.2f}"))
        summary = overview.summary
        print(f"\nTotal Limit: {summary['total_limit']:,.2f}")
        print(f"Total Spent: {summary['total_spent']:,.2f}")
        print(f"Total Remaining: {summary['total_remaining']:,.2f}")
        if summary["exceeded_count"]:
            print(f"Budgets exceeded: {summary['exceeded_count']}")

    elif args.budget_action == "available":
        overview = await view_model.load(_resolve_month(args.month, args.offset))
        if not overview.available_categories:
            print(f"Every {category_type} category has a budget for {overview.period_key}.")
            return
        for category in overview.available_categories:
            print(category.name)

    elif args.budget_action == "delete":
        await reconciler.delete(args.id)
        print(f"Deleted budget {args.id}")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Monthly budget tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    category_parser = subparsers.add_parser("category", aliases=["cat"], help="Manage categories")
    category_sub = category_parser.add_subparsers(dest="category_action", required=True)
    cat_add = category_sub.add_parser("add", help="Add a category")
    cat_add.add_argument("name", help="Category name")
    cat_add.add_argument("--type", choices=["expense", "income"], default="expense")
    cat_add.add_argument("--color", help="Color tag")
    cat_list = category_sub.add_parser("list", help="List categories")
    cat_list.add_argument("--type", choices=["expense", "income"])

    txn_parser = subparsers.add_parser("txn", aliases=["transaction"], help="Manage transactions")
    txn_sub = txn_parser.add_subparsers(dest="txn_action", required=True)
    txn_add = txn_sub.add_parser("add", help="Add a transaction")
    txn_add.add_argument("--amount", type=float, required=True, help="Amount (negative for expenses)")
    txn_add.add_argument("--category", required=True, help="Category name")
    txn_add.add_argument("--type", choices=["expense", "income"], help="Defaults from the amount sign")
    txn_add.add_argument("--date", help="Date (YYYY-MM-DD, default today)")
    txn_add.add_argument("--description", help="Description")
    txn_list = txn_sub.add_parser("list", help="List transactions for a month")
    txn_list.add_argument("--month", help="Month (YYYY-MM, default current)")
    txn_list.add_argument("--offset", type=int, default=0, help="Months to shift from --month (e.g. -1 for the previous month)")

    budget_parser = subparsers.add_parser("budget", aliases=["bud"], help="Manage budgets")
    budget_sub = budget_parser.add_subparsers(dest="budget_action", required=True)
    bud_set = budget_sub.add_parser("set", help="Create or update a category budget")
    bud_set.add_argument("category", help="Category name")
    bud_set.add_argument("limit", type=float, help="Monthly limit")
    bud_set.add_argument("--month", help="Month (YYYY-MM, default current)")
    bud_edit = budget_sub.add_parser(
        "edit",
        help="Edit a budget line by line ('category <name>', 'limit <amount>', 'save'); saves after a quiet interval"
    )
    bud_edit.add_argument("--month", help="Month (YYYY-MM, default current)")
    bud_status = budget_sub.add_parser("status", help="Show spending against budgets")
    bud_status.add_argument("--month", help="Month (YYYY-MM, default current)")
    bud_status.add_argument("--offset", type=int, default=0, help="Months to shift from --month (e.g. -1 for the previous month)")
    bud_available = budget_sub.add_parser("available", help="List categories without a budget")
    bud_available.add_argument("--month", help="Month (YYYY-MM, default current)")
    bud_available.add_argument("--offset", type=int, default=0, help="Months to shift from --month (e.g. -1 for the previous month)")
    bud_delete = budget_sub.add_parser("delete", help="Delete a budget")
    bud_delete.add_argument("id", type=int, help="Budget ID")

    return parser


async def dispatch(args: argparse.Namespace, store: RecordStore, config: Dict[str, Any]) -> None:
    """Route parsed arguments to their handler."""
    if args.command in ("category", "cat"):
        await handle_category_command(args, store)
    elif args.command in ("txn", "transaction"):
        await handle_txn_command(args, store)
    elif args.command in ("budget", "bud"):
        await handle_budget_command(args, store, config)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = load_config(Path(args.config))
    setup_logging(config)

    try:
        store = build_store(config)
    except FinanceAppError as e:
        logger.error(f"Failed to open database: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(dispatch(args, store, config))
    except (FinanceAppError, ValueError) as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        store.db_manager.close()


if __name__ == "__main__":
    main()
