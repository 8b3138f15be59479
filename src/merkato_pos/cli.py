"""Command-line entry points for the MobiShop toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the objects consumed by the business layer, and
printing results. Keeping the CLI thin lets tests and scripts drive the same
commands without a terminal.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import aggregation, core_logic, document_export, log, sale_pipeline
from .cart import Cart
from .constants import Category, PaymentMethod, Role
from .errors import AccessDenied, BackendError, InsufficientStock, ValidationError

DEFAULT_ACTOR_ID = "ADMIN"


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="merkato-cli",
        description="Command-line tools for the EthioMerkato store workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the current directory by default).",
    )
    parser.add_argument(
        "--user-id",
        default=DEFAULT_ACTOR_ID,
        help=f"Account performing the command (default: {DEFAULT_ACTOR_ID}).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and catalog edits."""
    specs = {
        "add-product": register_add_product_command(),
        "edit-product": register_edit_product_command(),
        "delete-product": register_delete_product_command(),
        "add-user": register_add_user_command(),
        "edit-user": register_edit_user_command(),
        "delete-user": register_delete_user_command(),
        "sale": register_sale_command(),
        "settings": register_settings_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "products": register_products_command(),
        "users": register_users_command(),
        "sales": register_sales_command(),
        "report": register_report_command(),
        "seller-report": register_seller_report_command(),
        "dashboard": register_dashboard_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Argument types
# ---------------------------------------------------------------------------


def parse_day(text: str) -> date:
    """``argparse`` type for ``YYYY-MM-DD`` values."""
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected a date as YYYY-MM-DD, got {text!r}") from exc


def parse_item(text: str) -> Tuple[str, int]:
    """``argparse`` type for ``PRODUCT_ID:QUANTITY`` cart items."""
    product_id, sep, quantity = text.rpartition(":")
    if not sep or not product_id:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QUANTITY, got {text!r}")
    try:
        return product_id, int(quantity)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Quantity must be a whole number in {text!r}") from exc


def parse_switch(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in ("on", "true", "yes", "1"):
        return True
    if lowered in ("off", "false", "no", "0"):
        return False
    raise argparse.ArgumentTypeError(f"Expected on or off, got {text!r}")


def _add_product_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--category", required=True, choices=[member.value for member in Category])
    parser.add_argument("--purchase-price", required=True)
    parser.add_argument("--interest-percent", default="0")
    parser.add_argument("--stock", required=True)


# ---------------------------------------------------------------------------
# Command registration
# ---------------------------------------------------------------------------


def register_add_product_command() -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog (admin only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_product_fields(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_edit_product_command() -> CommandSpec:
    """Register the parser and executor for ``edit-product``."""
    name = "edit-product"
    help_text = "Overwrite a product's details; the price is recomputed (admin only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        _add_product_fields(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_product)


def register_delete_product_command() -> CommandSpec:
    name = "delete-product"
    help_text = "Remove a product from the catalog (admin only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_add_user_command() -> CommandSpec:
    name = "add-user"
    help_text = "Register a user account (admin only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--email", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--role", choices=[member.value for member in Role], default=Role.SELLER.value)
        parser.add_argument("--id", dest="new_user_id", default=None, help="Explicit id for the new account.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_user)


def register_edit_user_command() -> CommandSpec:
    name = "edit-user"
    help_text = "Change a user's name or role (admin only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--target", required=True, help="Id of the account to change.")
        parser.add_argument("--name", default=None)
        parser.add_argument("--role", choices=[member.value for member in Role], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_user)


def register_delete_user_command() -> CommandSpec:
    name = "delete-user"
    help_text = "Delete a user account (admin only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--target", required=True, help="Id of the account to delete.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_user)


def register_sale_command() -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Sell one or more products and write a receipt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            required=True,
            metavar="PRODUCT_ID:QTY",
            help="Cart line; repeat for several products.",
        )
        parser.add_argument("--buyer", default=None)
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--batch-id", default=None, help="Resume a batch that failed part-way.")
        parser.add_argument("--no-receipt", action="store_true", help="Skip writing the PDF receipt.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_settings_command() -> CommandSpec:
    name = "settings"
    help_text = "Show or change the currency symbol and theme."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--currency", default=None)
        parser.add_argument("--dark-mode", type=parse_switch, default=None, metavar="on|off")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_settings)


def register_products_command() -> CommandSpec:
    name = "products"
    help_text = "List or search the product catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", default=None)
        parser.add_argument("--category", choices=[member.value for member in Category], default=None)
        parser.add_argument("--in-stock", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products)


def register_users_command() -> CommandSpec:
    name = "users"
    help_text = "List user accounts (admin only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_users)


def register_sales_command() -> CommandSpec:
    name = "sales"
    help_text = "List every sale record, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--csv", action="store_true", help="Also write daily_sales_records_<date>.csv.")
        parser.add_argument("--print", dest="print_view", action="store_true", help="Open a printable view.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales)


def register_report_command() -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Filtered sales report with category and seller summaries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=parse_day, default=None, help="First day included (YYYY-MM-DD).")
        parser.add_argument("--end", type=parse_day, default=None, help="Last day included (YYYY-MM-DD).")
        parser.add_argument("--name", default=None, help="Product name contains this text.")
        parser.add_argument("--category", choices=[member.value for member in Category], default=None)
        parser.add_argument("--csv", action="store_true", help="Also write sales_report_<date>.csv.")
        parser.add_argument("--print", dest="print_view", action="store_true", help="Open a printable view.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report)


def register_seller_report_command() -> CommandSpec:
    name = "seller-report"
    help_text = "Per-seller totals for one day."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--day", type=parse_day, default=None, help="Day to report (default: today, UTC).")
        parser.add_argument("--seller", default=None, help="Seller name for --csv and --print.")
        parser.add_argument("--csv", action="store_true")
        parser.add_argument("--with-summary", action="store_true", help="Head the CSV with the seller totals.")
        parser.add_argument("--print", dest="print_view", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_seller_report)


def register_dashboard_command() -> CommandSpec:
    name = "dashboard"
    help_text = "Headline store figures."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation and output helpers
# ---------------------------------------------------------------------------


def translate_product(args: argparse.Namespace) -> core_logic.ProductCommand:
    """Translate CLI args into a product form."""
    return core_logic.ProductCommand(
        name=args.name,
        category=args.category,
        purchase_price=args.purchase_price,
        interest_percent=args.interest_percent,
        stock=args.stock,
    )


def translate_sales_filter(args: argparse.Namespace) -> aggregation.SalesFilter:
    return aggregation.SalesFilter(start=args.start, end=args.end, name=args.name, category=args.category)


def _actor(context: core_logic.RuntimeContext, args: argparse.Namespace):
    return core_logic.resolve_actor(context, getattr(args, "user_id", DEFAULT_ACTOR_ID))


def format_table(headers: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    """Render rows as left-aligned, space-padded columns."""
    text_rows: List[List[str]] = [[str(cell) for cell in row] for row in rows]
    widths = [len(header) for header in headers]
    for row in text_rows:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))
    lines = ["  ".join(header.ljust(widths[i]) for i, header in enumerate(headers))]
    lines.append("  ".join("-" * width for width in widths))
    for row in text_rows:
        lines.append("  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))
    return "\n".join(lines)


def _today() -> date:
    return datetime.now(UTC).date()


def _write_print_view(context: core_logic.RuntimeContext, content: str, filename: str) -> Path:
    path = document_export.write_export(content, context.settings.export_dir, filename)
    if not document_export.open_print_view(path):
        print(f"Could not open a browser; printable view saved to {path}")
    else:
        print(f"Opened printable view {path}")
    return path


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, _actor(context, args), translate_product(args))
    print(f"Added product {product.product_id} '{product.name}' at {context.preferences.format_currency(product.price)}")
    return 0


def run_edit_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.edit_product(context, _actor(context, args), args.product_id, translate_product(args))
    print(f"Updated product {product.product_id}: price {context.preferences.format_currency(product.price)}, stock {product.stock}")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_product(context, _actor(context, args), args.product_id)
    print(f"Deleted product {args.product_id}")
    return 0


def run_add_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    command = core_logic.UserCommand(email=args.email, name=args.name, role=args.role, user_id=args.new_user_id)
    user = core_logic.add_user(context, _actor(context, args), command)
    print(f"Added user {user.user_id} ({user.email}, {user.role})")
    return 0


def run_edit_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    user = core_logic.update_user(context, _actor(context, args), args.target, name=args.name, role=args.role)
    print(f"Updated user {user.user_id}: {user.name} ({user.role})")
    return 0


def run_delete_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_user(context, _actor(context, args), args.target)
    print(f"Deleted user {args.target}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Build a cart from ``--item`` values and commit it."""
    seller = _actor(context, args)
    cart = Cart()
    for product_id, quantity in args.items:
        cart.add_or_increment(core_logic.get_product(context, product_id), quantity)

    result = sale_pipeline.commit_sale(
        context,
        cart,
        seller,
        buyer_name=args.buyer,
        payment_method=args.payment_method,
        batch_id=args.batch_id,
        write_receipt=False,
    )
    if result is None:
        return 1
    # The receipt is only written once the sale is on disk.
    persist_workbook(context)
    if not args.no_receipt:
        result = sale_pipeline.attach_receipt(context, result)
    print(f"Sale {result.batch_id} recorded: {len(result.records)} line(s), total {context.preferences.format_currency(result.total)}")
    if result.receipt_path is not None:
        print(f"Receipt saved to {result.receipt_path}")
    if result.receipt_error is not None:
        print(f"Receipt could not be saved: {result.receipt_error}")
    return 0


def run_settings(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    store = context.preferences
    if args.currency is not None:
        store.set_currency(args.currency)
    if args.dark_mode is not None:
        store.set_dark_mode(args.dark_mode)
    print(f"Currency: {store.currency}")
    print(f"Dark mode: {'on' if store.dark_mode else 'off'}")
    return 0


def run_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    products = core_logic.search_products(
        core_logic.list_products(context),
        name=args.name,
        category=args.category,
        in_stock_only=args.in_stock,
    )
    fmt = context.preferences.format_currency
    rows = [(p.product_id, p.name, p.category, fmt(p.purchase_price), p.interest_percent, fmt(p.price), p.stock) for p in products]
    print(format_table(("ID", "Name", "Category", "Purchase", "Interest %", "Price", "Stock"), rows))
    return 0


def run_users(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    users = core_logic.list_users(context, _actor(context, args))
    print(format_table(("ID", "Email", "Name", "Role"), [(u.user_id, u.email, u.name, u.role) for u in users]))
    return 0


def run_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    records = context.backend.list_sales()
    currency = context.preferences.currency
    rows = [
        document_export.record_cells(record, document_export.DAILY_RECORDS_COLUMNS)
        for record in records
    ]
    print(format_table(document_export.DAILY_RECORDS_COLUMNS, rows))
    if args.csv:
        path = document_export.export_daily_records_csv(records, context.settings.export_dir, day=_today())
        print(f"CSV written to {path}")
    if args.print_view:
        content = document_export.daily_records_print_view(
            records, currency=currency, store_name=context.settings.store_name
        )
        _write_print_view(context, content, f"daily_sales_records_{_today().isoformat()}.html")
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the filtered sales report workflow."""
    report = aggregation.generate_sales_report(context, translate_sales_filter(args))
    fmt = context.preferences.format_currency

    print(f"Total revenue: {fmt(report.total_revenue)}")
    print(f"Items sold: {report.total_quantity}")
    print(f"Transactions: {report.record_count}")
    print()
    print(format_table(
        ("Category", "Sales", "Items", "Revenue"),
        [(s.category, s.record_count, s.total_quantity, fmt(s.total_revenue)) for s in report.category_summaries],
    ))
    print()
    print(format_table(
        ("Seller", "Sales", "Items", "Revenue"),
        [(s.seller_name, s.record_count, s.total_quantity, fmt(s.total_revenue)) for s in report.seller_summaries],
    ))

    if args.csv:
        path = document_export.export_sales_report_csv(report.records, context.settings.export_dir, day=_today())
        print(f"CSV written to {path}")
    if args.print_view:
        content = document_export.sales_report_print_view(
            report, currency=context.preferences.currency, store_name=context.settings.store_name
        )
        _write_print_view(context, content, f"sales_report_{_today().isoformat()}.html")
    return 0


def run_seller_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    day = args.day or _today()
    summaries = aggregation.daily_seller_report(context, day)
    fmt = context.preferences.format_currency
    print(f"Seller sales for {day.isoformat()}")
    print(format_table(
        ("Seller", "Sales", "Items", "Revenue"),
        [(s.seller_name, s.record_count, s.total_quantity, fmt(s.total_revenue)) for s in summaries],
    ))

    if not (args.csv or args.print_view):
        return 0
    if not args.seller:
        raise ValidationError("--seller is required with --csv or --print")
    summary = aggregation.find_seller(summaries, args.seller)
    if summary is None:
        raise ValidationError(f"No sales by '{args.seller}' on {day.isoformat()}")
    if args.csv:
        path = document_export.export_seller_csv(
            summary,
            context.settings.export_dir,
            currency=context.preferences.currency,
            day=day,
            with_summary=args.with_summary,
        )
        print(f"CSV written to {path}")
    if args.print_view:
        content = document_export.seller_print_view(
            summary, currency=context.preferences.currency, store_name=context.settings.store_name
        )
        filename = f"daily_sales_{document_export.slugify(summary.seller_name)}_{day.isoformat()}.html"
        _write_print_view(context, content, filename)
    return 0


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    stats = aggregation.dashboard_stats(context)
    print(f"Total revenue: {context.preferences.format_currency(stats.total_revenue)}")
    print(f"Products sold: {stats.products_sold}")
    print(f"Active users: {stats.active_users}")
    print(f"Receipts generated: {stats.receipts_generated}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (ValidationError, InsufficientStock, AccessDenied)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, BackendError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    core_logic.persist_context(context)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
