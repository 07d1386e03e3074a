"""Command-line entry points for the store back-office.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into catalog and checkout calls, and printing results.
Keeping the CLI thin ensures the same parser configuration can be reused by
tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import log, reports, runtime
from .backend import BackendError
from .checkout import checkout
from .constants import PaymentMethod, ProductStatus
from .data_manager import ProductRow, product_status


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[runtime.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="backoffice-cli",
        description="Inventory, point-of-sale, and dashboard tools for the store back-office.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upwards from ./).",
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
    """Declare mutating CLI commands such as product edits and sales."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "sell": register_sell_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "search": register_search_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "sales": register_sales_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a new product to the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sku", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--cost", required=True)
        parser.add_argument("--stock", type=int, default=0)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Edit any field of an existing product except its SKU."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sku", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--price", default=None)
        parser.add_argument("--cost", default=None)
        parser.add_argument("--stock", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_sell_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sell``."""
    name = "sell"
    help_text = "Check out a cart and record the sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            default=[],
            metavar="SKU[:QTY]",
            help="Product to sell; repeat for several lines (quantity defaults to 1).",
        )
        parser.add_argument(
            "--payment",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--customer", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sell)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels and statuses."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--status",
            choices=[member.value for member in ProductStatus],
            default=None,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_search_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``search``."""
    name = "search"
    help_text = "Find products by name or SKU."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("term", nargs="?", default="")
        parser.add_argument("--category", default="all")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_search)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display sales metrics and the ranked product reports."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "Display the recorded sales transactions."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report)


def load_runtime_context(config_path: Optional[Path] = None) -> runtime.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = runtime.load_runtime_context(config_path)
    runtime.ensure_schema_version(context)
    return context


def dispatch_command(
    context: runtime.RuntimeContext,
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


def parse_money(raw: str) -> Decimal:
    """Parse a monetary command-line value."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"Not a valid amount: {raw!r}") from exc


def parse_item_spec(raw: str) -> Tuple[str, int]:
    """Split ``SKU[:QTY]`` into its SKU and quantity."""
    sku, _, quantity = raw.partition(":")
    if not sku:
        raise ValueError(f"Missing SKU in item {raw!r}")
    try:
        return sku, int(quantity) if quantity else 1
    except ValueError as exc:
        raise ValueError(f"Not a valid quantity in item {raw!r}") from exc


def format_money(amount: Decimal, currency: str) -> str:
    return f"{currency} {amount:,.2f}"


def translate_add_product(args: argparse.Namespace) -> ProductRow:
    """Translate CLI args into a new product record."""
    return ProductRow(
        sku=args.sku,
        name=args.name,
        category=args.category,
        price=parse_money(args.price),
        cost=parse_money(args.cost),
        stock=args.stock,
        sales_count=0,
        status=product_status(args.stock),
    )


def translate_update_product(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate CLI args into the fields to change; omitted options are skipped."""
    changes: Dict[str, Any] = {}
    for field in ("name", "category", "stock"):
        value = getattr(args, field, None)
        if value is not None:
            changes[field] = value
    for field in ("price", "cost"):
        value = getattr(args, field, None)
        if value is not None:
            changes[field] = parse_money(value)
    return changes


def translate_sell(args: argparse.Namespace) -> List[Tuple[str, int]]:
    """Translate CLI args into ``(sku, quantity)`` cart lines."""
    return [parse_item_spec(raw) for raw in args.items]


def run_add_product(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    product = translate_add_product(args)
    return 0 if context.catalog.add(product) else 2


def run_update_product(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow."""
    changes = translate_update_product(args)
    if not changes:
        log.error("Nothing to update for '%s'", args.sku)
        return 2
    return 0 if context.catalog.update(args.sku, changes) else 2


def run_sell(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Build the cart from ``--item`` options and check it out."""
    session = context.session
    session.customer_name = args.customer
    for sku, quantity in translate_sell(args):
        product = context.catalog.get_product(sku)
        if product is None:
            log.error("Unknown product SKU: %s", sku)
            return 2
        session.add_item(product)
        current = next(line.quantity for line in session.cart if line.sku == sku)
        session.set_quantity(sku, current - 1 + quantity)

    totals_currency = context.settings.store.currency
    result = checkout(
        session,
        context.catalog,
        context.recorder,
        PaymentMethod(args.payment),
        context.notifier,
    )
    if result.totals is not None:
        print(f"Subtotal: {format_money(result.totals.subtotal, totals_currency)}")
        print(f"Tax (5%): {format_money(result.totals.tax, totals_currency)}")
        print(f"Total:    {format_money(result.totals.total, totals_currency)}")
    if result.transaction is not None:
        print(f"Transaction: {result.transaction.transaction_id}")
    return 0 if result.stock_committed else 2


def run_stock_report(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every product with its stock level and status."""
    products = [
        product
        for product in context.catalog.products
        if args.status is None or product.status == args.status
    ]
    _print_products(products, context.settings.store.currency)
    return 0


def run_search(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the products matching the search term and category."""
    _print_products(context.catalog.search(args.term, args.category), context.settings.store.currency)
    return 0


def run_dashboard(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the dashboard metrics and ranked reports."""
    currency = context.settings.store.currency
    data = reports.dashboard(context.catalog.products, runtime.list_sales(context))
    inventory, sales = data["inventory"], data["sales"]

    print(f"== {context.settings.store.store_name} ==")
    print(f"Total sales:      {format_money(sales['total_sales'], currency)}"
          f" ({sales['sales_to_inventory']:.1f}% of inventory)")
    print(f"Actual profit:    {format_money(sales['total_profit'], currency)}"
          f" ({sales['profit_margin']:.1f}% margin)")
    print(f"Low stock items:  {inventory['low_stock_count']}")
    print(f"Total products:   {inventory['total_products']}")
    print(f"Inventory value:  {format_money(inventory['inventory_value'], currency)}")
    print(f"Potential profit: {format_money(inventory['potential_profit'], currency)}")

    print("\nTop selling products")
    for rank, product in enumerate(data["top_sellers"], start=1):
        print(f"  {rank}. {product.name} - {product.sales_count} sold")
    print("\nLow profit margin")
    for product, margin in data["low_margin"]:
        print(f"  {product.name} - {margin:.1f}% margin")
    print("\nLow sales volume")
    for product in data["low_sales_volume"]:
        print(f"  {product.name} - {product.sales_count} sold, {product.stock} in stock")
    print("\nLow stock items")
    if not data["low_stock"]:
        print("  All products are well stocked!")
    for product in data["low_stock"]:
        print(f"  {product.name} ({product.sku}) - {product.stock} in stock")
    return 0


def run_sales_report(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the recorded sales transactions."""
    currency = context.settings.store.currency
    for sale in runtime.list_sales(context):
        print(
            f"{sale.transaction_id}  {sale.created_at_iso}  {sale.payment_method:<8}"
            f"  total={format_money(sale.total_amount, currency)}"
            f"  profit={format_money(sale.profit_amount, currency)}"
        )
    return 0


def _print_products(products: Sequence[ProductRow], currency: str) -> None:
    if not products:
        print("No products found.")
        return
    for product in products:
        print(
            f"{product.sku:<8} {product.name:<28} {product.category:<12}"
            f" {format_money(product.price, currency):>14} {product.stock:>6}  {product.status}"
        )


def print_notifications(context: runtime.RuntimeContext) -> None:
    """Show the notifications collected while running a command."""
    for entry in context.notifier.drain():
        print(f"[{entry.level.value.upper()}] {entry.message}")


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (BackendError, ValueError)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        try:
            return dispatch_command(context, args, command_table)
        finally:
            print_notifications(context)
            context.catalog.close()
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
