"""Command-line entry points for the Boutique POS toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the requests consumed by the business layer, and
printing report output. Write commands go through
:mod:`boutique_pos.core_logic` and :mod:`boutique_pos.reconciliation`; read
commands render :mod:`boutique_pos.analytics` results computed from a fresh
snapshot.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import analytics, core_logic, log, reconciliation
from .constants import DeliveryDuration, ExpenseCategory
from .errors import (
    BusinessRuleViolation,
    NotFoundError,
    RemoteOperationError,
    ValidationError,
)


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="boutique-cli",
        description="Command-line tools for the Boutique POS workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs, *read_specs])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> List[CommandSpec]:
    """Declare mutating CLI commands: catalog, expenses and sales."""
    specs = [
        _command("add-product", "Register a product variant in the catalog.", _args_add_product, run_add_product, mutates=True),
        _command("add-products", "Register every color and size combination of a product.", _args_add_products, run_add_products, mutates=True),
        _command("edit-product", "Change catalog fields of a product.", _args_edit_product, run_edit_product, mutates=True),
        _command("delete-product", "Remove a product from the catalog.", _args_product_id, run_delete_product, mutates=True),
        _command("add-expense", "Record an expense.", _args_add_expense, run_add_expense, mutates=True),
        _command("delete-expense", "Remove an expense.", _args_expense_id, run_delete_expense, mutates=True),
        _command("sale", "Check out a cart.", _args_sale, run_sale, mutates=True),
        _command("amend-sale", "Replace the customer details and items of a sale.", _args_amend_sale, run_amend_sale, mutates=True),
        _command("return-sale", "Take back a whole sale and restock its items.", _args_return_sale, run_return_sale, mutates=True),
    ]
    for spec in specs:
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> List[CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = [
        _command("dashboard", "Display today's sales, net profit, expenses and inventory value.", _args_none, run_dashboard),
        _command("metrics", "Display revenue, cost and profit for a date range.", _args_date_range, run_metrics),
        _command("compare", "Compare day, week and month with the period before.", _args_none, run_compare),
        _command("kpis", "Display margin, average sale, return on spend and expense ratio.", _args_none, run_kpis),
        _command("top-sellers", "Display the best-selling products.", _args_limit, run_top_sellers),
        _command("follow-ups", "List delivered sales worth a customer check-in.", _args_none, run_follow_ups),
        _command("sales", "Search the sales log.", _args_search_sales, run_sales),
        _command("customers", "Search customers by name or phone.", _args_search_customers, run_customers),
    ]
    for spec in specs:
        spec.register(subparsers)
    return specs


def _command(
    name: str,
    help_text: str,
    add_arguments: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    mutates: bool = False,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=mutates)


def _args_none(parser: argparse.ArgumentParser) -> None:
    return None


def _args_product_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--category", default="")
    parser.add_argument("--cost-price", required=True)
    parser.add_argument("--selling-price", required=True)
    parser.add_argument("--stock", default="0")


def _args_add_product(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", default=None, help="Explicit id; generated when omitted.")
    _args_product_fields(parser)
    parser.add_argument("--color", default="")
    parser.add_argument("--size", default="")


def _args_add_products(parser: argparse.ArgumentParser) -> None:
    _args_product_fields(parser)
    parser.add_argument("--colors", required=True, help="Comma-separated colors.")
    parser.add_argument("--sizes", required=True, help="Comma-separated sizes.")


def _args_edit_product(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--name", default=None)
    parser.add_argument("--category", default=None)
    parser.add_argument("--color", default=None)
    parser.add_argument("--size", default=None)
    parser.add_argument("--cost-price", default=None)
    parser.add_argument("--selling-price", default=None)
    parser.add_argument("--stock", default=None)


def _args_product_id(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)


def _args_add_expense(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--description", required=True)
    parser.add_argument("--amount", required=True)
    parser.add_argument(
        "--category",
        choices=[member.value for member in ExpenseCategory],
        default=ExpenseCategory.OPERATING.value,
    )


def _args_expense_id(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--expense-id", required=True)


def _args_customer(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--customer-name", required=True)
    parser.add_argument("--phone", required=True)
    parser.add_argument(
        "--delivery",
        choices=[member.value for member in DeliveryDuration],
        default=DeliveryDuration.HOURS_48.value,
    )


def _args_sale(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        required=True,
        metavar="PRODUCT_ID:QTY[:PRICE]",
        help="Cart line; repeat for several lines. PRICE overrides the catalog price.",
    )
    _args_customer(parser)
    parser.add_argument("--address", default="")
    parser.add_argument("--idempotency-key", default=None)


def _args_amend_sale(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sale-id", required=True)
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        required=True,
        metavar="PRODUCT_ID:QTY:PRICE",
        help="Replacement line; repeat for several lines.",
    )
    _args_customer(parser)


def _args_return_sale(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sale-id", required=True)
    parser.add_argument("--reason", required=True)


def _args_date_range(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", required=True, help="First day, YYYY-MM-DD.")
    parser.add_argument("--end", required=True, help="Last day, YYYY-MM-DD.")


def positive_limit(raw: str) -> int:
    """Argparse type for ``--limit``: a whole number of at least one."""
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a whole number: {raw!r}") from exc
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def _args_limit(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--limit", type=positive_limit, default=5)


def _args_search_sales(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--term", default="")
    parser.add_argument("--start", default=None)
    parser.add_argument("--end", default=None)
    parser.add_argument("--returns-only", action="store_true")


def _args_search_customers(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--term", default="")


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    spec = _lookup(args, command_table)
    return spec.execute(context, args)


def _lookup(args: argparse.Namespace, command_table: Mapping[str, CommandSpec]) -> CommandSpec:
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec


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


def parse_decimal(raw: str, field_name: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValidationError(f"{field_name} is not a number: {raw!r}") from exc


def parse_int(raw: str, field_name: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{field_name} is not a whole number: {raw!r}") from exc


def parse_day(raw: Optional[str], field_name: str) -> Optional[date]:
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(f"{field_name} must be a YYYY-MM-DD date: {raw!r}") from exc


def split_labels(raw: str) -> List[str]:
    return [label.strip() for label in raw.split(",") if label.strip()]


def translate_cart_line(raw: str) -> reconciliation.CartLine:
    """Parse ``PRODUCT_ID:QTY[:PRICE]`` into a cart line."""
    parts = raw.split(":")
    if len(parts) not in (2, 3) or not parts[0].strip():
        raise ValidationError(f"Cart line must look like PRODUCT_ID:QTY[:PRICE], got {raw!r}")
    price = parse_decimal(parts[2], "Price") if len(parts) == 3 else None
    return reconciliation.CartLine(
        product_id=parts[0].strip(),
        quantity=parse_int(parts[1], "Quantity"),
        unit_price=price,
    )


def translate_amended_line(raw: str) -> reconciliation.AmendedLine:
    """Parse ``PRODUCT_ID:QTY:PRICE`` into an amended line."""
    parts = raw.split(":")
    if len(parts) != 3 or not parts[0].strip():
        raise ValidationError(f"Item must look like PRODUCT_ID:QTY:PRICE, got {raw!r}")
    return reconciliation.AmendedLine(
        product_id=parts[0].strip(),
        quantity=parse_int(parts[1], "Quantity"),
        price=parse_decimal(parts[2], "Price"),
    )


def translate_product_fields(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate the shared product arguments into keyword arguments."""
    return {
        "product_name": args.name,
        "category": args.category,
        "cost_price": parse_decimal(args.cost_price, "Cost price"),
        "selling_price": parse_decimal(args.selling_price, "Selling price"),
        "stock": parse_int(args.stock, "Stock"),
    }


def translate_product_changes(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate edit-product arguments, skipping the ones not given."""
    return {
        "product_name": args.name,
        "category": args.category,
        "color": args.color,
        "size": args.size,
        "cost_price": None if args.cost_price is None else parse_decimal(args.cost_price, "Cost price"),
        "selling_price": None if args.selling_price is None else parse_decimal(args.selling_price, "Selling price"),
        "stock": None if args.stock is None else parse_int(args.stock, "Stock"),
    }


def translate_sale(args: argparse.Namespace) -> reconciliation.CompleteSaleCommand:
    """Translate CLI args into a checkout command."""
    return reconciliation.CompleteSaleCommand(
        cart=tuple(translate_cart_line(raw) for raw in args.items),
        customer=reconciliation.CustomerDetails(
            name=args.customer_name,
            phone=args.phone,
            address=args.address,
            delivery_duration=args.delivery,
        ),
        idempotency_key=args.idempotency_key,
    )


def translate_amend_sale(args: argparse.Namespace) -> reconciliation.AmendSaleCommand:
    """Translate CLI args into an amendment command."""
    return reconciliation.AmendSaleCommand(
        sale_id=args.sale_id,
        customer_name=args.customer_name,
        customer_phone=args.phone,
        delivery_duration=args.delivery,
        items=tuple(translate_amended_line(raw) for raw in args.items),
    )


def translate_return_sale(args: argparse.Namespace) -> reconciliation.ReturnSaleCommand:
    return reconciliation.ReturnSaleCommand(sale_id=args.sale_id, reason=args.reason)


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(
        context,
        product_id=args.product_id,
        color=args.color,
        size=args.size,
        **translate_product_fields(args),
    )
    print(f"Added product {product.product_id}")
    return 0


def run_add_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the batch add-product workflow in the BLL."""
    products = core_logic.add_product_variants(
        context,
        colors=split_labels(args.colors),
        sizes=split_labels(args.sizes),
        **translate_product_fields(args),
    )
    for product in products:
        print(f"Added product {product.product_id} ({product.color} / {product.size})")
    return 0


def run_edit_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.edit_product(context, args.product_id, **translate_product_changes(args))
    print(f"Updated product {product.product_id}")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_product(context, args.product_id)
    print(f"Deleted product {args.product_id}")
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expense = core_logic.add_expense(
        context,
        description=args.description,
        amount=parse_decimal(args.amount, "Amount"),
        category=ExpenseCategory(args.category),
    )
    print(f"Recorded expense {expense.expense_id}")
    return 0


def run_delete_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_expense(context, args.expense_id)
    print(f"Deleted expense {args.expense_id}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the checkout workflow via the reconciliation engine."""
    sale = reconciliation.complete_sale(context, translate_sale(args))
    print(f"Sale {sale.sale_id}: total {format_money(sale.total_amount)}")
    return 0


def run_amend_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the amendment workflow via the reconciliation engine."""
    sale = reconciliation.amend_sale(context, translate_amend_sale(args))
    print(f"Sale {sale.sale_id} amended: total {format_money(sale.total_amount)}")
    return 0


def run_return_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the return workflow via the reconciliation engine."""
    sale = reconciliation.return_sale(context, translate_return_sale(args))
    print(f"Sale {sale.sale_id} returned")
    return 0


def format_money(value: Decimal) -> str:
    return f"{value:,.2f}"


def format_change(value: Optional[Decimal]) -> str:
    if value is None:
        return "n/a"
    return f"{value:+.1f}%"


def _today(context: core_logic.RuntimeContext) -> datetime:
    return datetime.now(context.settings.tzinfo)


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the headline dashboard figures."""
    stats = analytics.compute_dashboard_stats(
        core_logic.take_snapshot(context),
        today=_today(context),
        tz=context.settings.tzinfo,
    )
    print(f"Shop:            {context.settings.shop_name}")
    print(f"Today's sales:   {format_money(stats.today_sales)}")
    print(f"Net profit:      {format_money(stats.net_profit)}")
    print(f"Total expenses:  {format_money(stats.total_expenses)}")
    print(f"Inventory value: {format_money(stats.inventory_value)}")
    return 0


def run_metrics(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print range metrics between two inclusive days."""
    metrics = analytics.compute_range_metrics(
        core_logic.take_snapshot(context),
        parse_day(args.start, "Start"),
        parse_day(args.end, "End"),
        tz=context.settings.tzinfo,
    )
    print(f"Revenue:  {format_money(metrics.revenue)}")
    print(f"Invoices: {metrics.invoice_count}")
    print(f"COGS:     {format_money(metrics.cogs)}")
    print(f"Expenses: {format_money(metrics.expense_total)}")
    print(f"Profit:   {format_money(metrics.profit)}")
    return 0


def run_compare(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print each comparison period with its percentage changes."""
    report = analytics.compute_period_comparisons(
        core_logic.take_snapshot(context),
        today=_today(context),
        tz=context.settings.tzinfo,
    )
    for period in (report.day, report.week, report.month):
        print(
            f"{period.label:<6} {period.current_start}..{period.current_end}"
            f" revenue {format_money(period.current.revenue)} ({format_change(period.revenue_change)})"
            f" invoices {period.current.invoice_count} ({format_change(period.invoice_change)})"
            f" profit {format_money(period.current.profit)} ({format_change(period.profit_change)})"
        )
    return 0


def run_kpis(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    kpis = analytics.compute_kpis(core_logic.take_snapshot(context))
    print(f"Gross margin:       {kpis.gross_margin_pct:.1f}%")
    print(f"Average sale value: {format_money(kpis.average_sale_value)}")
    print(f"Return on spend:    {kpis.return_on_spend_pct:.1f}%")
    print(f"Expense ratio:      {kpis.expense_ratio_pct:.1f}%")
    return 0


def run_top_sellers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sellers = analytics.top_sellers(core_logic.take_snapshot(context), limit=args.limit)
    for rank, seller in enumerate(sellers, start=1):
        print(f"{rank}. {seller.product_name} [{seller.product_id}]: {seller.quantity}")
    return 0


def run_follow_ups(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List sales whose delivery window closed within the last week."""
    sales = analytics.follow_up_candidates(
        core_logic.take_snapshot(context),
        now=_today(context),
        tz=context.settings.tzinfo,
    )
    if not sales:
        print("No follow-ups due.")
    for sale in sales:
        print(f"{sale.sale_id} {sale.customer_name} {sale.customer_phone} ({sale.delivery_duration})")
    return 0


def run_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sales = analytics.search_sales(
        core_logic.list_sales(context),
        term=args.term,
        start=parse_day(args.start, "Start"),
        end=parse_day(args.end, "End"),
        returns_only=args.returns_only,
        tz=context.settings.tzinfo,
    )
    for sale in sales:
        status = "RETURNED" if sale.is_returned else "ACTIVE"
        print(f"{sale.sale_id} {sale.date_iso} {sale.customer_name} {format_money(sale.total_amount)} {status}")
    return 0


def run_customers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customers = analytics.search_customers(core_logic.take_snapshot(context), args.term)
    for customer in customers:
        print(f"{customer.customer_name} {customer.phone} spent {format_money(customer.total_spent)}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, (ValidationError, BusinessRuleViolation)):
        return 2
    if isinstance(error, (FileNotFoundError, NotFoundError)):
        return 3
    if isinstance(error, RemoteOperationError):
        return 4
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after a write command."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RemoteOperationError(f"Unable to save workbook: {error}") from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution.

    Write commands save the workbook even when they fail part-way, so the
    file always holds the steps that were committed.
    """
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        spec = _lookup(args, command_table)
        if spec.mutates:
            core_logic.ensure_schema_version(context)
    except Exception as error:
        return handle_cli_error(error)

    try:
        exit_code = dispatch_command(context, args, command_table)
    except Exception as error:
        exit_code = handle_cli_error(error)

    if spec.mutates:
        try:
            persist_workbook(context)
        except Exception as error:
            return handle_cli_error(error)
    return exit_code
