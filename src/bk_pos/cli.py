"""Command-line entry points for BK POS.

All orchestration in this module is limited to argparse wiring, access checks
and translating command-line arguments into calls on the ledger, the
recorder and the reporting queries. Ledger state lives in memory, so a
single invocation starts from the seed workbook; the ``shell`` sub-command
reads one command per line from stdin and runs them all against one session.
"""

from __future__ import annotations

import argparse
import shlex
import sys
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, TextIO, Tuple

from . import access_control, core_logic, log, reporting, stock_ledger, transaction_recorder
from .constants import Permission, PaymentMethod, Role


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def parse_money(raw: str) -> Decimal:
    """argparse ``type`` for non-negative decimal amounts."""
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: {raw!r}") from exc
    if not value.is_finite() or value < 0:
        raise argparse.ArgumentTypeError(f"invalid amount: {raw!r}")
    return value


def parse_cart_item(raw: str) -> Tuple[str, int]:
    """argparse ``type`` for ``PRODUCT_ID:QUANTITY`` cart items."""
    product_id, sep, quantity_raw = raw.rpartition(":")
    if not sep or not product_id:
        raise argparse.ArgumentTypeError(f"expected PRODUCT_ID:QUANTITY, got {raw!r}")
    try:
        quantity = int(quantity_raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid quantity in {raw!r}") from exc
    return product_id, quantity


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bk-pos",
        description="Command-line tools for the BK POS stock ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    parser.add_argument(
        "--user-id",
        dest="user_id",
        default=None,
        help="Identifier of the user performing the command.",
    )
    return parser


def build_session_parser() -> Tuple[argparse.ArgumentParser, Mapping[str, CommandSpec]]:
    """Parser and command table for one ``shell`` line: every command but ``shell``."""
    parser = argparse.ArgumentParser(prog="bk-pos>", add_help=False)
    parser.add_argument("--user-id", dest="user_id", default=None)
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return parser, build_command_table([*write_specs.values(), *read_specs.values()])


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    session_spec = register_shell_command(subparsers)
    session_spec.register(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values(), session_spec])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as distributions and sales."""
    specs = {
        "add-category": register_add_category_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "receive": register_receive_command(subparsers),
        "distribute": register_distribute_command(subparsers),
        "sale": register_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "catalog": register_catalog_command(subparsers),
        "warehouse": register_warehouse_command(subparsers),
        "rider-stock": register_rider_stock_command(subparsers),
        "log": register_log_command(subparsers),
        "summary": register_summary_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_spec(name: str, help_text: str, execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]) -> CommandSpec:
    """Spec for a sub-command that takes no arguments of its own."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_add_category_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-category``."""
    name = "add-category"
    help_text = "Register a new product category."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category-id", required=True)
        parser.add_argument("--category-name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_category)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--product-name", required=True)
        parser.add_argument("--category-id", required=True)
        parser.add_argument("--unit-price", required=True, type=parse_money)
        parser.add_argument("--unit", default="pcs")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Change a product's name and/or price."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--product-name", default=None)
        parser.add_argument("--unit-price", default=None, type=parse_money)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_receive_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``receive``."""
    name = "receive"
    help_text = "Receive stock into the warehouse."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", required=True, type=int)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_receive)


def register_distribute_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``distribute``."""
    name = "distribute"
    help_text = "Move stock from the warehouse to a rider."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--rider-id", required=True)
        parser.add_argument("--quantity", required=True, type=int)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_distribute)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale from a rider's stock at catalog prices."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--rider-id",
            default=None,
            help="Selling rider (defaults to --user-id).",
        )
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            type=parse_cart_item,
            help="Cart line as PRODUCT_ID:QUANTITY; repeat for more lines.",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )
        parser.add_argument("--tendered", default=None, type=parse_money)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_catalog_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``catalog``."""
    return _simple_spec("catalog", "Display categories and products.", run_catalog_report)


def register_warehouse_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``warehouse``."""
    return _simple_spec("warehouse", "Display warehouse, rider and on-hand stock.", run_warehouse_report)


def register_rider_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rider-stock``."""
    name = "rider-stock"
    help_text = "Display a rider's allocated stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--rider-id", default=None, help="Rider to show (defaults to --user-id).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_rider_stock_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    return _simple_spec("log", "Display the transaction log.", run_log_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    return _simple_spec("summary", "Display sales totals and the conservation check.", run_summary_report)


def register_shell_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``shell``."""
    return _simple_spec("shell", "Run commands read from stdin against one in-memory session.", run_shell)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
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


def require_user_id(args: argparse.Namespace) -> str:
    """Return the acting user id or fail with a business error."""
    user_id = getattr(args, "user_id", None)
    if not user_id:
        raise core_logic.BusinessRuleViolation("This command requires --user-id")
    return user_id


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "product_id": args.product_id,
        "product_name": args.product_name,
        "category_id": args.category_id,
        "unit_price": args.unit_price,
        "unit": args.unit,
    }


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an update-product request."""
    return {
        "product_name": args.product_name,
        "unit_price": args.unit_price,
    }


def translate_sale(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into a sale request; the rider defaults to the acting user."""
    return {
        "rider_id": args.rider_id or require_user_id(args),
        "items": list(args.items),
        "payment_method": PaymentMethod(args.payment_method),
        "amount_tendered": args.tendered,
    }


def run_add_category(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-category workflow."""
    access_control.authorize(context, require_user_id(args), Permission.MANAGE_CATEGORIES)
    category = core_logic.add_category(context, category_id=args.category_id, category_name=args.category_name)
    print(f"Added category {category.category_id} ({category.category_name})")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    access_control.authorize(context, require_user_id(args), Permission.MANAGE_PRODUCTS)
    payload = translate_add_product(args)
    product = core_logic.add_product(context, **payload)
    print(f"Added product {product.product_id} ({product.product_name}) at {product.unit_price}/{product.unit}")
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow."""
    access_control.authorize(context, require_user_id(args), Permission.MANAGE_PRODUCTS)
    payload = translate_update_product(args)
    product = core_logic.update_product(context, args.product_id, **payload)
    print(f"Updated product {product.product_id}: {product.product_name} at {product.unit_price}/{product.unit}")
    return 0


def run_receive(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the warehouse receipt workflow."""
    access_control.authorize(context, require_user_id(args), Permission.MANAGE_WAREHOUSE)
    on_hand = stock_ledger.receive_stock(context, args.product_id, args.quantity)
    print(f"Received {args.quantity} x {args.product_id} (warehouse={on_hand})")
    return 0


def run_distribute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the distribution workflow."""
    access_control.authorize(context, require_user_id(args), Permission.DISTRIBUTE_STOCK)
    warehouse_after, rider_after = stock_ledger.distribute(context, args.product_id, args.rider_id, args.quantity)
    print(
        f"Distributed {args.quantity} x {args.product_id} to {args.rider_id} "
        f"(warehouse={warehouse_after}, rider={rider_after})"
    )
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the recorder."""
    payload = translate_sale(args)
    access_control.authorize_sale(context, require_user_id(args), payload["rider_id"])
    cart = transaction_recorder.cart_from_catalog(context, payload["items"])
    record = transaction_recorder.record_sale(
        context,
        payload["rider_id"],
        cart,
        payload["payment_method"],
        payload["amount_tendered"],
    )
    print(
        f"Sale {record.transaction_id}: subtotal={record.subtotal} tax={record.tax} "
        f"total={record.total} change={record.change}"
    )
    return 0


def run_catalog_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the catalog grouped by category."""
    access_control.authorize(context, require_user_id(args), Permission.VIEW_DASHBOARD)
    for category in core_logic.list_categories(context):
        print(f"[{category.category_id}] {category.category_name}")
        for product in core_logic.list_products(context, category_id=category.category_id):
            print(f"  {product.product_id}\t{product.product_name}\t{product.unit_price}/{product.unit}")
    return 0


def run_warehouse_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print per-product warehouse, rider and on-hand quantities."""
    access_control.authorize(context, require_user_id(args), Permission.VIEW_REPORTS)
    print("product\twarehouse\triders\ton_hand")
    for product_id, levels in reporting.stock_overview(context).items():
        print(f"{product_id}\t{levels['warehouse']}\t{levels['riders']}\t{levels['on_hand']}")
    return 0


def run_rider_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one rider's stock; riders may only view their own."""
    user = access_control.authorize(context, require_user_id(args), Permission.VIEW_DASHBOARD)
    rider_id = args.rider_id or user.user_id
    if user.role is Role.RIDER and rider_id != user.user_id:
        raise core_logic.AccessDenied(user.user_id, Permission.VIEW_DASHBOARD)
    core_logic.get_rider(context, rider_id)
    for (_, product_id), quantity in stock_ledger.rider_stock_snapshot(context, rider_id).items():
        print(f"{product_id}\t{quantity}")
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the transaction log."""
    access_control.authorize(context, require_user_id(args), Permission.VIEW_REPORTS)
    for record in transaction_recorder.list_transactions(context):
        items = ", ".join(f"{line.product_id}x{line.quantity}@{line.unit_price}" for line in record.lines)
        print(
            f"{record.transaction_id}\t{record.timestamp_iso}\t{record.rider_id}\t"
            f"{record.payment_method.value}\t{record.total}\t{items}"
        )
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print sales totals and flag any conservation violation."""
    access_control.authorize(context, require_user_id(args), Permission.VIEW_REPORTS)
    summary = reporting.sales_summary(context)
    print(f"transactions: {summary['transaction_count']}")
    print(f"subtotal: {summary['subtotal']}  tax: {summary['tax']}  total: {summary['total']}")
    for method, amount in summary["by_payment_method"].items():
        print(f"  {method}: {amount}")
    for rider_id, amount in summary["by_rider"].items():
        print(f"  rider {rider_id}: {amount}")
    violations = reporting.verify_conservation(context)
    if violations:
        for violation in violations:
            print(f"conservation violated: {violation}")
        return 1
    print("stock conservation: ok")
    return 0


def run_shell(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    stream: Optional[TextIO] = None,
) -> int:
    """Run one command per input line against ``context``.

    Blank lines and ``#`` comments are skipped. A line without ``--user-id``
    inherits the one given to ``shell``. A failing line is reported and the
    session continues; the return value is the highest exit code seen.
    """
    session_parser, command_table = build_session_parser()
    worst = 0
    for line_number, raw in enumerate(stream if stream is not None else sys.stdin, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            line_args = session_parser.parse_args(shlex.split(line))
        except SystemExit:
            log.error("Line %d: could not parse %r", line_number, line)
            worst = max(worst, 1)
            continue
        if line_args.user_id is None:
            line_args.user_id = getattr(args, "user_id", None)
        try:
            exit_code = dispatch_command(context, line_args, command_table)
        except Exception as error:
            exit_code = handle_cli_error(error)
        worst = max(worst, exit_code)
    return worst


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("[%s] %s", error.code, error)
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
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
