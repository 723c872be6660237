"""Command-line entry points for the Atacado ERP toolkit.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Credentials given with ``--email``/``--password`` (or the
``ATACADO_EMAIL``/``ATACADO_PASSWORD`` environment variables) are checked
once and the resulting session is handed to every executor.
"""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import auth, catalog, core_logic, finance, log, notifications, orders, reporting
from .constants import OrderStatus, RecurrenceFrequency, TransactionKind, TransactionStatus, UserRole
from .errors import (
    InvalidCredentialError,
    InvalidTransition,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    ValidationError,
)

Executor = Callable[[core_logic.RuntimeContext, Optional[core_logic.Session], argparse.Namespace], int]
SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Executor
    writes: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="atacado-cli",
        description="Command-line tools for the Atacado ERP workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to a search from the cwd).",
    )
    parser.add_argument("--email", default=os.environ.get("ATACADO_EMAIL"), help="Sign-in e-mail.")
    parser.add_argument("--password", default=os.environ.get("ATACADO_PASSWORD"), help="Sign-in password.")
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands. The workbook is saved after them."""
    specs = {
        "add-user": register_add_user_command(),
        "add-product": register_add_product_command(),
        "create-order": register_create_order_command(),
        "start-order": register_transition_command(
            "start-order", "Start processing a new order.", run_start_order
        ),
        "invoice-order": register_transition_command(
            "invoice-order", "Mark an order as invoiced.", run_invoice_order
        ),
        "send-order": register_transition_command(
            "send-order", "Mark an order as sent for delivery.", run_send_order
        ),
        "finish-order": register_transition_command(
            "finish-order", "Close a delivered order (managers only).", run_finish_order
        ),
        "cancel-order": register_cancel_order_command(),
        "reassign-order": register_reassign_order_command(),
        "purge-orders": register_purge_orders_command(),
        "add-transaction": register_add_transaction_command(),
        "toggle-transaction": register_transaction_id_command(
            "toggle-transaction", "Flip a transaction between pending and paid.", run_toggle_transaction
        ),
        "delete-transaction": register_transaction_id_command(
            "delete-transaction", "Delete one of your transactions.", run_delete_transaction
        ),
        "read-notifications": register_read_notifications_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "orders": register_orders_command(),
        "monthly": register_monthly_command(),
        "notifications": register_notifications_command(),
        "transactions": register_transactions_command(),
        "finance-summary": register_finance_summary_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_add_user_command() -> CommandSpec:
    """Register the parser and executor for ``add-user``."""
    name = "add-user"
    help_text = "Register a user (clients may sign themselves up)."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--user-email", required=True)
        parser.add_argument("--user-password", required=True)
        parser.add_argument("--role", choices=[role.value for role in UserRole], default=UserRole.CLIENT.value)
        parser.add_argument("--cpf-cnpj", default=None)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--address", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_user, writes=True)


def register_add_product_command() -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--code", required=True)
        parser.add_argument("--description", required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--group", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product, writes=True)


def register_create_order_command() -> CommandSpec:
    """Register the parser and executor for ``create-order``."""
    name = "create-order"
    help_text = "Check out a cart as a new order."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            action="append",
            required=True,
            metavar="PRODUCT_ID:QTY",
            help="Cart line; repeat for several products.",
        )
        parser.add_argument("--seller-id", default=None)
        parser.add_argument("--client-id", default=None, help="Managers only: order on behalf of a client.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_create_order, writes=True)


def register_transition_command(name: str, help_text: str, execute: Executor) -> CommandSpec:
    """Register a state-machine command that only takes an order id."""

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("order_id")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, writes=True)


def register_cancel_order_command() -> CommandSpec:
    """Register the parser and executor for ``cancel-order``."""
    name = "cancel-order"
    help_text = "Cancel an order that was not sent yet."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("order_id")
        parser.add_argument("--reason", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cancel_order, writes=True)


def register_reassign_order_command() -> CommandSpec:
    """Register the parser and executor for ``reassign-order``."""
    name = "reassign-order"
    help_text = "Hand an open order to another seller."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("order_id")
        parser.add_argument("--seller-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reassign_order, writes=True)


def register_purge_orders_command() -> CommandSpec:
    """Register the parser and executor for ``purge-orders``."""
    name = "purge-orders"
    help_text = "Delete ALL orders. Irreversible."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--yes", action="store_true", help="Confirm the purge.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purge_orders, writes=True)


def register_add_transaction_command() -> CommandSpec:
    """Register the parser and executor for ``add-transaction``."""
    name = "add-transaction"
    help_text = "Record an income or expense, optionally in installments."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--description", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--type", dest="kind", choices=[kind.value for kind in TransactionKind], required=True)
        parser.add_argument("--due-date", required=True, help="YYYY-MM-DD")
        parser.add_argument("--category", default=finance.DEFAULT_CATEGORY)
        parser.add_argument(
            "--status",
            choices=[status.value for status in TransactionStatus],
            default=TransactionStatus.PENDING.value,
        )
        parser.add_argument("--payment-method", default=None)
        parser.add_argument(
            "--frequency",
            choices=[frequency.value for frequency in RecurrenceFrequency],
            default=None,
            help="Makes the transaction recurring.",
        )
        parser.add_argument("--count", type=int, default=None, help="Number of installments (>= 2).")
        parser.add_argument("--observation", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_transaction, writes=True)


def register_transaction_id_command(name: str, help_text: str, execute: Executor) -> CommandSpec:
    """Register a transaction command that only takes a transaction id."""

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_id")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, writes=True)


def register_read_notifications_command() -> CommandSpec:
    """Register the parser and executor for ``read-notifications``."""
    name = "read-notifications"
    help_text = "Mark one notification (or all of them) as read."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("notification_id", nargs="?", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_read_notifications, writes=True
    )


def register_orders_command() -> CommandSpec:
    """Register the parser and executor for ``orders``."""
    name = "orders"
    help_text = "List the orders you can see."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None)
        parser.add_argument("--status", choices=[status.value for status in OrderStatus], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_orders_report)


def register_monthly_command() -> CommandSpec:
    """Register the parser and executor for ``monthly``."""
    name = "monthly"
    help_text = "Display monthly revenue history."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_monthly_report)


def register_notifications_command() -> CommandSpec:
    """Register the parser and executor for ``notifications``."""
    name = "notifications"
    help_text = "List your notifications."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--unread", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_notifications_report)


def register_transactions_command() -> CommandSpec:
    """Register the parser and executor for ``transactions``."""
    name = "transactions"
    help_text = "List your transactions."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--year", type=int, default=None)
        parser.add_argument("--month", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_transactions_report)


def register_finance_summary_command() -> CommandSpec:
    """Register the parser and executor for ``finance-summary``."""
    name = "finance-summary"
    help_text = "Display the month's totals and next month's projection."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--year", type=int, default=None)
        parser.add_argument("--month", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_finance_summary)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context and validate the workbook layout."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def resolve_session(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Optional[core_logic.Session]:
    """Sign in with the global credentials, if any were given."""
    if not getattr(args, "email", None):
        return None
    return auth.sign_in(context, args.email, args.password or "")


def require_session(session: Optional[core_logic.Session]) -> core_logic.Session:
    if session is None:
        raise PermissionDeniedError("Sign in with --email and --password to run this command")
    return session


def dispatch_command(
    context: core_logic.RuntimeContext,
    session: Optional[core_logic.Session],
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, session, args)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def parse_item(raw: str) -> orders.OrderLineCommand:
    """Turn ``PRODUCT_ID:QTY`` into an order line."""
    product_id, separator, quantity = raw.rpartition(":")
    if not separator or not product_id:
        raise ValidationError(f"Items must look like PRODUCT_ID:QTY (got {raw!r})")
    try:
        return orders.OrderLineCommand(product_id=product_id, quantity=int(quantity))
    except ValueError as exc:
        raise ValidationError(f"Quantity must be an integer (got {quantity!r})") from exc


def parse_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(f"Dates must use YYYY-MM-DD (got {raw!r})") from exc


def translate_add_user(args: argparse.Namespace) -> auth.SignUpCommand:
    """Translate CLI args into a sign-up command object."""
    return auth.SignUpCommand(
        name=args.name,
        email=args.user_email,
        password=args.user_password,
        role=UserRole(args.role),
        cpf_cnpj=args.cpf_cnpj,
        phone=args.phone,
        address=args.address,
    )


def translate_create_order(args: argparse.Namespace) -> orders.CreateOrderCommand:
    """Translate CLI args into a cart checkout command object."""
    return orders.CreateOrderCommand(
        lines=[parse_item(raw) for raw in args.item],
        seller_id=args.seller_id,
        client_id=args.client_id,
    )


def translate_add_transaction(args: argparse.Namespace) -> finance.TransactionCommand:
    """Translate CLI args into a transaction command object."""
    is_recurring = args.frequency is not None
    return finance.TransactionCommand(
        description=args.description,
        amount=args.amount,
        kind=TransactionKind(args.kind),
        due_date=parse_date(args.due_date),
        category=args.category,
        status=TransactionStatus(args.status),
        payment_method=args.payment_method,
        is_recurring=is_recurring,
        frequency=RecurrenceFrequency(args.frequency) if is_recurring else None,
        recurrence_count=args.count,
        observation=args.observation,
    )


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def _print_order(order) -> None:
    seller = order.seller_name or "-"
    print(
        f"{order.order_id}  {orders.status_label(order.status):<13} "
        f"R$ {order.total:>10.2f}  {order.client_name}  (vendedor: {seller})"
    )


def run_add_user(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    """Execute the sign-up workflow."""
    user = auth.sign_up(context, translate_add_user(args), created_by=session)
    print(f"Created {user.role.value} {user.user_id} <{user.email}>")
    return 0


def run_add_product(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = catalog.add_product(
        context,
        require_session(session),
        code=args.code,
        description=args.description,
        price=args.price,
        group=args.group,
    )
    print(f"Added product {product.product_id} ({product.code})")
    return 0


def run_create_order(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    """Execute the checkout workflow via the BLL."""
    order = orders.create_order(context, require_session(session), translate_create_order(args))
    _print_order(order)
    return 0


def run_start_order(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    _print_order(orders.start_processing(context, require_session(session), args.order_id))
    return 0


def run_invoice_order(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    _print_order(orders.mark_invoiced(context, require_session(session), args.order_id))
    return 0


def run_send_order(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    _print_order(orders.mark_sent(context, require_session(session), args.order_id))
    return 0


def run_finish_order(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    _print_order(orders.finish_order(context, require_session(session), args.order_id))
    return 0


def run_cancel_order(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    _print_order(orders.cancel_order(context, require_session(session), args.order_id, args.reason))
    return 0


def run_reassign_order(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    _print_order(orders.reassign_seller(context, require_session(session), args.order_id, args.seller_id))
    return 0


def run_purge_orders(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    """Execute the bulk purge after an explicit confirmation flag."""
    if not args.yes:
        raise ValidationError("Refusing to purge orders without --yes")
    removed = orders.purge_orders(context, require_session(session))
    print(f"Deleted {removed} orders")
    return 0


def run_add_transaction(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    """Execute the add-transaction workflow via the BLL."""
    rows = finance.add_transaction(context, require_session(session), translate_add_transaction(args))
    for row in rows:
        print(f"{row.transaction_id}  {row.due_date.isoformat()}  R$ {row.amount:.2f}  {row.status.value}  {row.observation}")
    return 0


def run_toggle_transaction(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    row = finance.toggle_transaction_status(context, require_session(session), args.transaction_id)
    print(f"{row.transaction_id} is now {row.status.value}")
    return 0


def run_delete_transaction(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    finance.delete_transaction(context, require_session(session), args.transaction_id)
    print(f"Deleted {args.transaction_id}")
    return 0


def run_read_notifications(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    caller = require_session(session)
    if args.notification_id:
        notifications.mark_notification_read(context, caller, args.notification_id)
        print(f"Marked {args.notification_id} as read")
    else:
        count = notifications.mark_all_notifications_read(context, caller)
        print(f"Marked {count} notifications as read")
    return 0


def run_orders_report(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    """List visible orders with their SLA bucket."""
    status = OrderStatus(args.status) if args.status else None
    rows = orders.list_orders(context, require_session(session), search=args.search, status=status)
    for order in rows:
        _print_order(order)
        elapsed = orders.order_sla(order)
        if elapsed is not None:
            bucket = orders.classify_sla(elapsed, context.settings)
            print(f"    SLA: {int(elapsed.total_seconds() // 60)} min ({bucket.value})")
    if not rows:
        print("No orders found.")
    return 0


def run_monthly_report(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    """Print the monthly revenue history of the visible orders."""
    rows = orders.list_orders(context, require_session(session))
    for report in reporting.monthly_history(rows):
        year, month = report.period
        seller = report.top_seller.name if report.top_seller else "---"
        client = report.top_client.name if report.top_client else "---"
        print(
            f"{month:02d}/{year}  R$ {report.total:>10.2f}  pedidos={report.order_count}  "
            f"ticket médio=R$ {report.average_ticket:.2f}  vendedor={seller}  cliente={client}"
        )
    overview = reporting.stats_overview(rows)
    print(
        f"Total: R$ {overview.total_sales:.2f}  abertos={overview.open_orders}  "
        f"concluídos={overview.finished_orders}  cancelados={overview.cancelled_orders}"
    )
    return 0


def run_notifications_report(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    rows = notifications.list_notifications(context, require_session(session), unread_only=args.unread)
    for row in rows:
        marker = " " if row.is_read else "*"
        print(f"{marker} {row.notification_id}  {row.created_at:%d/%m/%Y %H:%M}  {row.title}: {row.message}")
    if not rows:
        print("No notifications.")
    return 0


def run_transactions_report(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    rows = finance.list_transactions(context, require_session(session), year=args.year, month=args.month)
    for row in rows:
        sign = "+" if row.kind is TransactionKind.INCOME else "-"
        print(
            f"{row.transaction_id}  {row.due_date.isoformat()}  {sign}R$ {row.amount:.2f}  "
            f"{row.status.value:<7}  {row.category}  {row.description} {row.observation}".rstrip()
        )
    if not rows:
        print("No transactions found.")
    return 0


def run_finance_summary(context: core_logic.RuntimeContext, session: Optional[core_logic.Session], args: argparse.Namespace) -> int:
    """Print the month's dashboard figures and next month's projection."""
    today = datetime.now().date()
    year = args.year or today.year
    month = args.month or today.month
    rows: List = finance.list_transactions(context, require_session(session))
    summary = finance.monthly_summary(rows, year, month)
    projection = finance.project_next_month(rows, date(year, month, 1))
    print(f"{month:02d}/{year}")
    print(f"  Receitas:  R$ {summary.income:.2f}")
    print(f"  Despesas:  R$ {summary.expenses:.2f}  (pendentes: R$ {summary.pending_expenses:.2f})")
    print(f"  Saldo:     R$ {summary.balance:.2f}")
    print(f"Projeção {projection.month:02d}/{projection.year}: R$ {projection.balance:.2f}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (ValidationError, InvalidTransition, PermissionDeniedError, InvalidCredentialError)):
        log.error("%s", error)
        return 2
    if isinstance(error, NotFoundError):
        log.error("%s", error)
        return 4
    if isinstance(error, PersistenceError):
        log.error("%s", error)
        return 5
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
        session = resolve_session(context, args)
        exit_code = dispatch_command(context, session, args, command_table)
        if exit_code == 0 and command_table[args.command].writes:
            core_logic.persist_context(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
