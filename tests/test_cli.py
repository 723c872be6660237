"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from datetime import date
from decimal import Decimal
from typing import Iterable

import pytest

from atacado_erp import auth, catalog, cli, constants, core_logic, finance, orders, setup_excel
from atacado_erp.errors import (
    InvalidCredentialError,
    InvalidTransition,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    ValidationError,
)

from conftest import CLIENT_CNPJ, PASSWORD

WRITE_COMMANDS = {
    "add-user",
    "add-product",
    "create-order",
    "start-order",
    "invoice-order",
    "send-order",
    "finish-order",
    "cancel-order",
    "reassign-order",
    "purge-orders",
    "add-transaction",
    "toggle-transaction",
    "delete-transaction",
    "read-notifications",
}

READ_COMMANDS = {
    "orders",
    "monthly",
    "notifications",
    "transactions",
    "finance-summary",
}

MANAGER_EMAIL = "gerente@atacado.com"

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata(monkeypatch):
    """build_parser should set user-facing program metadata."""

    monkeypatch.delenv("ATACADO_EMAIL", raising=False)
    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "atacado-cli"
    assert "Atacado" in (parser.description or "")


def test_build_parser_reads_credentials_from_environment(monkeypatch):
    """Credentials default to the ATACADO_* environment variables."""

    monkeypatch.setenv("ATACADO_EMAIL", "vera@atacado.com")
    monkeypatch.setenv("ATACADO_PASSWORD", "from-env")
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    namespace = parser.parse_args(["orders"])
    assert namespace.email == "vera@atacado.com"
    assert namespace.password == "from-env"


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire all read and write sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_are_flagged_as_writes(subparsers_action):
    """Only mutating commands make main save the workbook."""

    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    assert all(spec.writes for spec in specs.values())
    for name in WRITE_COMMANDS:
        assert name in subparsers_action.choices


def test_register_read_commands_never_write(subparsers_action):
    """register_read_commands should return read-only CommandSpec objects."""

    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    assert not any(spec.writes for spec in specs.values())


# ---------------------------------------------------------------------------
# Command arguments
# ---------------------------------------------------------------------------


def test_create_order_accepts_repeated_items(cli_parser):
    cli.configure_subcommands(cli_parser)
    namespace = cli_parser.parse_args(
        ["create-order", "--item", "P1:2", "--item", "P2:1", "--seller-id", "U-SELLER"]
    )
    assert namespace.command == "create-order"
    assert namespace.item == ["P1:2", "P2:1"]
    assert namespace.seller_id == "U-SELLER"
    assert namespace.client_id is None


def test_cancel_order_requires_reason(cli_parser):
    cli.configure_subcommands(cli_parser)
    with pytest.raises(SystemExit):
        cli_parser.parse_args(["cancel-order", "O1"])

    namespace = cli_parser.parse_args(["cancel-order", "O1", "--reason", "Cliente desistiu"])
    assert namespace.order_id == "O1"
    assert namespace.reason == "Cliente desistiu"


def test_add_transaction_arguments(cli_parser):
    cli.configure_subcommands(cli_parser)
    namespace = cli_parser.parse_args(
        [
            "add-transaction",
            "--description",
            "Notebook",
            "--amount",
            "300.00",
            "--type",
            "expense",
            "--due-date",
            "2024-01-31",
            "--frequency",
            "monthly",
            "--count",
            "3",
        ]
    )
    assert namespace.kind == "expense"
    assert namespace.count == 3
    assert namespace.category == "Outros"
    assert namespace.status == constants.TransactionStatus.PENDING.value


def test_read_notifications_id_is_optional(cli_parser):
    cli.configure_subcommands(cli_parser)
    assert cli_parser.parse_args(["read-notifications"]).notification_id is None
    assert cli_parser.parse_args(["read-notifications", "N1"]).notification_id == "N1"


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_validates_schema(config_factory):
    """load_runtime_context should refuse a workbook with another schema."""

    bundle = config_factory(schema_version="0.9")
    with pytest.raises(RuntimeError, match="schema mismatch"):
        cli.load_runtime_context(bundle.config_path)


def test_dispatch_command_invokes_executor(runtime_context, cast):
    called = {}

    def executor(context, session, args):
        called.update(context=context, session=session, args=args)
        return 0

    spec = cli.CommandSpec("ping", "help", lambda _: None, executor)
    args = argparse.Namespace(command="ping")

    assert cli.dispatch_command(runtime_context, cast.manager_session, args, {"ping": spec}) == 0
    assert called == {"context": runtime_context, "session": cast.manager_session, "args": args}


def test_dispatch_command_handles_unknown_commands(runtime_context):
    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, None, argparse.Namespace(command="nope"), {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_detects_duplicate_commands(command_spec_iterable):
    with pytest.raises(ValueError, match="Duplicate command name: alpha"):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


def test_require_session_rejects_anonymous_callers():
    with pytest.raises(PermissionDeniedError):
        cli.require_session(None)


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def test_parse_item_splits_on_last_colon():
    line = cli.parse_item("P20240101:3")
    assert line == orders.OrderLineCommand(product_id="P20240101", quantity=3)


@pytest.mark.parametrize("raw", ["P1", ":2", "P1:dois"])
def test_parse_item_rejects_malformed_lines(raw):
    with pytest.raises(ValidationError):
        cli.parse_item(raw)


def test_parse_date_rejects_other_formats():
    assert cli.parse_date("2024-02-29") == date(2024, 2, 29)
    with pytest.raises(ValidationError):
        cli.parse_date("29/02/2024")


def test_translate_add_user_returns_command():
    args = argparse.Namespace(
        name="Mercearia Sol",
        user_email="sol@mercearia.com",
        user_password=PASSWORD,
        role="client",
        cpf_cnpj=CLIENT_CNPJ,
        phone=None,
        address="Rua A, 10",
    )
    command = cli.translate_add_user(args)
    assert command.role is constants.UserRole.CLIENT
    assert command.email == "sol@mercearia.com"
    assert command.address == "Rua A, 10"


def test_translate_add_transaction_marks_recurring_rows():
    args = argparse.Namespace(
        description="Notebook",
        amount="300.00",
        kind="expense",
        due_date="2024-01-31",
        category="Eletrônicos",
        status="pending",
        payment_method="Cartão",
        frequency="monthly",
        count=3,
        observation="",
    )
    command = cli.translate_add_transaction(args)
    assert command.is_recurring is True
    assert command.frequency is constants.RecurrenceFrequency.MONTHLY
    assert command.recurrence_count == 3
    assert command.due_date == date(2024, 1, 31)

    single = cli.translate_add_transaction(argparse.Namespace(**{**vars(args), "frequency": None, "count": None}))
    assert single.is_recurring is False
    assert single.frequency is None


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def test_run_purge_orders_needs_confirmation(runtime_context, cast, monkeypatch):
    monkeypatch.setattr(cli.orders, "purge_orders", lambda *_: pytest.fail("purge must not run"))
    with pytest.raises(ValidationError):
        cli.run_purge_orders(runtime_context, cast.manager_session, argparse.Namespace(yes=False))


def test_run_orders_report_prints_sla(runtime_context, cast, products, capsys):
    order = orders.create_order(
        runtime_context,
        cast.client_session,
        orders.CreateOrderCommand(
            lines=[orders.OrderLineCommand(products["FEIJ1"].product_id, 2)],
            seller_id=cast.seller.user_id,
        ),
    )
    orders.start_processing(runtime_context, cast.seller_session, order.order_id)

    exit_code = cli.run_orders_report(
        runtime_context, cast.seller_session, argparse.Namespace(search=None, status=None)
    )

    out = capsys.readouterr().out
    assert exit_code == 0
    assert order.order_id in out
    assert "Em Andamento" in out
    assert "17.00" in out
    assert "SLA:" in out


def test_run_orders_report_without_rows(runtime_context, cast, capsys):
    cli.run_orders_report(runtime_context, cast.client_session, argparse.Namespace(search=None, status="sent"))
    assert "No orders found." in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (ValidationError("invalid"), 2),
        (InvalidTransition("invalid"), 2),
        (PermissionDeniedError("denied"), 2),
        (InvalidCredentialError("bad password"), 2),
        (FileNotFoundError("missing"), 3),
        (NotFoundError("unknown order"), 4),
        (PersistenceError("locked"), 5),
        (RuntimeError("boom"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_handles_errors_without_persisting(monkeypatch, runtime_context):
    """main should surface domain errors as non-zero exits."""

    parser = _stub_parser(command="cancel-order")
    command_table = {
        "cancel-order": cli.CommandSpec("cancel-order", "help", lambda _: parser, lambda *_: 0, writes=True)
    }

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)

    def fake_dispatch(*_: object) -> int:
        raise InvalidTransition("already sent")

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)
    monkeypatch.setattr(cli.core_logic, "persist_context", lambda _: pytest.fail("should not persist"))

    handled = {}

    def fake_handle(error: Exception) -> int:
        handled["error"] = error
        return 99

    monkeypatch.setattr(cli, "handle_cli_error", fake_handle)
    assert cli.main(["cancel-order"]) == 99
    assert isinstance(handled["error"], InvalidTransition)


@pytest.mark.parametrize("command, writes", [("monthly", False), ("purge-orders", True)])
def test_main_persists_only_after_writes(monkeypatch, runtime_context, command, writes):
    parser = _stub_parser(command=command)
    command_table = {command: cli.CommandSpec(command, "help", lambda _: parser, lambda *_: 0, writes=writes)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)

    persisted = []
    monkeypatch.setattr(cli.core_logic, "persist_context", persisted.append)

    assert cli.main([command]) == 0
    assert persisted == ([runtime_context] if writes else [])


def test_main_end_to_end_against_workbook(config_factory, monkeypatch, capsys):
    """Drive the real parser and workbook from sign-up to a new order."""

    monkeypatch.delenv("ATACADO_EMAIL", raising=False)
    monkeypatch.delenv("ATACADO_PASSWORD", raising=False)
    bundle = config_factory()
    setup_excel.seed_manager(
        setup_excel.load_settings(bundle.config_path),
        auth.SignUpCommand(name="Gerente Geral", email=MANAGER_EMAIL, password=PASSWORD),
    )
    base = ["--config", str(bundle.config_path)]
    as_manager = [*base, "--email", MANAGER_EMAIL, "--password", PASSWORD]

    assert cli.main(
        [*as_manager, "add-product", "--code", "FEIJ1", "--description", "Feijão 1kg", "--price", "8,50"]
    ) == 0
    assert cli.main(
        [
            *base,
            "add-user",
            "--name",
            "Mercearia Sol",
            "--user-email",
            "sol@mercearia.com",
            "--user-password",
            PASSWORD,
            "--cpf-cnpj",
            CLIENT_CNPJ,
        ]
    ) == 0

    context = core_logic.load_runtime_context(bundle.config_path)
    product = catalog.find_product_by_code(context, "FEIJ1")
    assert product.price == Decimal("8.50")

    as_client = [*base, "--email", "sol@mercearia.com", "--password", PASSWORD]
    assert cli.main([*as_client, "create-order", "--item", f"{product.product_id}:3"]) == 0
    out = capsys.readouterr().out
    assert "Novo Pedido" in out
    assert "25.50" in out

    assert cli.main([*as_client, "cancel-order", "O-missing", "--reason", "Teste"]) == 4
    assert cli.main([*base, "--email", "sol@mercearia.com", "--password", "errada", "orders"]) == 2
    assert cli.main([*as_client, "purge-orders", "--yes"]) == 2
    oversized = ["--description", "Seguro", "--amount", "10", "--type", "expense", "--due-date", "2024-01-31"]
    assert cli.main([*as_client, "add-transaction", *oversized, "--frequency", "yearly", "--count", "8000"]) == 5

    reloaded = core_logic.load_runtime_context(bundle.config_path)
    manager = auth.sign_in(reloaded, MANAGER_EMAIL, PASSWORD)
    stored = orders.list_orders(reloaded, manager)
    assert len(stored) == 1
    assert stored[0].total == Decimal("25.50")
    assert stored[0].status is constants.OrderStatus.GENERATED
    assert finance.list_transactions(reloaded, auth.sign_in(reloaded, "sol@mercearia.com", PASSWORD)) == []


def test_main_reports_missing_config(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "monthly"]) == 3


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command)

    return _Stub(prog="test")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
