"""Shared pytest fixtures and utilities for Atacado ERP tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from atacado_erp import auth, catalog, cli, constants, core_logic, data_manager  # noqa: E402
from atacado_erp.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
PASSWORD = "segredo123"
CLIENT_CPF = "529.982.247-25"
CLIENT_CNPJ = "11.222.333/0001-81"
FIXED_NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)

_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "CompanyName = {company_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Limits]\n"
    "MaxBatchOperations = {max_batch}\n\n"
    "[Security]\n"
    "ReauthWindowMinutes = {reauth_window}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    company_name: str


@dataclass(frozen=True)
class Cast:
    """Users of every role with an open session each."""

    manager: data_manager.UserRow
    seller: data_manager.UserRow
    other_seller: data_manager.UserRow
    client: data_manager.UserRow
    other_client: data_manager.UserRow
    manager_session: core_logic.Session
    seller_session: core_logic.Session
    other_seller_session: core_logic.Session
    client_session: core_logic.Session
    other_client_session: core_logic.Session


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _fast_password_hashing(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep PBKDF2 but with few iterations so the suite stays quick."""

    monkeypatch.setattr(auth, "HASH_METHOD", "pbkdf2:sha256:1000")


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "master_workbook.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        company_name: str = "Atacado Teste",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        max_batch: int = constants.DEFAULT_MAX_BATCH_OPERATIONS,
        reauth_window: int = constants.DEFAULT_REAUTH_WINDOW_MINUTES,
    ) -> ConfigBundle:
        bundle_name = f"bundle_{uuid.uuid4().hex}"
        workbook_path = workbook_factory(subdir=bundle_name)
        bundle_dir = workbook_path.parent
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                company_name=company_name,
                schema_version=schema_version,
                max_batch=max_batch,
                reauth_window=reauth_window,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            company_name=company_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


def sign_up_and_in(
    context: core_logic.RuntimeContext,
    *,
    name: str,
    email: str,
    role: constants.UserRole = constants.UserRole.CLIENT,
    cpf_cnpj: str | None = None,
    created_by: core_logic.Session | None = None,
) -> tuple[data_manager.UserRow, core_logic.Session]:
    """Register a user and open a fresh session for them."""

    user = auth.sign_up(
        context,
        auth.SignUpCommand(name=name, email=email, password=PASSWORD, role=role, cpf_cnpj=cpf_cnpj),
        created_by=created_by,
    )
    return user, auth.sign_in(context, email, PASSWORD)


@pytest.fixture
def cast(runtime_context: core_logic.RuntimeContext) -> Cast:
    """Seed one manager, two sellers and two clients."""

    context = runtime_context
    manager = auth.bootstrap_manager(
        context,
        auth.SignUpCommand(name="Gerente Geral", email="gerente@atacado.com", password=PASSWORD),
    )
    manager_session = auth.sign_in(context, manager.email, PASSWORD)
    seller, seller_session = sign_up_and_in(
        context,
        name="Vera Vendedora",
        email="vera@atacado.com",
        role=constants.UserRole.SELLER,
        created_by=manager_session,
    )
    other_seller, other_seller_session = sign_up_and_in(
        context,
        name="Otto Vendedor",
        email="otto@atacado.com",
        role=constants.UserRole.SELLER,
        created_by=manager_session,
    )
    client, client_session = sign_up_and_in(
        context, name="Mercearia Sol", email="sol@mercearia.com", cpf_cnpj=CLIENT_CNPJ
    )
    other_client, other_client_session = sign_up_and_in(
        context, name="Bar do Zé", email="ze@bar.com", cpf_cnpj=CLIENT_CPF
    )
    return Cast(
        manager=manager,
        seller=seller,
        other_seller=other_seller,
        client=client,
        other_client=other_client,
        manager_session=manager_session,
        seller_session=seller_session,
        other_seller_session=other_seller_session,
        client_session=client_session,
        other_client_session=other_client_session,
    )


@pytest.fixture
def products(runtime_context: core_logic.RuntimeContext, cast: Cast) -> dict[str, data_manager.ProductRow]:
    """A small catalog keyed by product code."""

    rows = [
        catalog.add_product(
            runtime_context, cast.manager_session, code="FEIJ1", description="Feijão Carioca 1kg", price="8.50", group="Grãos"
        ),
        catalog.add_product(
            runtime_context, cast.manager_session, code="SAB1", description="Sabão em Barra", price="2.50", group="Limpeza"
        ),
        catalog.add_product(
            runtime_context, cast.manager_session, code="CAFE5", description="Café 500g", price=Decimal("15.90"), group="Bebidas"
        ),
    ]
    return {row.code: row for row in rows}


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="atacado-cli", description="Atacado CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
