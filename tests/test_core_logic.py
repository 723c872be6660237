"""Unit tests for the shared business logic plumbing."""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest

from atacado_erp import constants, core_logic, data_manager
from atacado_erp.errors import PersistenceError, ValidationError


@pytest.fixture
def settings(tmp_path):
    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        company_name="Atacado Teste",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def context(settings):
    return core_logic.RuntimeContext(settings=settings, workbook=Mock(name="workbook"))


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path, settings):
    """load_runtime_context should assemble settings and workbook into a context."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    workbook = Mock(name="workbook")

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=settings)
    open_workbook = Mock(return_value=workbook)

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", open_workbook)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is settings
    assert context.workbook is workbook
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    open_workbook.assert_called_once_with(settings.data_file)


def test_ensure_schema_version_rejects_mismatch(context):
    """Schema mismatches should surface a RuntimeError with clear messaging."""

    bad_context = core_logic.RuntimeContext(
        settings=replace(context.settings, schema_version="0.9"),
        workbook=context.workbook,
    )
    with pytest.raises(RuntimeError, match="0.9"):
        core_logic.ensure_schema_version(bad_context)


def test_ensure_schema_version_validates_layout(monkeypatch, context):
    validate = Mock()
    monkeypatch.setattr(data_manager, "validate_workbook_layout", validate)

    core_logic.ensure_schema_version(context)

    validate.assert_called_once_with(context.workbook)


def test_persist_context_maps_os_errors(monkeypatch, context):
    """A locked or read-only file surfaces as a PersistenceError."""

    monkeypatch.setattr(data_manager, "save_workbook", Mock(side_effect=PermissionError("locked")))

    with pytest.raises(PersistenceError, match="locked"):
        core_logic.persist_context(context)


def test_refresh_context_drops_cached_reads(runtime_context):
    core_logic.cached_rows(runtime_context, data_manager.USERS_SHEET, data_manager.deserialize_user)
    assert runtime_context._cache

    refreshed = core_logic.refresh_context(runtime_context)

    assert refreshed.settings is runtime_context.settings
    assert refreshed._cache == {}


# ---------------------------------------------------------------------------
# Identifiers and timestamps
# ---------------------------------------------------------------------------


def test_generate_document_id_embeds_prefix_and_timestamp():
    moment = datetime(2024, 5, 6, 7, 8, 9, 123456, tzinfo=UTC)

    document_id = core_logic.generate_document_id(prefix="O", when=moment)

    assert re.fullmatch(r"O20240506070809123456-[0-9a-f]{6}", document_id)


def test_generate_document_id_is_unique_within_one_instant():
    moment = datetime(2024, 5, 6, tzinfo=UTC)
    ids = {core_logic.generate_document_id(prefix="T", when=moment) for _ in range(50)}
    assert len(ids) == 50


def test_generate_document_id_uses_clock_when_omitted(set_fixed_datetime):
    set_fixed_datetime(datetime(2030, 1, 2, 3, 4, 5, tzinfo=UTC))

    assert core_logic.generate_document_id(prefix="N").startswith("N20300102030405")


def test_session_freshness_window(set_fixed_datetime):
    signed_in = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
    session = core_logic.Session("U1", "Ana", constants.UserRole.MANAGER, signed_in)

    set_fixed_datetime(signed_in + timedelta(minutes=4))
    assert session.is_fresh(window_minutes=5)

    set_fixed_datetime(signed_in + timedelta(minutes=6))
    assert not session.is_fresh(window_minutes=5)
    assert session.refreshed(signed_in + timedelta(minutes=6)).is_fresh(window_minutes=5)


def test_naive_timestamps_are_read_as_utc():
    naive = datetime(2024, 1, 1, 12, 0)
    aware = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    assert core_logic._resolve_timestamp(naive) == aware
    assert core_logic._resolve_timestamp(naive).tzinfo is UTC
    assert core_logic._resolve_timestamp(aware) is aware


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


def test_cached_rows_reads_collection_once(monkeypatch, context):
    query = Mock(return_value=[{"id": 1}, {"id": 2}])
    monkeypatch.setattr(data_manager, "query_documents", query)

    first = core_logic.cached_rows(context, "Things", lambda document: document["id"])
    second = core_logic.cached_rows(context, "Things", lambda document: document["id"])

    assert first == second == [1, 2]
    query.assert_called_once_with(context.workbook, "Things")


def test_invalidate_cache_forces_reload(monkeypatch, context):
    query = Mock(side_effect=[[{"id": 1}], [{"id": 1}, {"id": 2}]])
    monkeypatch.setattr(data_manager, "query_documents", query)

    core_logic.cached_rows(context, "Things", lambda document: document["id"])
    core_logic.invalidate_cache(context, "Things")

    assert core_logic.cached_rows(context, "Things", lambda document: document["id"]) == [1, 2]


def test_cached_rows_returns_copies(monkeypatch, context):
    monkeypatch.setattr(data_manager, "query_documents", Mock(return_value=[{"id": 1}]))

    rows = core_logic.cached_rows(context, "Things", lambda document: document["id"])
    rows.append(99)

    assert core_logic.cached_rows(context, "Things", lambda document: document["id"]) == [1]


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [("8.5", Decimal("8.50")), ("2,499", Decimal("2.50")), (3, Decimal("3.00")), (Decimal("1.005"), Decimal("1.00"))],
)
def test_to_money_quantizes(raw, expected):
    assert core_logic.to_money(raw) == expected


@pytest.mark.parametrize("raw", ["abc", "NaN", "Infinity", None])
def test_to_money_rejects_non_numbers(raw):
    with pytest.raises(ValidationError):
        core_logic.to_money(raw)


def test_require_positive_amount_rejects_zero():
    with pytest.raises(ValidationError, match="greater than zero"):
        core_logic.require_positive_amount(Decimal("0.00"))


def test_require_text_strips_and_rejects_blank():
    assert core_logic.require_text("  Motivo  ", label="Reason") == "Motivo"
    with pytest.raises(ValidationError, match="Reason"):
        core_logic.require_text("   ", label="Reason")
