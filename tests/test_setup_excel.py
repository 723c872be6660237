"""Tests for the workbook bootstrap script."""

from __future__ import annotations

import openpyxl
import pytest

from atacado_erp import auth, core_logic, data_manager, setup_excel
from atacado_erp.constants import SHEET_COLUMNS, UserRole
from atacado_erp.errors import PermissionDeniedError

from conftest import PASSWORD


def test_create_master_workbook_writes_bold_headers(tmp_path):
    target = setup_excel.create_master_workbook(tmp_path / "nested" / "book.xlsx")

    workbook = openpyxl.load_workbook(target)
    assert workbook.sheetnames == list(SHEET_COLUMNS)
    for name, columns in SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[name][1]]
        assert header == list(columns)
        assert workbook[name].cell(row=1, column=1).font.bold
    data_manager.validate_workbook_layout(workbook)


def test_create_master_workbook_refuses_to_overwrite(tmp_path):
    target = setup_excel.create_master_workbook(tmp_path / "book.xlsx")

    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(target)
    assert setup_excel.create_master_workbook(target, overwrite=True) == target


def test_run_from_config_seeds_first_manager(config_factory):
    bundle = config_factory(make_relative=True)
    command = auth.SignUpCommand(name="Gerente", email="Gerente@Atacado.com", password=PASSWORD)

    output = setup_excel.run_from_config(bundle.config_path, overwrite=True, manager=command)

    assert output == bundle.workbook_path.resolve()
    context = core_logic.load_runtime_context(bundle.config_path)
    managers = auth.list_users(context, role=UserRole.MANAGER)
    assert [user.email for user in managers] == ["gerente@atacado.com"]
    assert auth.sign_in(context, "gerente@atacado.com", PASSWORD).role is UserRole.MANAGER

    with pytest.raises(PermissionDeniedError):
        setup_excel.seed_manager(
            setup_excel.load_settings(bundle.config_path),
            auth.SignUpCommand(name="Outro", email="outro@atacado.com", password=PASSWORD),
        )


def test_main_requires_force_for_existing_workbook(config_factory, capsys):
    bundle = config_factory()

    assert setup_excel.main(["--config", str(bundle.config_path)]) == 1
    assert "--force" in capsys.readouterr().out

    exit_code = setup_excel.main(
        [
            "--config",
            str(bundle.config_path),
            "--force",
            "--manager-email",
            "gerente@atacado.com",
            "--manager-password",
            PASSWORD,
        ]
    )
    assert exit_code == 0
    assert "gerente@atacado.com" in capsys.readouterr().out


def test_main_reports_missing_config(tmp_path, capsys):
    assert setup_excel.main(["--config", str(tmp_path / "missing.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
