"""Utility for initializing the Atacado ERP master workbook.

The module doubles as a script (``atacado-setup``) and as a library used by
tests. It creates one sheet per collection with a bold header row and can
seed the first manager account, which is the only way to obtain a manager
on a fresh workbook.
"""

from __future__ import annotations

import argparse
import getpass
from pathlib import Path
from typing import Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font

from . import core_logic, data_manager, log
from .auth import SignUpCommand, bootstrap_manager
from .constants import SHEET_COLUMNS
from .errors import AtacadoError

CONFIG_FILE = "config.ini"


def load_settings(config_path: Path) -> data_manager.ConfigSettings:
    """Read ``config.ini`` and resolve the workbook location.

    Relative ``DataFile`` entries are resolved against the config file's
    directory.
    """

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty master workbook at ``destination``.

    Raises:
        FileExistsError: If the target exists and ``overwrite`` is ``False``.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    workbook.save(destination)
    log.info("Created master workbook '%s'", destination)
    return destination


def seed_manager(settings: data_manager.ConfigSettings, command: SignUpCommand) -> data_manager.UserRow:
    """Add the first manager account to the configured workbook and save it."""

    context = core_logic.RuntimeContext(
        settings=settings,
        workbook=data_manager.open_workbook(settings.data_file),
    )
    manager = bootstrap_manager(context, command)
    core_logic.persist_context(context)
    return manager


def run_from_config(
    config_path: Path,
    *,
    overwrite: bool = False,
    manager: Optional[SignUpCommand] = None,
) -> Path:
    """Create the workbook named in ``config.ini`` and optionally seed a manager."""

    settings = load_settings(config_path)
    output = create_master_workbook(settings.data_file, overwrite=overwrite)
    if manager is not None:
        seed_manager(settings, manager)
    return output


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the Atacado ERP data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    parser.add_argument("--manager-name", help="Name of the first manager account.")
    parser.add_argument("--manager-email", help="E-mail of the first manager account.")
    parser.add_argument(
        "--manager-password",
        help="Password of the first manager (prompted when omitted).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Atacado ERP Setup ---")
    print(f"Using configuration: {config_path}")

    manager = None
    if args.manager_email:
        password = args.manager_password or getpass.getpass("Manager password: ")
        manager = SignUpCommand(
            name=args.manager_name or args.manager_email,
            email=args.manager_email,
            password=password,
        )

    try:
        output_path = run_from_config(config_path, overwrite=args.force, manager=manager)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except AtacadoError as exc:
        print(f"\n[ERROR] Could not create the manager account: {exc}")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\nSuccessfully created '{output_path}'.")
    if manager is not None:
        print(f"Manager account '{manager.email}' is ready. Run 'atacado-cli' to continue.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
