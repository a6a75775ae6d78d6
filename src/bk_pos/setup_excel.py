"""Utility for creating the BK POS seed workbook.

The module doubles as a script (``bk-pos-setup``) and as a library used by
tests. The workbook it writes is the read-only master data the runtime
context is seeded from: categories, products, users and opening warehouse
stock.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager
from .constants import Role, SheetName

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.CATEGORIES.value: [
        "CategoryID",
        "CategoryName",
    ],
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "CategoryID",
        "UnitPrice",
        "Unit",
    ],
    SheetName.USERS.value: [
        "UserID",
        "UserName",
        "Role",
        "Credential",
    ],
    SheetName.WAREHOUSE_STOCK.value: [
        "ProductID",
        "Quantity",
    ],
}

DEFAULT_ADMIN = data_manager.UserRow(
    user_id="U-ADMIN",
    user_name="Administrator",
    role=Role.ADMIN,
)

SAMPLE_CATEGORIES: Sequence[data_manager.CategoryRow] = (
    data_manager.CategoryRow("C-DRINK", "Drinks"),
    data_manager.CategoryRow("C-SNACK", "Snacks"),
)

SAMPLE_PRODUCTS: Sequence[data_manager.ProductRow] = (
    data_manager.ProductRow("P-TEA", "Iced Tea", "C-DRINK", Decimal("5000"), "bottle"),
    data_manager.ProductRow("P-COFFEE", "Coffee Milk", "C-DRINK", Decimal("8000"), "cup"),
    data_manager.ProductRow("P-CHIPS", "Cassava Chips", "C-SNACK", Decimal("10000"), "pack"),
)

SAMPLE_RIDERS: Sequence[data_manager.UserRow] = (
    data_manager.UserRow("R-001", "Rider One", Role.RIDER),
    data_manager.UserRow("R-002", "Rider Two", Role.RIDER),
)

SAMPLE_WAREHOUSE_STOCK: Sequence[data_manager.WarehouseStockRow] = (
    data_manager.WarehouseStockRow("P-TEA", 100),
    data_manager.WarehouseStockRow("P-COFFEE", 60),
    data_manager.WarehouseStockRow("P-CHIPS", 40),
)

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    seed_file: Path
    admin_user_id: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory. ``[Defaults] AdminUser`` is optional.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        seed_file_raw = parser.get("System", "SeedFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc
    admin_user_id = parser.get("Defaults", "AdminUser", fallback=DEFAULT_ADMIN.user_id)

    seed_file_path = Path(seed_file_raw)
    if not seed_file_path.is_absolute():
        seed_file_path = (config_path.parent / seed_file_path).resolve()

    return SetupSettings(seed_file=seed_file_path, admin_user_id=admin_user_id)


def create_seed_workbook(
    destination: Path,
    *,
    admin_user_id: str = DEFAULT_ADMIN.user_id,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    include_samples: bool = False,
    overwrite: bool = False,
) -> Path:
    """Create the BK POS seed workbook at ``destination``.

    The workbook always contains one admin user. With ``include_samples`` it
    also receives demo categories, products, riders and warehouse stock.
    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing seed workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    users_sheet = workbook[SheetName.USERS.value]
    admin = data_manager.UserRow(
        user_id=admin_user_id,
        user_name=DEFAULT_ADMIN.user_name,
        role=Role.ADMIN,
    )
    users_sheet.append(data_manager.serialize_user(admin))

    if include_samples:
        for category in SAMPLE_CATEGORIES:
            workbook[SheetName.CATEGORIES.value].append(data_manager.serialize_category(category))
        for product in SAMPLE_PRODUCTS:
            workbook[SheetName.PRODUCTS.value].append(data_manager.serialize_product(product))
        for rider in SAMPLE_RIDERS:
            users_sheet.append(data_manager.serialize_user(rider))
        for row in SAMPLE_WAREHOUSE_STOCK:
            workbook[SheetName.WAREHOUSE_STOCK.value].append(data_manager.serialize_warehouse_stock(row))

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, include_samples: bool = False, overwrite: bool = False) -> Path:
    """Create the seed workbook named by ``config_path``."""

    settings = load_settings(config_path)
    return create_seed_workbook(
        settings.seed_file,
        admin_user_id=settings.admin_user_id,
        include_samples=include_samples,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the BK POS seed workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--samples",
        action="store_true",
        help="Add demo categories, products, riders and warehouse stock.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- BK POS Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, include_samples=args.samples, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created seed workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
