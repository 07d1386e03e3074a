"""Utility for initializing the store back-office workbook.

The module doubles as a script (``backoffice-setup``) and as a library used
by tests or other tooling. Shared helpers keep the workbook bootstrap logic
consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Optional, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager
from .constants import SheetName

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: data_manager.PRODUCT_COLUMNS,
    SheetName.SALES_TRANSACTIONS.value: data_manager.SALES_COLUMNS,
}

# Demo hardware-store catalog offered by ``--seed``.
DEMO_PRODUCTS: Sequence[data_manager.ProductRow] = tuple(
    data_manager.ProductRow(
        sku=sku,
        name=name,
        category=category,
        price=Decimal(price),
        cost=Decimal(cost),
        stock=stock,
        sales_count=sales_count,
        status=data_manager.product_status(stock),
    )
    for sku, name, category, price, cost, stock, sales_count in (
        ("P1001", "Power Drill Kit", "tools", "129.99", "85.00", 25, 45),
        ("E2034", "LED Bulbs (4-Pack)", "lighting", "15.50", "10.00", 8, 120),
        ("H4012", "Hammer (16 oz)", "hand-tools", "25.00", "16.00", 50, 8),
        ("G5151", "Safety Goggles", "safety", "9.75", "6.50", 0, 3),
        ("P2045", "Cordless Screwdriver", "tools", "79.99", "52.00", 15, 28),
        ("L3021", "Flashlight LED", "lighting", "24.99", "16.00", 32, 15),
        ("W2010", "Wood Screws (Box)", "hardware", "12.99", "8.50", 100, 5),
        ("T4500", "Tape Measure", "hand-tools", "18.50", "12.00", 42, 22),
        ("P3050", "Exterior Paint", "paint", "45.00", "30.00", 30, 18),
    )
)

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Configuration values used during setup."""

    data_file: Path
    user_id: Optional[str]


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)
    return SetupSettings(data_file=settings.data_file, user_id=settings.user_id)


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    seed_user_id: Optional[str] = None,
    seed_products: Sequence[data_manager.ProductRow] = DEMO_PRODUCTS,
    overwrite: bool = False,
) -> Path:
    """Create the store workbook at ``destination``.

    When ``seed_user_id`` is given, ``seed_products`` are written to the
    products sheet under that owner. When ``overwrite`` is ``False`` (the
    default) this function raises ``FileExistsError`` if the target already
    exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing workbook: {destination}"
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

    if seed_user_id is not None:
        for product in seed_products:
            data_manager.append_product(workbook, product, user_id=seed_user_id)

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False, seed: bool = False) -> Path:
    """Create the workbook named in ``config_path``, optionally seeded."""

    settings = load_settings(config_path)
    if seed and settings.user_id is None:
        raise KeyError("Seeding requires [Session] UserID in the configuration")
    return create_master_workbook(
        settings.data_file,
        seed_user_id=settings.user_id if seed else None,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the store back-office data file")
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
    parser.add_argument(
        "--seed",
        action="store_true",
        help="Populate the catalog with demo products for the configured user.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Store Back-Office Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force, seed=args.seed)
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

    print(f"\n[SUCCESS] Created workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
