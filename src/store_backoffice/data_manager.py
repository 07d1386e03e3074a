"""Data access layer for the store back-office.

This module provides low-level helpers that read from and write to the
``store_data.xlsx`` workbook acting as the backing store. Business logic
belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Sheet operations: loading structured records and appending or updating
   individual rows.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import LOW_STOCK_THRESHOLD, ProductStatus, SheetName


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
SALES_SHEET = SheetName.SALES_TRANSACTIONS.value

PRODUCT_COLUMNS: Tuple[str, ...] = (
    "SKU",
    "UserID",
    "Name",
    "Category",
    "Price",
    "Cost",
    "Stock",
    "SalesCount",
    "Status",
)

SALES_COLUMNS: Tuple[str, ...] = (
    "TransactionID",
    "UserID",
    "CreatedAt",
    "PaymentMethod",
    "CustomerName",
    "TotalAmount",
    "CostAmount",
    "ProfitAmount",
    "Items",
)

# Attribute name -> worksheet column for the editable product fields.
PRODUCT_FIELD_COLUMNS: Mapping[str, str] = {
    "name": "Name",
    "category": "Category",
    "price": "Price",
    "cost": "Cost",
    "stock": "Stock",
    "sales_count": "SalesCount",
    "status": "Status",
}


@dataclass(frozen=True)
class StoreSettings:
    """Read-only store presentation settings."""

    store_name: str
    currency: str
    language: str
    logo: Optional[str]


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    store: StoreSettings
    user_id: Optional[str]


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    sku: str
    name: str
    category: str
    price: Decimal
    cost: Decimal
    stock: int
    sales_count: int
    status: str


@dataclass(frozen=True)
class SaleItem:
    """One cart line captured inside a sales transaction."""

    sku: str
    name: str
    price: Decimal
    quantity: int


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``SalesTransactions`` sheet."""

    transaction_id: str
    user_id: str
    created_at_iso: str
    payment_method: str
    customer_name: Optional[str]
    total_amount: Decimal
    cost_amount: Decimal
    profit_amount: Decimal
    items: Tuple[SaleItem, ...]


def product_status(stock: int) -> str:
    """Derive the stock status label for ``stock`` units on hand."""

    if stock <= 0:
        return ProductStatus.OUT_OF_STOCK.value
    if stock <= LOW_STOCK_THRESHOLD:
        return ProductStatus.LOW_STOCK.value
    return ProductStatus.IN_STOCK.value


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the current
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System] DataFile`` and ``[System] SchemaVersion`` are required. The
    ``[Store]`` section is optional and falls back to neutral defaults. The
    ``[Session] UserID`` entry identifies the signed-in user; when it is
    missing or blank no user is signed in.

    Relative data file paths are anchored to ``base_path`` (or the current
    working directory) and resolved.

    Raises:
        KeyError: If a required section or option is missing.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    store = StoreSettings(
        store_name=parser.get("Store", "StoreName", fallback="My Store"),
        currency=parser.get("Store", "Currency", fallback="LKR"),
        language=parser.get("Store", "Language", fallback="en"),
        logo=parser.get("Store", "Logo", fallback="") or None,
    )
    user_id = parser.get("Session", "UserID", fallback="").strip() or None

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        store=store,
        user_id=user_id,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the store workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def iter_products(workbook: Workbook, user_id: Optional[str] = None) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    The header row and fully empty rows are skipped. When ``user_id`` is given
    only rows owned by that user are produced. Rows are yielded in sheet order.

    Args:
        workbook (Workbook): Workbook containing the ``Products`` sheet.
        user_id (str | None): Owner used to scope the rows.

    Yields:
        ProductRow: One structured row for each matching record.
    """

    sheet = workbook[PRODUCTS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if not any(cell is not None for cell in raw):
            continue
        if user_id is not None and str(raw[1]) != user_id:
            continue
        yield deserialize_product(raw)


def iter_sales(workbook: Workbook, user_id: Optional[str] = None) -> Iterable[SaleRow]:
    """Stream sales transactions from the ``SalesTransactions`` worksheet.

    Rows whose cells are all ``None`` are ignored; ``user_id`` scopes the
    output exactly like :func:`iter_products`.
    """

    sheet = workbook[SALES_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if not any(cell is not None for cell in raw):
            continue
        if user_id is not None and str(raw[1]) != user_id:
            continue
        yield deserialize_sale(raw)


def append_product(workbook: Workbook, record: ProductRow, *, user_id: str) -> None:
    """Append a product record owned by ``user_id`` to the ``Products`` sheet."""

    sheet = workbook[PRODUCTS_SHEET]
    sheet.append(serialize_product(record, user_id=user_id))


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    """Append a sales transaction to the ``SalesTransactions`` worksheet.

    Monetary fields remain :class:`~decimal.Decimal` instances so Excel keeps
    their precision when the workbook is saved.
    """

    sheet = workbook[SALES_SHEET]
    sheet.append(serialize_sale(record))


def update_product(workbook: Workbook, user_id: str, sku: str, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns for an existing product.

    ``field_values`` is keyed by :class:`ProductRow` attribute names (see
    ``PRODUCT_FIELD_COLUMNS``). Only the specified cells are written; the SKU
    and owner columns can never be changed through this helper.

    Raises:
        KeyError: If the product or any referenced field cannot be found.
    """

    row_index = locate_row(workbook, PRODUCTS_SHEET, {"UserID": user_id, "SKU": sku})
    if row_index is None:
        raise KeyError(f"Product not found: {sku}")

    sheet = workbook[PRODUCTS_SHEET]
    header_map = _header_map(sheet)

    for field, value in field_values.items():
        column = PRODUCT_FIELD_COLUMNS.get(field)
        if column is None or column not in header_map:
            raise KeyError(f"Unknown product field: {field}")
        sheet.cell(row=row_index, column=header_map[column], value=value)


def read_product(workbook: Workbook, user_id: str, sku: str) -> Optional[ProductRow]:
    """Read a single product row straight from the worksheet."""

    row_index = locate_row(workbook, PRODUCTS_SHEET, {"UserID": user_id, "SKU": sku})
    if row_index is None:
        return None
    sheet = workbook[PRODUCTS_SHEET]
    raw = next(sheet.iter_rows(min_row=row_index, max_row=row_index, values_only=True))
    return deserialize_product(raw)


def locate_row(workbook: Workbook, sheet_name: str, criteria: Mapping[str, object]) -> Optional[int]:
    """Find the first row whose cells match every ``column -> value`` pair.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If a criteria column is not present in the header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    for column in criteria:
        if column not in header_map:
            raise KeyError(f"Unknown column: {column}")

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if all(_matches(row[header_map[column] - 1], value) for column, value in criteria.items()):
            return row_idx

    return None


def _header_map(sheet) -> dict:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _matches(cell_value: object, expected: object) -> bool:
    # Excel may hand numeric-looking identifiers back as numbers.
    return cell_value is not None and str(cell_value) == str(expected)


def serialize_product(record: ProductRow, *, user_id: str) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.sku,
        user_id,
        record.name,
        record.category,
        record.price,
        record.cost,
        record.stock,
        record.sales_count,
        product_status(record.stock),
    ]


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sales transaction into the worksheet column ordering.

    The cart snapshot is stored as a JSON array inside the ``Items`` cell with
    prices written as strings to avoid binary float rounding.
    """

    items = json.dumps(
        [
            {"sku": item.sku, "name": item.name, "price": str(item.price), "quantity": item.quantity}
            for item in record.items
        ]
    )
    return [
        record.transaction_id,
        record.user_id,
        record.created_at_iso,
        record.payment_method,
        record.customer_name,
        record.total_amount,
        record.cost_amount,
        record.profit_amount,
        items,
    ]


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Numeric cells are normalized into :class:`~decimal.Decimal` and ``int``
    values, identifiers are coerced to ``str``, and the status is re-derived
    from the stock so a stale ``Status`` cell can never disagree with it.
    """

    sku, _user_id, name, category, price_raw, cost_raw, stock_raw, sales_raw = raw_row[:8]

    stock = int(stock_raw) if stock_raw is not None else 0
    return ProductRow(
        sku=str(sku),
        name=str(name) if name is not None else "",
        category=str(category) if category is not None else "",
        price=_to_decimal(price_raw),
        cost=_to_decimal(cost_raw),
        stock=stock,
        sales_count=int(sales_raw) if sales_raw is not None else 0,
        status=product_status(stock),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw worksheet row into a strongly typed sales transaction."""

    (
        transaction_id,
        user_id,
        created_at,
        payment_method,
        customer_name,
        total_raw,
        cost_raw,
        profit_raw,
        items_raw,
    ) = raw_row[:9]

    items: Tuple[SaleItem, ...] = ()
    if items_raw:
        try:
            payload = json.loads(str(items_raw))
        except json.JSONDecodeError:
            log.warning("Ignoring malformed item snapshot on transaction '%s'", transaction_id)
            payload = []
        items = tuple(
            SaleItem(
                sku=str(entry["sku"]),
                name=str(entry.get("name", "")),
                price=Decimal(str(entry["price"])),
                quantity=int(entry["quantity"]),
            )
            for entry in payload
        )

    return SaleRow(
        transaction_id=str(transaction_id),
        user_id=str(user_id) if user_id is not None else "",
        created_at_iso=str(created_at) if created_at is not None else "",
        payment_method=str(payment_method) if payment_method is not None else "",
        customer_name=str(customer_name) if customer_name else None,
        total_amount=_to_decimal(total_raw),
        cost_amount=_to_decimal(cost_raw),
        profit_amount=_to_decimal(profit_raw),
        items=items,
    )


def _to_decimal(raw: object) -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal("0.00")
