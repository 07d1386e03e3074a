"""Enumerations and fixed business parameters shared across the back-office.

Centralises domain constants so that the data access layer, the catalog and
checkout logic, and the command-line front-end rely on a single source of
truth for status names, payment methods, and sheet identifiers.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Products at or below this many units on hand are reported as low stock.
LOW_STOCK_THRESHOLD = 10

# Flat sales tax applied to every checkout subtotal.
TAX_RATE = Decimal("0.05")

# Number of entries shown by each ranked dashboard report.
REPORT_LIMIT = 5


class ProductStatus(str, Enum):
    """Enumerate the stock states a product can be in."""

    IN_STOCK = "in-stock"
    LOW_STOCK = "low-stock"
    OUT_OF_STOCK = "out-of-stock"


class PaymentMethod(str, Enum):
    """Enumerate the payment options offered at checkout."""

    CASH = "Cash"
    CARD = "Card"
    INVOICE = "Invoice"


class ChangeKind(str, Enum):
    """Enumerate the events published on the product change feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    PRODUCTS = "Products"
    SALES_TRANSACTIONS = "SalesTransactions"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "LOW_STOCK_THRESHOLD",
    "TAX_RATE",
    "REPORT_LIMIT",
    "ProductStatus",
    "PaymentMethod",
    "ChangeKind",
    "SheetName",
]
