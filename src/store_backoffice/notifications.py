"""User-visible notifications raised by catalog and checkout operations.

The back-office never lets a remote failure escape to the presentation layer;
instead each outcome is turned into a fire-and-forget :class:`Notification`.
Front-ends decide how to render them (the CLI prints them).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List

from . import log


class Level(str, Enum):
    """Severity of a notification."""

    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# Messages shown for each outcome.
PRODUCT_ADDED = "Product added successfully!"
PRODUCT_UPDATED = "Product updated successfully!"
ADD_FAILED = "Failed to add product"
UPDATE_FAILED = "Failed to update product"
INVALID_PRODUCT = "Invalid product details: {reason}"
LOAD_FAILED = "Failed to load products"
STOCK_SYNC_FAILED = "Failed to save stock update for {sku}"
CART_EMPTY = "Cart is empty!"
INSUFFICIENT_STOCK = "Insufficient stock for one or more items!"
INVOICE_GENERATED = "Invoice generated! Payment: {payment}. Stock updated."
SALE_NOT_RECORDED = "Sale completed but failed to record transaction"


@dataclass(frozen=True)
class Notification:
    level: Level
    message: str


class Notifier:
    """Collects notifications in order and mirrors them to the package log."""

    def __init__(self) -> None:
        self._entries: List[Notification] = []

    @property
    def entries(self) -> List[Notification]:
        return list(self._entries)

    def success(self, message: str) -> None:
        self._push(Level.SUCCESS, message)

    def warning(self, message: str) -> None:
        self._push(Level.WARNING, message)

    def error(self, message: str) -> None:
        self._push(Level.ERROR, message)

    def drain(self) -> List[Notification]:
        """Return and forget every pending notification."""
        entries, self._entries = self._entries, []
        return entries

    def _push(self, level: Level, message: str) -> None:
        log.debug("Notification [%s]: %s", level.value, message)
        self._entries.append(Notification(level, message))
