"""Backing store contract and its workbook implementation.

The catalog and checkout layers never talk to ``openpyxl`` directly. They go
through the :class:`Backend` interface, which mirrors what the hosted service
offers: user-scoped product and sales collections plus a live change feed.
:class:`WorkbookBackend` fulfils that contract on top of the data access
layer, re-reading the file before and saving it after every write so the file
on disk stays the source of truth.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import ChangeKind


class BackendError(Exception):
    """Raised when the backing store rejects or fails an operation."""


class RecordNotFoundError(BackendError):
    """Raised when a write targets a record the store does not hold."""


class StockConflictError(BackendError):
    """Raised when a conditional stock decrement finds too few units."""


@dataclass(frozen=True)
class ChangeEvent:
    """A single notification published on the product change feed."""

    kind: ChangeKind
    user_id: Optional[str]
    sku: Optional[str]
    external: bool = False


ChangeListener = Callable[[ChangeEvent], None]


class Backend(ABC):
    """Operations the back-office needs from its persistent store."""

    @abstractmethod
    def fetch_products(self, user_id: str) -> List[data_manager.ProductRow]:
        """Return every product owned by ``user_id`` ordered by name."""

    @abstractmethod
    def insert_product(self, user_id: str, product: data_manager.ProductRow) -> None:
        """Persist a new product owned by ``user_id``."""

    @abstractmethod
    def update_product(self, user_id: str, sku: str, fields: Mapping[str, Any]) -> None:
        """Overwrite the given fields of the product identified by ``sku``."""

    @abstractmethod
    def decrement_stock(self, user_id: str, sku: str, quantity: int) -> data_manager.ProductRow:
        """Remove ``quantity`` units and count them as sold, only if available."""

    @abstractmethod
    def insert_sale(self, record: data_manager.SaleRow) -> data_manager.SaleRow:
        """Append a sales transaction and return it with store-assigned fields."""

    @abstractmethod
    def fetch_sales(self, user_id: str) -> List[data_manager.SaleRow]:
        """Return every sales transaction recorded for ``user_id``."""

    @abstractmethod
    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener`` on the change feed; returns an unsubscriber."""


def generate_transaction_id(*, prefix: str = "S", when: Optional[datetime] = None) -> str:
    """Generate a sortable transaction identifier using UTC timestamps.

    The identifier is formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``; packing the
    microseconds keeps identifiers unique for checkouts within one second.
    """
    when = when or datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


# Raised while turning a hand-edited worksheet row into a record.
MALFORMED_ROW_ERRORS = (ValueError, TypeError, KeyError, InvalidOperation)


class WorkbookBackend(Backend):
    """:class:`Backend` persisted in an ``openpyxl`` workbook file.

    Every mutating call re-reads the file first, so the check and the write
    see what other sessions have saved, and is written to disk before it
    returns and then published to subscribers. :meth:`poll` notices edits made
    to the file by other sessions and publishes them as external changes.
    """

    def __init__(self, data_file: Path) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self._mtime = self._current_mtime()
        self._workbook = data_manager.open_workbook(self.data_file)
        self._listeners: List[ChangeListener] = []
        try:
            self._known = self._index_products()
        except BackendError as exc:
            log.error("Workbook '%s' holds unreadable products: %s", self.data_file, exc)
            self._known = {}

    @classmethod
    def from_settings(cls, settings: data_manager.ConfigSettings) -> "WorkbookBackend":
        return cls(settings.data_file)

    # -- reads ---------------------------------------------------------------

    def fetch_products(self, user_id: str) -> List[data_manager.ProductRow]:
        try:
            products = list(data_manager.iter_products(self._workbook, user_id))
        except MALFORMED_ROW_ERRORS as exc:
            raise BackendError(f"Unreadable product row: {exc}") from exc
        products.sort(key=lambda product: product.name.casefold())
        log.debug("Fetched %d products for user '%s'", len(products), user_id)
        return products

    def fetch_sales(self, user_id: str) -> List[data_manager.SaleRow]:
        try:
            return list(data_manager.iter_sales(self._workbook, user_id))
        except MALFORMED_ROW_ERRORS as exc:
            raise BackendError(f"Unreadable sales row: {exc}") from exc

    # -- writes --------------------------------------------------------------

    def insert_product(self, user_id: str, product: data_manager.ProductRow) -> None:
        self._reload()
        data_manager.append_product(self._workbook, product, user_id=user_id)
        self._commit()
        log.info("Inserted product '%s' for user '%s'", product.sku, user_id)
        self._publish(ChangeEvent(ChangeKind.INSERT, user_id, product.sku))

    def update_product(self, user_id: str, sku: str, fields: Mapping[str, Any]) -> None:
        values = dict(fields)
        if "stock" in values:
            values["status"] = data_manager.product_status(values["stock"])
        self._reload()
        try:
            data_manager.update_product(self._workbook, user_id, sku, field_values=values)
        except KeyError as exc:
            self._discard_changes()
            raise RecordNotFoundError(str(exc)) from exc
        self._commit()
        log.info("Updated product '%s' fields %s", sku, ", ".join(sorted(values)))
        self._publish(ChangeEvent(ChangeKind.UPDATE, user_id, sku))

    def decrement_stock(self, user_id: str, sku: str, quantity: int) -> data_manager.ProductRow:
        self._reload()
        try:
            current = data_manager.read_product(self._workbook, user_id, sku)
        except MALFORMED_ROW_ERRORS as exc:
            raise BackendError(f"Unreadable product row for {sku}: {exc}") from exc
        if current is None:
            raise RecordNotFoundError(f"Product not found: {sku}")
        if current.stock < quantity:
            log.warning(
                "Conditional decrement rejected for '%s': stock %d < %d",
                sku,
                current.stock,
                quantity,
            )
            raise StockConflictError(f"Only {current.stock} units of {sku} remain")

        updated = replace(
            current,
            stock=current.stock - quantity,
            sales_count=current.sales_count + quantity,
            status=data_manager.product_status(current.stock - quantity),
        )
        data_manager.update_product(
            self._workbook,
            user_id,
            sku,
            field_values={
                "stock": updated.stock,
                "sales_count": updated.sales_count,
                "status": updated.status,
            },
        )
        self._commit()
        log.info("Decremented stock of '%s' by %d (now %d)", sku, quantity, updated.stock)
        self._publish(ChangeEvent(ChangeKind.UPDATE, user_id, sku))
        return updated

    def insert_sale(self, record: data_manager.SaleRow) -> data_manager.SaleRow:
        self._reload()
        created_at = datetime.now(UTC)
        stored = replace(
            record,
            transaction_id=generate_transaction_id(when=created_at),
            created_at_iso=created_at.isoformat(),
        )
        data_manager.append_sale(self._workbook, stored)
        self._commit()
        log.info(
            "Recorded sales transaction '%s' (total=%s, profit=%s)",
            stored.transaction_id,
            stored.total_amount,
            stored.profit_amount,
        )
        return stored

    # -- change feed ---------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def poll(self) -> List[ChangeEvent]:
        """Reload the workbook if another session saved it and publish the diff.

        Returns:
            list[ChangeEvent]: Events published for products that were
                inserted, updated, or deleted outside this backend. Empty when
                the file is unchanged.
        """
        if self._current_mtime() == self._mtime:
            return []
        log.info("Workbook '%s' changed on disk; reloading", self.data_file)
        return self._reload()

    # -- internals -----------------------------------------------------------

    def _publish(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _reload(self) -> List[ChangeEvent]:
        """Replace the in-memory copy with the file and publish what changed.

        Products the file gained, lost, or changed since this backend last
        saw it are published as external events.

        Raises:
            BackendError: If the file cannot be opened or holds unreadable
                product rows.
        """
        mtime = self._current_mtime()
        try:
            workbook = data_manager.open_workbook(self.data_file)
        except (OSError, KeyError) as exc:
            raise BackendError(f"Unable to reload workbook: {exc}") from exc
        known = self._index_products(workbook)
        self._workbook, self._mtime = workbook, mtime

        previous, self._known = self._known, known
        events: List[ChangeEvent] = []
        for key in self._known.keys() - previous.keys():
            events.append(ChangeEvent(ChangeKind.INSERT, key[0], key[1], external=True))
        for key in previous.keys() - self._known.keys():
            events.append(ChangeEvent(ChangeKind.DELETE, key[0], key[1], external=True))
        for key in self._known.keys() & previous.keys():
            if self._known[key] != previous[key]:
                events.append(ChangeEvent(ChangeKind.UPDATE, key[0], key[1], external=True))

        if events:
            log.info("Picked up %d external product change(s)", len(events))
        for event in events:
            self._publish(event)
        return events

    def _commit(self) -> None:
        try:
            data_manager.save_workbook(self._workbook, self.data_file)
        except OSError as exc:
            log.error("Failed to save workbook '%s': %s", self.data_file, exc)
            self._discard_changes()
            raise BackendError(f"Unable to save workbook: {exc}") from exc
        self._mtime = self._current_mtime()
        self._known = self._index_products()

    def _discard_changes(self) -> None:
        """Drop unsaved in-memory edits by reopening the file, if it exists."""
        if self.data_file.exists():
            self._workbook = data_manager.open_workbook(self.data_file)

    def _current_mtime(self) -> Optional[int]:
        try:
            return self.data_file.stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def _index_products(self, workbook: Optional[Workbook] = None) -> Dict[Tuple[str, str], data_manager.ProductRow]:
        index: Dict[Tuple[str, str], data_manager.ProductRow] = {}
        sheet = (workbook if workbook is not None else self._workbook)[data_manager.PRODUCTS_SHEET]
        for raw in sheet.iter_rows(min_row=2, values_only=True):
            if any(cell is not None for cell in raw):
                try:
                    row = data_manager.deserialize_product(raw)
                except MALFORMED_ROW_ERRORS as exc:
                    raise BackendError(f"Unreadable product row: {exc}") from exc
                index[(str(raw[1]), row.sku)] = row
        return index
