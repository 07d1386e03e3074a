"""Product catalog store.

:class:`CatalogStore` owns the in-memory product snapshot for the signed-in
user and is the only component allowed to change it. Reads are served from
the snapshot. Every write goes to the backend and the snapshot is re-fetched
afterwards, as well as whenever the backend's change feed reports a change.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import fields as dataclass_fields, replace
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from . import log, notifications
from .backend import Backend, BackendError, ChangeEvent
from .cart import CartLine
from .data_manager import ProductRow, product_status
from .notifications import Notifier


EDITABLE_FIELDS = frozenset(
    field.name for field in dataclass_fields(ProductRow) if field.name not in {"sku", "status"}
)


def validate_product(product: ProductRow) -> None:
    """Check the field constraints every stored product must satisfy.

    Raises:
        ValueError: If the SKU is blank, the price or cost is not strictly
            positive, or the stock or sales count is negative.
    """
    if not product.sku or not product.sku.strip():
        raise ValueError("SKU must not be empty")
    if product.price <= Decimal("0"):
        raise ValueError("Price must be greater than zero")
    if product.cost <= Decimal("0"):
        raise ValueError("Cost must be greater than zero")
    if product.stock < 0:
        raise ValueError("Stock cannot be negative")
    if product.sales_count < 0:
        raise ValueError("Sales count cannot be negative")


class CatalogStore:
    """Cache of the signed-in user's products, synchronized with a backend.

    Without a signed-in user the catalog stays empty and every mutation is a
    no-op that reports failure.
    """

    def __init__(self, backend: Backend, user_id: Optional[str], notifier: Notifier) -> None:
        self._backend = backend
        self.user_id = user_id
        self._notifier = notifier
        self._products: List[ProductRow] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def products(self) -> Tuple[ProductRow, ...]:
        """Current snapshot in fetch order."""
        return tuple(self._products)

    @property
    def signed_in(self) -> bool:
        return self.user_id is not None

    def open(self) -> None:
        """Load the catalog and start listening to the change feed."""
        self.refresh()
        if self._unsubscribe is None and self.signed_in:
            self._unsubscribe = self._backend.subscribe(self._on_change)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def refresh(self) -> bool:
        """Re-fetch the full catalog; keeps the previous snapshot on failure."""
        if not self.signed_in:
            self._products = []
            return True
        try:
            fetched = self._backend.fetch_products(self.user_id)
        except BackendError as exc:
            log.error("Failed to load products for user '%s': %s", self.user_id, exc)
            self._notifier.error(notifications.LOAD_FAILED)
            return False
        self._products = list(fetched)
        log.debug("Catalog refreshed with %d products", len(self._products))
        return True

    def get_product(self, sku: str) -> Optional[ProductRow]:
        return next((product for product in self._products if product.sku == sku), None)

    def search(self, term: str = "", category: str = "all") -> List[ProductRow]:
        """Filter the snapshot by a name/SKU substring and a category tag.

        Matching is case-insensitive; ``category == "all"`` disables the
        category filter.
        """
        needle = term.casefold()
        return [
            product
            for product in self._products
            if (needle in product.name.casefold() or needle in product.sku.casefold())
            and (category == "all" or product.category == category)
        ]

    def categories(self) -> List[str]:
        """Distinct categories in first-seen order."""
        return list(OrderedDict.fromkeys(product.category for product in self._products))

    def add(self, product: ProductRow) -> bool:
        """Insert a new product; returns ``True`` when the store accepted it.

        The product is appended to the snapshot before the remote write and
        removed again if the write fails. SKU uniqueness is left to the store.
        """
        if not self.signed_in:
            log.warning("Ignoring add of '%s': no signed-in user", product.sku)
            return False

        product = replace(product, status=product_status(product.stock))
        try:
            validate_product(product)
        except ValueError as exc:
            log.warning("Rejected product '%s': %s", product.sku, exc)
            self._notifier.error(notifications.INVALID_PRODUCT.format(reason=exc))
            return False

        self._products.append(product)
        try:
            self._backend.insert_product(self.user_id, product)
        except BackendError as exc:
            log.error("Failed to add product '%s': %s", product.sku, exc)
            if product in self._products:
                self._products.remove(product)
            self._notifier.error(notifications.ADD_FAILED)
            return False

        self._notifier.success(notifications.PRODUCT_ADDED)
        self.refresh()
        return True

    def update(self, sku: str, changes: Mapping[str, Any]) -> bool:
        """Merge ``changes`` into the product identified by ``sku``.

        Any field except the SKU may be changed. The status always follows
        the resulting stock. A failed remote write restores the previous
        snapshot entry.
        """
        if not self.signed_in:
            log.warning("Ignoring update of '%s': no signed-in user", sku)
            return False

        current = self.get_product(sku)
        if current is None:
            log.warning("Update requested for unknown product '%s'", sku)
            self._notifier.error(notifications.UPDATE_FAILED)
            return False

        try:
            unknown = set(changes) - EDITABLE_FIELDS
            if unknown:
                raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
            updated = replace(current, **changes)
            updated = replace(updated, status=product_status(updated.stock))
            validate_product(updated)
        except ValueError as exc:
            log.warning("Rejected update of '%s': %s", sku, exc)
            self._notifier.error(notifications.INVALID_PRODUCT.format(reason=exc))
            return False

        self._replace_entry(updated)
        try:
            self._backend.update_product(self.user_id, sku, changes)
        except BackendError as exc:
            log.error("Failed to update product '%s': %s", sku, exc)
            self._replace_entry(current)
            self._notifier.error(notifications.UPDATE_FAILED)
            return False

        self._notifier.success(notifications.PRODUCT_UPDATED)
        self.refresh()
        return True

    def reduce_stock(self, lines: Iterable[CartLine]) -> bool:
        """Take sold units out of stock for every line, all or nothing.

        Every line is validated before anything changes: an unknown SKU or a
        quantity above the stock on hand aborts the whole reduction and
        returns ``False``. Once validation passes each product loses the sold
        units from ``stock`` and gains them in ``sales_count``.

        Each line is then persisted with a conditional decrement. A line the
        backend refuses is logged and notified but does not undo the other
        lines, and the method still returns ``True``.
        """
        if not self.signed_in:
            log.warning("Ignoring stock reduction: no signed-in user")
            return False

        requested: Dict[str, int] = OrderedDict()
        for line in lines:
            requested[line.sku] = requested.get(line.sku, 0) + line.quantity

        for sku, quantity in requested.items():
            product = self.get_product(sku)
            if product is None or product.stock < quantity:
                log.warning(
                    "Stock check failed for '%s': requested %d, available %s",
                    sku,
                    quantity,
                    product.stock if product is not None else "none",
                )
                return False

        for sku, quantity in requested.items():
            product = self.get_product(sku)
            new_stock = product.stock - quantity
            self._products[self._products.index(product)] = replace(
                product,
                stock=new_stock,
                sales_count=product.sales_count + quantity,
                status=product_status(new_stock),
            )

        for sku, quantity in requested.items():
            try:
                self._backend.decrement_stock(self.user_id, sku, quantity)
            except BackendError as exc:
                log.error("Failed to persist stock reduction for '%s': %s", sku, exc)
                self._notifier.error(notifications.STOCK_SYNC_FAILED.format(sku=sku))

        self.refresh()
        return True

    def _replace_entry(self, product: ProductRow) -> None:
        # A change event may have re-fetched the list since ``product`` was read.
        for index, existing in enumerate(self._products):
            if existing.sku == product.sku:
                self._products[index] = product
                return

    def _on_change(self, event: ChangeEvent) -> None:
        if event.user_id is not None and event.user_id != self.user_id:
            return
        log.debug("Change feed event %s for '%s'; refreshing", event.kind.value, event.sku)
        self.refresh()
