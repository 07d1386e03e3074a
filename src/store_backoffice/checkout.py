"""Checkout workflow and sales recording.

:func:`checkout` turns the cart of a :class:`CheckoutSession` into a
committed stock reduction followed by an immutable sales transaction. Stock
is committed first; recording the sale is best effort, so a failure at that
point produces a warning instead of undoing the reduction.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from . import cart as cart_ops
from . import log, notifications
from .backend import Backend, BackendError
from .cart import Cart, EMPTY_CART
from .catalog import CatalogStore
from .constants import TAX_RATE, PaymentMethod
from .data_manager import ProductRow, SaleItem, SaleRow
from .notifications import Notifier


class CheckoutOutcome(str, Enum):
    """How a checkout attempt ended."""

    COMPLETED = "completed"
    NOT_RECORDED = "not-recorded"
    EMPTY_CART = "empty-cart"
    INSUFFICIENT_STOCK = "insufficient-stock"


@dataclass(frozen=True)
class CheckoutTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class CheckoutResult:
    """Outcome of :func:`checkout` with the amounts it computed."""

    outcome: CheckoutOutcome
    totals: Optional[CheckoutTotals] = None
    cost_amount: Optional[Decimal] = None
    profit_amount: Optional[Decimal] = None
    transaction: Optional[SaleRow] = None

    @property
    def stock_committed(self) -> bool:
        return self.outcome in (CheckoutOutcome.COMPLETED, CheckoutOutcome.NOT_RECORDED)


def compute_totals(cart: Cart) -> CheckoutTotals:
    """Subtotal of the cart plus the flat sales tax."""
    subtotal = cart_ops.subtotal(cart)
    tax = subtotal * TAX_RATE
    return CheckoutTotals(subtotal=subtotal, tax=tax, total=subtotal + tax)


def compute_cost(cart: Cart, catalog: CatalogStore) -> Decimal:
    """Wholesale cost of the cart using the catalog's current unit costs.

    Lines whose product is no longer in the catalog contribute nothing.
    """
    cost = Decimal("0")
    for line in cart:
        product = catalog.get_product(line.sku)
        if product is not None:
            cost += product.cost * line.quantity
    return cost


class CheckoutSession:
    """Cart and transient customer details of the active checkout."""

    def __init__(self) -> None:
        self.cart: Cart = EMPTY_CART
        self.customer_name = ""

    def add_item(self, product: ProductRow) -> None:
        self.cart = cart_ops.add_item(self.cart, product)

    def set_quantity(self, sku: str, quantity: int) -> None:
        self.cart = cart_ops.set_quantity(self.cart, sku, quantity)

    def clear(self) -> None:
        self.cart = cart_ops.clear()

    def reset(self) -> None:
        """Forget the cart and the customer after a completed sale."""
        self.clear()
        self.customer_name = ""


class SalesRecorder:
    """Appends sales transactions for one user to the backend."""

    def __init__(self, backend: Backend, user_id: Optional[str]) -> None:
        self._backend = backend
        self.user_id = user_id

    def record(
        self,
        cart: Cart,
        *,
        totals: CheckoutTotals,
        cost_amount: Decimal,
        profit_amount: Decimal,
        payment_method: PaymentMethod,
        customer_name: Optional[str] = None,
    ) -> SaleRow:
        """Persist one transaction; the store assigns its id and timestamp.

        Raises:
            BackendError: If the store rejects the insert or no user is
                signed in.
        """
        if self.user_id is None:
            raise BackendError("Cannot record a sale without a signed-in user")
        record = SaleRow(
            transaction_id="",
            user_id=self.user_id,
            created_at_iso="",
            payment_method=payment_method.value,
            customer_name=customer_name or None,
            total_amount=totals.total,
            cost_amount=cost_amount,
            profit_amount=profit_amount,
            items=tuple(
                SaleItem(sku=line.sku, name=line.name, price=line.price, quantity=line.quantity)
                for line in cart
            ),
        )
        return self._backend.insert_sale(record)


def checkout(
    session: CheckoutSession,
    catalog: CatalogStore,
    recorder: SalesRecorder,
    payment_method: PaymentMethod,
    notifier: Notifier,
) -> CheckoutResult:
    """Sell the session's cart.

    The steps are: reject an empty cart, price the cart, commit the stock
    reduction (all or nothing), cost the sale against the catalog, and record
    the transaction. Profit is the subtotal minus cost; tax is left out of it,
    so ``profit + cost`` does not add up to the total.

    The cart is cleared only when the sale was both committed and recorded.
    """
    cart = session.cart
    if not cart:
        log.warning("Checkout attempted with an empty cart")
        notifier.error(notifications.CART_EMPTY)
        return CheckoutResult(CheckoutOutcome.EMPTY_CART)

    totals = compute_totals(cart)

    if not catalog.reduce_stock(cart):
        notifier.error(notifications.INSUFFICIENT_STOCK)
        return CheckoutResult(CheckoutOutcome.INSUFFICIENT_STOCK, totals=totals)

    cost_amount = compute_cost(cart, catalog)
    profit_amount = totals.subtotal - cost_amount

    try:
        transaction = recorder.record(
            cart,
            totals=totals,
            cost_amount=cost_amount,
            profit_amount=profit_amount,
            payment_method=payment_method,
            customer_name=session.customer_name,
        )
    except BackendError as exc:
        log.error("Sale completed but the transaction was not recorded: %s", exc)
        notifier.warning(notifications.SALE_NOT_RECORDED)
        return CheckoutResult(
            CheckoutOutcome.NOT_RECORDED,
            totals=totals,
            cost_amount=cost_amount,
            profit_amount=profit_amount,
        )

    notifier.success(notifications.INVOICE_GENERATED.format(payment=payment_method.value))
    session.reset()
    return CheckoutResult(
        CheckoutOutcome.COMPLETED,
        totals=totals,
        cost_amount=cost_amount,
        profit_amount=profit_amount,
        transaction=transaction,
    )
