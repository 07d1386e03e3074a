"""Point-of-sale cart reducer.

A cart is an immutable tuple of :class:`CartLine` values. Every operation
returns a new tuple and leaves its input untouched, so the functions have no
side effects and never reach into the catalog; stock is only checked when the
cart is checked out.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Tuple

from .data_manager import ProductRow


@dataclass(frozen=True)
class CartLine:
    """One product in the cart, priced at the moment it was added."""

    sku: str
    name: str
    price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


Cart = Tuple[CartLine, ...]

EMPTY_CART: Cart = ()


def add_item(cart: Cart, product: ProductRow) -> Cart:
    """Add one unit of ``product``.

    An existing line for the same SKU gains one unit and keeps its original
    price; otherwise a new line is appended with the product's current price.
    """
    for index, line in enumerate(cart):
        if line.sku == product.sku:
            bumped = replace(line, quantity=line.quantity + 1)
            return cart[:index] + (bumped,) + cart[index + 1:]
    return cart + (CartLine(sku=product.sku, name=product.name, price=product.price, quantity=1),)


def set_quantity(cart: Cart, sku: str, quantity: int) -> Cart:
    """Set the quantity of the line for ``sku``; zero or less removes it."""
    if quantity <= 0:
        return tuple(line for line in cart if line.sku != sku)
    return tuple(replace(line, quantity=quantity) if line.sku == sku else line for line in cart)


def clear() -> Cart:
    return EMPTY_CART


def subtotal(cart: Cart) -> Decimal:
    return sum((line.line_total for line in cart), Decimal("0"))


def item_count(cart: Cart) -> int:
    return sum(line.quantity for line in cart)
