"""Derived dashboard reports.

Every function here is a pure computation over a product snapshot (and, for
the sales figures, the recorded transactions). Nothing is cached: callers
recompute on every read so reports always match the current catalog. Ranked
reports rely on Python's stable sort, so ties keep snapshot order.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Sequence, Tuple

from . import log
from .constants import LOW_STOCK_THRESHOLD, REPORT_LIMIT
from .data_manager import ProductRow, SaleRow


def margin_percent(product: ProductRow) -> Decimal:
    """Gross margin of ``product`` as a percentage of its selling price.

    A product without a positive price has no meaningful margin and scores 0.
    """
    if product.price <= 0:
        return Decimal("0")
    return (product.price - product.cost) / product.price * 100


def low_stock(products: Sequence[ProductRow], *, limit: int = REPORT_LIMIT) -> List[ProductRow]:
    """Products at or below the low-stock threshold, emptiest first."""
    candidates = [product for product in products if product.stock <= LOW_STOCK_THRESHOLD]
    return sorted(candidates, key=lambda product: product.stock)[:limit]


def low_margin(products: Sequence[ProductRow], *, limit: int = REPORT_LIMIT) -> List[Tuple[ProductRow, Decimal]]:
    """In-stock, priced products with the thinnest margins, paired with the margin."""
    scored = [
        (product, margin_percent(product))
        for product in products
        if product.stock > 0 and product.price > 0
    ]
    return sorted(scored, key=lambda pair: pair[1])[:limit]


def low_sales_volume(products: Sequence[ProductRow], *, limit: int = REPORT_LIMIT) -> List[ProductRow]:
    """In-stock products that have sold the fewest units."""
    candidates = [product for product in products if product.stock > 0]
    return sorted(candidates, key=lambda product: product.sales_count)[:limit]


def top_sellers(products: Sequence[ProductRow], *, limit: int = REPORT_LIMIT) -> List[ProductRow]:
    """Products that have sold the most units, best first."""
    return sorted(products, key=lambda product: product.sales_count, reverse=True)[:limit]


def inventory_summary(products: Sequence[ProductRow]) -> Dict[str, Any]:
    """Headline catalog figures for the dashboard.

    Returns:
        dict[str, Any]: ``total_products`` and ``low_stock_count`` as
            integers; ``inventory_value`` (stock at selling price),
            ``inventory_cost`` (stock at cost), and ``potential_profit`` (the
            difference) as decimals.
    """
    inventory_value = sum((product.price * product.stock for product in products), Decimal("0"))
    inventory_cost = sum((product.cost * product.stock for product in products), Decimal("0"))
    return {
        "total_products": len(products),
        "low_stock_count": sum(1 for product in products if product.stock <= LOW_STOCK_THRESHOLD),
        "inventory_value": inventory_value,
        "inventory_cost": inventory_cost,
        "potential_profit": inventory_value - inventory_cost,
    }


def sales_summary(transactions: Sequence[SaleRow], *, inventory_cost: Decimal = Decimal("0")) -> Dict[str, Decimal]:
    """Aggregate revenue and profit across recorded sales.

    ``profit_margin`` is profit as a percentage of sales and
    ``sales_to_inventory`` compares sales with the cost of stock on hand;
    both are zero when their denominator is zero.
    """
    total_sales = sum((sale.total_amount for sale in transactions), Decimal("0"))
    total_profit = sum((sale.profit_amount for sale in transactions), Decimal("0"))
    profit_margin = total_profit / total_sales * 100 if total_sales else Decimal("0")
    sales_to_inventory = total_sales / inventory_cost * 100 if inventory_cost else Decimal("0")
    log.debug(
        "Calculated sales summary: sales=%s profit=%s over %d transactions",
        total_sales,
        total_profit,
        len(transactions),
    )
    return {
        "total_sales": total_sales,
        "total_profit": total_profit,
        "profit_margin": profit_margin,
        "sales_to_inventory": sales_to_inventory,
    }


def dashboard(products: Sequence[ProductRow], transactions: Sequence[SaleRow]) -> Dict[str, Any]:
    """Bundle every dashboard figure and ranked report into one mapping."""
    inventory = inventory_summary(products)
    return {
        "inventory": inventory,
        "sales": sales_summary(transactions, inventory_cost=inventory["inventory_cost"]),
        "low_stock": low_stock(products),
        "low_margin": low_margin(products),
        "low_sales_volume": low_sales_volume(products),
        "top_sellers": top_sellers(products),
    }
