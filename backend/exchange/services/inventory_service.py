# Overview: Service-layer operations for inventory; derives availability from the order table.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderItem
from ..models.catalog import PRODUCT_STATUS_AVAILABLE, PRODUCT_STATUS_RESERVED, PRODUCT_STATUS_SOLD
from ..models.orders import ORDER_CANCELLED
"""
Inventory Invariants (authoritative)

Inventory is order-derived; there is no stored running counter.
- Product.quantity is the ORIGINALLY LISTED count and is never decremented.
- ordered   = SUM(order_items.quantity) over orders that are not cancelled
              and not soft-deleted.
- available = max(0, listed - ordered). Clamped: an oversell caused by two
              racing checkouts is never reported as negative stock.
- sold      = SUM(order_items.quantity) over orders with BOTH confirmation
              flags set and not soft-deleted. Cancellation is not re-checked;
              the order state machine never lets a cancelled order reach
              both-confirmed.
- reserved  = listed - available - sold (in-flight exchanges).

Every call re-aggregates at read time, so results are consistent with the
order table at the instant of the read and nothing can drift.
"""


def _sum_by_product(product_ids, *criteria) -> dict[int, int]:
    rows = (
        db.session.query(OrderItem.product_id, func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .filter(OrderItem.product_id.in_(product_ids), Order.is_deleted.is_(False), *criteria)
        .group_by(OrderItem.product_id)
        .all()
    )
    return {product_id: int(total or 0) for product_id, total in rows}


def _ordered_by_product(product_ids) -> dict[int, int]:
    """product_id -> units held by non-cancelled, non-deleted orders."""
    return _sum_by_product(product_ids, Order.status != ORDER_CANCELLED)


def _sold_by_product(product_ids) -> dict[int, int]:
    return _sum_by_product(
        product_ids,
        Order.buyer_confirmed.is_(True),
        Order.seller_confirmed.is_(True),
    )


def get_ordered_quantity(product_id: int) -> int:
    return _ordered_by_product([product_id]).get(product_id, 0)


def get_available_quantity(product_id: int, listed_quantity: int) -> int:
    """Units still available: listed minus units held by active orders, never below zero."""
    ordered = get_ordered_quantity(product_id)
    available = max(0, listed_quantity - ordered)
    current_app.logger.debug(
        "Inventory product=%s listed=%s ordered=%s available=%s",
        product_id, listed_quantity, ordered, available,
    )
    return available


def get_sold_quantity(product_id: int) -> int:
    """Units in orders both parties have confirmed (soft-deleted orders excluded)."""
    return _sold_by_product([product_id]).get(product_id, 0)


def _stats(listed: int, available: int, sold: int) -> dict:
    return {
        "listed": listed,
        "available": available,
        "sold": sold,
        "reserved": listed - available - sold,
    }


def get_inventory_stats(product_id: int, listed_quantity: int) -> dict:
    """{listed, available, sold, reserved} for one product."""
    available = get_available_quantity(product_id, listed_quantity)
    sold = get_sold_quantity(product_id)
    return _stats(listed_quantity, available, sold)


def get_inventory_stats_bulk(products) -> dict[int, dict]:
    """
    get_inventory_stats for a page of products.

    Two aggregate queries for the whole page instead of two per product.
    """
    products = list(products)
    if not products:
        return {}
    ids = [p.id for p in products]
    ordered = _ordered_by_product(ids)
    sold = _sold_by_product(ids)
    return {
        p.id: _stats(p.quantity, max(0, p.quantity - ordered.get(p.id, 0)), sold.get(p.id, 0))
        for p in products
    }


def display_status(stats: dict) -> str:
    """
    Customer-facing listing status derived from inventory stats.

    available while any unit is free; reserved while units are held by
    in-flight orders; sold otherwise.
    """
    if stats["available"] > 0:
        return PRODUCT_STATUS_AVAILABLE
    if stats["reserved"] > 0:
        return PRODUCT_STATUS_RESERVED
    return PRODUCT_STATUS_SOLD
