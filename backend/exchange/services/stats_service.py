# Overview: Service-layer aggregates for the admin dashboard and payment summaries.

"""
Statistics Service

Amounts are stored as decimal strings, so sums are taken in Python over
Decimals (see money.py) rather than with SQL SUM over text columns.
"""
from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models import Order, Payment, Product, User
from ..models.orders import ORDER_CANCELLED
from ..models.payments import PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_PENDING, PAYMENT_REFUNDED
from ..money import format_amount, sum_amounts, to_decimal
from . import inventory_service
from .products_service import serialize_product

RECENT_LIMIT = 5


def _sum_column(query) -> str:
    return format_amount(sum_amounts(to_decimal(value) for (value,) in query.all()))


def _payment_counts(*filters) -> dict[str, int]:
    rows = (
        db.session.query(Payment.status, func.count(Payment.id))
        .filter(Payment.is_deleted.is_(False), *filters)
        .group_by(Payment.status)
        .all()
    )
    return {status: count for status, count in rows}


def _recent_order_dict(order: Order, buyer: User) -> dict:
    data = order.to_dict()
    data["buyer"] = {"id": buyer.id, "full_name": buyer.full_name, "email": buyer.email}
    return data


def dashboard_stats() -> dict:
    """
    Admin dashboard counters.

    total_revenue counts orders both parties confirmed, that were not
    cancelled or deleted, and whose seller account still exists.
    """
    seller = aliased(User)
    revenue_q = (
        db.session.query(Order.total_amount)
        .join(seller, seller.id == Order.seller_id)
        .filter(
            Order.is_deleted.is_(False),
            Order.status != ORDER_CANCELLED,
            Order.buyer_confirmed.is_(True),
            Order.seller_confirmed.is_(True),
            seller.is_deleted.is_(False),
        )
    )

    recent_orders = (
        db.session.query(Order, User)
        .join(User, User.id == Order.user_id)
        .filter(Order.is_deleted.is_(False))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(RECENT_LIMIT)
        .all()
    )
    recent_products = (
        db.session.query(Product)
        .filter(Product.is_deleted.is_(False))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(RECENT_LIMIT)
        .all()
    )
    stats = inventory_service.get_inventory_stats_bulk(recent_products)

    return {
        "total_users": db.session.query(User).filter(User.is_deleted.is_(False)).count(),
        "total_products": db.session.query(Product).filter(Product.is_deleted.is_(False)).count(),
        "total_orders": db.session.query(Order).filter(Order.is_deleted.is_(False)).count(),
        "total_revenue": _sum_column(revenue_q),
        "recent_orders": [_recent_order_dict(o, u) for o, u in recent_orders],
        "top_products": [serialize_product(p, stats[p.id]) for p in recent_products],
    }


def payment_stats() -> dict:
    """Marketplace-wide payment counters for admins."""
    counts = _payment_counts()
    completed_q = db.session.query(Payment.amount).filter(
        Payment.is_deleted.is_(False), Payment.status == PAYMENT_COMPLETED
    )
    refunded_q = db.session.query(Payment.refund_amount).filter(
        Payment.is_deleted.is_(False), Payment.status == PAYMENT_REFUNDED
    )
    return {
        "total_payments": sum(counts.values()),
        "completed_payments": counts.get(PAYMENT_COMPLETED, 0),
        "pending_payments": counts.get(PAYMENT_PENDING, 0),
        "failed_payments": counts.get(PAYMENT_FAILED, 0),
        "total_revenue": _sum_column(completed_q),
        "refunded_amount": _sum_column(refunded_q),
    }


def payment_summary(user: User) -> dict:
    """The caller's own spending."""
    counts = _payment_counts(Payment.user_id == user.id)
    spent_q = db.session.query(Payment.amount).filter(
        Payment.is_deleted.is_(False),
        Payment.user_id == user.id,
        Payment.status == PAYMENT_COMPLETED,
    )
    return {
        "total_spent": _sum_column(spent_q),
        "completed_payments": counts.get(PAYMENT_COMPLETED, 0),
        "pending_payments": counts.get(PAYMENT_PENDING, 0),
        "failed_payments": counts.get(PAYMENT_FAILED, 0),
    }
