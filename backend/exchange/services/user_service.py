# Overview: Service-layer read models for accounts; public profiles and the admin user directory.

from __future__ import annotations

from ..errors import NotFoundError
from ..extensions import db
from ..models import Order, Product, Review, User
from ..models.auth import VALID_ROLES
from ..models.orders import ORDER_CANCELLED
from ..money import format_amount, sum_amounts, to_decimal
from ..time_utils import to_utc_z
from . import inventory_service
from .products_service import serialize_product


def public_user_dict(user: User) -> dict:
    """What any visitor may see about an account. No email, phone or moderation state."""
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "created_at": to_utc_z(user.created_at),
    }


def _serialize_products(products: list[Product]) -> list[dict]:
    stats = inventory_service.get_inventory_stats_bulk(products)
    return [serialize_product(p, stats[p.id]) for p in products]


def get_public_profile(user_id: int) -> dict:
    """A seller's page: live listings and the reviews the account has written."""
    user = db.session.get(User, user_id)
    if user is None or user.is_deleted:
        raise NotFoundError("User not found")

    products = (
        db.session.query(Product)
        .filter(Product.seller_id == user.id, Product.is_deleted.is_(False))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .all()
    )
    reviews = (
        db.session.query(Review)
        .filter(Review.user_id == user.id, Review.is_deleted.is_(False))
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )
    return {
        "user": public_user_dict(user),
        "history": {
            "products": _serialize_products(products),
            "reviews": [r.to_dict() for r in reviews],
            "total_products": len(products),
            "total_reviews": len(reviews),
        },
    }


def list_users(
    *,
    search: str | None = None,
    role: str | None = None,
    include_deleted: bool = False,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[User], int]:
    """Admin directory, newest accounts first. `search` matches email and names."""
    q = db.session.query(User)
    if not include_deleted:
        q = q.filter(User.is_deleted.is_(False))
    if role in VALID_ROLES:
        q = q.filter(User.role == role)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        q = q.filter(db.or_(
            User.email.ilike(pattern),
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
        ))

    total = q.count()
    users = (
        q.order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return users, total


def get_user_detail(user_id: int, *, include_deleted: bool = False) -> dict:
    """
    Full account history for moderation.

    total_spent sums the account's non-cancelled orders as a buyer.
    """
    user = db.session.get(User, user_id)
    if user is None or (user.is_deleted and not include_deleted):
        raise NotFoundError("User not found")

    products_q = db.session.query(Product).filter(Product.seller_id == user.id)
    orders_q = db.session.query(Order).filter(Order.user_id == user.id)
    reviews_q = db.session.query(Review).filter(Review.user_id == user.id)
    if not include_deleted:
        products_q = products_q.filter(Product.is_deleted.is_(False))
        orders_q = orders_q.filter(Order.is_deleted.is_(False))
        reviews_q = reviews_q.filter(Review.is_deleted.is_(False))

    products = products_q.order_by(Product.created_at.desc(), Product.id.desc()).all()
    orders = orders_q.order_by(Order.created_at.desc(), Order.id.desc()).all()
    reviews = reviews_q.order_by(Review.created_at.desc(), Review.id.desc()).all()

    total_spent = sum_amounts(to_decimal(o.total_amount) for o in orders if o.status != ORDER_CANCELLED)
    return {
        "user": user.to_dict(),
        "history": {
            "products": _serialize_products(products),
            "orders": [o.to_dict() for o in orders],
            "reviews": [r.to_dict() for r in reviews],
            "total_products": len(products),
            "total_orders": len(orders),
            "total_reviews": len(reviews),
            "total_spent": format_amount(total_spent),
        },
    }
