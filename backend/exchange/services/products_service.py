# backend/exchange/services/products_service.py
"""
Listings Service

Listings are never hard-deleted: order line items keep resolving against
them. Customer-facing queries exclude soft-deleted listings and listings of
banned or deleted sellers.

The listed `quantity` is the originally listed count; availability is
derived from orders (see inventory_service.py). Editing `quantity` is
therefore bounded below by the units active orders already hold.
"""
from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Order, OrderItem, Product, User
from ..models.orders import ORDER_WAITING
from ..time_utils import utcnow
from . import category_service, inventory_service
from .concurrency import run_with_retry

PRODUCT_MUTABLE_FIELDS = {"name", "description", "price", "category", "condition", "images", "campus", "quantity"}
MAX_PER_PAGE = 100


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def serialize_product(p: Product, stats: dict | None = None) -> dict:
    """Listing payload with derived inventory and display status."""
    if stats is None:
        stats = inventory_service.get_inventory_stats(p.id, p.quantity)
    data = p.to_dict()
    data["available_quantity"] = stats["available"]
    data["inventory"] = stats
    data["status"] = inventory_service.display_status(stats)
    return data


def _visible_products_query():
    return (
        db.session.query(Product)
        .join(User, User.id == Product.seller_id)
        .filter(
            Product.is_deleted.is_(False),
            User.is_deleted.is_(False),
            User.is_banned.is_(False),
        )
    )


def list_products(
    *,
    category: str | None = None,
    condition: str | None = None,
    campus: str | None = None,
    search: str | None = None,
    seller_id: int | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Customer-facing listing with filters and pagination.

    Returns dict with 'items', 'count' and 'pagination'.
    """
    q = _visible_products_query()
    if category:
        q = q.filter(Product.category == category)
    if condition:
        q = q.filter(Product.condition == condition)
    if campus:
        q = q.filter(Product.campus == campus)
    if seller_id is not None:
        q = q.filter(Product.seller_id == seller_id)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(db.or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

    per_page = min(per_page or 20, MAX_PER_PAGE)
    page = max(page or 1, 1)

    total = q.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = (
        q.order_by(Product.created_at.desc(), Product.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    stats = inventory_service.get_inventory_stats_bulk(products)

    return {
        "items": [serialize_product(p, stats[p.id]) for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int, *, include_deleted: bool = False) -> Product:
    p = db.session.get(Product, product_id)
    if p is None or (p.is_deleted and not include_deleted):
        raise NotFoundError("Product not found")
    return p


def create_product(*, seller: User, patch: dict) -> Product:
    """
    Create a listing from a validated patch (see validation.enforce_rules_product).

    Seller name/email are snapshotted from the account at listing time.
    The category is matched to (or creates) a Category row by slug.
    """
    if seller.is_banned or seller.is_deleted:
        raise ForbiddenError("Account cannot create listings")

    p = Product(
        seller_id=seller.id,
        seller_name=seller.full_name,
        seller_email=seller.email,
        quantity=1,
        images=[],
    )
    if "category" in patch:
        patch["category"] = category_service.resolve_for_listing(patch["category"])
    apply_product_patch(p, patch)

    db.session.add(p)
    db.session.commit()
    current_app.logger.info("Listing %s created by seller=%s", p.id, seller.id)
    return p


def _require_owner_or_admin(p: Product, actor: User) -> None:
    if p.seller_id != actor.id and not actor.is_admin:
        raise ForbiddenError("Not authorized to modify this listing")


def update_product(product_id: int, actor: User, patch: dict) -> Product:
    """
    Owner or admin edit.

    Lowering quantity below the units held by active orders is refused:
    those orders were placed against units that must keep existing.
    """
    def _op() -> Product:
        p = get_product(product_id)
        _require_owner_or_admin(p, actor)

        if "quantity" in patch and patch["quantity"] != p.quantity:
            held = inventory_service.get_ordered_quantity(p.id)
            if patch["quantity"] < held:
                raise InvalidInputError(
                    f"quantity cannot be lower than {held} units already held by orders",
                    details={"held": held, "requested": patch["quantity"]},
                )
        if "category" in patch and patch["category"] != p.category:
            patch["category"] = category_service.resolve_for_listing(patch["category"])

        apply_product_patch(p, patch)
        db.session.commit()
        return p

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def _has_waiting_orders(product_id: int) -> bool:
    return (
        db.session.query(OrderItem.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            OrderItem.product_id == product_id,
            Order.status == ORDER_WAITING,
            Order.is_deleted.is_(False),
        )
        .first()
        is not None
    )


def delete_product(product_id: int, actor: User) -> Product:
    """Soft delete; refused while any order for the listing is still waiting to meet."""
    p = get_product(product_id)
    _require_owner_or_admin(p, actor)

    if _has_waiting_orders(p.id):
        raise ConflictError("Cannot delete a listing with orders waiting to meet")

    p.is_deleted = True
    p.deleted_at = utcnow()
    p.deleted_by = actor.id
    db.session.commit()
    current_app.logger.info("Listing %s deleted by user=%s", p.id, actor.id)
    return p


def restore_product(product_id: int, admin: User) -> Product:
    if not admin.is_admin:
        raise ForbiddenError("Admin access required")
    p = get_product(product_id, include_deleted=True)
    p.is_deleted = False
    p.deleted_at = None
    p.deleted_by = None
    db.session.commit()
    return p
