# Overview: Service-layer operations for cart; price snapshots and checkout into per-seller orders.

from __future__ import annotations

from flask import current_app

from ..errors import InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Cart, CartItem, Order, Product, User
from ..money import format_amount, line_total, sum_amounts
from ..validation import parse_id
from . import inventory_service, order_service
from .order_service import MAX_QUANTITY_PER_LINE


def _get_or_create_cart(user: User) -> Cart:
    cart = db.session.query(Cart).filter_by(user_id=user.id).first()
    if cart is None:
        cart = Cart(user_id=user.id)
        db.session.add(cart)
        db.session.flush()
    return cart


def cart_total(items) -> str:
    return format_amount(sum_amounts(line_total(i.price, i.quantity) for i in items))


def serialize_cart(cart: Cart) -> dict:
    return {
        "id": cart.id,
        "user_id": cart.user_id,
        "items": [i.to_dict() for i in cart.items],
        "total_amount": cart_total(cart.items),
    }


def _orderable_product(user: User, product_id) -> Product:
    product_id = parse_id(product_id, "product_id")
    product = db.session.get(Product, product_id)
    if product is None or product.is_deleted:
        raise NotFoundError("Product not found or no longer available")
    seller = product.seller
    if seller is None or seller.is_banned or seller.is_deleted:
        raise InvalidInputError("This product is no longer available (seller account issues)")
    if product.seller_id == user.id:
        raise InvalidInputError("You cannot purchase your own product")
    return product


def _parse_cart_quantity(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError("quantity must be an integer")
    if value < 1:
        raise InvalidInputError("Quantity must be at least 1")
    if value > MAX_QUANTITY_PER_LINE:
        raise InvalidInputError(f"quantity cannot exceed {MAX_QUANTITY_PER_LINE}")
    return value


def _check_available(product: Product, wanted: int) -> None:
    available = inventory_service.get_available_quantity(product.id, product.quantity)
    if wanted > available:
        raise InvalidInputError(
            f"Only {available} available",
            details={"product_id": product.id, "requested": wanted, "available": available},
        )


def get_cart(user: User) -> Cart:
    """Return the user's cart, dropping lines whose listing has been deleted."""
    cart = _get_or_create_cart(user)
    stale = [i for i in cart.items if i.product is None or i.product.is_deleted]
    for item in stale:
        cart.items.remove(item)
    db.session.commit()
    return cart


def add_item(user: User, product_id, quantity=1) -> Cart:
    """Add units of a listing; an existing line grows and its price is refreshed."""
    quantity = _parse_cart_quantity(quantity)
    product = _orderable_product(user, product_id)
    cart = _get_or_create_cart(user)

    existing = next((i for i in cart.items if i.product_id == product.id), None)
    wanted = quantity + (existing.quantity if existing else 0)
    _check_available(product, wanted)

    if existing:
        existing.quantity = wanted
        existing.price = product.price
    else:
        images = product.images or []
        cart.items.append(CartItem(
            product_id=product.id,
            name=product.name,
            price=product.price,
            quantity=quantity,
            image=images[0] if images else None,
        ))

    db.session.commit()
    return cart


def update_item(user: User, product_id: int, quantity) -> Cart:
    quantity = _parse_cart_quantity(quantity)
    cart = _get_or_create_cart(user)
    item = next((i for i in cart.items if i.product_id == product_id), None)
    if item is None:
        raise NotFoundError("Item not found in cart")

    product = db.session.get(Product, product_id)
    if product is None or product.is_deleted:
        raise NotFoundError("Product no longer available")
    _check_available(product, quantity)

    item.quantity = quantity
    item.price = product.price
    db.session.commit()
    return cart


def remove_item(user: User, product_id: int) -> Cart:
    cart = _get_or_create_cart(user)
    item = next((i for i in cart.items if i.product_id == product_id), None)
    if item is not None:
        cart.items.remove(item)
    db.session.commit()
    return cart


def clear_cart(user: User) -> Cart:
    cart = _get_or_create_cart(user)
    cart.items.clear()
    db.session.commit()
    return cart


def checkout(user: User, shipping_address: dict | None = None) -> list[Order]:
    """
    Turn the cart into one order per seller, all or nothing.

    Every group goes through order_service.create_order, so inventory is
    re-checked at this moment, not when the item was added to the cart.
    """
    cart = _get_or_create_cart(user)
    if not cart.items:
        raise InvalidInputError("Cart is empty")

    groups: dict[int, list[dict]] = {}
    for item in cart.items:
        product = item.product
        if product is None or product.is_deleted:
            raise InvalidInputError(
                f"Product {item.name} is no longer available",
                details={"product_id": item.product_id},
            )
        groups.setdefault(product.seller_id, []).append(
            {"product_id": item.product_id, "quantity": item.quantity}
        )

    try:
        orders = [
            order_service.create_order(user, lines, shipping_address, commit=False)
            for lines in groups.values()
        ]
        cart.items.clear()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Checkout by user=%s produced %s order(s): %s",
        user.id, len(orders), ", ".join(o.order_number for o in orders),
    )
    return orders
