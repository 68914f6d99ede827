# Overview: Service-layer operations for orders; the meetup confirmation state machine.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy import case, exists, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ForbiddenError, InternalError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Dispute, Order, OrderItem, Product, User
from ..models.disputes import ACTIVE_DISPUTE_STATUSES
from ..models.orders import ORDER_CANCELLED, ORDER_COMPLETED, ORDER_WAITING
from ..money import format_amount, line_total, sum_amounts
from ..time_utils import parse_meetup_time, utcnow
from ..validation import parse_id
from . import identifier_service, inventory_service, ledger_service
from .concurrency import execute_guarded, lock_for_update, run_with_retry
"""
Order State Machine Invariants (authoritative)

States: waiting_to_meet (initial) -> met_and_exchanged | cancelled (both terminal).

- status == met_and_exchanged  <=>  buyer_confirmed AND seller_confirmed.
  Each confirmation is ONE conditional UPDATE that sets the caller's flag and,
  in the same statement, moves the order to met_and_exchanged when the other
  flag is already set. Whichever confirmation lands second performs the
  transition, regardless of arrival order.
- Confirmation is idempotent: re-confirming rewrites true over true.
- Confirmation is refused while the linked dispute is open or under_review.
- cancelled is terminal; cancelling again is a no-op success, cancelling a
  completed order is a Conflict. Only reset_order (admin) leaves cancelled.
- Line items are immutable snapshots; the total is computed from them before
  the insert, never by the storage layer.
- Soft-deleted orders behave as absent for every non-admin operation and drop
  out of all inventory sums.
"""

ROLE_BUYER = "buyer"
ROLE_SELLER = "seller"
MAX_QUANTITY_PER_LINE = 1000


@dataclass(frozen=True)
class LineItem:
    """Immutable snapshot of a listing at order time. Never follows later product edits."""
    product_id: int
    name: str
    price: str
    quantity: int
    image: str | None = None

    @classmethod
    def snapshot(cls, product: Product, quantity: int) -> "LineItem":
        images = product.images or []
        return cls(
            product_id=product.id,
            name=product.name,
            price=product.price,
            quantity=quantity,
            image=images[0] if images else None,
        )

    @property
    def total(self) -> Decimal:
        return line_total(self.price, self.quantity)

    def to_model(self) -> OrderItem:
        return OrderItem(
            product_id=self.product_id,
            name=self.name,
            price=self.price,
            quantity=self.quantity,
            image=self.image,
        )


def compute_total(items) -> str:
    """Exact decimal sum of price x quantity, as a two-digit string."""
    return format_amount(sum_amounts(item.total for item in items))


def build_order(
    *,
    buyer_id: int,
    seller_id: int,
    items: list[LineItem],
    order_number: str,
    shipping_address: dict | None = None,
) -> Order:
    """Construct (but do not persist) a new order in waiting_to_meet."""
    if not items:
        raise InvalidInputError("An order needs at least one line item")
    order = Order(
        user_id=buyer_id,
        seller_id=seller_id,
        order_number=order_number,
        total_amount=compute_total(items),
        status=ORDER_WAITING,
        buyer_confirmed=False,
        seller_confirmed=False,
        shipping_address=shipping_address,
    )
    order.items = [item.to_model() for item in items]
    return order


def _parse_quantity(value) -> int:
    if isinstance(value, bool):
        raise InvalidInputError("quantity must be an integer")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise InvalidInputError("quantity must be an integer")
    if value < 1:
        raise InvalidInputError("quantity must be >= 1")
    if value > MAX_QUANTITY_PER_LINE:
        raise InvalidInputError(f"quantity cannot exceed {MAX_QUANTITY_PER_LINE}")
    return value


def normalize_requested_items(raw_items) -> list[tuple[int, int]]:
    """
    Validate [{product_id, quantity}, ...] and merge duplicate product lines.

    Returns [(product_id, quantity)] in first-seen order.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidInputError("items must be a non-empty list")

    merged: dict[int, int] = {}
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise InvalidInputError("each item must be an object with product_id and quantity")
        product_id = parse_id(raw.get("product_id"), "product_id")
        quantity = _parse_quantity(raw.get("quantity", 1))
        merged[product_id] = merged.get(product_id, 0) + quantity

    for product_id, quantity in merged.items():
        if quantity > MAX_QUANTITY_PER_LINE:
            raise InvalidInputError(
                f"quantity cannot exceed {MAX_QUANTITY_PER_LINE}",
                details={"product_id": product_id},
            )
    return list(merged.items())


def _seller_is_blocked(seller: User | None) -> bool:
    return seller is None or seller.is_deleted or seller.is_banned or not seller.is_active


def _load_products_for_order(requested: list[tuple[int, int]]) -> dict[int, Product]:
    ids = sorted(pid for pid, _ in requested)
    query = db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id)
    return {p.id: p for p in lock_for_update(query).all()}


def _insert_with_order_number(build) -> Order:
    """
    Persist the order built by `build(order_number)`, retrying on number collision.

    Each attempt runs inside a SAVEPOINT so a collision rolls back only the
    attempt. A fresh random suffix is drawn every time.
    """
    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")
    attempts = int(current_app.config.get("ORDER_NUMBER_MAX_ATTEMPTS", 5))

    for attempt in range(1, attempts + 1):
        order_number = identifier_service.generate_order_number(prefix)
        order = build(order_number)
        try:
            with db.session.begin_nested():
                db.session.add(order)
                db.session.flush()
        except IntegrityError as exc:
            if "order_number" not in str(exc.orig):
                raise
            current_app.logger.warning(
                "Order number collision on %s (attempt %s/%s)", order_number, attempt, attempts
            )
            continue
        return order

    raise InternalError(
        "Could not allocate a unique order number",
        details={"attempts": attempts},
    )


def create_order(
    buyer: User,
    raw_items,
    shipping_address: dict | None = None,
    *,
    commit: bool = True,
) -> Order:
    """
    Create an order in waiting_to_meet from [{product_id, quantity}, ...].

    All lines must belong to one seller, and the buyer cannot be that seller.
    Each requested quantity is checked against the inventory derived at this
    moment; equal to available succeeds, one more fails.

    Raises:
        InvalidInputError: bad payload, unknown/deleted product, own listing,
            mixed sellers, or insufficient inventory
        InternalError: order-number attempts exhausted

    With commit=False the caller owns the transaction (cart checkout).
    """
    requested = normalize_requested_items(raw_items)
    if shipping_address is not None and not isinstance(shipping_address, dict):
        raise InvalidInputError("shipping_address must be an object")

    try:
        products = _load_products_for_order(requested)

        line_items: list[LineItem] = []
        seller_ids = set()
        for product_id, quantity in requested:
            product = products.get(product_id)
            if product is None or product.is_deleted:
                raise InvalidInputError(
                    f"Product {product_id} not found",
                    details={"product_id": product_id},
                )
            if product.seller_id == buyer.id:
                raise InvalidInputError(
                    "You cannot order your own listing",
                    details={"product_id": product_id},
                )
            if _seller_is_blocked(product.seller):
                raise InvalidInputError(
                    f"Product {product.name} is no longer available",
                    details={"product_id": product_id},
                )

            available = inventory_service.get_available_quantity(product.id, product.quantity)
            if quantity > available:
                raise InvalidInputError(
                    f"Product {product.name} only has {available} available",
                    details={"product_id": product_id, "requested": quantity, "available": available},
                )

            seller_ids.add(product.seller_id)
            line_items.append(LineItem.snapshot(product, quantity))

        if len(seller_ids) != 1:
            raise InvalidInputError("All items in an order must come from the same seller")
        seller_id = seller_ids.pop()

        order = _insert_with_order_number(
            lambda number: build_order(
                buyer_id=buyer.id,
                seller_id=seller_id,
                items=line_items,
                order_number=number,
                shipping_address=shipping_address,
            )
        )

        ledger_service.append_order_event(
            order_id=order.id,
            event_type=ledger_service.EVENT_CREATED,
            actor_user_id=buyer.id,
            to_status=ORDER_WAITING,
        )
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s created buyer=%s seller=%s total=%s",
        order.order_number, buyer.id, seller_id, order.total_amount,
    )
    return order


def _load_order(order_id: int, *, include_deleted: bool = False) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or (order.is_deleted and not include_deleted):
        raise NotFoundError("Order not found")
    return order


def party_role(order: Order, user: User) -> str | None:
    if user.id == order.user_id:
        return ROLE_BUYER
    if user.id == order.seller_id:
        return ROLE_SELLER
    return None


def get_active_dispute(order: Order) -> Dispute | None:
    return (
        db.session.query(Dispute)
        .filter(
            Dispute.order_id == order.id,
            Dispute.is_deleted.is_(False),
            Dispute.status.in_(ACTIVE_DISPUTE_STATUSES),
        )
        .first()
    )


def _no_active_dispute_clause():
    return ~exists(
        select(Dispute.id).where(
            Dispute.order_id == Order.id,
            Dispute.is_deleted.is_(False),
            Dispute.status.in_(ACTIVE_DISPUTE_STATUSES),
        )
    )


def _check_confirmable(order: Order) -> bool:
    """
    Raise if the order can never be confirmed in its current state.

    Returns False when the order is already completed (confirm is a no-op),
    True when the conditional update should run.
    """
    if order.is_deleted:
        raise NotFoundError("Order not found")
    if order.status == ORDER_CANCELLED:
        raise ConflictError("Cannot confirm a cancelled order", details={"status": order.status})
    if order.status == ORDER_COMPLETED:
        return False
    dispute = get_active_dispute(order)
    if dispute is not None:
        raise ConflictError(
            "Order has an active dispute; confirmations are on hold until it is resolved",
            details={"dispute_id": dispute.id, "dispute_status": dispute.status},
        )
    return True


def confirm_order(order_id: int, actor: User) -> Order:
    """
    Set the actor's confirmation flag (buyer or seller) and complete the order
    when both flags are set.

    Raises:
        NotFoundError: absent or soft-deleted order
        ForbiddenError: actor is neither buyer nor seller
        ConflictError: order cancelled, or an active dispute holds it
    """
    def _op() -> Order:
        order = _load_order(order_id)
        role = party_role(order, actor)
        if role is None:
            raise ForbiddenError("Only the buyer or the seller can confirm this order")

        if not _check_confirmable(order):
            return order

        own_flag, other_flag = (
            (Order.buyer_confirmed, Order.seller_confirmed)
            if role == ROLE_BUYER
            else (Order.seller_confirmed, Order.buyer_confirmed)
        )
        was_confirmed = bool(getattr(order, own_flag.key))

        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == ORDER_WAITING,
                Order.is_deleted.is_(False),
                _no_active_dispute_clause(),
            )
            .values({
                own_flag: True,
                Order.status: case((other_flag.is_(True), ORDER_COMPLETED), else_=Order.status),
                Order.version_id: Order.version_id + 1,
            })
        )

        if not execute_guarded(stmt):
            # Lost a race (cancel, delete, dispute). Re-read and report why.
            db.session.rollback()
            order = _load_order(order_id)
            if not _check_confirmable(order):
                return order
            raise ConflictError("Order changed while confirming; please retry")

        db.session.refresh(order)

        if not was_confirmed:
            ledger_service.append_order_event(
                order_id=order.id,
                event_type=(
                    ledger_service.EVENT_BUYER_CONFIRMED
                    if role == ROLE_BUYER
                    else ledger_service.EVENT_SELLER_CONFIRMED
                ),
                actor_user_id=actor.id,
                from_status=ORDER_WAITING,
                to_status=order.status,
            )
        if order.status == ORDER_COMPLETED:
            ledger_service.append_order_event(
                order_id=order.id,
                event_type=ledger_service.EVENT_COMPLETED,
                actor_user_id=actor.id,
                from_status=ORDER_WAITING,
                to_status=ORDER_COMPLETED,
            )
        db.session.commit()

        if order.status == ORDER_COMPLETED:
            current_app.logger.info("Order %s met and exchanged", order.order_number)
        return order

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def cancel_order(order_id: int, actor: User, *, note: str | None = None, commit: bool = True) -> Order:
    """
    Move waiting_to_meet -> cancelled. Buyer, seller or admin.

    Cancelling an already-cancelled order is a no-op success.

    Raises:
        NotFoundError: absent or soft-deleted order
        ForbiddenError: actor is not a party and not an admin
        ConflictError: order already met_and_exchanged
    """
    order = _load_order(order_id)
    if party_role(order, actor) is None and not actor.is_admin:
        raise ForbiddenError("Not authorized to cancel this order")

    if order.status == ORDER_CANCELLED:
        return order
    if order.status == ORDER_COMPLETED:
        raise ConflictError("Cannot cancel a completed order", details={"status": order.status})

    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.status == ORDER_WAITING, Order.is_deleted.is_(False))
        .values({Order.status: ORDER_CANCELLED, Order.version_id: Order.version_id + 1})
    )

    try:
        if not execute_guarded(stmt):
            if commit:
                db.session.rollback()
            db.session.refresh(order)
            if order.is_deleted:
                raise NotFoundError("Order not found")
            if order.status == ORDER_CANCELLED:
                return order
            raise ConflictError("Cannot cancel a completed order", details={"status": order.status})

        ledger_service.append_order_event(
            order_id=order.id,
            event_type=ledger_service.EVENT_CANCELLED,
            actor_user_id=actor.id,
            from_status=ORDER_WAITING,
            to_status=ORDER_CANCELLED,
            note=note,
        )
        db.session.refresh(order)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise

    current_app.logger.info("Order %s cancelled by user=%s", order.order_number, actor.id)
    return order


def _ensure_inventory_for(order: Order) -> None:
    """Refuse to re-reserve an order's units when the listing no longer has them."""
    for item in order.items:
        product = lock_for_update(db.session.query(Product).filter_by(id=item.product_id)).first()
        if product is None or product.is_deleted:
            raise ConflictError(
                "Listing is no longer available",
                details={"product_id": item.product_id},
            )
        available = inventory_service.get_available_quantity(product.id, product.quantity)
        if item.quantity > available:
            raise ConflictError(
                f"Not enough inventory to re-reserve {product.name}",
                details={"product_id": product.id, "requested": item.quantity, "available": available},
            )


def reset_order(order_id: int, actor: User | None = None) -> Order:
    """
    Administrative data correction: force waiting_to_meet, clear both flags
    and the transient meetup/payment fields.

    A cancelled order re-reserves its units, so it is refused with Conflict
    when the listing can no longer cover them. `actor` is None from the CLI.
    """
    if actor is not None and not actor.is_admin:
        raise ForbiddenError("Admin access required")

    def _op() -> Order:
        order = _load_order(order_id)
        previous = order.status
        if previous == ORDER_CANCELLED:
            _ensure_inventory_for(order)

        order.status = ORDER_WAITING
        order.buyer_confirmed = False
        order.seller_confirmed = False
        order.meetup_location = None
        order.meetup_at = None
        order.payment_method = None

        ledger_service.append_order_event(
            order_id=order.id,
            event_type=ledger_service.EVENT_RESET,
            actor_user_id=actor.id if actor else None,
            from_status=previous,
            to_status=ORDER_WAITING,
        )
        db.session.commit()
        current_app.logger.info("Order %s reset from %s", order.order_number, previous)
        return order

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def set_meetup(order_id: int, actor: User, location, meetup_at=None) -> Order:
    """Record where/when the parties meet. Buyer or seller, waiting_to_meet only."""
    order = _load_order(order_id)
    if party_role(order, actor) is None:
        raise ForbiddenError("Only the buyer or the seller can arrange the meetup")
    if order.status != ORDER_WAITING:
        raise ConflictError("Meetup can only be arranged while waiting to meet", details={"status": order.status})

    if not isinstance(location, str) or not location.strip():
        raise InvalidInputError("location is required")
    location = location.strip()
    if len(location) > 255:
        raise InvalidInputError("location exceeds max length 255")

    try:
        when = parse_meetup_time(meetup_at)
    except ValueError:
        raise InvalidInputError("meetup_at must be an ISO-8601 datetime")

    try:
        order.meetup_location = location
        order.meetup_at = when
        ledger_service.append_order_event(
            order_id=order.id,
            event_type=ledger_service.EVENT_MEETUP_SET,
            actor_user_id=actor.id,
            note=location,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return order


def link_dispute(order: Order, dispute: Dispute, actor_id: int | None) -> None:
    """Point the order at its dispute. Caller commits."""
    order.dispute_id = dispute.id
    ledger_service.append_order_event(
        order_id=order.id,
        event_type=ledger_service.EVENT_DISPUTE_LINKED,
        actor_user_id=actor_id,
        note=f"dispute {dispute.id}",
    )


def unlink_dispute(order: Order, dispute: Dispute, actor_id: int | None) -> None:
    if order.dispute_id != dispute.id:
        return
    order.dispute_id = None
    ledger_service.append_order_event(
        order_id=order.id,
        event_type=ledger_service.EVENT_DISPUTE_UNLINKED,
        actor_user_id=actor_id,
        note=f"dispute {dispute.id}",
    )


def get_order(order_id: int, actor: User) -> Order:
    """Buyer, seller or admin. Admins also see soft-deleted orders."""
    order = _load_order(order_id, include_deleted=actor.is_admin)
    if party_role(order, actor) is None and not actor.is_admin:
        raise ForbiddenError("Not authorized to view this order")
    return order


def get_order_events(order_id: int, actor: User):
    order = get_order(order_id, actor)
    return ledger_service.list_order_events(order.id)


def list_orders_for_buyer(user_id: int) -> list[Order]:
    return (
        db.session.query(Order)
        .filter(Order.user_id == user_id, Order.is_deleted.is_(False))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_orders_for_seller(user_id: int) -> list[Order]:
    return (
        db.session.query(Order)
        .filter(Order.seller_id == user_id, Order.is_deleted.is_(False))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_all_orders(*, status: str | None = None, include_deleted: bool = False,
                    page: int = 1, per_page: int = 50) -> tuple[list[Order], int]:
    """Admin listing. Returns (orders, total)."""
    q = db.session.query(Order)
    if status:
        q = q.filter(Order.status == status)
    if not include_deleted:
        q = q.filter(Order.is_deleted.is_(False))
    total = q.count()
    orders = (
        q.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return orders, total


def find_by_order_number(order_number: str) -> Order | None:
    return db.session.query(Order).filter_by(order_number=order_number).first()


def soft_delete_order(order_id: int, admin: User) -> Order:
    """Admin soft delete. The order's units drop out of every inventory sum."""
    if not admin.is_admin:
        raise ForbiddenError("Admin access required")

    def _op() -> Order:
        order = _load_order(order_id, include_deleted=True)
        if order.is_deleted:
            return order
        order.is_deleted = True
        order.deleted_at = utcnow()
        order.deleted_by = admin.id
        ledger_service.append_order_event(
            order_id=order.id,
            event_type=ledger_service.EVENT_DELETED,
            actor_user_id=admin.id,
            from_status=order.status,
            to_status=order.status,
        )
        db.session.commit()
        return order

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def restore_order(order_id: int, admin: User) -> Order:
    """
    Admin restore. A non-cancelled order takes its units back, so restoring
    is refused with Conflict when the listing can no longer cover them.
    """
    if not admin.is_admin:
        raise ForbiddenError("Admin access required")

    def _op() -> Order:
        order = _load_order(order_id, include_deleted=True)
        if not order.is_deleted:
            return order
        if order.status != ORDER_CANCELLED:
            _ensure_inventory_for(order)
        order.is_deleted = False
        order.deleted_at = None
        order.deleted_by = None
        ledger_service.append_order_event(
            order_id=order.id,
            event_type=ledger_service.EVENT_RESTORED,
            actor_user_id=admin.id,
            from_status=order.status,
            to_status=order.status,
        )
        db.session.commit()
        return order

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise
