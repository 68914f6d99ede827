# Overview: Service-layer operations for disputes; satellite records that hold an order's confirmations.

"""
Dispute Service

A dispute is raised by the buyer or the seller of an order and is a
satellite of that order: it never owns inventory or confirmation state
itself. While it is open or under_review, confirmations on the order are
refused (see order_service.confirm_order).

STATES: open -> under_review (first admin message) -> resolved | closed

- At most one non-deleted dispute per order, whatever its status.
- Messages are append-only; resolved/closed disputes accept no more.
- Resolving cancels the order if it is still waiting_to_meet. A completed
  order stays completed: cancelled and met_and_exchanged are both terminal.
- Admin soft delete unlinks the dispute from its order; restore re-links it.
"""

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, ForbiddenError, NotFoundError
from ..extensions import db
from ..models import Dispute, DisputeMessage, Order, User
from ..models.disputes import (
    DISPUTE_CLOSED,
    DISPUTE_OPEN,
    DISPUTE_RESOLVED,
    DISPUTE_UNDER_REVIEW,
)
from ..models.orders import ORDER_WAITING
from ..time_utils import utcnow
from ..validation import clean_text
from . import order_service

REASON_MAX_LENGTH = 5000
MESSAGE_MIN_LENGTH = 10
MESSAGE_MAX_LENGTH = 5000


def _load_dispute(dispute_id: int, *, include_deleted: bool = False) -> Dispute:
    dispute = db.session.get(Dispute, dispute_id)
    if dispute is None or (dispute.is_deleted and not include_deleted):
        raise NotFoundError("Dispute not found")
    return dispute


def _sender_role(dispute: Dispute, actor: User) -> str | None:
    if actor.is_admin:
        return "admin"
    if actor.id == dispute.buyer_id:
        return "buyer"
    if actor.id == dispute.seller_id:
        return "seller"
    return None


def _append_message(dispute: Dispute, sender: User, role: str, text: str) -> DisputeMessage:
    msg = DisputeMessage(dispute_id=dispute.id, sender_id=sender.id, sender_role=role, message=text)
    db.session.add(msg)
    return msg


def open_dispute(order_id: int, actor: User, reason) -> Dispute:
    """
    Raise a dispute on an order (any status). The reason becomes the first message.

    Raises:
        NotFoundError: absent or soft-deleted order
        ForbiddenError: actor is neither buyer nor seller
        ConflictError: the order already has a non-deleted dispute
    """
    reason = clean_text(reason, "reason", max_len=REASON_MAX_LENGTH)

    order = db.session.get(Order, order_id)
    if order is None or order.is_deleted:
        raise NotFoundError("Order not found")

    role = order_service.party_role(order, actor)
    if role is None:
        raise ForbiddenError("Only the buyer or seller can create a dispute for this order")

    existing = (
        db.session.query(Dispute)
        .filter(Dispute.order_id == order.id, Dispute.is_deleted.is_(False))
        .first()
    )
    if existing:
        raise ConflictError(
            "An active dispute already exists for this order",
            details={"dispute_id": existing.id},
        )

    try:
        dispute = Dispute(
            order_id=order.id,
            buyer_id=order.user_id,
            seller_id=order.seller_id,
            product_ids=[item.product_id for item in order.items],
            reason=reason,
            status=DISPUTE_OPEN,
        )
        db.session.add(dispute)
        db.session.flush()

        _append_message(dispute, actor, role, reason)
        order_service.link_dispute(order, dispute, actor.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Dispute %s opened on order %s by %s", dispute.id, order.order_number, role)
    return dispute


def get_dispute(dispute_id: int, actor: User) -> Dispute:
    dispute = _load_dispute(dispute_id, include_deleted=actor.is_admin)
    if _sender_role(dispute, actor) is None:
        raise ForbiddenError("Not authorized to view this dispute")
    return dispute


def list_disputes_for_user(user: User) -> list[Dispute]:
    return (
        db.session.query(Dispute)
        .filter(
            db.or_(Dispute.buyer_id == user.id, Dispute.seller_id == user.id),
            Dispute.is_deleted.is_(False),
        )
        .order_by(Dispute.created_at.desc(), Dispute.id.desc())
        .all()
    )


def list_all_disputes(*, status: str | None = None, include_deleted: bool = False) -> list[Dispute]:
    q = db.session.query(Dispute)
    if status:
        q = q.filter(Dispute.status == status)
    if not include_deleted:
        q = q.filter(Dispute.is_deleted.is_(False))
    return q.order_by(Dispute.created_at.desc(), Dispute.id.desc()).all()


def add_message(dispute_id: int, actor: User, text) -> Dispute:
    """
    Append a message. Buyer, seller or admin.

    The first admin message moves an open dispute to under_review.
    """
    text = clean_text(text, "message", min_len=MESSAGE_MIN_LENGTH, max_len=MESSAGE_MAX_LENGTH)

    dispute = _load_dispute(dispute_id)
    role = _sender_role(dispute, actor)
    if role is None:
        raise ForbiddenError("Not authorized to add messages to this dispute")

    if dispute.order is None or dispute.order.is_deleted:
        raise ForbiddenError("Cannot send messages to a dispute on a deleted order")
    if dispute.status in (DISPUTE_RESOLVED, DISPUTE_CLOSED):
        raise ForbiddenError(f"Cannot send messages to a {dispute.status} dispute")

    try:
        _append_message(dispute, actor, role, text)
        if role == "admin" and dispute.status == DISPUTE_OPEN:
            dispute.status = DISPUTE_UNDER_REVIEW
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return dispute


def resolve_dispute(dispute_id: int, admin: User, resolution) -> Dispute:
    """Admin resolution; cancels the order when it is still waiting to meet."""
    if not admin.is_admin:
        raise ForbiddenError("Only admins can resolve disputes")
    resolution = clean_text(resolution, "resolution", max_len=MESSAGE_MAX_LENGTH)

    dispute = _load_dispute(dispute_id)
    if dispute.status in (DISPUTE_RESOLVED, DISPUTE_CLOSED):
        raise ConflictError(f"Dispute is already {dispute.status}")

    try:
        dispute.status = DISPUTE_RESOLVED
        dispute.resolution = resolution
        dispute.resolved_by = admin.id
        dispute.resolved_at = utcnow()
        _append_message(dispute, admin, "admin", f"Dispute resolved: {resolution}")
        db.session.flush()

        order = dispute.order
        if order is not None and not order.is_deleted and order.status == ORDER_WAITING:
            order_service.cancel_order(
                order.id, admin, note=f"dispute {dispute.id} resolved", commit=False
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Dispute %s resolved by admin=%s", dispute.id, admin.id)
    return dispute


def close_dispute(dispute_id: int, admin: User) -> Dispute:
    if not admin.is_admin:
        raise ForbiddenError("Only admins can close disputes")

    dispute = _load_dispute(dispute_id)
    if dispute.order is None or dispute.order.is_deleted:
        raise ForbiddenError("Cannot close dispute on a deleted order")
    if dispute.status in (DISPUTE_RESOLVED, DISPUTE_CLOSED):
        raise ConflictError(f"Dispute is already {dispute.status}")

    dispute.status = DISPUTE_CLOSED
    db.session.commit()
    current_app.logger.info("Dispute %s closed by admin=%s", dispute.id, admin.id)
    return dispute


def soft_delete_dispute(dispute_id: int, admin: User) -> Dispute:
    if not admin.is_admin:
        raise ForbiddenError("Admin access required")

    dispute = _load_dispute(dispute_id, include_deleted=True)
    if dispute.is_deleted:
        return dispute

    try:
        dispute.is_deleted = True
        dispute.deleted_at = utcnow()
        dispute.deleted_by = admin.id
        if dispute.order is not None:
            order_service.unlink_dispute(dispute.order, dispute, admin.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return dispute


def restore_dispute(dispute_id: int, admin: User) -> Dispute:
    """Restore and re-link; refused when the order has since gained another dispute."""
    if not admin.is_admin:
        raise ForbiddenError("Admin access required")

    dispute = _load_dispute(dispute_id, include_deleted=True)
    if not dispute.is_deleted:
        return dispute

    other = (
        db.session.query(Dispute)
        .filter(
            Dispute.order_id == dispute.order_id,
            Dispute.is_deleted.is_(False),
            Dispute.id != dispute.id,
        )
        .first()
    )
    if other:
        raise ConflictError(
            "Order already has another active dispute",
            details={"dispute_id": other.id},
        )

    try:
        dispute.is_deleted = False
        dispute.deleted_at = None
        dispute.deleted_by = None
        if dispute.order is not None:
            order_service.link_dispute(dispute.order, dispute, admin.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return dispute
