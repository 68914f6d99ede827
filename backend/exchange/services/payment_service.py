# Overview: Service-layer operations for payments; bookkeeping only, no processor.

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ForbiddenError, InternalError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Order, Payment, User
from ..models.orders import ORDER_CANCELLED, ORDER_COMPLETED
from ..models.payments import (
    PAYMENT_COMPLETED,
    PAYMENT_METHODS,
    PAYMENT_REFUNDED,
)
from ..money import format_amount, parse_amount, to_decimal
from ..time_utils import utcnow
from . import identifier_service, ledger_service

CARD_METHODS = {"credit_card", "debit_card"}
CARD_NUMBER_RE = re.compile(r"^\d{12,19}$")


def _card_last_four(method: str, card_number) -> str | None:
    """Validate a card number and keep only its last four digits. The rest is never stored."""
    if method not in CARD_METHODS:
        return None
    if card_number is None:
        raise InvalidInputError("card_number is required for card payments")
    digits = re.sub(r"[\s-]", "", str(card_number))
    if not CARD_NUMBER_RE.match(digits):
        raise InvalidInputError("card_number must be 12-19 digits")
    return digits[-4:]


def record_payment(order_id: int, buyer: User, method: str, card_number=None) -> Payment:
    """
    Record the buyer's payment for an order at its total.

    Raises:
        NotFoundError: order absent, soft-deleted, or not the caller's
        InvalidInputError: unknown method or bad card number
        ConflictError: order cancelled or completed, or already paid
    """
    if method not in PAYMENT_METHODS:
        raise InvalidInputError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    last_four = _card_last_four(method, card_number)

    order = db.session.get(Order, order_id)
    if order is None or order.is_deleted or order.user_id != buyer.id:
        raise NotFoundError("Order not found")
    if order.status == ORDER_CANCELLED:
        raise ConflictError("Cannot process payment for a cancelled order")
    if order.status == ORDER_COMPLETED:
        raise ConflictError("Order is already completed")

    paid = (
        db.session.query(Payment)
        .filter_by(order_id=order.id, status=PAYMENT_COMPLETED, is_deleted=False)
        .first()
    )
    if paid:
        raise ConflictError("Payment already completed for this order", details={"payment_id": paid.id})

    now = utcnow()
    payment = Payment(
        order_id=order.id,
        user_id=buyer.id,
        amount=order.total_amount,
        currency="USD",
        payment_method=method,
        status=PAYMENT_COMPLETED,
        transaction_id=identifier_service.generate_transaction_id(),
        card_last_four=last_four,
        paid_at=now,
    )
    try:
        db.session.add(payment)
        order.payment_method = method
        db.session.flush()
        ledger_service.append_order_event(
            order_id=order.id,
            event_type=ledger_service.EVENT_PAYMENT_RECORDED,
            actor_user_id=buyer.id,
            note=payment.transaction_id,
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.exception("Failed to store payment for order %s", order_id)
        raise InternalError("Could not record payment")
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Payment %s recorded for order %s (%s %s)",
        payment.transaction_id, order.order_number, payment.amount, method,
    )
    return payment


def refund_payment(payment_id: int, admin: User, amount=None) -> Payment:
    """Admin refund of a completed payment, in full or in part."""
    if not admin.is_admin:
        raise ForbiddenError("Admin access required")

    payment = db.session.get(Payment, payment_id)
    if payment is None or payment.is_deleted:
        raise NotFoundError("Payment not found")
    if payment.status != PAYMENT_COMPLETED:
        raise ConflictError("Only completed payments can be refunded", details={"status": payment.status})

    paid = to_decimal(payment.amount)
    refund = paid if amount is None else parse_amount(amount, field="amount")
    if refund <= 0:
        raise InvalidInputError("amount must be > 0")
    if refund > paid:
        raise InvalidInputError(
            "Refund cannot exceed the amount paid",
            details={"paid": payment.amount, "requested": format_amount(refund)},
        )

    payment.status = PAYMENT_REFUNDED
    payment.refunded_at = utcnow()
    payment.refund_amount = format_amount(refund)
    payment.refunded_by = admin.id
    db.session.commit()

    current_app.logger.info("Payment %s refunded %s by admin=%s", payment.transaction_id, payment.refund_amount, admin.id)
    return payment


def get_payment_for_order(order_id: int, actor: User) -> Payment:
    """Latest payment on an order; visible to its buyer and admins."""
    order = db.session.get(Order, order_id)
    if order is None or (order.is_deleted and not actor.is_admin):
        raise NotFoundError("Payment not found")
    if order.user_id != actor.id and not actor.is_admin:
        raise NotFoundError("Payment not found")

    payment = (
        db.session.query(Payment)
        .filter_by(order_id=order.id, is_deleted=False)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .first()
    )
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


def list_payments_for_user(user: User, *, status: str | None = None,
                           page: int = 1, per_page: int = 20) -> tuple[list[Payment], int]:
    q = db.session.query(Payment).filter_by(user_id=user.id, is_deleted=False)
    if status:
        q = q.filter(Payment.status == status)
    total = q.count()
    payments = (
        q.order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return payments, total
