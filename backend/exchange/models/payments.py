from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

PAYMENT_METHODS = ("credit_card", "debit_card", "paypal", "venmo", "cash", "zelle")

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_REFUNDED, PAYMENT_CANCELLED)


class Payment(db.Model):
    """
    Payment record for an order.

    No processor is involved; this is the marketplace's own bookkeeping.
    Only the last four card digits are ever stored.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", name="uq_payments_transaction_id"),
        db.Index("ix_payments_user_created", "user_id", "created_at"),
        db.Index("ix_payments_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.String(32), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    payment_method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)

    transaction_id = db.Column(db.String(64), nullable=True)
    card_last_four = db.Column(db.String(4), nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_amount = db.Column(db.String(32), nullable=True)
    refunded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "amount": self.amount,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "card_last_four": self.card_last_four,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "refund_amount": self.refund_amount,
            "created_at": to_utc_z(self.created_at),
        }
