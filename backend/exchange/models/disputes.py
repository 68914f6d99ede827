from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

DISPUTE_OPEN = "open"
DISPUTE_UNDER_REVIEW = "under_review"
DISPUTE_RESOLVED = "resolved"
DISPUTE_CLOSED = "closed"
DISPUTE_STATUSES = (DISPUTE_OPEN, DISPUTE_UNDER_REVIEW, DISPUTE_RESOLVED, DISPUTE_CLOSED)

# Disputes in these states hold the linked order's confirmations
ACTIVE_DISPUTE_STATUSES = (DISPUTE_OPEN, DISPUTE_UNDER_REVIEW)

SENDER_ROLES = ("buyer", "seller", "admin")


class Dispute(db.Model):
    """
    Satellite record raised against an order by its buyer or seller.

    STATES: open -> under_review -> resolved | closed
    Resolution is terminal; the record is retained (admin soft delete only).
    """
    __tablename__ = "disputes"
    __table_args__ = (
        db.Index("ix_disputes_order_deleted", "order_id", "is_deleted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_ids = db.Column(db.JSON, nullable=False, default=list)

    reason = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=DISPUTE_OPEN, index=True)

    resolution = db.Column(db.Text, nullable=True)
    resolved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", foreign_keys=[order_id])
    messages = db.relationship(
        "DisputeMessage",
        backref="dispute",
        lazy=True,
        order_by="DisputeMessage.id",
    )

    @property
    def is_active(self) -> bool:
        return not self.is_deleted and self.status in ACTIVE_DISPUTE_STATUSES

    def to_dict(self, include_messages: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "product_ids": list(self.product_ids or []),
            "reason": self.reason,
            "status": self.status,
            "resolution": self.resolution,
            "resolved_by": self.resolved_by,
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "is_deleted": self.is_deleted,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


class DisputeMessage(db.Model):
    """Append-only dispute conversation entry."""
    __tablename__ = "dispute_messages"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    dispute_id = db.Column(db.Integer, db.ForeignKey("disputes.id"), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    sender_role = db.Column(db.String(16), nullable=False)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "sender_id": self.sender_id,
            "sender_role": self.sender_role,
            "message": self.message,
            "created_at": to_utc_z(self.created_at),
        }
