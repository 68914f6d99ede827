from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

ORDER_WAITING = "waiting_to_meet"
ORDER_COMPLETED = "met_and_exchanged"
ORDER_CANCELLED = "cancelled"
ORDER_STATUSES = (ORDER_WAITING, ORDER_COMPLETED, ORDER_CANCELLED)
TERMINAL_ORDER_STATUSES = (ORDER_COMPLETED, ORDER_CANCELLED)


class Order(db.Model):
    """
    Meetup order between one buyer (user_id) and one seller (seller_id).

    STATE MACHINE:
        waiting_to_meet -> met_and_exchanged   (both confirmation flags true)
        waiting_to_meet -> cancelled           (buyer, seller or admin)

    Status and flags are only written through conditional UPDATE statements
    in services/order_service.py so the "both flags -> completed" check is
    atomic with the flag write.

    Line items are snapshots; editing or deleting the product never changes them.
    Orders are never hard-deleted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_seller_created", "seller_id", "created_at"),
        db.Index("ix_orders_status_deleted", "status", "is_deleted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Buyer
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Human-readable, immutable once assigned (e.g. "ORD-1760870400000-K3J9Q0XZA")
    order_number = db.Column(db.String(64), nullable=False)

    total_amount = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(32), nullable=False, default=ORDER_WAITING, index=True)
    buyer_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    seller_confirmed = db.Column(db.Boolean, nullable=False, default=False)

    # Active dispute, if any (disputes.order_id points back)
    dispute_id = db.Column(db.Integer, nullable=True, index=True)

    shipping_address = db.Column(db.JSON, nullable=True)

    # Transient meetup/payment fields (cleared by an admin reset)
    meetup_location = db.Column(db.String(255), nullable=True)
    meetup_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_method = db.Column(db.String(32), nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    buyer = db.relationship("User", foreign_keys=[user_id], backref=db.backref("orders", lazy=True))
    seller = db.relationship("User", foreign_keys=[seller_id])
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "seller_id": self.seller_id,
            "order_number": self.order_number,
            "items": [item.to_dict() for item in self.items],
            "total_amount": self.total_amount,
            "status": self.status,
            "buyer_confirmed": self.buyer_confirmed,
            "seller_confirmed": self.seller_confirmed,
            "dispute_id": self.dispute_id,
            "shipping_address": self.shipping_address,
            "meetup_location": self.meetup_location,
            "meetup_at": to_utc_z(self.meetup_at) if self.meetup_at else None,
            "payment_method": self.payment_method,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """Line item snapshot: product identity, name, price and quantity at order time."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        db.Index("ix_order_items_product_order", "product_id", "order_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    image = db.Column(db.String(1024), nullable=True)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
            "image": self.image,
        }


class OrderEvent(db.Model):
    """
    Append-only order history.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # created, buyer_confirmed, seller_confirmed, completed, cancelled, reset,
    # meetup_set, dispute_linked, dispute_unlinked, payment_recorded, deleted, restored
    event_type = db.Column(db.String(32), nullable=False, index=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "event_type": self.event_type,
            "actor_user_id": self.actor_user_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class Cart(db.Model):
    """One cart per user; items are price snapshots refreshed on every change."""
    __tablename__ = "carts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "CartItem",
        backref="cart",
        lazy=True,
        order_by="CartItem.id",
        cascade="all, delete-orphan",
    )


class CartItem(db.Model):
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    image = db.Column(db.String(1024), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
            "image": self.image,
        }
