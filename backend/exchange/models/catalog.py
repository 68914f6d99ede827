from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

CONDITIONS = ("New", "Like New", "Good", "Fair", "Poor")

PRODUCT_STATUS_AVAILABLE = "available"
PRODUCT_STATUS_SOLD = "sold"
PRODUCT_STATUS_RESERVED = "reserved"
PRODUCT_STATUSES = (PRODUCT_STATUS_AVAILABLE, PRODUCT_STATUS_SOLD, PRODUCT_STATUS_RESERVED)


class Category(db.Model):
    """
    Browsable listing category. Products store the category *name*; the slug
    is derived from the name on every rename.
    """
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    slug = db.Column(db.String(120), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=False, default="")
    icon = db.Column(db.String(255), nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} slug={self.slug!r}>"

    def to_dict(self, product_count: int | None = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "icon": self.icon,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if product_count is not None:
            data["product_count"] = product_count
        return data


class Product(db.Model):
    """
    A seller's listing.

    `quantity` is the ORIGINALLY LISTED count and is never decremented by
    orders. Availability is derived from the order table at read time
    (see services/inventory_service.py).

    `price` is an exact decimal string with two fraction digits.
    Seller name/email are a denormalized snapshot taken at listing time.

    Listings are soft-deleted only: historical order line items keep
    resolving against them.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_nonnegative"),
        db.Index("ix_products_category_status", "category", "status"),
        db.Index("ix_products_seller_deleted", "seller_id", "is_deleted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    price = db.Column(db.String(32), nullable=False)
    category = db.Column(db.String(120), nullable=False, index=True)
    condition = db.Column(db.String(16), nullable=False)
    images = db.Column(db.JSON, nullable=False, default=list)

    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_name = db.Column(db.String(255), nullable=False)
    seller_email = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_AVAILABLE)
    campus = db.Column(db.String(120), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

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

    seller = db.relationship("User", foreign_keys=[seller_id], backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} seller_id={self.seller_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "category": self.category,
            "condition": self.condition,
            "images": list(self.images or []),
            "seller_id": self.seller_id,
            "seller_name": self.seller_name,
            "seller_email": self.seller_email,
            "status": self.status,
            "campus": self.campus,
            "quantity": self.quantity,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "deleted_by": self.deleted_by,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Review(db.Model):
    """Verified-purchase review. One per (product, user), soft-deleted rows included."""
    __tablename__ = "reviews"
    __table_args__ = (
        db.UniqueConstraint("product_id", "user_id", name="uq_reviews_product_user"),
        db.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
        db.Index("ix_reviews_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    user_name = db.Column(db.String(255), nullable=False)

    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text, nullable=False)
    is_verified_purchase = db.Column(db.Boolean, nullable=False, default=False)

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

    product = db.relationship("Product", backref=db.backref("reviews", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "rating": self.rating,
            "comment": self.comment,
            "is_verified_purchase": self.is_verified_purchase,
            "is_deleted": self.is_deleted,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
