# Overview: Service-layer operations for categories; browsing, admin upkeep and listing resolution.

"""
Categories Service

Listings carry the category *name* as plain text. A category row gives that
name a slug for browsing, a description and an icon. Sellers may list under
a category that does not exist yet: it is created on first use. Soft-deleted
categories stay reserved and refuse new listings until an admin restores
them.
"""
from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Category, Product
from ..time_utils import utcnow
from ..validation import clean_text

CATEGORY_MUTABLE_FIELDS = {"name", "description", "icon"}
MAX_NAME_LENGTH = 120

_WHITESPACE_RE = re.compile(r"\s+")
_NON_SLUG_RE = re.compile(r"[^\w-]")


def slugify(name: str) -> str:
    """'Dorm & Kitchen' -> 'dorm--kitchen'"""
    slug = _WHITESPACE_RE.sub("-", name.strip().lower())
    return _NON_SLUG_RE.sub("", slug)


def _clean_name(value) -> tuple[str, str]:
    name = clean_text(value, "name", max_len=MAX_NAME_LENGTH)
    slug = slugify(name)
    if not slug:
        raise InvalidInputError("name must contain letters or digits")
    return name, slug


def _require_admin(actor) -> None:
    if not actor.is_admin:
        raise ForbiddenError("Admin access required")


def _product_counts() -> dict[str, int]:
    rows = (
        db.session.query(Product.category, func.count(Product.id))
        .filter(Product.is_deleted.is_(False))
        .group_by(Product.category)
        .all()
    )
    return {name: count for name, count in rows}


def list_categories(*, include_deleted: bool = False) -> list[dict]:
    """Categories by name, each with the number of live listings under it."""
    q = db.session.query(Category)
    if not include_deleted:
        q = q.filter(Category.is_deleted.is_(False))
    counts = _product_counts()
    return [c.to_dict(product_count=counts.get(c.name, 0)) for c in q.order_by(Category.name).all()]


def get_category_by_slug(slug: str) -> Category:
    category = db.session.query(Category).filter_by(slug=slug, is_deleted=False).first()
    if category is None:
        raise NotFoundError("Category not found")
    return category


def _load_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")
    return category


def _ensure_unique(name: str, slug: str, *, exclude_id: int | None = None) -> None:
    q = db.session.query(Category.id).filter(db.or_(Category.name == name, Category.slug == slug))
    if exclude_id is not None:
        q = q.filter(Category.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("A category with this name already exists")


def _commit_unique() -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A category with this name already exists")


def create_category(admin, data: dict) -> Category:
    """Body: {"name": "...", "description": "...", "icon": "..."}"""
    _require_admin(admin)
    name, slug = _clean_name(data.get("name"))
    _ensure_unique(name, slug)

    category = Category(
        name=name,
        slug=slug,
        description=(data.get("description") or "").strip(),
        icon=(data.get("icon") or "").strip() or None,
    )
    db.session.add(category)
    _commit_unique()
    current_app.logger.info("Category %s created by admin=%s", category.slug, admin.id)
    return category


def update_category(category_id: int, admin, data: dict) -> Category:
    """
    Patch name, description or icon.

    A rename re-derives the slug and carries the listings filed under the old
    name over to the new one.
    """
    _require_admin(admin)
    unknown = sorted(k for k in data if k not in CATEGORY_MUTABLE_FIELDS)
    if unknown:
        raise InvalidInputError(f"Field not allowed: {unknown[0]}")

    category = _load_category(category_id)

    if "name" in data:
        name, slug = _clean_name(data["name"])
        if name != category.name:
            _ensure_unique(name, slug, exclude_id=category.id)
            (
                db.session.query(Product)
                .filter(Product.category == category.name)
                .update({Product.category: name}, synchronize_session=False)
            )
            category.name = name
            category.slug = slug
    if "description" in data:
        category.description = (data["description"] or "").strip()
    if "icon" in data:
        category.icon = (data["icon"] or "").strip() or None

    _commit_unique()
    return category


def soft_delete_category(category_id: int, admin) -> Category:
    _require_admin(admin)
    category = _load_category(category_id)
    if category.is_deleted:
        raise InvalidInputError("Category already deleted")
    category.is_deleted = True
    category.deleted_at = utcnow()
    category.deleted_by = admin.id
    db.session.commit()
    current_app.logger.info("Category %s deleted by admin=%s", category.slug, admin.id)
    return category


def restore_category(category_id: int, admin) -> Category:
    _require_admin(admin)
    category = _load_category(category_id)
    if not category.is_deleted:
        raise InvalidInputError("Category is not deleted")
    category.is_deleted = False
    category.deleted_at = None
    category.deleted_by = None
    db.session.commit()
    return category


def resolve_for_listing(value) -> str:
    """
    Canonical category name for a new or edited listing.

    Matches an existing category by slug ("books", "Books " and "BOOKS" are
    one category) and creates it on first use. Does not commit; the caller's
    listing commit carries the new row.
    """
    name, slug = _clean_name(value)
    category = db.session.query(Category).filter_by(slug=slug).first()
    if category is None:
        category = Category(name=name, slug=slug, description="")
        try:
            with db.session.begin_nested():
                db.session.add(category)
                db.session.flush()
        except IntegrityError:
            # Created concurrently by another listing
            category = db.session.query(Category).filter_by(slug=slug).one()
    if category.is_deleted:
        raise InvalidInputError(
            "This category is no longer available",
            details={"category": category.name},
        )
    return category.name
