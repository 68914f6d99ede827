# Overview: Service-layer operations for reviews; verified purchases only.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Order, OrderItem, Product, Review, User
from ..time_utils import utcnow
from ..validation import clean_text

COMMENT_MAX_LENGTH = 2000

REASON_NOT_FOUND = "not_found"
REASON_OWN_PRODUCT = "own_product"
REASON_ALREADY_REVIEWED = "already_reviewed"
REASON_NOT_RECEIVED = "not_received"


def _parse_rating(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError("rating must be an integer between 1 and 5")
    if not 1 <= value <= 5:
        raise InvalidInputError("rating must be an integer between 1 and 5")
    return value


def has_received(user_id: int, product_id: int) -> bool:
    """True when the user has a both-confirmed, non-deleted order containing the product."""
    return (
        db.session.query(OrderItem.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            Order.user_id == user_id,
            OrderItem.product_id == product_id,
            Order.buyer_confirmed.is_(True),
            Order.seller_confirmed.is_(True),
            Order.is_deleted.is_(False),
        )
        .first()
        is not None
    )


def can_review(user: User, product_id: int) -> dict:
    """{can_review, reason}; reason is None when the review is allowed."""
    product = db.session.get(Product, product_id)
    if product is None or product.is_deleted:
        return {"can_review": False, "reason": REASON_NOT_FOUND}
    if product.seller_id == user.id:
        return {"can_review": False, "reason": REASON_OWN_PRODUCT}
    # Soft-deleted reviews still count: one review per user and product, ever
    if db.session.query(Review.id).filter_by(product_id=product_id, user_id=user.id).first():
        return {"can_review": False, "reason": REASON_ALREADY_REVIEWED}
    if not has_received(user.id, product_id):
        return {"can_review": False, "reason": REASON_NOT_RECEIVED}
    return {"can_review": True, "reason": None}


def create_review(user: User, product_id: int, rating, comment) -> Review:
    rating = _parse_rating(rating)
    comment = clean_text(comment, "comment", max_len=COMMENT_MAX_LENGTH)

    verdict = can_review(user, product_id)
    reason = verdict["reason"]
    if reason == REASON_NOT_FOUND:
        raise NotFoundError("Product not found")
    if reason == REASON_OWN_PRODUCT:
        raise ForbiddenError("You cannot review your own product")
    if reason == REASON_ALREADY_REVIEWED:
        raise ConflictError("You have already reviewed this product")
    if reason == REASON_NOT_RECEIVED:
        raise ForbiddenError("You can only review products from completed orders")

    review = Review(
        product_id=product_id,
        user_id=user.id,
        user_name=user.full_name,
        rating=rating,
        comment=comment,
        is_verified_purchase=True,
    )
    db.session.add(review)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("You have already reviewed this product")
    return review


def list_reviews(product_id: int) -> dict:
    """Visible reviews for a listing plus the average rating."""
    reviews = (
        db.session.query(Review)
        .filter(Review.product_id == product_id, Review.is_deleted.is_(False))
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )
    average = round(sum(r.rating for r in reviews) / len(reviews), 2) if reviews else None
    return {
        "items": [r.to_dict() for r in reviews],
        "count": len(reviews),
        "average_rating": average,
    }


def _load_review(review_id: int) -> Review:
    review = db.session.get(Review, review_id)
    if review is None or review.is_deleted:
        raise NotFoundError("Review not found")
    return review


def update_review(review_id: int, user: User, rating=None, comment=None) -> Review:
    review = _load_review(review_id)
    if review.user_id != user.id:
        raise ForbiddenError("Only the author can edit this review")
    if rating is not None:
        review.rating = _parse_rating(rating)
    if comment is not None:
        review.comment = clean_text(comment, "comment", max_len=COMMENT_MAX_LENGTH)
    db.session.commit()
    return review


def delete_review(review_id: int, user: User) -> Review:
    review = _load_review(review_id)
    if review.user_id != user.id and not user.is_admin:
        raise ForbiddenError("Not authorized to delete this review")
    review.is_deleted = True
    review.deleted_at = utcnow()
    review.deleted_by = user.id
    db.session.commit()
    return review
