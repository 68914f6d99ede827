# Overview: Request payload validation driven by SQLAlchemy column metadata plus listing rules.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import InvalidInputError
from .models.catalog import CONDITIONS
from .money import format_amount, parse_amount


MAX_IMAGES_PER_LISTING = 10
MAX_LISTED_QUANTITY = 10_000

# Primary keys are signed 64-bit on every backend we run
MAX_ID = 2**63 - 1


class ValidationError(InvalidInputError):
    """Malformed or disallowed client payload (400)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns a client may write, and which must be present on create.
    Anything outside writable_fields is rejected, even if the model has it.
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def _strict_int(key: str, value: Any) -> int:
    # JSON numbers arrive as int or float; forms send strings. Never bools.
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
        if "e" in text.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
    raise ValidationError(f"{key} must be an integer")


def parse_id(value: Any, field: str) -> int:
    """Row id taken from a JSON body: a plain int in 1..MAX_ID."""
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < 1 or value > MAX_ID:
        raise ValidationError(f"{field} is out of range")
    return value


def _coerce(col, value: Any):
    if isinstance(col.type, Integer):
        return _strict_int(col.key, value)

    if isinstance(col.type, (String, Text)):
        if isinstance(value, (dict, list, bool)):
            raise ValidationError(f"{col.key} must be a string")
        text = str(value).strip()
        if text == "" and not col.nullable:
            raise ValidationError(f"{col.key} cannot be blank")
        limit = getattr(col.type, "length", None)
        if limit and len(text) > limit:
            raise ValidationError(f"{col.key} exceeds max length {limit}")
        return text

    # JSON columns pass through; the rule functions check their shape
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Check a JSON body against the model's columns and the policy.

    partial=False is create: every required_on_create field must be present.
    partial=True is patch: only the provided keys are checked.

    Returns the cleaned patch (writable fields only, values coerced).
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}

    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        col = columns.get(key)
        if col is None:
            raise ValidationError(f"Unknown field: {key}")

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
        else:
            patch[key] = _coerce(col, raw)

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Listing rules the column metadata cannot express.
    Rewrites price in place as its two-digit decimal string.
    """
    if "price" in patch:
        try:
            patch["price"] = format_amount(parse_amount(patch["price"], field="price"))
        except InvalidInputError as e:
            raise ValidationError(e.message)

    if "quantity" in patch:
        qty = patch["quantity"]
        if qty < 0:
            raise ValidationError("quantity must be >= 0")
        if qty > MAX_LISTED_QUANTITY:
            raise ValidationError(f"quantity cannot exceed {MAX_LISTED_QUANTITY}")

    if "condition" in patch and patch["condition"] not in CONDITIONS:
        raise ValidationError(f"condition must be one of: {', '.join(CONDITIONS)}")

    if "images" in patch:
        images = patch["images"]
        if not isinstance(images, list) or not all(isinstance(i, str) and i.strip() for i in images):
            raise ValidationError("images must be a list of non-empty strings")
        if len(images) > MAX_IMAGES_PER_LISTING:
            raise ValidationError(f"images cannot contain more than {MAX_IMAGES_PER_LISTING} entries")
        patch["images"] = [i.strip() for i in images]


def clean_text(value, field: str, *, min_len: int = 1, max_len: int = 5000) -> str:
    """Trim, strip NUL bytes and bound a free-text field (dispute reasons, messages, comments)."""
    if not isinstance(value, str):
        raise ValidationError(f"{field} is required")
    text = value.replace("\x00", "").strip()
    if len(text) < min_len:
        if min_len <= 1:
            raise ValidationError(f"{field} is required")
        raise ValidationError(f"{field} must be at least {min_len} characters")
    if len(text) > max_len:
        raise ValidationError(f"{field} cannot exceed {max_len} characters")
    return text
