# Overview: Service-layer operations for identifier; generates human-readable order and payment numbers.

"""
Identifier Service

Order numbers:   <prefix>-<epoch milliseconds>-<9 base36 chars>   e.g. ORD-1760870400000-K3J9Q0XZA
Transaction IDs: TXN-<epoch milliseconds>-<9 base36 chars>

Uniqueness is enforced by the database (uq_orders_order_number,
uq_payments_transaction_id). These functions only produce candidates;
callers retry with a fresh candidate on collision.
"""

from __future__ import annotations

import secrets
import string
import time

BASE36_ALPHABET = string.digits + string.ascii_uppercase
SUFFIX_LENGTH = 9


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


def generate_order_number(prefix: str = "ORD", *, now_ms: int | None = None) -> str:
    """Build a fresh order-number candidate. Never reuses randomness between calls."""
    ts = _epoch_ms() if now_ms is None else now_ms
    return f"{prefix}-{ts}-{random_suffix()}"


def generate_transaction_id(*, now_ms: int | None = None) -> str:
    ts = _epoch_ms() if now_ms is None else now_ms
    return f"TXN-{ts}-{random_suffix()}"
