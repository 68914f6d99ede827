# Overview: Service-layer operations for the order event ledger; append-only audit trail.

from __future__ import annotations

from ..extensions import db
from ..models import OrderEvent
"""
Order Ledger Invariants (authoritative)

- Append-only: events are never updated or deleted.
- No domain/business logic here; the order service decides what happened.
- Events are written inside the same DB transaction as the change they record.
- occurred_at is system time (DB default).
"""

EVENT_CREATED = "created"
EVENT_BUYER_CONFIRMED = "buyer_confirmed"
EVENT_SELLER_CONFIRMED = "seller_confirmed"
EVENT_COMPLETED = "completed"
EVENT_CANCELLED = "cancelled"
EVENT_RESET = "reset"
EVENT_MEETUP_SET = "meetup_set"
EVENT_DISPUTE_LINKED = "dispute_linked"
EVENT_DISPUTE_UNLINKED = "dispute_unlinked"
EVENT_PAYMENT_RECORDED = "payment_recorded"
EVENT_DELETED = "deleted"
EVENT_RESTORED = "restored"


def append_order_event(
    *,
    order_id: int,
    event_type: str,
    actor_user_id: int | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    note: str | None = None,
) -> OrderEvent:
    """Stage one event on the current session; the caller commits."""
    ev = OrderEvent(
        order_id=order_id,
        event_type=event_type,
        actor_user_id=actor_user_id,
        from_status=from_status,
        to_status=to_status,
        note=note[:255] if note else None,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_order_events(order_id: int) -> list[OrderEvent]:
    return (
        db.session.query(OrderEvent)
        .filter(OrderEvent.order_id == order_id)
        .order_by(OrderEvent.id.asc())
        .all()
    )
