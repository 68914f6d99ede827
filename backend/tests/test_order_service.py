"""
Order state machine tests.

Verifies:
- Creation snapshots line items, computes exact totals, checks inventory
- Order number collisions are retried with fresh randomness, then fail
- Buyer and seller confirmations complete the order in either order
- Confirmation is idempotent; cancellation is terminal and idempotent
- An active dispute holds confirmations
- Admin reset, soft delete and restore keep inventory consistent
"""

import dataclasses
import logging
import re

import pytest
from sqlalchemy import update

from exchange.errors import ConflictError, ForbiddenError, InternalError, InvalidInputError, NotFoundError
from exchange.extensions import db
from exchange.models import Dispute, Order
from exchange.models.orders import ORDER_CANCELLED, ORDER_COMPLETED, ORDER_WAITING
from exchange.services import dispute_service, identifier_service, inventory_service, order_service
from exchange.services.order_service import LineItem


def _available(product):
    return inventory_service.get_available_quantity(product.id, product.quantity)


def _sold(product):
    return inventory_service.get_sold_quantity(product.id)


def _event_types(order):
    return [ev.event_type for ev in order_service.get_order_events(order.id, order.buyer)]


# =============================================================================
# FACTORIES (no database)
# =============================================================================


class TestFactories:

    def test_line_item_total_is_exact(self):
        item = LineItem(product_id=1, name="Pen", price="0.10", quantity=3)
        assert str(item.total) == "0.30"

    def test_compute_total_sums_lines(self):
        items = [
            LineItem(product_id=1, name="Pen", price="0.10", quantity=3),
            LineItem(product_id=2, name="Lamp", price="19.99", quantity=2),
        ]
        assert order_service.compute_total(items) == "40.28"

    def test_line_items_are_immutable(self):
        item = LineItem(product_id=1, name="Pen", price="1.00", quantity=1)
        with pytest.raises(dataclasses.FrozenInstanceError):
            item.quantity = 2

    def test_build_order_starts_waiting_unconfirmed(self):
        order = order_service.build_order(
            buyer_id=1,
            seller_id=2,
            items=[LineItem(product_id=1, name="Pen", price="2.50", quantity=2)],
            order_number="ORD-1-ABCDEFGHI",
        )
        assert order.status == ORDER_WAITING
        assert order.buyer_confirmed is False
        assert order.seller_confirmed is False
        assert order.total_amount == "5.00"

    def test_build_order_needs_items(self):
        with pytest.raises(InvalidInputError):
            order_service.build_order(buyer_id=1, seller_id=2, items=[], order_number="ORD-1-X")

    def test_duplicate_lines_are_merged(self):
        merged = order_service.normalize_requested_items([
            {"product_id": 7, "quantity": 1},
            {"product_id": 8, "quantity": 2},
            {"product_id": 7, "quantity": 3},
        ])
        assert merged == [(7, 4), (8, 2)]

    @pytest.mark.parametrize("items", [
        [],
        "nope",
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": -1}],
        [{"product_id": 1, "quantity": True}],
        [{"product_id": "1", "quantity": 1}],
        [{"product_id": 10**20, "quantity": 1}],
        [{"product_id": 2**63, "quantity": 1}],
        [{"product_id": -4, "quantity": 1}],
        [{"quantity": 1}],
    ])
    def test_malformed_items_are_rejected(self, items):
        with pytest.raises(InvalidInputError):
            order_service.normalize_requested_items(items)

    def test_order_number_format(self):
        number = identifier_service.generate_order_number("ORD", now_ms=1760870400000)
        assert re.fullmatch(r"ORD-1760870400000-[0-9A-Z]{9}", number)


# =============================================================================
# CREATE
# =============================================================================


class TestCreateOrder:

    def test_creates_waiting_order_with_snapshot(self, buyer, seller, make_product):
        product = make_product(seller, quantity=5, price="12.50", name="Desk lamp")
        order = order_service.create_order(buyer, [{"product_id": product.id, "quantity": 2}])

        assert order.status == ORDER_WAITING
        assert order.buyer_confirmed is False
        assert order.seller_confirmed is False
        assert order.user_id == buyer.id
        assert order.seller_id == seller.id
        assert order.total_amount == "25.00"
        assert re.fullmatch(r"ORD-\d+-[0-9A-Z]{9}", order.order_number)

        item = order.items[0]
        assert (item.product_id, item.name, item.price, item.quantity) == (product.id, "Desk lamp", "12.50", 2)
        assert item.image == "https://img.example/1.jpg"

    def test_snapshot_survives_product_edits(self, buyer, product, make_order):
        order = make_order(buyer, product, quantity=1)
        product.name = "Renamed"
        product.price = "99.00"
        db.session.commit()

        db.session.expire_all()
        item = db.session.get(Order, order.id).items[0]
        assert item.price == "10.00"
        assert item.name != "Renamed"

    def test_round_trip_reserves_units(self, buyer, product, make_order):
        make_order(buyer, product, quantity=2)
        assert _available(product) == 3

    def test_exact_remaining_quantity_succeeds(self, buyer, make_user, product, make_order):
        make_order(make_user(), product, quantity=3)
        make_order(buyer, product, quantity=2)
        assert _available(product) == 0

    def test_one_more_than_available_fails(self, buyer, make_user, product, make_order):
        make_order(make_user(), product, quantity=3)
        with pytest.raises(InvalidInputError) as exc:
            make_order(buyer, product, quantity=3)
        assert exc.value.details == {"product_id": product.id, "requested": 3, "available": 2}
        assert _available(product) == 2

    def test_merged_duplicates_are_checked_together(self, buyer, product):
        with pytest.raises(InvalidInputError):
            order_service.create_order(buyer, [
                {"product_id": product.id, "quantity": 3},
                {"product_id": product.id, "quantity": 3},
            ])

    def test_unknown_product(self, buyer):
        with pytest.raises(InvalidInputError):
            order_service.create_order(buyer, [{"product_id": 999, "quantity": 1}])

    def test_soft_deleted_product(self, buyer, product):
        product.is_deleted = True
        db.session.commit()
        with pytest.raises(InvalidInputError):
            order_service.create_order(buyer, [{"product_id": product.id, "quantity": 1}])

    def test_own_listing(self, seller, product):
        with pytest.raises(InvalidInputError):
            order_service.create_order(seller, [{"product_id": product.id, "quantity": 1}])

    def test_banned_seller(self, buyer, seller, product):
        seller.is_banned = True
        db.session.commit()
        with pytest.raises(InvalidInputError):
            order_service.create_order(buyer, [{"product_id": product.id, "quantity": 1}])

    def test_mixed_sellers(self, buyer, seller, make_user, product, make_product):
        other = make_product(make_user(), quantity=1)
        with pytest.raises(InvalidInputError):
            order_service.create_order(buyer, [
                {"product_id": product.id, "quantity": 1},
                {"product_id": other.id, "quantity": 1},
            ])
        assert db.session.query(Order).count() == 0

    def test_created_event(self, buyer, product, make_order):
        order = make_order(buyer, product)
        assert _event_types(order) == ["created"]


class TestOrderNumberCollision:

    def test_collision_is_retried_with_a_new_number(self, app, buyer, product, make_order, monkeypatch, caplog):
        first = make_order(buyer, product)
        candidates = iter([first.order_number, "ORD-1-FRESHFRES"])
        monkeypatch.setattr(identifier_service, "generate_order_number", lambda prefix="ORD", **kw: next(candidates))

        with caplog.at_level(logging.WARNING, logger=app.logger.name):
            second = make_order(buyer, product)

        assert second.order_number == "ORD-1-FRESHFRES"
        assert db.session.query(Order).count() == 2
        assert "Order number collision" in caplog.text

    def test_exhausted_attempts_raise_internal_error(self, app, buyer, product, make_order, monkeypatch):
        first = make_order(buyer, product)
        app.config["ORDER_NUMBER_MAX_ATTEMPTS"] = 3
        calls = []

        def _same(prefix="ORD", **kw):
            calls.append(prefix)
            return first.order_number

        monkeypatch.setattr(identifier_service, "generate_order_number", _same)

        with pytest.raises(InternalError):
            make_order(buyer, product)
        assert len(calls) == 3
        assert db.session.query(Order).count() == 1
        assert _available(product) == 4


# =============================================================================
# CONFIRM
# =============================================================================


class TestConfirm:

    def test_buyer_then_seller_completes(self, buyer, seller, product, make_order):
        order = make_order(buyer, product, quantity=2)

        order = order_service.confirm_order(order.id, buyer)
        assert order.status == ORDER_WAITING
        assert order.buyer_confirmed is True
        assert _sold(product) == 0

        order = order_service.confirm_order(order.id, seller)
        assert order.status == ORDER_COMPLETED
        assert order.buyer_confirmed and order.seller_confirmed
        assert _sold(product) == 2

    def test_seller_then_buyer_completes(self, buyer, seller, product, make_order):
        order = make_order(buyer, product)
        order_service.confirm_order(order.id, seller)
        order = order_service.confirm_order(order.id, buyer)
        assert order.status == ORDER_COMPLETED

    def test_other_flag_set_elsewhere_is_observed(self, buyer, product, make_order):
        order = make_order(buyer, product)
        # the seller's confirmation lands through another connection
        db.session.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(seller_confirmed=True)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

        order = order_service.confirm_order(order.id, buyer)
        assert order.status == ORDER_COMPLETED

    def test_confirm_is_idempotent(self, buyer, product, make_order):
        order = make_order(buyer, product)
        once = order_service.confirm_order(order.id, buyer)
        state = (once.status, once.buyer_confirmed, once.seller_confirmed)

        twice = order_service.confirm_order(order.id, buyer)
        assert (twice.status, twice.buyer_confirmed, twice.seller_confirmed) == state
        assert _event_types(order).count("buyer_confirmed") == 1

    def test_confirming_a_completed_order_is_a_no_op(self, buyer, seller, product, make_order):
        order = make_order(buyer, product)
        order_service.confirm_order(order.id, buyer)
        order_service.confirm_order(order.id, seller)
        version = order.version_id

        again = order_service.confirm_order(order.id, seller)
        assert again.status == ORDER_COMPLETED
        assert again.version_id == version
        assert _event_types(order).count("completed") == 1

    def test_completion_events(self, buyer, seller, product, make_order):
        order = make_order(buyer, product)
        order_service.confirm_order(order.id, buyer)
        order_service.confirm_order(order.id, seller)
        assert _event_types(order) == ["created", "buyer_confirmed", "seller_confirmed", "completed"]

    def test_stranger_is_forbidden(self, buyer, make_user, product, make_order):
        order = make_order(buyer, product)
        with pytest.raises(ForbiddenError):
            order_service.confirm_order(order.id, make_user())

    def test_admin_is_not_a_party(self, buyer, admin, product, make_order):
        order = make_order(buyer, product)
        with pytest.raises(ForbiddenError):
            order_service.confirm_order(order.id, admin)

    def test_missing_order(self, buyer):
        with pytest.raises(NotFoundError):
            order_service.confirm_order(12345, buyer)

    def test_soft_deleted_order(self, buyer, admin, product, make_order):
        order = make_order(buyer, product)
        order_service.soft_delete_order(order.id, admin)
        with pytest.raises(NotFoundError):
            order_service.confirm_order(order.id, buyer)

    def test_cancelled_order_cannot_be_confirmed(self, buyer, seller, product, make_order):
        order = make_order(buyer, product)
        order_service.cancel_order(order.id, buyer)
        with pytest.raises(ConflictError):
            order_service.confirm_order(order.id, seller)
        assert db.session.get(Order, order.id).status == ORDER_CANCELLED


class TestDisputeGate:

    def test_open_dispute_holds_confirmations(self, buyer, seller, product, make_order):
        order = make_order(buyer, product)
        order_service.confirm_order(order.id, buyer)
        dispute_service.open_dispute(order.id, buyer, "Seller did not show up")

        with pytest.raises(ConflictError) as exc:
            order_service.confirm_order(order.id, seller)
        assert exc.value.details["dispute_status"] == "open"
        assert db.session.get(Order, order.id).status == ORDER_WAITING

    def test_under_review_dispute_holds_confirmations(self, buyer, seller, admin, product, make_order):
        order = make_order(buyer, product)
        dispute = dispute_service.open_dispute(order.id, buyer, "Item was damaged")
        dispute_service.add_message(dispute.id, admin, "Looking into this now.")

        with pytest.raises(ConflictError):
            order_service.confirm_order(order.id, seller)

    def test_closed_dispute_releases_the_order(self, buyer, seller, admin, product, make_order):
        order = make_order(buyer, product)
        dispute = dispute_service.open_dispute(order.id, seller, "Buyer was late")
        dispute_service.close_dispute(dispute.id, admin)

        order_service.confirm_order(order.id, buyer)
        order = order_service.confirm_order(order.id, seller)
        assert order.status == ORDER_COMPLETED

    def test_guarded_update_refuses_when_dispute_appears(self, buyer, product, make_order, monkeypatch):
        order = make_order(buyer, product)
        db.session.add(Dispute(
            order_id=order.id,
            buyer_id=order.user_id,
            seller_id=order.seller_id,
            product_ids=[product.id],
            reason="Raced in",
        ))
        db.session.commit()
        # pre-check misses the dispute; the conditional UPDATE must not
        monkeypatch.setattr(order_service, "get_active_dispute", lambda order: None)

        with pytest.raises(ConflictError):
            order_service.confirm_order(order.id, buyer)
        assert db.session.get(Order, order.id).buyer_confirmed is False


# =============================================================================
# CANCEL
# =============================================================================


class TestCancel:

    def test_cancel_restores_availability(self, buyer, product, make_order):
        before = _available(product)
        order = make_order(buyer, product, quantity=2)
        order = order_service.cancel_order(order.id, buyer)

        assert order.status == ORDER_CANCELLED
        assert _available(product) == before
        assert _sold(product) == 0

    def test_seller_and_admin_can_cancel(self, buyer, seller, admin, product, make_order):
        a = make_order(buyer, product)
        b = make_order(buyer, product)
        assert order_service.cancel_order(a.id, seller).status == ORDER_CANCELLED
        assert order_service.cancel_order(b.id, admin).status == ORDER_CANCELLED

    def test_stranger_cannot_cancel(self, buyer, make_user, product, make_order):
        order = make_order(buyer, product)
        with pytest.raises(ForbiddenError):
            order_service.cancel_order(order.id, make_user())

    def test_cancel_twice_is_a_no_op(self, buyer, product, make_order):
        order = make_order(buyer, product)
        order_service.cancel_order(order.id, buyer)
        order = order_service.cancel_order(order.id, buyer)
        assert order.status == ORDER_CANCELLED
        assert _event_types(order).count("cancelled") == 1

    def test_completed_order_cannot_be_cancelled(self, buyer, seller, product, make_order):
        order = make_order(buyer, product)
        order_service.confirm_order(order.id, buyer)
        order_service.confirm_order(order.id, seller)
        with pytest.raises(ConflictError):
            order_service.cancel_order(order.id, buyer)
        assert db.session.get(Order, order.id).status == ORDER_COMPLETED

    def test_cancelled_is_terminal(self, buyer, seller, product, make_order):
        order = make_order(buyer, product)
        order_service.confirm_order(order.id, buyer)
        order_service.cancel_order(order.id, seller)

        with pytest.raises(ConflictError):
            order_service.confirm_order(order.id, seller)
        with pytest.raises(ConflictError):
            order_service.set_meetup(order.id, buyer, "Library steps")
        assert db.session.get(Order, order.id).status == ORDER_CANCELLED


# =============================================================================
# RESET / SOFT DELETE / MEETUP
# =============================================================================


class TestReset:

    def test_reset_completed_order(self, buyer, seller, admin, product, make_order):
        order = make_order(buyer, product, quantity=2)
        order_service.set_meetup(order.id, buyer, "Student union", "2026-05-01T15:00:00Z")
        order_service.confirm_order(order.id, buyer)
        order_service.confirm_order(order.id, seller)

        order = order_service.reset_order(order.id, admin)
        assert order.status == ORDER_WAITING
        assert order.buyer_confirmed is False
        assert order.seller_confirmed is False
        assert order.meetup_location is None
        assert order.meetup_at is None
        assert order.payment_method is None
        assert _sold(product) == 0
        assert _available(product) == 3

    def test_reset_cancelled_order_re_reserves(self, buyer, admin, product, make_order):
        order = make_order(buyer, product, quantity=2)
        order_service.cancel_order(order.id, buyer)
        order_service.reset_order(order.id, admin)
        assert _available(product) == 3

    def test_reset_refused_without_inventory(self, buyer, make_user, admin, product, make_order):
        order = make_order(buyer, product, quantity=2)
        order_service.cancel_order(order.id, buyer)
        make_order(make_user(), product, quantity=5)

        with pytest.raises(ConflictError):
            order_service.reset_order(order.id, admin)
        assert db.session.get(Order, order.id).status == ORDER_CANCELLED

    def test_reset_requires_admin(self, buyer, product, make_order):
        order = make_order(buyer, product)
        with pytest.raises(ForbiddenError):
            order_service.reset_order(order.id, buyer)

    def test_reset_without_actor(self, buyer, product, make_order):
        order = make_order(buyer, product)
        order_service.cancel_order(order.id, buyer)
        assert order_service.reset_order(order.id).status == ORDER_WAITING


class TestSoftDelete:

    def test_deleted_orders_leave_both_sums(self, buyer, seller, admin, product, make_order):
        order = make_order(buyer, product, quantity=2)
        order_service.confirm_order(order.id, buyer)
        order_service.confirm_order(order.id, seller)
        assert _sold(product) == 2

        order_service.soft_delete_order(order.id, admin)
        assert _sold(product) == 0
        assert _available(product) == 5
        assert order_service.list_orders_for_buyer(buyer.id) == []

    def test_restore_takes_units_back(self, buyer, admin, product, make_order):
        order = make_order(buyer, product, quantity=2)
        order_service.soft_delete_order(order.id, admin)
        order_service.restore_order(order.id, admin)
        assert _available(product) == 3

    def test_restore_refused_without_inventory(self, buyer, make_user, admin, product, make_order):
        order = make_order(buyer, product, quantity=2)
        order_service.soft_delete_order(order.id, admin)
        make_order(make_user(), product, quantity=5)
        with pytest.raises(ConflictError):
            order_service.restore_order(order.id, admin)

    def test_admin_sees_deleted_order(self, buyer, admin, product, make_order):
        order = make_order(buyer, product)
        order_service.soft_delete_order(order.id, admin)
        assert order_service.get_order(order.id, admin).is_deleted is True
        with pytest.raises(NotFoundError):
            order_service.get_order(order.id, buyer)

    def test_delete_requires_admin(self, buyer, product, make_order):
        order = make_order(buyer, product)
        with pytest.raises(ForbiddenError):
            order_service.soft_delete_order(order.id, buyer)


class TestMeetupAndListing:

    def test_set_meetup(self, buyer, seller, product, make_order):
        order = make_order(buyer, product)
        order = order_service.set_meetup(order.id, seller, "  Library steps ", "2026-05-01T15:00:00Z")
        assert order.meetup_location == "Library steps"
        assert order.to_dict()["meetup_at"] == "2026-05-01T15:00:00Z"

    def test_meetup_requires_location(self, buyer, product, make_order):
        order = make_order(buyer, product)
        with pytest.raises(InvalidInputError):
            order_service.set_meetup(order.id, buyer, "   ")

    def test_meetup_rejects_bad_datetime(self, buyer, product, make_order):
        order = make_order(buyer, product)
        with pytest.raises(InvalidInputError):
            order_service.set_meetup(order.id, buyer, "Gym", "next tuesday")

    def test_buyer_and_seller_views(self, buyer, seller, product, make_order):
        order = make_order(buyer, product)
        assert [o.id for o in order_service.list_orders_for_buyer(buyer.id)] == [order.id]
        assert [o.id for o in order_service.list_orders_for_seller(seller.id)] == [order.id]
        assert order_service.list_orders_for_buyer(seller.id) == []

    def test_find_by_order_number(self, buyer, product, make_order):
        order = make_order(buyer, product)
        assert order_service.find_by_order_number(order.order_number).id == order.id
        assert order_service.find_by_order_number("ORD-0-NOPE") is None

    def test_list_all_orders_filters(self, buyer, admin, product, make_order):
        a = make_order(buyer, product)
        b = make_order(buyer, product)
        order_service.cancel_order(a.id, buyer)
        order_service.soft_delete_order(b.id, admin)

        orders, total = order_service.list_all_orders(status=ORDER_CANCELLED)
        assert total == 1 and orders[0].id == a.id
        _, total = order_service.list_all_orders()
        assert total == 1
        _, total = order_service.list_all_orders(include_deleted=True)
        assert total == 2
