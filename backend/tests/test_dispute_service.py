"""
Dispute tests.

Verifies:
- Only the buyer or seller can open; one non-deleted dispute per order
- Message bounds, sender roles and the open -> under_review move
- Resolving cancels a waiting order and leaves a completed one alone
- Soft delete unlinks the order, restore re-links it
"""

import pytest

from exchange.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from exchange.extensions import db
from exchange.models import Order
from exchange.models.orders import ORDER_CANCELLED, ORDER_COMPLETED
from exchange.services import dispute_service, inventory_service, order_service


@pytest.fixture
def order(buyer, product, make_order):
    return make_order(buyer, product, quantity=2)


class TestOpenDispute:

    def test_buyer_opens_and_order_is_linked(self, buyer, product, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "  Item never handed over \x00 ")

        assert dispute.status == "open"
        assert dispute.reason == "Item never handed over"
        assert dispute.product_ids == [product.id]
        assert [(m.sender_role, m.message) for m in dispute.messages] == [("buyer", "Item never handed over")]
        assert db.session.get(Order, order.id).dispute_id == dispute.id

    def test_seller_can_open(self, seller, order):
        dispute = dispute_service.open_dispute(order.id, seller, "Buyer never came")
        assert dispute.messages[0].sender_role == "seller"

    def test_stranger_cannot_open(self, make_user, order):
        with pytest.raises(ForbiddenError):
            dispute_service.open_dispute(order.id, make_user(), "Not mine")

    def test_one_dispute_per_order(self, buyer, seller, admin, order):
        first = dispute_service.open_dispute(order.id, buyer, "First complaint")
        dispute_service.close_dispute(first.id, admin)
        with pytest.raises(ConflictError):
            dispute_service.open_dispute(order.id, seller, "Second complaint")

    def test_reason_is_required(self, buyer, order):
        with pytest.raises(InvalidInputError):
            dispute_service.open_dispute(order.id, buyer, "   ")

    def test_deleted_order(self, buyer, admin, order):
        order_service.soft_delete_order(order.id, admin)
        with pytest.raises(NotFoundError):
            dispute_service.open_dispute(order.id, buyer, "Too late")

    def test_completed_orders_can_be_disputed(self, buyer, seller, order):
        order_service.confirm_order(order.id, buyer)
        order_service.confirm_order(order.id, seller)
        dispute = dispute_service.open_dispute(order.id, buyer, "Broken after pickup")
        assert dispute.status == "open"


class TestMessages:

    def test_admin_message_moves_to_under_review(self, buyer, admin, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "Missing charger")
        dispute = dispute_service.add_message(dispute.id, admin, "Please send photos of the item.")
        assert dispute.status == "under_review"
        assert dispute.messages[-1].sender_role == "admin"

    def test_party_message_keeps_status(self, buyer, seller, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "Missing charger")
        dispute = dispute_service.add_message(dispute.id, seller, "The charger was in the box.")
        assert dispute.status == "open"
        assert len(dispute.messages) == 2

    @pytest.mark.parametrize("text", ["too short", "x" * 5001, None])
    def test_message_bounds(self, buyer, order, text):
        dispute = dispute_service.open_dispute(order.id, buyer, "Missing charger")
        with pytest.raises(InvalidInputError):
            dispute_service.add_message(dispute.id, buyer, text)

    def test_stranger_cannot_post(self, buyer, make_user, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "Missing charger")
        with pytest.raises(ForbiddenError):
            dispute_service.add_message(dispute.id, make_user(), "I have opinions too.")

    def test_resolved_dispute_is_closed_to_messages(self, buyer, admin, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "Missing charger")
        dispute_service.resolve_dispute(dispute.id, admin, "Refund agreed")
        with pytest.raises(ForbiddenError):
            dispute_service.add_message(dispute.id, buyer, "One more thing to add.")


class TestResolution:

    def test_resolve_cancels_waiting_order(self, buyer, admin, product, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "Seller no-show")
        dispute = dispute_service.resolve_dispute(dispute.id, admin, "Order cancelled")

        assert dispute.status == "resolved"
        assert dispute.resolved_by == admin.id
        assert dispute.resolved_at is not None
        assert dispute.messages[-1].message == "Dispute resolved: Order cancelled"
        assert db.session.get(Order, order.id).status == ORDER_CANCELLED
        assert inventory_service.get_available_quantity(product.id, product.quantity) == 5

    def test_resolve_leaves_completed_order(self, buyer, seller, admin, order):
        order_service.confirm_order(order.id, buyer)
        order_service.confirm_order(order.id, seller)
        dispute = dispute_service.open_dispute(order.id, buyer, "Broken after pickup")
        dispute_service.resolve_dispute(dispute.id, admin, "Sold as seen")
        assert db.session.get(Order, order.id).status == ORDER_COMPLETED

    def test_only_admins_resolve(self, buyer, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "Seller no-show")
        with pytest.raises(ForbiddenError):
            dispute_service.resolve_dispute(dispute.id, buyer, "I win")

    def test_resolve_twice(self, buyer, admin, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "Seller no-show")
        dispute_service.resolve_dispute(dispute.id, admin, "Done")
        with pytest.raises(ConflictError):
            dispute_service.resolve_dispute(dispute.id, admin, "Done again")

    def test_close(self, buyer, admin, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "Seller no-show")
        assert dispute_service.close_dispute(dispute.id, admin).status == "closed"
        with pytest.raises(ConflictError):
            dispute_service.close_dispute(dispute.id, admin)


class TestSoftDelete:

    def test_delete_unlinks_and_restore_relinks(self, buyer, admin, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "Seller no-show")

        dispute_service.soft_delete_dispute(dispute.id, admin)
        assert db.session.get(Order, order.id).dispute_id is None
        with pytest.raises(NotFoundError):
            dispute_service.get_dispute(dispute.id, buyer)

        dispute_service.restore_dispute(dispute.id, admin)
        assert db.session.get(Order, order.id).dispute_id == dispute.id

    def test_restore_refused_when_replaced(self, buyer, seller, admin, order):
        first = dispute_service.open_dispute(order.id, buyer, "Seller no-show")
        dispute_service.soft_delete_dispute(first.id, admin)
        dispute_service.open_dispute(order.id, seller, "Buyer no-show")

        with pytest.raises(ConflictError):
            dispute_service.restore_dispute(first.id, admin)

    def test_listing(self, buyer, seller, admin, make_user, order):
        dispute = dispute_service.open_dispute(order.id, buyer, "Seller no-show")
        assert [d.id for d in dispute_service.list_disputes_for_user(seller)] == [dispute.id]
        assert dispute_service.list_disputes_for_user(make_user()) == []
        assert [d.id for d in dispute_service.list_all_disputes(status="open")] == [dispute.id]
        assert dispute_service.get_dispute(dispute.id, admin).id == dispute.id
