"""
HTTP API tests.

Verifies:
- Auth endpoints: register, login, logout, banned accounts
- Order endpoints map domain errors to 400/403/404/409
- Inventory endpoint reflects order state
- Admin endpoints reject non-admins; directory, stats and category upkeep
- Profile, password, public profile and payment summary endpoints
- Ids too large for a 64-bit key are rejected, not stored
- Rate limiting answers 429 with Retry-After
"""

import pytest

from exchange.extensions import db
from exchange.models import Order


def _create_order(client, headers, product_id, quantity=1):
    return client.post('/api/orders', headers=headers, json=[{"product_id": product_id, "quantity": quantity}])


class TestAuthEndpoints:

    def test_register_login_logout(self, client):
        response = client.post('/api/auth/register', json={
            "email": "lee@campus.edu",
            "password": "Password123!",
            "first_name": "Lee",
            "last_name": "Park",
        })
        assert response.status_code == 201

        response = client.post('/api/auth/login', json={"email": "lee@campus.edu", "password": "Password123!"})
        assert response.status_code == 200
        headers = {'Authorization': f'Bearer {response.json["token"]}'}

        assert client.get('/api/auth/me', headers=headers).json["user"]["email"] == "lee@campus.edu"
        assert client.post('/api/auth/logout', headers=headers).status_code == 200
        assert client.get('/api/auth/me', headers=headers).status_code == 401

    def test_duplicate_email(self, client, buyer):
        response = client.post('/api/auth/register', json={
            "email": buyer.email,
            "password": "Password123!",
            "first_name": "Dup",
            "last_name": "Licate",
        })
        assert response.status_code == 409

    def test_bad_credentials(self, client):
        assert client.post('/api/auth/login', json={"email": "nobody@campus.edu", "password": "x"}).status_code == 401
        assert client.post('/api/auth/login', json={}).status_code == 400

    def test_missing_token(self, client):
        assert client.get('/api/orders').status_code == 401

    def test_banned_account_is_forbidden(self, client, buyer, headers_for):
        headers = headers_for(buyer)
        buyer.is_banned = True
        db.session.commit()
        assert client.get('/api/orders', headers=headers).status_code == 403


class TestOrderEndpoints:

    def test_create_and_confirm(self, client, buyer, seller, product, headers_for):
        buyer_headers = headers_for(buyer)
        seller_headers = headers_for(seller)

        response = _create_order(client, buyer_headers, product.id, 2)
        assert response.status_code == 201
        order = response.json["order"]
        assert order["status"] == "waiting_to_meet"
        assert order["total_amount"] == "20.00"

        response = client.patch(f'/api/orders/{order["id"]}/confirm', headers=buyer_headers)
        assert response.status_code == 200
        assert response.json["order"]["buyer_confirmed"] is True
        assert response.json["order"]["status"] == "waiting_to_meet"

        response = client.patch(f'/api/orders/{order["id"]}/confirm', headers=seller_headers)
        assert response.json["order"]["status"] == "met_and_exchanged"

        inventory = client.get(f'/api/products/{product.id}/inventory').json
        assert inventory == {"listed": 5, "available": 3, "sold": 2, "reserved": 0}

    def test_create_with_shipping_address(self, client, buyer, product, headers_for):
        response = client.post('/api/orders', headers=headers_for(buyer), json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "shipping_address": {"building": "Library"},
        })
        assert response.status_code == 201
        assert response.json["order"]["shipping_address"] == {"building": "Library"}

    @pytest.mark.parametrize("items", [
        [],
        [{"product_id": 999, "quantity": 1}],
        [{"product_id": "abc", "quantity": 1}],
        [{"product_id": 10**20, "quantity": 1}],
        [{"product_id": 0, "quantity": 1}],
        None,
    ])
    def test_create_rejects_bad_items(self, client, buyer, headers_for, items):
        response = client.post('/api/orders', headers=headers_for(buyer), json=items)
        assert response.status_code == 400

    def test_create_beyond_inventory(self, client, buyer, product, headers_for):
        response = _create_order(client, headers_for(buyer), product.id, 6)
        assert response.status_code == 400
        assert db.session.query(Order).count() == 0

    def test_stranger_cannot_confirm_or_view(self, client, buyer, make_user, product, headers_for):
        order_id = _create_order(client, headers_for(buyer), product.id).json["order"]["id"]
        stranger = headers_for(make_user())

        assert client.patch(f'/api/orders/{order_id}/confirm', headers=stranger).status_code == 403
        assert client.get(f'/api/orders/{order_id}', headers=stranger).status_code == 403

    def test_unknown_order(self, client, buyer, headers_for):
        assert client.patch('/api/orders/999/confirm', headers=headers_for(buyer)).status_code == 404

    def test_cancel_then_confirm(self, client, buyer, product, headers_for):
        headers = headers_for(buyer)
        order_id = _create_order(client, headers, product.id, 3).json["order"]["id"]

        assert client.patch(f'/api/orders/{order_id}/cancel', headers=headers).status_code == 200
        assert client.patch(f'/api/orders/{order_id}/cancel', headers=headers).status_code == 200
        assert client.patch(f'/api/orders/{order_id}/confirm', headers=headers).status_code == 409

        inventory = client.get(f'/api/products/{product.id}/inventory').json
        assert inventory["available"] == 5

    def test_cancel_completed_order(self, client, buyer, seller, product, headers_for):
        buyer_headers = headers_for(buyer)
        order_id = _create_order(client, buyer_headers, product.id).json["order"]["id"]
        client.patch(f'/api/orders/{order_id}/confirm', headers=buyer_headers)
        client.patch(f'/api/orders/{order_id}/confirm', headers=headers_for(seller))

        assert client.patch(f'/api/orders/{order_id}/cancel', headers=buyer_headers).status_code == 409

    def test_confirm_blocked_by_open_dispute(self, client, buyer, product, headers_for):
        headers = headers_for(buyer)
        order_id = _create_order(client, headers, product.id).json["order"]["id"]

        response = client.post('/api/disputes', headers=headers, json={"order_id": order_id, "reason": "Seller no-show"})
        assert response.status_code == 201
        assert client.patch(f'/api/orders/{order_id}/confirm', headers=headers).status_code == 409

    def test_listings_for_each_side(self, client, buyer, seller, product, headers_for):
        _create_order(client, headers_for(buyer), product.id)
        assert client.get('/api/orders', headers=headers_for(buyer)).json["count"] == 1
        assert client.get('/api/orders/seller', headers=headers_for(seller)).json["count"] == 1

    def test_history(self, client, buyer, product, headers_for):
        headers = headers_for(buyer)
        order_id = _create_order(client, headers, product.id).json["order"]["id"]
        client.patch(f'/api/orders/{order_id}/confirm', headers=headers)

        events = client.get(f'/api/orders/{order_id}/events', headers=headers).json["events"]
        assert [e["event_type"] for e in events] == ["created", "buyer_confirmed"]


class TestOversizedIds:

    @pytest.mark.parametrize("path,body", [
        ("/api/cart/items", {"product_id": 10**20, "quantity": 1}),
        ("/api/disputes", {"order_id": 10**20, "reason": "Item never showed up at the meetup"}),
        ("/api/payments", {"order_id": 10**20, "payment_method": "cash"}),
        ("/api/reviews", {"product_id": 10**20, "rating": 5}),
    ])
    def test_json_ids_beyond_64_bits_are_rejected(self, client, buyer, headers_for, path, body):
        response = client.post(path, headers=headers_for(buyer), json=body)
        assert response.status_code == 400

    def test_path_ids_beyond_64_bits_are_not_found(self, client, buyer, headers_for):
        huge = 10**20
        assert client.get(f"/api/orders/{huge}", headers=headers_for(buyer)).status_code == 404
        assert client.get(f"/api/products/{huge}").status_code == 404


class TestProductEndpoints:

    def test_create_listing(self, client, seller, headers_for):
        response = client.post('/api/products', headers=headers_for(seller), json={
            "name": "Desk lamp",
            "description": "Works fine",
            "price": "12.5",
            "category": "Furniture",
            "condition": "Good",
            "campus": "North",
            "quantity": 2,
        })
        assert response.status_code == 201
        product = response.json["product"]
        assert product["price"] == "12.50"
        assert product["status"] == "available"
        assert product["seller_id"] == seller.id

    def test_create_listing_rejects_unknown_condition(self, client, seller, headers_for):
        response = client.post('/api/products', headers=headers_for(seller), json={
            "name": "Desk lamp",
            "description": "Works fine",
            "price": "12.50",
            "category": "Furniture",
            "condition": "Mint",
            "campus": "North",
        })
        assert response.status_code == 400

    def test_inventory_of_unknown_listing(self, client):
        assert client.get('/api/products/999/inventory').status_code == 404


class TestAdminEndpoints:

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/admin/orders"),
        ("post", "/api/admin/orders/1/reset"),
        ("delete", "/api/admin/orders/1"),
        ("get", "/api/admin/disputes"),
        ("post", "/api/admin/users/1/ban"),
        ("get", "/api/admin/users"),
        ("get", "/api/admin/users/1"),
        ("get", "/api/admin/stats"),
        ("get", "/api/admin/stats/payments"),
        ("post", "/api/admin/categories"),
        ("delete", "/api/admin/categories/1"),
    ])
    def test_non_admin_forbidden(self, client, buyer, headers_for, method, path):
        response = getattr(client, method)(path, headers=headers_for(buyer))
        assert response.status_code == 403

    def test_reset_and_soft_delete(self, client, buyer, seller, admin, product, headers_for):
        buyer_headers = headers_for(buyer)
        admin_headers = headers_for(admin)
        order_id = _create_order(client, buyer_headers, product.id).json["order"]["id"]
        client.patch(f'/api/orders/{order_id}/confirm', headers=buyer_headers)
        client.patch(f'/api/orders/{order_id}/confirm', headers=headers_for(seller))

        response = client.post(f'/api/admin/orders/{order_id}/reset', headers=admin_headers)
        assert response.status_code == 200
        assert response.json["order"]["status"] == "waiting_to_meet"
        assert response.json["order"]["buyer_confirmed"] is False

        assert client.delete(f'/api/admin/orders/{order_id}', headers=admin_headers).status_code == 200
        assert client.get(f'/api/orders/{order_id}', headers=buyer_headers).status_code == 404
        assert client.get(f'/api/products/{product.id}/inventory').json["available"] == 5

        listing = client.get('/api/admin/orders?include_deleted=true', headers=admin_headers).json
        assert listing["pagination"]["total"] == 1

    def test_ban_user(self, client, buyer, admin, headers_for):
        buyer_headers = headers_for(buyer)
        response = client.post(f'/api/admin/users/{buyer.id}/ban', headers=headers_for(admin), json={"reason": "Spam"})
        assert response.status_code == 200
        assert client.get('/api/orders', headers=buyer_headers).status_code == 401


    def test_user_directory_and_detail(self, client, buyer, admin, product, headers_for):
        admin_headers = headers_for(admin)
        _create_order(client, headers_for(buyer), product.id, 2)

        listing = client.get('/api/admin/users?search=bea', headers=admin_headers).json
        assert listing["pagination"]["total"] == 1
        assert listing["users"][0]["id"] == buyer.id

        detail = client.get(f'/api/admin/users/{buyer.id}', headers=admin_headers).json
        assert detail["history"]["total_orders"] == 1
        assert detail["history"]["total_spent"] == "20.00"

        assert client.get('/api/admin/users/999', headers=admin_headers).status_code == 404

    def test_stats(self, client, buyer, seller, admin, product, headers_for):
        buyer_headers = headers_for(buyer)
        order_id = _create_order(client, buyer_headers, product.id).json["order"]["id"]
        client.post('/api/payments', headers=buyer_headers, json={"order_id": order_id, "payment_method": "cash"})

        stats = client.get('/api/admin/stats', headers=headers_for(admin)).json["stats"]
        assert stats["total_orders"] == 1
        assert stats["total_revenue"] == "0.00"

        payments = client.get('/api/admin/stats/payments', headers=headers_for(admin)).json["stats"]
        assert payments["completed_payments"] == 1
        assert payments["total_revenue"] == "10.00"

    def test_category_upkeep(self, client, admin, headers_for):
        admin_headers = headers_for(admin)

        response = client.post('/api/admin/categories', headers=admin_headers, json={"name": "Sports Gear"})
        assert response.status_code == 201
        category_id = response.json["category"]["id"]
        assert client.post('/api/admin/categories', headers=admin_headers, json={"name": "sports gear"}).status_code == 409

        response = client.put(f'/api/admin/categories/{category_id}', headers=admin_headers, json={"icon": "ball"})
        assert response.json["category"]["icon"] == "ball"

        assert client.delete(f'/api/admin/categories/{category_id}', headers=admin_headers).status_code == 200
        assert client.get('/api/categories/sports-gear').status_code == 404
        everything = client.get('/api/admin/categories', headers=admin_headers).json
        assert everything["count"] == 1

        assert client.post(f'/api/admin/categories/{category_id}/restore', headers=admin_headers).status_code == 200
        assert client.get('/api/categories/sports-gear').status_code == 200


class TestCategoryEndpoints:

    def test_listing_creates_browsable_category(self, client, seller, headers_for):
        response = client.post('/api/products', headers=headers_for(seller), json={
            "name": "Road bike",
            "description": "Two wheels",
            "price": "120.00",
            "category": "Bikes",
            "condition": "Good",
            "campus": "North",
        })
        assert response.status_code == 201

        categories = client.get('/api/categories').json["categories"]
        assert [(c["slug"], c["product_count"]) for c in categories] == [("bikes", 1)]
        assert client.get('/api/categories/bikes').json["category"]["name"] == "Bikes"


class TestAccountEndpoints:

    def _register(self, client):
        response = client.post('/api/auth/register', json={
            "email": "kim.edu",
            "password": "Password123!",
            "first_name": "Kim",
            "last_name": "Lee",
        })
        return {'Authorization': f'Bearer {response.json["token"]}'}

    def test_update_profile(self, client):
        headers = self._register(client)
        response = client.put('/api/auth/profile', headers=headers, json={"last_name": "Park", "phone": "555-0199"})
        assert response.status_code == 200
        assert response.json["user"]["last_name"] == "Park"
        assert client.put('/api/auth/profile', headers=headers, json={"role": "admin"}).status_code == 400

    def test_change_password(self, client):
        headers = self._register(client)
        other = client.post('/api/auth/login', json={"email": "kim.edu", "password": "Password123!"}).json["token"]

        response = client.put('/api/auth/change-password', headers=headers, json={
            "current_password": "Password123!",
            "new_password": "NewPassword456!",
        })
        assert response.status_code == 200
        assert client.get('/api/auth/me', headers=headers).status_code == 200
        assert client.get('/api/auth/me', headers={'Authorization': f'Bearer {other}'}).status_code == 401

        response = client.put('/api/auth/change-password', headers=headers, json={
            "current_password": "Password123!",
            "new_password": "Another789!",
        })
        assert response.status_code == 400

    def test_public_profile(self, client, seller, product):
        response = client.get(f'/api/users/{seller.id}')
        assert response.status_code == 200
        assert response.json["history"]["total_products"] == 1
        assert "email" not in response.json["user"]
        assert client.get('/api/users/999').status_code == 404

    def test_payment_summary(self, client, buyer, product, headers_for):
        headers = headers_for(buyer)
        order_id = _create_order(client, headers, product.id, 3).json["order"]["id"]
        client.post('/api/payments', headers=headers, json={"order_id": order_id, "payment_method": "cash"})

        summary = client.get('/api/payments/summary', headers=headers).json["summary"]
        assert summary["total_spent"] == "30.00"
        assert summary["completed_payments"] == 1


class TestSystemEndpoints:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json["status"] == "healthy"


def _limit_count(app, bucket):
    # "3 per minute" -> 3
    return int(app.config['RATE_LIMITS'][bucket].split()[0])


@pytest.mark.rate_limited
class TestRateLimiting:

    def test_login_is_limited(self, app, client):
        for _ in range(_limit_count(app, 'auth_login')):
            response = client.post('/api/auth/login', json={"email": "x@campus.edu", "password": "wrong"})
            assert response.status_code == 401

        response = client.post('/api/auth/login', json={"email": "x@campus.edu", "password": "wrong"})
        assert response.status_code == 429
        assert response.json["error"] == "Too many requests, please try again later"
        assert int(response.headers['Retry-After']) > 0

    def test_order_creation_is_limited_per_user(self, app, client, buyer, make_user, product, headers_for):
        headers = headers_for(buyer)

        for _ in range(_limit_count(app, 'order_create')):
            assert _create_order(client, headers, product.id).status_code == 201
        assert _create_order(client, headers, product.id).status_code == 429

        # Another account keeps its own allowance
        assert _create_order(client, headers_for(make_user()), product.id).status_code == 201

    def test_checkout_spends_the_order_allowance(self, app, client, buyer, product, headers_for):
        headers = headers_for(buyer)

        for _ in range(_limit_count(app, 'order_create')):
            assert _create_order(client, headers, product.id).status_code == 201

        client.post('/api/cart/items', headers=headers, json={"product_id": product.id, "quantity": 1})
        response = client.post('/api/cart/checkout', headers=headers)
        assert response.status_code == 429
        assert 'Retry-After' in response.headers

    def test_reads_are_not_limited(self, client, buyer, headers_for):
        headers = headers_for(buyer)
        for _ in range(20):
            assert client.get('/api/orders', headers=headers).status_code == 200
