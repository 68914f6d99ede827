"""
Pytest fixtures for Campus Exchange backend tests.

Each test gets a fresh application on an in-memory SQLite database, factory
fixtures for accounts, listings and orders, and a Flask test client.
"""

import itertools

import pytest

from exchange import create_app
from exchange.extensions import db
from exchange.models import Product, User
from exchange.models.auth import ROLE_ADMIN, ROLE_USER
from exchange.services import order_service, session_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'RATELIMIT_ENABLED': False,
    'LOG_LEVEL': 'DEBUG',
}


@pytest.fixture(scope='function')
def app(request):
    """Create application for testing. Mark a test rate_limited to turn Flask-Limiter on."""
    config = dict(TEST_CONFIG)
    if request.node.get_closest_marker('rate_limited'):
        config['RATELIMIT_ENABLED'] = True
    app = create_app(config)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    return db.session


_seq = itertools.count(1)


@pytest.fixture(scope='function')
def make_user(db_session):
    """
    Factory for accounts. Password hashes are placeholders: these accounts
    sign in through session_service.create_session, never through bcrypt.
    """
    def _make(email=None, role=ROLE_USER, **kwargs):
        n = next(_seq)
        user = User(
            email=email or f"student{n}@campus.edu",
            password_hash="x",
            first_name=kwargs.pop("first_name", "Student"),
            last_name=kwargs.pop("last_name", str(n)),
            role=role,
            **kwargs,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def buyer(make_user):
    return make_user(first_name="Bea", last_name="Buyer")


@pytest.fixture(scope='function')
def seller(make_user):
    return make_user(first_name="Sam", last_name="Seller")


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(role=ROLE_ADMIN, first_name="Ada", last_name="Admin")


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(seller, quantity=5, price="10.00", name=None, **kwargs):
        n = next(_seq)
        product = Product(
            name=name or f"Textbook {n}",
            description=kwargs.pop("description", "Lightly used"),
            price=price,
            category=kwargs.pop("category", "Books"),
            condition=kwargs.pop("condition", "Good"),
            campus=kwargs.pop("campus", "North"),
            images=kwargs.pop("images", ["https://img.example/1.jpg"]),
            seller_id=seller.id,
            seller_name=seller.full_name,
            seller_email=seller.email,
            quantity=quantity,
            **kwargs,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product, seller):
    """Listing with five units at 10.00."""
    return make_product(seller, quantity=5, price="10.00")


@pytest.fixture(scope='function')
def make_order():
    def _make(buyer, product, quantity=1):
        return order_service.create_order(buyer, [{"product_id": product.id, "quantity": quantity}])
    return _make


@pytest.fixture(scope='function')
def headers_for(db_session):
    """Authorization headers for a fresh session of `user`."""
    def _headers(user):
        _, token = session_service.create_session(user.id)
        return {'Authorization': f'Bearer {token}'}
    return _headers
