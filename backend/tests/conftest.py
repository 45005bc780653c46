"""
Pytest fixtures for bizdesk backend tests.

Provides the in-memory application, a clean database per test, user,
product and client fixtures, and token helpers.
"""

import pytest

from bizdesk import create_app
from bizdesk.extensions import db
from bizdesk.models import Client, Product
from bizdesk.services.auth_service import create_user


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'VAPID_PUBLIC_KEY': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    """Admin account."""
    return create_user(name="Admin", email="admin@bizdesk.test", password=PASSWORD, is_admin=True)


@pytest.fixture(scope='function')
def regular_user(db_session):
    """Non-admin account."""
    return create_user(name="Seller", email="seller@bizdesk.test", password=PASSWORD)


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.email, PASSWORD))


@pytest.fixture(scope='function')
def user_headers(client, regular_user):
    return auth_headers(get_auth_token(client, regular_user.email, PASSWORD))


@pytest.fixture(scope='function')
def product(db_session):
    """Product with 10 in stock, sold at 15.00, bought at 10.00."""
    product = Product(
        sku="SKU-TEST-0001",
        slug="test-widget",
        name="Test Widget",
        description="A widget used by the tests",
        category="widgets",
        price_cents=1500,
        cost_price_cents=1000,
        stock=10,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(db_session):
    """Product with 5 in stock, sold at 8.00, bought at 2.00."""
    product = Product(
        sku="SKU-TEST-0002",
        slug="test-gadget",
        name="Test Gadget",
        description="A gadget used by the tests",
        category="gadgets",
        price_cents=800,
        cost_price_cents=200,
        stock=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def client_record(db_session):
    client = Client(name="Awa Traoré", email="awa@example.com", phone="+22370000000", address="Bamako")
    db_session.add(client)
    db_session.commit()
    return client


def get_auth_token(client, email: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/users/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def reload(db_session):
    """Re-read an ORM object after requests changed its row."""
    def _reload(obj):
        db_session.expire_all()
        return db_session.get(type(obj), obj.id)
    return _reload


@pytest.fixture(scope='function')
def make_sale(client):
    """POST a sale; returns the response."""
    def _make_sale(headers, client_id, lines, **extra):
        return client.post('/api/sales', json={"client_id": client_id, "products": lines, **extra}, headers=headers)
    return _make_sale
