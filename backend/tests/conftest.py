"""
Pytest fixtures for POS ledger backend tests.

Provides test database setup, users per role, seeded products and test client.
"""

from decimal import Decimal

import pytest
from posledger import create_app
from posledger.extensions import db
from posledger.models import Category, Product
from posledger.permissions import ROLE_CASHIER, ROLE_MANAGER, ROLE_OWNER
from posledger.services import auth_service, session_service


TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
        'ALLOW_NEGATIVE_STOCK': False,
        'DEFAULT_TAX_RATE': '0',
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
        db.session.expire_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(role: str):
    return auth_service.create_user(
        name=f"{role.title()} User",
        email=f"{role.lower()}@test.local",
        password=TEST_PASSWORD,
        role=role,
    )


@pytest.fixture(scope='function')
def owner(db_session):
    return _make_user(ROLE_OWNER)


@pytest.fixture(scope='function')
def manager(db_session):
    return _make_user(ROLE_MANAGER)


@pytest.fixture(scope='function')
def cashier(db_session):
    return _make_user(ROLE_CASHIER)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def get_auth_token(client, email: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user through the login endpoint."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


@pytest.fixture(scope='function')
def owner_headers(owner):
    _, token = session_service.create_session(owner.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def manager_headers(manager):
    _, token = session_service.create_session(manager.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def cashier_headers(cashier):
    _, token = session_service.create_session(cashier.id)
    return auth_headers(token)


def make_product(sku: str, name: str, stock, *, selling="100.00", cost="60.00", reorder="0", category=None):
    product = Product(
        sku=sku,
        name=name,
        unit="pcs",
        cost_price=Decimal(cost),
        selling_price=Decimal(selling),
        current_stock=Decimal(str(stock)),
        reorder_level=Decimal(reorder),
        category_id=category.id if category else None,
    )
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture(scope='function')
def category(db_session):
    category = Category(name="Beverages")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def product_a(db_session, category):
    """Product A: 10 in stock at 100.00."""
    return make_product("PROD-A-001", "Product A", 10, selling="100.00", cost="60.00", reorder="3", category=category)


@pytest.fixture(scope='function')
def product_b(db_session, category):
    """Product B: 2 in stock at 50.00."""
    return make_product("PROD-B-001", "Product B", 2, selling="50.00", cost="30.00", reorder="5", category=category)


def stock_of(product_id: int) -> Decimal:
    """Stored stock as committed, bypassing the identity map."""
    db.session.expire_all()
    return db.session.get(Product, product_id).current_stock
