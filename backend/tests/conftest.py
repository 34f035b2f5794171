"""
Pytest fixtures for ProTrack backend tests.

Provides test database setup, users/tokens, product and customer factories,
and the test client.
"""

import pytest

from protrack import create_app
from protrack.extensions import db
from protrack.models import Product, Customer
from protrack.models.auth import ROLE_ADMIN, ROLE_STAFF
from protrack.services.auth_service import create_user
from protrack.services.session_service import create_session

TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'DB_RETRY_BACKOFF': 0,
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
    """Empty every table before each test."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user("admin", "admin@protrack.local", TEST_PASSWORD, role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def staff_user(db_session):
    return create_user("staff", "staff@protrack.local", TEST_PASSWORD, role=ROLE_STAFF)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    _, token = create_session(admin_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def staff_headers(staff_user):
    _, token = create_session(staff_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(stock=5, price_cents=10000, **overrides) -> Product."""
    counter = {"n": 0}

    def _make(stock=5, price_cents=10000, **overrides):
        counter["n"] += 1
        fields = {
            "name": f"Product {counter['n']}",
            "model_number": f"MDL-{counter['n']:03d}",
            "description": "Test product",
            "category": "Limb",
            "cost_price_cents": price_cents // 2,
            "selling_price_cents": price_cents,
            "stock_quantity": stock,
        }
        fields.update(overrides)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory: make_customer(**overrides) -> Customer."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "name": f"Customer {counter['n']}",
            "age": 40,
            "gender": "Female",
            "phone": f"555-000-{counter['n']:04d}",
            "email": f"customer{counter['n']}@example.com",
            "address_street": "1 Main St",
            "address_city": "Springfield",
            "address_state": "IL",
            "address_zip_code": "62701",
        }
        fields.update(overrides)
        customer = Customer(**fields)
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture(scope='function')
def stock_of(db_session):
    """stock_of(product_id): read stock straight from the table, bypassing the identity map."""
    def _read(product_id: int) -> int:
        return db.session.query(Product.stock_quantity).filter(Product.id == product_id).scalar()

    return _read
