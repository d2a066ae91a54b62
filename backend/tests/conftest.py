"""
Pytest fixtures for retailpos backend tests.

Provides an in-memory database, per-test table wipe, the test client,
bearer-token headers and small factories for products, customers and
promotions.
"""

from datetime import timedelta

import pytest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import BranchStock, Customer, Product, Promotion
from retailpos.time_utils import utcnow


BRANCH_ID = 1

API_TOKENS = {
    "cashier-token": {"user_id": 10, "role": "cashier", "branch_id": BRANCH_ID},
    "cashier2-token": {"user_id": 11, "role": "cashier", "branch_id": BRANCH_ID},
    "manager-token": {"user_id": 20, "role": "manager", "branch_id": BRANCH_ID},
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'API_TOKENS': API_TOKENS,
        'LOG_LEVEL': 'WARNING',
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


@pytest.fixture
def cashier_headers():
    return {"Authorization": "Bearer cashier-token"}


@pytest.fixture
def manager_headers():
    return {"Authorization": "Bearer manager-token"}


@pytest.fixture
def make_product(db_session):
    """Create a product, optionally with stock at BRANCH_ID."""
    counter = {"n": 0}

    def _make(price_cents=10000, stock=100, name=None, barcode=None, sku=None):
        counter["n"] += 1
        n = counter["n"]
        product = Product(
            sku=sku or f"SKU-{n:03d}",
            barcode=barcode or f"899000000{n:04d}",
            name=name or f"Product {n}",
            price_cents=price_cents,
            is_active=True,
        )
        db_session.add(product)
        db_session.flush()
        if stock is not None:
            db_session.add(BranchStock(branch_id=BRANCH_ID, product_id=product.id, quantity=stock))
        db_session.commit()
        return product

    return _make


@pytest.fixture
def make_customer(db_session):
    def _make(name="Member", email="member@example.com", tier="standard"):
        customer = Customer(name=name, email=email, tier=tier)
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture
def make_promotion(db_session):
    """Active-by-default promotion spanning yesterday to tomorrow."""

    def _make(**overrides):
        now = utcnow()
        fields = {
            "name": "Promo",
            "promo_type": "percentage",
            "discount_value": 2000,
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=1),
            "priority": 0,
            "member_only": False,
            "is_active": True,
        }
        fields.update(overrides)
        promo = Promotion(**fields)
        db_session.add(promo)
        db_session.commit()
        return promo

    return _make


@pytest.fixture
def sale_payload():
    """Completed-sale request body for a single line."""

    def _make(product_id, quantity=1, unit_price_cents=10000, **header):
        body = {
            "branch_id": BRANCH_ID,
            "items": [{
                "product_id": product_id,
                "quantity": quantity,
                "unit_price_cents": unit_price_cents,
            }],
            "payment_method": "cash",
            "amount_paid_cents": quantity * unit_price_cents,
        }
        body.update(header)
        return body

    return _make
