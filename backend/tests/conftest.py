"""
Pytest fixtures for shopcore backend tests.

Provides the test application on in-memory SQLite, a per-test table wipe,
and small entity factories (customers, sellers, products, discount reasons).
"""

from datetime import timedelta

import pytest
from shopcore import create_app
from shopcore.extensions import db
from shopcore.models import Customer, Seller, Product, DiscountReason
from shopcore.models.customers import SELLER_ROLE_SELLER, SELLER_ROLE_MANAGER
from shopcore.services import cashback_service
from shopcore.services.order_orchestrator import CreateOrderCommand, OrderLineRequest, create_order
from shopcore.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_ATTEMPTS': 2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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
def customer(db_session):
    c = Customer(first_name="Aziza", last_name="Karimova", phone="+998900000001", address="Tashkent, Chilonzor 5")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def other_customer(db_session):
    c = Customer(first_name="Bekzod", last_name="Tursunov", phone="+998900000002")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def seller(db_session):
    s = Seller(full_name="Shop Seller", role=SELLER_ROLE_SELLER)
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def manager(db_session):
    s = Seller(full_name="Shop Manager", role=SELLER_ROLE_MANAGER)
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def products(db_session):
    """pen 50.00 x100, notebook 200.00 x50, backpack 1500.00 x10."""
    items = {
        "pen": Product(name="Pen", price_cents=5_000, stock_quantity=100),
        "notebook": Product(name="Notebook", price_cents=20_000, stock_quantity=50),
        "backpack": Product(name="Backpack", price_cents=150_000, stock_quantity=10),
    }
    db_session.add_all(items.values())
    db_session.commit()
    return items


@pytest.fixture(scope='function')
def reason(db_session):
    r = DiscountReason(name="Regular customer")
    db_session.add(r)
    db_session.commit()
    return r


@pytest.fixture(scope='function')
def earn_expiring(customer):
    """Earn cashback that expires `days` from `now` (negative = already past expiry)."""
    def _earn(amount_cents, days, now=None, customer_id=None):
        now = now or utcnow()
        window = timedelta(days=30)
        return cashback_service.earn(
            customer_id or customer.id,
            None,
            amount_cents,
            idempotency_key=None,
            earned_at=now + timedelta(days=days) - window,
        )
    return _earn


@pytest.fixture(scope='function')
def place_order(customer, products):
    """Place an online order: default 2 notebooks + 1 pen (gross 450.00), pickup."""
    def _place(lines=None, **kwargs):
        if lines is None:
            lines = [("notebook", 2), ("pen", 1)]
        kwargs.setdefault("customer_id", customer.id)
        command = CreateOrderCommand(
            items=[OrderLineRequest(products[name].id, qty) for name, qty in lines],
            **kwargs,
        )
        return create_order(command)
    return _place
