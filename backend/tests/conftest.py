"""
Pytest fixtures for gas agency backend tests.

Provides an in-memory database, a test client, customer/admin accounts with
bearer tokens, and small factories for stock, partners and bookings.
"""

import pytest

from gasbook import create_app
from gasbook.extensions import db, outbox
from gasbook.models.users import ROLE_ADMIN, ROLE_USER
from gasbook.services import auth_service, booking_service, delivery_service, inventory_service, session_service

TEST_PASSWORD = "Password123!"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'MAIL_ENABLED': False,
    'RATE_LIMIT_ENABLED': False,
    'RATE_LIMIT_STORAGE_URL': 'memory://',
    'CSRF_ENABLED': False,
    'BCRYPT_ROUNDS': 4,
    'REQUIRE_EMAIL_VERIFICATION': True,
    'PRICE_PER_CYLINDER': 1100,
    'DEFAULT_ANNUAL_QUOTA': 12,
    'LOW_STOCK_THRESHOLD': 10,
    'APP_BASE_URL': 'http://frontend.test',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()
    outbox.clear()
    app.extensions["rate_limiter"].store.reset()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    app.config.update(
        RATE_LIMIT_ENABLED=False,
        CSRF_ENABLED=False,
        REQUIRE_EMAIL_VERIFICATION=True,
    )


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: create a committed user. Customers are verified unless told otherwise."""
    counter = {"n": 0}

    def _make(*, role=ROLE_USER, verified=True, email=None, user_id=None, name="Test Customer", quota=None):
        counter["n"] += 1
        n = counter["n"]
        user = auth_service.create_user(
            name=name,
            user_id=user_id or f"user{n}",
            email=email or f"user{n}@example.com",
            phone="9876543210",
            address="12 Gandhi Road, Pune",
            password=TEST_PASSWORD,
            role=role,
            verified=verified,
            remaining_quota=quota,
        )
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def customer(make_user):
    return make_user(email="customer@example.com", user_id="customer", name="Asha Patil")


@pytest.fixture(scope='function')
def other_customer(make_user):
    return make_user(email="other@example.com", user_id="othercustomer", name="Ravi Kumar")


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(role=ROLE_ADMIN, email="admin@example.com", user_id="admin", name="Agency Admin")


def token_for(user) -> str:
    """Helper to get a bearer token without going through the login throttle."""
    _, token = session_service.create_session(user.id, user_agent="pytest")
    return token


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_headers(customer):
    return auth_headers(token_for(customer))


@pytest.fixture(scope='function')
def other_headers(other_customer):
    return auth_headers(token_for(other_customer))


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(token_for(admin))


@pytest.fixture(scope='function')
def stock(db_session, admin):
    """Receive 100 cylinders into stock."""
    inventory_service.apply_adjustment(
        delta=100,
        adjustment_type="RECEIVE",
        reason="Opening stock",
        actor_id=admin.id,
    )
    return inventory_service.get_stock_locked(lock=False)


@pytest.fixture(scope='function')
def partner(db_session):
    return delivery_service.create_partner({
        "name": "Suresh Delivery",
        "phone": "9123456780",
        "vehicle_number": "MH12AB1234",
    })


@pytest.fixture(scope='function')
def make_booking(db_session):
    """Factory: create a booking through the service (quota, payment and event included)."""

    def _make(user, *, quantity=1, payment_method="COD", **extra):
        data = {"quantity": quantity, "payment_method": payment_method, **extra}
        return booking_service.create_booking(user, data)

    return _make


@pytest.fixture(scope='function')
def approved_booking(make_booking, customer, admin, stock):
    booking = make_booking(customer, quantity=2)
    return booking_service.approve_booking(booking.id, admin)


def envelope(response):
    """Return the JSON body and assert it has the envelope shape."""
    body = response.get_json()
    assert body is not None, response.data
    assert "success" in body
    return body
