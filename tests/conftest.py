from decimal import Decimal
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.db import Base, get_db
from core import config as core_config
from models.user import User
from models.product import Product, ProductVariant
from models.cart_item import CartItem
from models.shipping_address import ShippingAddress
from models.discount import Discount
from security import jwt as jwt_utils
from services.checkout_lock import redis_client


@pytest.fixture(scope="session", autouse=True)
def test_settings():
    core_config.settings.JWT_SECRET = "test-secret"
    core_config.settings.PAYSTACK_SECRET_KEY = "sk_test_123"
    core_config.settings.CHECKOUT_LOCK_ENABLED = True
    core_config.settings.IDEMPOTENT_REFERENCES = False
    core_config.settings.TESTING = True
    yield


@pytest.fixture(autouse=True)
def clear_redis():
    """Drop checkout locks left behind by a previous test"""
    for key in list(redis_client._store.keys()):
        redis_client.delete(key)
    yield


@pytest.fixture()
def db_session_override():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()

    def _get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db
    try:
        yield db
    finally:
        db.close()
        app.dependency_overrides.clear()


@pytest.fixture()
def db(db_session_override):
    return db_session_override


@pytest.fixture()
def client(db_session_override):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def test_user(db):
    """Create a shopper."""
    user = User(email="ama@example.com", full_name="Ama Mensah")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_user(db):
    user = User(email="kofi@example.com", full_name="Kofi Boateng")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db):
    user = User(email="admin@example.com", full_name="Store Admin", is_admin=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def auth_token(test_user):
    """Generate a valid JWT token for test user."""
    return jwt_utils.create_access_token(str(test_user.id))


@pytest.fixture
def auth_headers(auth_token):
    """Return authorization headers with valid token."""
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture
def admin_headers(admin_user):
    return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(admin_user.id))}"}


@pytest.fixture
def catalog(db):
    """A shirt with a priced size variant and a plain tote."""
    shirt = Product(name="Linen Shirt", price=Decimal("120.00"), image="shirt.jpg", stock=10)
    tote = Product(name="Canvas Tote", price=Decimal("45.50"), image="tote.jpg", stock=5)
    db.add_all([shirt, tote])
    db.flush()
    xl = ProductVariant(product_id=shirt.id, name="Size", value="XL", price_impact=Decimal("15.00"))
    db.add(xl)
    db.commit()
    return {"shirt": shirt, "tote": tote, "xl": xl}


@pytest.fixture
def cart(db, test_user, catalog):
    """Two lines: 2 x shirt (XL) and 1 x tote. Cart value is 315.50."""
    items = [
        CartItem(
            user_id=test_user.id,
            product_id=catalog["shirt"].id,
            variant_id=catalog["xl"].id,
            quantity=2,
            created_at=datetime.utcnow() - timedelta(minutes=5),
        ),
        CartItem(
            user_id=test_user.id,
            product_id=catalog["tote"].id,
            quantity=1,
            created_at=datetime.utcnow() - timedelta(minutes=4),
        ),
    ]
    db.add_all(items)
    db.commit()
    return items


@pytest.fixture
def address(db, test_user):
    addr = ShippingAddress(
        user_id=test_user.id,
        full_name="Ama Mensah",
        phone="+233200000000",
        address_line="12 Oxford Street",
        city="Accra",
        country="Ghana",
    )
    db.add(addr)
    db.commit()
    db.refresh(addr)
    return addr


@pytest.fixture
def discount(db):
    code = Discount(code="SAVE10", type="percentage", value=Decimal("10"), max_uses=10, used_count=3)
    db.add(code)
    db.commit()
    db.refresh(code)
    return code


@pytest.fixture
def paystack_payload():
    """Build a Paystack /transaction/verify response body."""
    def _build(reference="ref_123", amount=24900, status="success", ok=True):
        return {
            "status": ok,
            "message": "Verification successful" if ok else "Transaction reference not found",
            "data": {
                "id": 4099260516,
                "status": status,
                "reference": reference,
                "amount": amount,
                "currency": "GHS",
                "channel": "card",
                "gateway_response": "Successful" if status == "success" else "Declined",
            },
        }
    return _build


@pytest.fixture
def mock_paystack(paystack_payload):
    """Patch the HTTP call to Paystack; tests adjust ``return_value.json.return_value``."""
    with patch("services.paystack.requests.get") as mock_get:
        mock_get.return_value.json.return_value = paystack_payload()
        yield mock_get
