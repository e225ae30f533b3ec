"""Pytest fixtures for shop tests."""

from datetime import datetime, timedelta, timezone

import jwt
import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
import customers
from config import Settings, get_settings
from database import ensure_indexes, get_db

TEST_SECRET = "test-secret-for-the-shop-api-suite-0123456789"

TEST_SETTINGS = Settings(
    DATABASE_NAME="shop_test",
    JWT_SECRET=TEST_SECRET,
    JWT_ALGORITHM="HS256",
    ADMIN_ROLE="admin",
    ENFORCE_STATUS_TRANSITIONS=False,
)

SHIPPING_ADDRESS = {
    "full_name": "Alice Doe",
    "street_address": "1 Main St",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62701",
    "phone_number": "555-0100",
}


def make_token(sub, email, name=None, roles=(), expires_in=3600, secret=TEST_SECRET):
    claims = {
        "sub": sub,
        "email": email,
        "name": name or email.split("@")[0],
        "roles": list(roles),
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db():
    """In-memory MongoDB database."""
    client = mongomock.MongoClient()
    database = client["shop_test"]
    ensure_indexes(database)
    yield database
    client.close()


@pytest.fixture
def client(db):
    """Test client wired to the in-memory database."""
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: TEST_SETTINGS
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer_headers():
    return auth_headers(make_token("user-alice", "alice@example.com", name="Alice"))


@pytest.fixture
def other_headers():
    return auth_headers(make_token("user-bob", "bob@example.com", name="Bob"))


@pytest.fixture
def admin_headers():
    return auth_headers(make_token("user-admin", "admin@example.com", name="Admin", roles=["admin"]))


@pytest.fixture
def customer(db):
    return customers.get_or_create_customer(db, {"sub": "user-alice", "email": "alice@example.com", "name": "Alice"}, [])


@pytest.fixture
def other_customer(db):
    return customers.get_or_create_customer(db, {"sub": "user-bob", "email": "bob@example.com", "name": "Bob"}, [])


@pytest.fixture
def make_product(db):
    """Factory creating catalog products directly in the database."""

    def _make(**overrides):
        data = {
            "name": "Desk Lamp",
            "description": "A lamp for the desk",
            "price": 1000.0,
            "stock": 5,
            "category": "Home",
            "images": ["https://img.example.com/lamp.jpg"],
            "is_active": True,
        }
        data.update(overrides)
        return catalog.create_product(db, data)

    return _make
