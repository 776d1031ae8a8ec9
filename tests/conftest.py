"""Pytest fixtures for MinuteMart tests."""

from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from schemas import Coupon, ShippingAddress

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    """Fresh in-memory Mongo database with the production indexes."""
    database = mongomock.MongoClient()["minutemart_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def make_product(db):
    def _make(**fields):
        doc = {
            "name": "Product A",
            "slug": f"product-{ObjectId()}",
            "price": 100.0,
            "mrp": None,
            "stock": 5,
            "category": "misc",
            "is_flash_sale": False,
            "flash_sale_price": None,
            "flash_sale_end": None,
            "sold_count": 0,
        }
        doc.update(fields)
        return str(db["product"].insert_one(doc).inserted_id)

    return _make


@pytest.fixture
def make_coupon(db):
    def _make(**fields):
        data = {"code": "WELCOME10", "type": "percentage", "value": 10, "min_purchase": 500, "max_discount": 200}
        data.update(fields)
        doc = Coupon(**data).model_dump()
        return db["coupon"].insert_one(doc).inserted_id

    return _make


@pytest.fixture
def address():
    return ShippingAddress(
        full_name="Demo User",
        phone="9876543210",
        address_line1="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        postal_code="560001",
    )


def stock_of(db, product_id):
    return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]


@pytest.fixture
def client(db):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _make_user(db, email, role="customer"):
    from main import create_access_token

    user_id = db["user"].insert_one(
        {"name": email.split("@")[0], "email": email, "password_hash": "x", "role": role, "is_active": True}
    ).inserted_id
    token = create_access_token({"sub": str(user_id)})
    return str(user_id), {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer(db):
    """(user_id, auth headers) for a customer account."""
    return _make_user(db, "demo@minutemart.com")


@pytest.fixture
def other_customer(db):
    return _make_user(db, "other@minutemart.com")


@pytest.fixture
def admin(db):
    return _make_user(db, "admin@minutemart.com", role="admin")
