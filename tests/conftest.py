"""Pytest fixtures for the marketplace tests."""

import io
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient
from PIL import Image

import config
from auth import create_token
from cart import CartStore, MongoCartStorage
from catalog import CatalogReader
from database import create_document, to_object_id
from schemas import Product, User, UserRole

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    """In-memory database, fresh for every test."""
    client = mongomock.MongoClient(tz_aware=True)
    return client["marketplace_test"]


@pytest.fixture
def make_user(db):
    """Create a user without going through bcrypt."""
    counter = {"n": 0}

    def _make(role=UserRole.BUYER, **fields):
        counter["n"] += 1
        n = counter["n"]
        data = {
            "email": f"user{n}@marketplace-togo.tg",
            "password_hash": "not-a-real-hash",
            "first_name": "Ama",
            "last_name": f"Mensah{n}",
            "phone": "+22890000000",
            "role": UserRole(role).value,
        }
        if data["role"] == UserRole.SELLER.value:
            data["shop_name"] = f"Boutique {n}"
        data.update(fields)
        user_id = create_document(db, config.USERS, data)
        return User.from_document(db[config.USERS].find_one({"_id": to_object_id(user_id)}))

    return _make


@pytest.fixture
def buyer(make_user):
    return make_user(UserRole.BUYER)


@pytest.fixture
def seller(make_user):
    return make_user(UserRole.SELLER)


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN)


@pytest.fixture
def make_product(db, seller):
    """Insert a product and return it as stored."""

    def _make(name="Pagne Wax", price=12000, stock=10, created_at=None, **fields):
        data = {
            "name": name,
            "description": f"{name} description",
            "category": "clothing",
            "price": price,
            "stock": stock,
            "seller_id": seller.id,
            "seller_name": seller.shop_name,
            "is_active": True,
        }
        if created_at is not None:
            data["created_at"] = created_at
        data.update(fields)
        product_id = create_document(db, config.PRODUCTS, data)
        return Product.from_document(db[config.PRODUCTS].find_one({"_id": to_object_id(product_id)}))

    return _make


@pytest.fixture
def make_products(make_product):
    """Create `count` products one minute apart, oldest first."""

    def _make(count, **fields):
        return [
            make_product(name=f"Produit {i:02d}", created_at=BASE_TIME + timedelta(minutes=i), **fields)
            for i in range(count)
        ]

    return _make


@pytest.fixture
def catalog(db):
    return CatalogReader(db)


@pytest.fixture
def buyer_cart(db, catalog, buyer):
    return CartStore(catalog, MongoCartStorage(db), owner_id=buyer.id)


@pytest.fixture
def client(db):
    from main import app
    from database import get_db

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_token(user)}"}

    return _headers


@pytest.fixture
def png():
    """Encode a solid-colour image as PNG bytes."""

    def _png(color, size=(40, 40)):
        buf = io.BytesIO()
        Image.new("RGBA", size, color).save(buf, format="PNG")
        return buf.getvalue()

    return _png
