import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
from main import app
from security import create_access_token, hash_password

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def db(monkeypatch, tmp_path):
    test_db = mongomock.MongoClient()["clothy_test"]
    monkeypatch.setattr(database, "db", test_db)
    monkeypatch.setattr(config, "ONE_ORDER_PER_PHONE", False)
    monkeypatch.setattr(config, "RESERVE_STOCK", True)
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(config, "FRONTEND_URL", "http://shop.test")
    monkeypatch.setattr(config, "BACKEND_URL", "http://api.test")
    return test_db


@pytest.fixture
def client():
    return TestClient(app)


def make_user(db, email, role="user", name="Test User"):
    doc = {
        "name": name,
        "email": email,
        "password": hash_password(PASSWORD),
        "role": role,
        "provider": "local",
        "created_at": database.now(),
        "updated_at": database.now(),
    }
    db["user"].insert_one(doc)
    return doc


def auth_header(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def user(db):
    return make_user(db, "buyer@example.com")


@pytest.fixture
def admin(db):
    return make_user(db, "admin@example.com", role="admin", name="Admin")


@pytest.fixture
def user_headers(user):
    return auth_header(user)


@pytest.fixture
def admin_headers(admin):
    return auth_header(admin)


@pytest.fixture
def make_product(db):
    def _make(**overrides):
        doc = {
            "name": "P1",
            "description": "Cotton tee",
            "price": 20.0,
            "offer_price": 15.0,
            "image": "https://cdn.example/p1.png",
            "stock": [{"size": "M", "quantity": 5}],
            "category": "Men",
            "sub_category": "T-Shirts",
            "brand": "Clothy",
            "best_selling": False,
            "new_arrival": True,
        }
        doc.update(overrides)
        db["product"].insert_one(doc)
        return doc
    return _make


@pytest.fixture
def address():
    return {
        "street": "12 Lake Road",
        "city": "Dhaka",
        "state": "Dhaka",
        "postal_code": "1207",
        "country": "Bangladesh",
    }
