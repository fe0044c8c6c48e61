from uuid import uuid4

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import Database
from main import create_app
from settings import Settings
from tests.helpers import ADMIN_EMAIL, bearer, register


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        salt_rounds=4,
        use_transactions=False,
        admin_emails=[ADMIN_EMAIL],
        log_level="WARNING",
    )


@pytest.fixture
def db():
    return Database(mongomock.MongoClient(), f"shop_test_{uuid4().hex}", transactions=False)


@pytest.fixture
def client(settings, db):
    with TestClient(create_app(settings, db)) as c:
        yield c


@pytest.fixture
def auth_headers(client):
    res = register(client)
    assert res.status_code == 201
    return bearer(res.json()["token"])


@pytest.fixture
def admin_headers(client):
    res = register(client, email=ADMIN_EMAIL, first_name="Ada", last_name="Admin")
    assert res.status_code == 201
    return bearer(res.json()["token"])


@pytest.fixture
def make_product(db):
    def _make(name="Widget", price=10.0, quantity=5, category="gadgets"):
        doc = db.create_document("product", {
            "name": name,
            "price": price,
            "category": category,
            "quantity": quantity,
            "inStock": quantity > 0,
            "images": [],
        })
        return str(doc["_id"])
    return _make
