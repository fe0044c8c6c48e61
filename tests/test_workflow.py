from datetime import timedelta
from unittest import mock

import pytest
from bson.objectid import ObjectId
from pymongo.errors import PyMongoError

import orders
from carts import add_item, cart_total, get_or_create_cart
from database import Database, object_id, serialize_doc
from errors import (
    InsufficientStockError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
    describe_validation_errors,
)
from schemas import PAYMENT_STATUSES, Cart, ShippingAddress
from security import create_token, decode_token, hash_password, verify_password
from settings import parse_duration

ADDRESS = ShippingAddress(street="1 Main St", city="Springfield", country="US", zip_code="12345")


class RecordingDatabase:
    """Wraps a mongomock database and notes the session every collection call ran under."""

    def __init__(self, database):
        self.database = database
        self.calls = []

    def __getitem__(self, name):
        return RecordingCollection(self.database[name], self.calls)


class RecordingCollection:
    def __init__(self, collection, calls):
        self.collection = collection
        self.calls = calls

    def __getattr__(self, attr):
        method = getattr(self.collection, attr)

        def call(*args, session=None, **kwargs):
            self.calls.append((self.collection.name, attr, session))
            return method(*args, **kwargs)
        return call


@pytest.fixture
def user_id(db):
    return db.create_document("user", {"email": "jane@example.com", "role": "customer"})["_id"]


@pytest.fixture
def txn_db(db):
    """A transactional store over the same mongomock data, with a mocked client session."""
    store = Database(db.client, db.name, transactions=True)
    store.db = RecordingDatabase(db.db)
    session = mock.MagicMock(name="session")
    with mock.patch.object(store.client, "start_session") as start_session:
        start_session.return_value.__enter__.return_value = session
        yield store, session


def _transaction_error(session):
    """The exception type the transaction block exited with, None on commit."""
    return session.start_transaction.return_value.__exit__.call_args[0][0]


def _calls_outside(store, session):
    # populate runs after the transaction and only issues find()
    return [c for c in store.db.calls if c[1] != "find" and c[2] is not session]


def _product(db, quantity=5, price=10.0, name="Widget"):
    return db.create_document("product", {
        "name": name, "price": price, "category": "gadgets", "quantity": quantity, "inStock": quantity > 0,
    })["_id"]


def test_parse_duration():
    assert parse_duration("7d") == timedelta(days=7)
    assert parse_duration("12h") == timedelta(hours=12)
    assert parse_duration("30m") == timedelta(minutes=30)
    assert parse_duration("90") == timedelta(seconds=90)
    with pytest.raises(ValueError):
        parse_duration("soon")


def test_password_hashing():
    hashed = hash_password("secret123", rounds=4)
    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("secret124", hashed)
    assert not verify_password("secret123", "not-a-hash")


def test_token_verification(settings):
    token = create_token({"id": "abc", "email": "jane@example.com"}, settings)
    payload = decode_token(token, settings)
    assert payload["id"] == "abc"
    assert payload["exp"] - payload["iat"] == int(timedelta(days=7).total_seconds())

    other = settings.model_copy(update={"jwt_secret": "other"})
    with pytest.raises(UnauthorizedError):
        decode_token(token, other)


def test_object_id_and_serialize():
    oid = ObjectId()
    assert object_id(str(oid)) == oid
    with pytest.raises(ValidationError):
        object_id("xyz", "order")
    doc = serialize_doc({"_id": oid, "password": "h", "items": [{"product": oid}]})
    assert doc == {"id": str(oid), "items": [{"product": str(oid)}]}


def test_describe_validation_errors():
    errors = [
        {"type": "missing", "loc": ("body", "email"), "msg": "Field required"},
        {"type": "string_too_short", "loc": ("body", "firstName"), "msg": "too short", "input": " "},
    ]
    assert describe_validation_errors(errors) == "Missing required fields: email, firstName"
    errors = [{"type": "greater_than_equal", "loc": ("body", "quantity"), "msg": "Input should be >= 1"}]
    assert describe_validation_errors(errors) == "Invalid value for quantity: Input should be >= 1"


def test_transaction_disabled_yields_no_session(db):
    with db.transaction() as session:
        assert session is None


def test_transaction_commits_and_aborts_through_session():
    client = mock.MagicMock()
    db = Database(client, "shop", transactions=True)
    session = client.start_session.return_value.__enter__.return_value
    txn = session.start_transaction.return_value

    with db.transaction() as s:
        assert s is session
    assert txn.__exit__.call_args[0][0] is None

    with pytest.raises(RuntimeError):
        with db.transaction():
            raise RuntimeError("boom")
    assert txn.__exit__.call_args[0][0] is RuntimeError


def test_create_order_totals(db, user_id):
    a = _product(db, quantity=5, price=10.0, name="A")
    b = _product(db, quantity=3, price=5.0, name="B")
    add_item(db, user_id, str(a), 2)
    add_item(db, user_id, str(b), 1)

    order = orders.create_order(db, user_id, ADDRESS)
    assert order["totalAmount"] == 25
    assert db.carts.find_one({"user": user_id})["items"] == []
    assert db.products.find_one({"_id": a})["quantity"] == 3
    assert db.products.find_one({"_id": b})["quantity"] == 2


def test_duplicate_lines_are_checked_together(db, user_id):
    pid = _product(db, quantity=3)
    db.carts.insert_one({"user": user_id, "items": [
        {"product": pid, "quantity": 2, "price": 10.0},
        {"product": pid, "quantity": 2, "price": 10.0},
    ], "totalAmount": 40})
    with pytest.raises(InsufficientStockError):
        orders.create_order(db, user_id, ADDRESS)
    assert db.products.find_one({"_id": pid})["quantity"] == 3


def test_strict_transitions(db, user_id):
    pid = _product(db)
    add_item(db, user_id, str(pid), 1)
    order_id = orders.create_order(db, user_id, ADDRESS)["id"]

    assert orders.update_order_status(db, order_id, "processing", strict=True)["status"] == "processing"
    with pytest.raises(InvalidTransitionError):
        orders.update_order_status(db, order_id, "pending", strict=True)
    orders.update_order_status(db, order_id, "shipped", strict=True)
    orders.update_order_status(db, order_id, "delivered", strict=True)
    with pytest.raises(InvalidTransitionError):
        orders.update_order_status(db, order_id, "cancelled", strict=True)


def test_in_stock_tracks_quantity_after_every_stock_change(db, user_id):
    pid = _product(db, quantity=2)

    def consistent():
        product = db.products.find_one({"_id": pid})
        return product["inStock"] == (product["quantity"] > 0)

    add_item(db, user_id, str(pid), 2)
    order_id = orders.create_order(db, user_id, ADDRESS)["id"]
    assert consistent()
    orders.cancel_order(db, user_id, order_id)
    assert consistent()


def test_cart_total():
    assert cart_total([]) == 0
    assert cart_total([{"price": 0.1, "quantity": 3}, {"price": 2.5, "quantity": 2}]) == 5.3


def test_create_order_runs_every_read_and_write_in_the_session(db, txn_db, user_id):
    store, session = txn_db
    pid = _product(db, quantity=5)
    add_item(db, user_id, str(pid), 2)

    orders.create_order(store, user_id, ADDRESS)

    assert _transaction_error(session) is None
    assert _calls_outside(store, session) == []
    methods = {(name, method) for name, method, _ in store.db.calls}
    assert {("cart", "find_one"), ("product", "find_one"), ("product", "find_one_and_update"),
            ("order", "insert_one"), ("cart", "update_one")} <= methods


def test_create_order_aborts_when_a_write_fails_after_taking_stock(db, txn_db, user_id):
    store, session = txn_db
    pid = _product(db, quantity=5)
    add_item(db, user_id, str(pid), 2)

    with mock.patch.object(store, "create_document", side_effect=PyMongoError("insert failed")):
        with pytest.raises(PyMongoError):
            orders.create_order(store, user_id, ADDRESS)

    assert _transaction_error(session) is PyMongoError
    assert ("product", "find_one_and_update", session) in store.db.calls
    assert _calls_outside(store, session) == []
    assert ("cart", "update_one", session) not in store.db.calls


def test_cancel_order_runs_in_the_session(db, txn_db, user_id):
    store, session = txn_db
    pid = _product(db, quantity=5)
    add_item(db, user_id, str(pid), 2)
    order_id = orders.create_order(db, user_id, ADDRESS)["id"]

    orders.cancel_order(store, user_id, order_id)

    assert _transaction_error(session) is None
    assert _calls_outside(store, session) == []
    assert ("order", "find_one_and_update", session) in store.db.calls
    assert ("product", "update_one", session) in store.db.calls
    assert db.products.find_one({"_id": pid})["quantity"] == 5


def test_cancel_order_aborts_when_restoring_stock_fails(db, txn_db, user_id):
    store, session = txn_db
    pid = _product(db, quantity=5)
    add_item(db, user_id, str(pid), 2)
    order_id = orders.create_order(db, user_id, ADDRESS)["id"]

    real_utcnow = orders.utcnow
    with mock.patch.object(orders, "utcnow", side_effect=[real_utcnow(), PyMongoError("write failed")]):
        with pytest.raises(PyMongoError):
            orders.cancel_order(store, user_id, order_id)

    assert _transaction_error(session) is PyMongoError
    assert ("order", "find_one_and_update", session) in store.db.calls
    assert _calls_outside(store, session) == []


def test_take_stock_flips_in_stock_in_the_same_write(db, user_id):
    store = Database(db.client, db.name, transactions=False)
    store.db = RecordingDatabase(db.db)
    pid = _product(db, quantity=2)
    add_item(db, user_id, str(pid), 2)

    orders.create_order(store, user_id, ADDRESS)

    product = db.products.find_one({"_id": pid})
    assert product["quantity"] == 0
    assert product["inStock"] is False
    writes = [method for name, method, _ in store.db.calls if name == "product" and not method.startswith("find")]
    assert writes == []
    assert ("product", "find_one_and_update", None) in store.db.calls


def test_cart_model_fills_new_carts(db, user_id):
    cart = get_or_create_cart(db, user_id)
    assert cart["items"] == []
    assert cart["totalAmount"] == 0
    assert Cart(user=user_id, items=[{"product": ObjectId(), "quantity": 1, "price": 2.5}]).items[0].price == 2.5
    assert PAYMENT_STATUSES == ("pending", "paid", "failed", "refunded")


def test_health_reports_database(client):
    res = client.get("/health")
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["database"]["transactions"] is False


def test_health_reports_unreachable_database(client, db):
    with mock.patch.object(db, "status", side_effect=PyMongoError("no server")):
        res = client.get("/health")
    assert res.status_code == 503
    assert res.json() == {"success": False, "message": "Database unavailable", "error": "database_unavailable"}
