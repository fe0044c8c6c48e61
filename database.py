"""
MongoDB store handle.

One ``Database`` is created when the app starts and closed on shutdown; route
handlers receive it through ``Depends(get_db)``.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson.objectid import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import ValidationError
from settings import Settings

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Database:
    def __init__(self, client, name: str, transactions: bool = True):
        self.client = client
        self.name = name
        self.transactions = transactions
        self.db = client[name]

    @classmethod
    def connect(cls, settings: Settings) -> "Database":
        client = MongoClient(
            settings.mongodb_uri,
            serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
            socketTimeoutMS=settings.socket_timeout_ms,
            tz_aware=True,
        )
        logger.info("Connected to MongoDB database %r", settings.database_name)
        return cls(client, settings.database_name, transactions=settings.use_transactions)

    def close(self) -> None:
        self.client.close()
        logger.info("MongoDB connection closed")

    @property
    def users(self):
        return self.db["user"]

    @property
    def products(self):
        return self.db["product"]

    @property
    def carts(self):
        return self.db["cart"]

    @property
    def orders(self):
        return self.db["order"]

    def status(self) -> Dict[str, Any]:
        """Ping the server and describe the database this handle points at."""
        self.db.command("ping")
        return {
            "name": self.name,
            "transactions": self.transactions,
            "collections": sorted(self.db.list_collection_names()),
        }

    def ensure_indexes(self) -> None:
        self.users.create_index("email", unique=True)
        self.carts.create_index("user", unique=True)
        self.orders.create_index([("user", ASCENDING), ("createdAt", DESCENDING)])

    @contextmanager
    def transaction(self):
        """Yield a session bound to a transaction, or None when transactions are off.

        The transaction commits when the block exits normally and aborts if it raises.
        """
        if not self.transactions:
            yield None
            return
        with self.client.start_session() as session:
            with session.start_transaction():
                yield session

    def create_document(self, collection: str, data, session=None) -> Dict[str, Any]:
        """Insert a document stamped with createdAt/updatedAt and return it with its _id."""
        if hasattr(data, "model_dump"):
            doc = data.model_dump(by_alias=True)
        else:
            doc = dict(data)
        now = utcnow()
        doc.setdefault("createdAt", now)
        doc["updatedAt"] = now
        result = self.db[collection].insert_one(doc, session=session)
        doc["_id"] = result.inserted_id
        return doc

    def get_documents(self, collection: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[dict]:
        cursor = self.db[collection].find(filter_dict or {})
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def find_by_ids(self, collection: str, ids: Iterable[ObjectId], fields: Optional[List[str]] = None) -> Dict[ObjectId, dict]:
        """Fetch several documents at once, keyed by _id."""
        unique = list({i for i in ids if i is not None})
        if not unique:
            return {}
        projection = {f: 1 for f in fields} if fields else None
        return {d["_id"]: d for d in self.db[collection].find({"_id": {"$in": unique}}, projection)}


def get_db(request: Request) -> Database:
    return request.app.state.db


def object_id(value: Any, label: str = "") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label} id" if label else "Invalid id")


def serialize_doc(doc):
    """Make a stored document JSON friendly: _id -> id, ObjectId -> str, datetime -> ISO."""
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    out = {}
    for k, v in doc.items():
        if k == "password":
            continue
        if k == "_id":
            out["id"] = str(v)
            continue
        out[k] = serialize_doc(v)
    return out
