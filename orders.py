"""
Order workflow: turning a cart into an order, cancellation and status changes.

Order creation and cancellation each run inside ``Database.transaction()``, so
a failure at any step leaves stock, carts and orders exactly as they were.
Stock for every line is checked before anything is written; the writes
themselves are guarded on the stock still being there, and a guard miss
raises and aborts the transaction.
"""
import logging
import math
from typing import Any, Dict, List, Optional

from bson.objectid import ObjectId
from pymongo import ReturnDocument

from carts import cart_total
from catalog import product_summaries
from database import Database, object_id, serialize_doc, utcnow
from errors import InsufficientStockError, InvalidTransitionError, NotFoundError, StateError, ValidationError
from schemas import ORDER_STATUSES, Order, OrderItem, ShippingAddress

logger = logging.getLogger(__name__)

# forward-only graph used when strict transitions are switched on
ALLOWED_TRANSITIONS = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}

USER_SUMMARY_FIELDS = ["firstName", "lastName", "email"]


# ----------------------- Display -----------------------
def populate_orders(db: Database, orders: List[dict], with_user: bool = False) -> List[Dict[str, Any]]:
    products = product_summaries(db, [i["product"] for o in orders for i in o.get("items", [])])
    users = {}
    if with_user:
        users = db.find_by_ids("user", [o.get("user") for o in orders], USER_SUMMARY_FIELDS)
    result = []
    for order in orders:
        out = serialize_doc(order)
        for line, item in zip(out["items"], order.get("items", [])):
            line["product"] = products.get(item["product"], line["product"])
        if with_user:
            user = users.get(order.get("user"))
            out["user"] = serialize_doc(user) if user else None
        result.append(out)
    return result


def populate_order(db: Database, order: dict, with_user: bool = False) -> Dict[str, Any]:
    return populate_orders(db, [order], with_user)[0]


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "totalItems": total,
        "itemsPerPage": limit,
    }


# ----------------------- Create -----------------------
def _check_stock(db: Database, items: List[dict], session) -> Dict[ObjectId, dict]:
    """Load every product in the cart and make sure all lines can be filled."""
    products: Dict[ObjectId, dict] = {}
    reserved: Dict[ObjectId, int] = {}
    for item in items:
        pid = item["product"]
        if pid not in products:
            product = db.products.find_one({"_id": pid}, session=session)
            if not product:
                raise NotFoundError(f"Product {pid} not found")
            products[pid] = product
        product = products[pid]
        reserved[pid] = reserved.get(pid, 0) + item["quantity"]
        if not product.get("inStock") or product.get("quantity", 0) < reserved[pid]:
            raise InsufficientStockError(f"Insufficient stock for {product['name']}")
    return products


def _take_stock(db: Database, pid: ObjectId, quantity: int, name: str, session) -> None:
    # quantity and inStock change in the same write
    remaining = {"$subtract": ["$quantity", quantity]}
    product = db.products.find_one_and_update(
        {"_id": pid, "inStock": True, "quantity": {"$gte": quantity}},
        [{"$set": {"quantity": remaining, "inStock": {"$gt": [remaining, 0]}, "updatedAt": utcnow()}}],
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if product is None:
        raise InsufficientStockError(f"Insufficient stock for {name}")


def create_order(db: Database, user_id: ObjectId, shipping_address: ShippingAddress) -> Dict[str, Any]:
    """Convert the user's cart into a pending order, all or nothing."""
    with db.transaction() as session:
        cart = db.carts.find_one({"user": user_id}, session=session)
        if not cart or not cart.get("items"):
            raise StateError("Cart is empty")

        products = _check_stock(db, cart["items"], session)
        lines = []
        for item in cart["items"]:
            product = products[item["product"]]
            _take_stock(db, product["_id"], item["quantity"], product["name"], session)
            lines.append(OrderItem(
                product=product["_id"],
                quantity=item["quantity"],
                price=item["price"],
                name=product["name"],
            ))

        order = Order(
            user=user_id,
            items=lines,
            total_amount=cart_total(cart["items"]),
            shipping_address=shipping_address,
            status="pending",
            payment_status="pending",
        )
        doc = db.create_document("order", order, session=session)
        db.carts.update_one(
            {"_id": cart["_id"]},
            {"$set": {"items": [], "totalAmount": 0, "updatedAt": utcnow()}},
            session=session,
        )

    logger.info("Order %s created for user %s (%d items, total %.2f)",
                doc["_id"], user_id, len(lines), doc["totalAmount"])
    return populate_order(db, doc)


# ----------------------- Cancel -----------------------
def cancel_order(db: Database, user_id: ObjectId, order_id: str) -> Dict[str, Any]:
    """Cancel the caller's pending order and put its stock back."""
    oid = object_id(order_id, "order")
    with db.transaction() as session:
        order = db.orders.find_one_and_update(
            {"_id": oid, "user": user_id, "status": "pending"},
            {"$set": {"status": "cancelled", "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if order is None:
            if db.orders.find_one({"_id": oid, "user": user_id}, session=session) is None:
                raise NotFoundError("Order not found")
            raise InvalidTransitionError("Only pending orders can be cancelled")

        for item in order["items"]:
            # products deleted since the order was placed are skipped
            db.products.update_one(
                {"_id": item["product"]},
                {"$inc": {"quantity": item["quantity"]}, "$set": {"inStock": True, "updatedAt": utcnow()}},
                session=session,
            )

    logger.info("Order %s cancelled by user %s", oid, user_id)
    return populate_order(db, order)


# ----------------------- Status -----------------------
def update_order_status(db: Database, order_id: str, status: Any, strict: bool = False) -> Dict[str, Any]:
    if status not in ORDER_STATUSES:
        raise ValidationError("Invalid status")
    oid = object_id(order_id, "order")
    query: Dict[str, Any] = {"_id": oid}
    if strict:
        current = db.orders.find_one({"_id": oid}, {"status": 1})
        if not current:
            raise NotFoundError("Order not found")
        if status not in ALLOWED_TRANSITIONS.get(current["status"], set()):
            raise InvalidTransitionError(f"Cannot move order from {current['status']} to {status}")
        query["status"] = current["status"]

    order = db.orders.find_one_and_update(
        query,
        {"$set": {"status": status, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        if strict:
            raise InvalidTransitionError("Order status changed concurrently")
        raise NotFoundError("Order not found")
    logger.info("Order %s moved to %s", oid, status)
    return populate_order(db, order, with_user=True)


# ----------------------- Queries -----------------------
def list_user_orders(db: Database, user_id: ObjectId, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    filt = {"user": user_id}
    cursor = db.orders.find(filt).sort("createdAt", -1).skip((page - 1) * limit).limit(limit)
    orders = populate_orders(db, list(cursor))
    return {"data": orders, "pagination": _pagination(page, limit, db.orders.count_documents(filt))}


def get_user_order(db: Database, user_id: ObjectId, order_id: str) -> Dict[str, Any]:
    order = db.orders.find_one({"_id": object_id(order_id, "order"), "user": user_id})
    if not order:
        raise NotFoundError("Order not found")
    return populate_order(db, order, with_user=True)


def list_all_orders(db: Database, page: int = 1, limit: int = 10, status: Optional[str] = None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError("Invalid status")
        filt["status"] = status
    cursor = db.orders.find(filt).sort("createdAt", -1).skip((page - 1) * limit).limit(limit)
    orders = populate_orders(db, list(cursor), with_user=True)
    return {"data": orders, "pagination": _pagination(page, limit, db.orders.count_documents(filt))}
