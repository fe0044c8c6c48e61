"""
Cart store. One cart per user, created on first access and never deleted.

Every mutation recomputes ``totalAmount`` from the line items and persists the
whole item list before the cart is returned with its products populated.
"""
import logging
from typing import Any, Dict, List

from bson.objectid import ObjectId
from pymongo import ReturnDocument

from catalog import product_summaries
from database import Database, object_id, serialize_doc, utcnow
from errors import InsufficientStockError, NotFoundError
from schemas import Cart, CartItem

logger = logging.getLogger(__name__)


def cart_total(items: List[dict]) -> float:
    return round(sum(item["price"] * item["quantity"] for item in items), 2)


def get_or_create_cart(db: Database, user_id: ObjectId) -> dict:
    now = utcnow()
    defaults = Cart(user=user_id).model_dump(by_alias=True, exclude={"user"})
    return db.carts.find_one_and_update(
        {"user": user_id},
        {"$setOnInsert": {**defaults, "createdAt": now, "updatedAt": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def populate_cart(db: Database, cart: dict) -> Dict[str, Any]:
    items = cart.get("items", [])
    products = product_summaries(db, [i["product"] for i in items])
    out = serialize_doc(cart)
    for line, item in zip(out["items"], items):
        line["product"] = products.get(item["product"], line["product"])
    return out


def _save(db: Database, cart: dict, items: List[dict]) -> Dict[str, Any]:
    cart["items"] = items
    cart["totalAmount"] = cart_total(items)
    cart["updatedAt"] = utcnow()
    db.carts.update_one(
        {"_id": cart["_id"]},
        {"$set": {"items": items, "totalAmount": cart["totalAmount"], "updatedAt": cart["updatedAt"]}},
    )
    return populate_cart(db, cart)


def _find_line(items: List[dict], product_id: ObjectId) -> int:
    for index, item in enumerate(items):
        if item["product"] == product_id:
            return index
    return -1


def get_cart(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    return populate_cart(db, get_or_create_cart(db, user_id))


def add_item(db: Database, user_id: ObjectId, product_id: str, quantity: int) -> Dict[str, Any]:
    pid = object_id(product_id, "product")
    product = db.products.find_one({"_id": pid})
    if not product:
        raise NotFoundError("Product not found")
    if not product.get("inStock") or product.get("quantity", 0) < quantity:
        raise InsufficientStockError("Product is out of stock or insufficient quantity")

    cart = get_or_create_cart(db, user_id)
    items = list(cart.get("items", []))
    index = _find_line(items, pid)
    if index > -1:
        merged = items[index]["quantity"] + quantity
        if merged > product["quantity"]:
            raise InsufficientStockError(f"Only {product['quantity']} items available in stock")
        items[index] = {**items[index], "quantity": merged}
    else:
        items.append(CartItem(product=pid, quantity=quantity, price=product["price"]).model_dump())
    return _save(db, cart, items)


def update_item(db: Database, user_id: ObjectId, product_id: str, quantity: int) -> Dict[str, Any]:
    pid = object_id(product_id, "product")
    cart = get_or_create_cart(db, user_id)
    items = list(cart.get("items", []))
    index = _find_line(items, pid)
    if index == -1:
        raise NotFoundError("Item not found in cart")

    if quantity == 0:
        del items[index]
    else:
        product = db.products.find_one({"_id": pid})
        if not product or product.get("quantity", 0) < quantity:
            raise InsufficientStockError("Insufficient stock")
        items[index] = {**items[index], "quantity": quantity}
    return _save(db, cart, items)


def remove_item(db: Database, user_id: ObjectId, product_id: str) -> Dict[str, Any]:
    pid = object_id(product_id, "product")
    cart = get_or_create_cart(db, user_id)
    items = [item for item in cart.get("items", []) if item["product"] != pid]
    return _save(db, cart, items)


def clear_cart(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    cart = get_or_create_cart(db, user_id)
    logger.debug("Clearing cart %s", cart["_id"])
    return _save(db, cart, [])
