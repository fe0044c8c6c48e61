"""
Catalog store: product CRUD. ``inStock`` is derived from ``quantity`` on every write.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from database import Database, object_id, serialize_doc, utcnow
from errors import NotFoundError
from schemas import Product, ProductCreateBody, ProductUpdateBody

logger = logging.getLogger(__name__)

# fields shown when a product is embedded in a cart or an order
SUMMARY_FIELDS = ["name", "price", "images", "category", "inStock"]


def list_products(db: Database, category: Optional[str] = None, q: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
    filt: Dict[str, Any] = {}
    if category:
        filt["category"] = category
    if q:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"description": pattern}]
    return [serialize_doc(p) for p in db.products.find(filt).limit(limit)]


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db.products.find_one({"_id": object_id(product_id, "product")})
    if not product:
        raise NotFoundError("Product not found")
    return serialize_doc(product)


def create_product(db: Database, body: ProductCreateBody) -> Dict[str, Any]:
    product = Product(**body.model_dump(), in_stock=body.quantity > 0)
    doc = db.create_document("product", product)
    logger.info("Created product %s (%s)", doc["_id"], doc["name"])
    return serialize_doc(doc)


def update_product(db: Database, product_id: str, body: ProductUpdateBody) -> Dict[str, Any]:
    update = body.model_dump(by_alias=True, exclude_unset=True)
    update = {k: v for k, v in update.items() if v is not None or k == "description"}
    if "quantity" in update:
        update["inStock"] = update["quantity"] > 0
    update["updatedAt"] = utcnow()
    product = db.products.find_one_and_update(
        {"_id": object_id(product_id, "product")},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise NotFoundError("Product not found")
    return serialize_doc(product)


def delete_product(db: Database, product_id: str) -> None:
    res = db.products.delete_one({"_id": object_id(product_id, "product")})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found")
    logger.info("Deleted product %s", product_id)


def product_summaries(db: Database, ids) -> Dict[Any, Dict[str, Any]]:
    """Map product _id -> display summary, for populating cart and order lines."""
    found = db.find_by_ids("product", ids, SUMMARY_FIELDS)
    return {pid: serialize_doc(doc) for pid, doc in found.items()}
