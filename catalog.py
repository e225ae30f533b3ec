import logging
import math
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo import DESCENDING
from pymongo.database import Database

from database import create_document, doc_to_public, to_object_id, utcnow
from errors import ProductNotFoundError, ValidationError
from schemas import Product as ProductSchema

logger = logging.getLogger(__name__)

MAX_IMAGES = 3


def _parse_product_ids(product_ids: List[Any]) -> list:
    if not product_ids:
        raise ValidationError("Product IDs are required")
    oids = []
    for product_id in product_ids:
        oid = to_object_id(product_id)
        if oid is None:
            raise ValidationError(f"Invalid product id: {product_id}")
        oids.append(oid)
    return oids


# ----------------------------------------------------------------------------
# Storefront
# ----------------------------------------------------------------------------

def list_active_products(
    db: Database,
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {"is_active": True}
    if category:
        query["category"] = category
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]

    page = max(1, page)
    limit = max(1, limit)
    total = db["product"].count_documents(query)
    cursor = (
        db["product"].find(query)
        .sort("created_at", DESCENDING)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return {
        "products": [doc_to_public(p) for p in cursor],
        "total": total,
        "total_pages": math.ceil(total / limit),
        "current_page": page,
    }


def get_active_product(db: Database, product_id: str) -> Dict[str, Any]:
    oid = to_object_id(product_id)
    doc = db["product"].find_one({"_id": oid}) if oid is not None else None
    if not doc or not doc.get("is_active", False):
        raise ProductNotFoundError()
    return doc_to_public(doc)


def list_categories(db: Database) -> List[str]:
    return sorted(db["product"].distinct("category", {"is_active": True}))


# ----------------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------------

def list_all_products(db: Database) -> List[Dict[str, Any]]:
    return [doc_to_public(p) for p in db["product"].find({}, sort=[("created_at", DESCENDING)])]


def create_product(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    if len(data.get("images") or []) > MAX_IMAGES:
        raise ValidationError(f"Maximum {MAX_IMAGES} images allowed")
    try:
        product = ProductSchema(**data)
    except PydanticValidationError as e:
        raise ValidationError(str(e.errors()[0]["msg"]))
    doc = create_document(db, "product", product.model_dump())
    logger.info("Product %s created (%s)", doc["_id"], product.name)
    return doc_to_public(doc)


def update_product(db: Database, product_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    update = {k: v for k, v in changes.items() if v is not None}
    for key in ("name", "category"):
        # blank values keep the stored one
        if key in update and not update[key]:
            del update[key]
    if len(update.get("images") or []) > MAX_IMAGES:
        raise ValidationError(f"Maximum {MAX_IMAGES} images allowed")
    if update.get("price", 0) < 0 or update.get("stock", 0) < 0:
        raise ValidationError("Price and stock must not be negative")

    oid = to_object_id(product_id)
    if oid is None or not db["product"].find_one({"_id": oid}):
        raise ProductNotFoundError()

    update["updated_at"] = utcnow()
    db["product"].update_one({"_id": oid}, {"$set": update})
    return doc_to_public(db["product"].find_one({"_id": oid}))


def delete_product(db: Database, product_id: str) -> None:
    oid = to_object_id(product_id)
    res = db["product"].delete_one({"_id": oid}) if oid is not None else None
    if res is None or res.deleted_count == 0:
        raise ProductNotFoundError()
    logger.info("Product %s deleted", product_id)


def bulk_delete_products(db: Database, product_ids: List[Any]) -> int:
    oids = _parse_product_ids(product_ids)
    res = db["product"].delete_many({"_id": {"$in": oids}})
    logger.info("Bulk deleted %d products", res.deleted_count)
    return res.deleted_count


def bulk_update_product_status(db: Database, product_ids: List[Any], status: str) -> int:
    """Activate or deactivate many products; ``status`` is "active" or "inactive"."""
    oids = _parse_product_ids(product_ids)
    if status not in ("active", "inactive"):
        raise ValidationError("Invalid status")
    res = db["product"].update_many(
        {"_id": {"$in": oids}},
        {"$set": {"is_active": status == "active", "updated_at": utcnow()}},
    )
    logger.info("Bulk set %d products %s", res.matched_count, status)
    return res.matched_count
