"""Order creation, status tracking and bulk status updates."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import doc_to_public, oid_str, to_object_id, utcnow
from errors import (
    InsufficientStockError,
    InvalidStatusError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from schemas import ORDER_STATUSES, Order as OrderSchema, OrderItem, ShippingAddress, allowed_predecessors, can_transition

logger = logging.getLogger(__name__)


def validate_status(status: Any) -> str:
    if status not in ORDER_STATUSES:
        raise InvalidStatusError(status)
    return status


def _parse_order_ids(order_ids: Iterable[Any]) -> list:
    oids = []
    for order_id in order_ids:
        oid = to_object_id(order_id)
        if oid is None:
            raise ValidationError(f"Invalid order id: {order_id}")
        oids.append(oid)
    return oids


# ----------------------------------------------------------------------------
# Population
# ----------------------------------------------------------------------------

def _product_lookup(db: Database, product_ids: Iterable[str], projection: Optional[dict] = None) -> Dict[str, Dict[str, Any]]:
    oids = [oid for oid in (to_object_id(pid) for pid in set(product_ids)) if oid is not None]
    if not oids:
        return {}
    cursor = db["product"].find({"_id": {"$in": oids}}, projection)
    return {str(p["_id"]): doc_to_public(p) for p in cursor}


def populate_orders(db: Database, orders: List[Dict[str, Any]], with_customer: bool = True) -> List[Dict[str, Any]]:
    """Resolve line items to product data and the owner to name/email."""
    products = _product_lookup(db, (i["product_id"] for o in orders for i in o.get("items", [])))

    customers: Dict[str, Dict[str, Any]] = {}
    if with_customer:
        cids = [oid for oid in (to_object_id(o.get("customer_id")) for o in orders) if oid is not None]
        if cids:
            for c in db["customer"].find({"_id": {"$in": cids}}, {"name": 1, "email": 1}):
                customers[str(c["_id"])] = doc_to_public(c)

    result = []
    for order in orders:
        public = doc_to_public(order)
        public["items"] = [
            {**item, "product": products.get(item["product_id"])}
            for item in order.get("items", [])
        ]
        if with_customer:
            public["customer"] = customers.get(order.get("customer_id"))
        result.append(public)
    return result


def _populated(db: Database, order: Dict[str, Any]) -> Dict[str, Any]:
    return populate_orders(db, [order])[0]


# ----------------------------------------------------------------------------
# Creation
# ----------------------------------------------------------------------------

def _reserve_stock(db: Database, product_id: str, quantity: int) -> Dict[str, Any]:
    """Take ``quantity`` units off an active product's stock in one conditional update."""
    oid = to_object_id(product_id)
    if oid is None:
        raise ProductNotFoundError(product_id)

    product = db["product"].find_one_and_update(
        {"_id": oid, "is_active": True, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if product is not None:
        return product

    current = db["product"].find_one({"_id": oid})
    if not current or not current.get("is_active", False):
        raise ProductNotFoundError(product_id)
    raise InsufficientStockError(current.get("name", product_id))


def create_order(
    db: Database,
    customer: Dict[str, Any],
    order_items: List[Dict[str, Any]],
    shipping_address: Dict[str, Any],
) -> Dict[str, Any]:
    """Place an order for the customer and return it populated.

    Lines are processed in order. Each one atomically decrements the
    product's stock and captures its current price. A failing line aborts
    the order but leaves the decrements of the lines before it applied.
    """
    if not order_items:
        raise ValidationError("No order items provided")
    try:
        address = ShippingAddress(**(shipping_address or {}))
    except PydanticValidationError:
        raise ValidationError("Shipping address is incomplete")

    items: List[OrderItem] = []
    total = 0.0
    for line in order_items:
        product_id = str(line["product_id"])
        quantity = int(line["quantity"])
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        product = _reserve_stock(db, product_id, quantity)
        unit_price = float(product.get("price", 0))
        total += unit_price * quantity
        items.append(OrderItem(product_id=product_id, quantity=quantity, unit_price=unit_price))

    now = utcnow()
    order = OrderSchema(
        customer_id=oid_str(customer["_id"]),
        items=items,
        shipping_address=address,
        total_price=round(total, 2),
        status="placed",
        status_timestamps={"placed": now},
    )
    oid = db["order"].insert_one({**order.model_dump(), "created_at": now, "updated_at": now}).inserted_id
    logger.info("Order %s placed by customer %s (total %.2f)", oid, order.customer_id, order.total_price)

    return _populated(db, db["order"].find_one({"_id": oid}))


# ----------------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------------

def _find_own_order(db: Database, order_id: str, customer: Dict[str, Any]) -> Dict[str, Any]:
    oid = to_object_id(order_id)
    doc = None
    if oid is not None:
        doc = db["order"].find_one({"_id": oid, "customer_id": oid_str(customer["_id"])})
    if not doc:
        raise OrderNotFoundError(order_id)
    return doc


def list_customer_orders(db: Database, customer: Dict[str, Any]) -> List[Dict[str, Any]]:
    cursor = db["order"].find({"customer_id": oid_str(customer["_id"])}, sort=[("created_at", DESCENDING)])
    return populate_orders(db, list(cursor), with_customer=False)


def get_customer_order(db: Database, order_id: str, customer: Dict[str, Any]) -> Dict[str, Any]:
    return _populated(db, _find_own_order(db, order_id, customer))


def list_all_orders(db: Database) -> List[Dict[str, Any]]:
    cursor = db["order"].find({}, sort=[("created_at", DESCENDING)])
    return populate_orders(db, list(cursor))


def track_order(db: Database, order_id: str, customer: Dict[str, Any]) -> Dict[str, Any]:
    """Project an order onto its tracking view.

    Statuses the order has never reached are reported as None.
    """
    order = _find_own_order(db, order_id, customer)
    stamped = order.get("status_timestamps") or {}
    products = _product_lookup(db, (i["product_id"] for i in order.get("items", [])), {"name": 1, "images": 1})

    items = []
    for item in order.get("items", []):
        product = products.get(item["product_id"]) or {}
        items.append({
            "product_id": item["product_id"],
            "name": product.get("name"),
            "images": product.get("images", []),
            "quantity": item["quantity"],
            "unit_price": item["unit_price"],
        })

    return {
        "order_id": str(order["_id"]),
        "status": order.get("status"),
        "total_price": order.get("total_price"),
        "order_date": order.get("created_at"),
        "timestamps": {status: stamped.get(status) for status in ORDER_STATUSES},
        "items": items,
    }


# ----------------------------------------------------------------------------
# Status transitions
# ----------------------------------------------------------------------------

def update_order_status(db: Database, order_id: str, status: Any, enforce_transitions: bool = False) -> Dict[str, Any]:
    """Move one order to ``status``.

    The timestamp for ``status`` is only written the first time the order
    reaches it; repeating a status keeps the original stamp.
    """
    status = validate_status(status)
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid is not None else None
    if not order:
        raise OrderNotFoundError(order_id)

    current = order.get("status")
    if enforce_transitions and not can_transition(current, status):
        raise InvalidStatusTransitionError(current, status)

    now = utcnow()
    db["order"].update_one({"_id": oid}, {"$set": {"status": status, "updated_at": now}})
    db["order"].update_one(
        {"_id": oid, f"status_timestamps.{status}": {"$exists": False}},
        {"$set": {f"status_timestamps.{status}": now}},
    )
    logger.info("Order %s status %s -> %s", order_id, current, status)

    return _populated(db, db["order"].find_one({"_id": oid}))


def bulk_update_order_status(
    db: Database,
    order_ids: List[Any],
    status: Any,
    enforce_transitions: bool = False,
) -> Dict[str, int]:
    """Set ``status`` on many orders in one batched update.

    Unlike the single-order path the status timestamp is always
    overwritten with the current time.
    """
    if not order_ids:
        raise ValidationError("Order IDs are required")
    status = validate_status(status)
    oids = _parse_order_ids(order_ids)

    query: Dict[str, Any] = {"_id": {"$in": oids}}
    if enforce_transitions:
        query["status"] = {"$in": allowed_predecessors(status)}

    now = utcnow()
    res = db["order"].update_many(
        query,
        {"$set": {"status": status, f"status_timestamps.{status}": now, "updated_at": now}},
    )
    logger.info("Bulk status update to %s: %d requested, %d matched", status, len(oids), res.matched_count)
    return {"requested": len(oids), "matched": res.matched_count, "modified": res.modified_count}
