"""Admin dashboard statistics.

Every figure is recomputed from the full order history on each call; each
one is an independent query against the store.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from database import doc_to_public, to_object_id, utcnow
from schemas import ORDER_STATUSES

LOW_STOCK_THRESHOLD = 10
MONTHS_IN_SERIES = 6
TOP_PRODUCTS = 5
RECENT_ORDERS = 5
RECENT_PRODUCTS = 3


def _month_start(year: int, month: int, delta: int = 0) -> datetime:
    index = year * 12 + (month - 1) + delta
    return datetime(index // 12, index % 12 + 1, 1)


def _revenue(db: Database, match: Optional[Dict[str, Any]] = None) -> float:
    pipeline: List[Dict[str, Any]] = []
    if match:
        pipeline.append({"$match": match})
    pipeline.append({"$group": {"_id": None, "total": {"$sum": "$total_price"}}})
    result = list(db["order"].aggregate(pipeline))
    return result[0]["total"] if result else 0


def _status_counts(db: Database) -> Dict[str, int]:
    counts = {status: 0 for status in ORDER_STATUSES}
    for row in db["order"].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]):
        if row["_id"] in counts:
            counts[row["_id"]] = row["count"]
    return counts


def _monthly_series(db: Database, now: datetime) -> List[Dict[str, Any]]:
    """Revenue and order counts for the last six calendar months, oldest first."""
    starts = [_month_start(now.year, now.month, -i) for i in reversed(range(MONTHS_IN_SERIES))]
    buckets = {(s.year, s.month): {"year": s.year, "month": s.month, "revenue": 0, "orders": 0} for s in starts}

    cursor = db["order"].find({"created_at": {"$gte": starts[0]}}, {"created_at": 1, "total_price": 1})
    for order in cursor:
        bucket = buckets.get((order["created_at"].year, order["created_at"].month))
        if bucket is not None:
            bucket["revenue"] += order.get("total_price", 0)
            bucket["orders"] += 1
    return [buckets[(s.year, s.month)] for s in starts]


def _top_products(db: Database) -> List[Dict[str, Any]]:
    pipeline = [
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.product_id",
            "total_revenue": {"$sum": {"$multiply": ["$items.quantity", "$items.unit_price"]}},
            "total_sales": {"$sum": "$items.quantity"},
        }},
        {"$sort": {"total_revenue": DESCENDING}},
    ]
    ranked = list(db["order"].aggregate(pipeline))

    oids = [oid for oid in (to_object_id(r["_id"]) for r in ranked) if oid is not None]
    names = {str(p["_id"]): p.get("name") for p in db["product"].find({"_id": {"$in": oids}}, {"name": 1})} if oids else {}

    # products deleted since the sale drop out of the ranking
    top = []
    for row in ranked:
        if row["_id"] in names:
            top.append({
                "product_id": row["_id"],
                "name": names[row["_id"]],
                "total_revenue": row["total_revenue"],
                "total_sales": row["total_sales"],
            })
        if len(top) == TOP_PRODUCTS:
            break
    return top


def _recent_orders(db: Database) -> List[Dict[str, Any]]:
    orders = list(db["order"].find(
        {},
        {"status": 1, "total_price": 1, "created_at": 1, "customer_id": 1},
        sort=[("created_at", DESCENDING)],
        limit=RECENT_ORDERS,
    ))
    cids = [oid for oid in (to_object_id(o.get("customer_id")) for o in orders) if oid is not None]
    customers = {}
    if cids:
        customers = {str(c["_id"]): {"name": c.get("name"), "email": c.get("email")}
                     for c in db["customer"].find({"_id": {"$in": cids}}, {"name": 1, "email": 1})}

    recent = []
    for order in orders:
        public = doc_to_public(order)
        public["customer"] = customers.get(order.get("customer_id"))
        recent.append(public)
    return recent


def get_dashboard_stats(db: Database, admin_role: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    current_month = _month_start(now.year, now.month)
    previous_month = _month_start(now.year, now.month, -1)
    previous_window = {"created_at": {"$gte": previous_month, "$lt": current_month}}
    start_of_day = datetime(now.year, now.month, now.day)
    not_admin = {"roles": {"$ne": admin_role}}

    total_orders = db["order"].count_documents({})
    total_revenue = _revenue(db)

    recent_products = [
        doc_to_public(p)
        for p in db["product"].find({}, {"name": 1, "created_at": 1}, sort=[("created_at", DESCENDING)], limit=RECENT_PRODUCTS)
    ]

    return {
        "total_revenue": total_revenue,
        "total_orders": total_orders,
        "total_customers": db["customer"].count_documents(not_admin),
        "total_products": db["product"].count_documents({}),

        "previous_revenue": _revenue(db, previous_window),
        "previous_orders": db["order"].count_documents(previous_window),
        "previous_customers": db["customer"].count_documents({**not_admin, **previous_window}),
        "previous_products": db["product"].count_documents(previous_window),

        "order_stats": _status_counts(db),

        "today_stats": {
            "orders": db["order"].count_documents({"created_at": {"$gte": start_of_day}}),
            "revenue": _revenue(db, {"created_at": {"$gte": start_of_day}}),
        },

        "stock_alerts": {
            "low_stock": db["product"].count_documents({"stock": {"$gt": 0, "$lte": LOW_STOCK_THRESHOLD}}),
            "out_of_stock": db["product"].count_documents({"stock": 0}),
        },

        "avg_order_value": total_revenue / total_orders if total_orders > 0 else 0,

        "monthly_revenue": _monthly_series(db, now),
        "top_products": _top_products(db),

        "recent_activity": {
            "orders": _recent_orders(db),
            "products": recent_products,
        },

        "last_updated": now,
    }
