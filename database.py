from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
_db: Optional[Database] = None
_lock = threading.Lock()


def get_db() -> Database:
    global _client, _db
    if _db is None:
        with _lock:
            # sync dependencies run in a threadpool; build one client only
            if _db is None:
                settings = get_settings()
                _client = MongoClient(settings.DATABASE_URL)
                _db = _client[settings.DATABASE_NAME]
                logger.info("Connected to MongoDB database %s", settings.DATABASE_NAME)
    return _db


def close_db() -> None:
    global _client, _db
    with _lock:
        if _client is not None:
            _client.close()
        _client = None
        _db = None


def ensure_indexes(db: Database) -> None:
    db["customer"].create_index([("email", ASCENDING)], unique=True)
    db["customer"].create_index([("external_id", ASCENDING)], unique=True)
    db["order"].create_index([("customer_id", ASCENDING), ("created_at", ASCENDING)])
    db["product"].create_index([("is_active", ASCENDING), ("category", ASCENDING)])


def utcnow() -> datetime:
    # naive UTC, the same shape pymongo hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return ``value`` as an ObjectId, or None when it is not a valid id."""
    if value is None:
        return None
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def oid_str(oid) -> str:
    return str(oid) if isinstance(oid, ObjectId) else oid


def doc_to_public(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = oid_str(doc.pop("_id"))
    return doc


def create_document(db: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow()
    data_with_meta = {**data, "created_at": now, "updated_at": now}
    result = db[collection_name].insert_one(data_with_meta)
    return db[collection_name].find_one({"_id": result.inserted_id})
