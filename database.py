"""
MongoDB access for the marketplace.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; routes get
the handle through the `get_db` dependency, which answers 503 in that case.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Collection names
USERS = "users"
PRODUCTS = "products"
PRODUCT_CATEGORIES = "productCategories"
HANDYMAN_SERVICES = "handymanServices"
QUOTATION_REQUESTS = "quotationRequests"
REQUEST_MESSAGES = "requestMessages"
REVIEWS = "reviews"

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL, tz_aware=True)
    db = _client[DATABASE_NAME]
    logger.info("Connected to MongoDB database %s", DATABASE_NAME)
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set; database disabled")


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def _strip_timestamps(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in ("createdAt", "updatedAt", "_id", "id")}


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> str:
    """Insert a document stamped with server-side createdAt/updatedAt. Returns the new id."""
    doc = _strip_timestamps(data)
    stamp = now()
    doc["createdAt"] = stamp
    doc["updatedAt"] = stamp
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def update_document(database: Database, collection_name: str, filt: Dict[str, Any],
                    changes: Dict[str, Any], unset: Optional[List[str]] = None) -> int:
    """Apply $set (and optional $unset) with an updatedAt bump. Returns matched count."""
    update: Dict[str, Any] = {"$set": {**_strip_timestamps(changes), "updatedAt": now()}}
    if unset:
        update["$unset"] = {field: "" for field in unset}
    result = database[collection_name].update_one(filt, update)
    return result.matched_count


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List[tuple]] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    """Create the indexes backing the uniqueness rules."""
    database[USERS].create_index([("email", ASCENDING)], unique=True,
                                 partialFilterExpression={"email": {"$type": "string"}})
    database[PRODUCT_CATEGORIES].create_index([("name", ASCENDING)], unique=True)
    database[REVIEWS].create_index([("authorId", ASCENDING), ("requestId", ASCENDING)], unique=True)
    database[REQUEST_MESSAGES].create_index([("requestId", ASCENDING), ("createdAt", ASCENDING)])
    database[PRODUCTS].create_index([("supplierUid", ASCENDING), ("isActive", ASCENDING)])
    database[HANDYMAN_SERVICES].create_index([("handymanUid", ASCENDING), ("isActive", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)
