"""
MongoDB access for the salon API.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; routes
check it through `require_db()` and answer 503 instead of crashing.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from config import Config
from logger import get_logger

logger = get_logger(__name__)

_client = None
db = None

if Config.DATABASE_URL and Config.DATABASE_NAME:
    _client = MongoClient(Config.DATABASE_URL)
    db = _client[Config.DATABASE_NAME]


class DatabaseUnavailable(Exception):
    """Raised when a request needs MongoDB and it is not configured."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def require_db():
    if db is None:
        raise DatabaseUnavailable("Database not configured")
    return db


def to_object_id(value: str) -> Optional[ObjectId]:
    """Parse a 24-hex id, returning None for anything malformed."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    database = require_db()
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    database = require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes() -> None:
    """Create the uniqueness constraints and analytics indexes."""
    database = require_db()
    database["user"].create_index("email", unique=True)
    database["artist"].create_index("phone", unique=True)
    database["artist"].create_index([("is_active", ASCENDING), ("name", ASCENDING)])
    database["service"].create_index("name_key", unique=True)
    database["service"].create_index(
        [("is_active", ASCENDING), ("category", ASCENDING), ("name", ASCENDING)]
    )
    database["session"].create_index("token", unique=True)
    database["payment"].create_index("order_id", unique=True, sparse=True)
    database["payment"].create_index("link_id", unique=True, sparse=True)
    database["payment"].create_index("payment_id", unique=True, sparse=True)
    database["visit"].create_index("date")
    database["visit"].create_index([("artist", ASCENDING), ("date", ASCENDING)])
    database["visit"].create_index([("artist_id", ASCENDING), ("date", ASCENDING)])
    database["visit"].create_index("contact")
    logger.info("[DB] Indexes ensured")
