"""
MongoDB access for the House of Muziris backend.

`db` is the shared database handle (None when DATABASE_URL is not set).
create_document / get_documents are thin helpers used for the simple
insert and query cases; everything else talks to `db[...]` directly.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from config import DATABASE_NAME, DATABASE_TIMEOUT_MS, DATABASE_URL

logger = logging.getLogger(__name__)

client = None
db = None
if DATABASE_URL:
    client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS)
    db = client[DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _require_db():
    if db is None:
        raise Exception("Database not available. Set DATABASE_URL.")
    return db


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document and return its id as a string. Stamps created_at/updated_at."""
    database = _require_db()
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[tuple] = None) -> list:
    database = _require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(*sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Copy a document replacing Mongo's `_id` with a string `id`."""
    if doc is None:
        return None
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


def ensure_indexes():
    database = _require_db()
    try:
        database["requests"].create_index([("email", ASCENDING), ("status", ASCENDING)])
        database["requests"].create_index("verification_token", sparse=True)
        database["users"].create_index("email", unique=True)
        database["orders"].create_index("order_number", unique=True)
        database["orders"].create_index(
            "idempotency_key", unique=True,
            partialFilterExpression={"idempotency_key": {"$type": "string"}},
        )
        database["trail"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
        for name in ("ratelimits", "usedlinks", "revokedtokens"):
            database[name].create_index("expires_at", expireAfterSeconds=0)
    except PyMongoError as exc:
        logger.warning("Unable to ensure indexes: %s", exc)
