"""
Fixed-window request counter shared through MongoDB.

Each (scope, client, window) gets one document whose `count` is bumped
with an atomic upsert, so every process behind the load balancer sees
the same budget. Expired windows are reaped by the TTL index on
`expires_at` (see database.ensure_indexes).
"""

from datetime import datetime, timedelta, timezone

from pymongo import ReturnDocument

from database import db


def hit(scope: str, client_key: str, limit: int, window_seconds: int) -> bool:
    """Record one request; return False once the client is over budget for the window."""
    now = datetime.now(timezone.utc)
    window = int(now.timestamp()) // window_seconds
    window_start = datetime.fromtimestamp(window * window_seconds, tz=timezone.utc)
    doc = db["ratelimits"].find_one_and_update(
        {"_id": f"{scope}:{client_key}:{window}"},
        {
            "$inc": {"count": 1},
            "$setOnInsert": {"expires_at": window_start + timedelta(seconds=window_seconds)},
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return doc["count"] <= limit
