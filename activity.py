import logging
from typing import Optional

from pymongo.errors import PyMongoError

from database import create_document, get_documents, serialize
from schemas import ActivityEntry

logger = logging.getLogger(__name__)

ACTIVITY_QUERY_LIMIT = 50


def log_activity(user_id: str, user_email: str, action: str, description: str,
                 metadata: Optional[dict] = None):
    """Append to the activity trail. Best effort: failures are logged, never raised."""
    entry = ActivityEntry(user_id=user_id, user_email=user_email, action=action,
                          description=description, metadata=metadata)
    try:
        create_document("trail", entry)
    except PyMongoError as exc:
        logger.warning("Unable to record activity %s for %s: %s", action, user_id, exc)


def list_activity(user_id: str, limit: int = ACTIVITY_QUERY_LIMIT) -> list:
    limit = max(1, min(limit, ACTIVITY_QUERY_LIMIT))
    docs = get_documents("trail", {"user_id": user_id}, limit=limit, sort=("created_at", -1))
    return [serialize(d) for d in docs]
