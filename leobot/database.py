"""
MongoDB access: one shared client per process, index setup and JSON serialization of
stored documents.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from loguru import logger
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError
from pymongo.server_api import ServerApi

USERS = "users"
CONVERSATIONS = "conversations"
MESSAGES = "messages"
READING_LIST = "reading_list"
RECOMMENDATIONS = "recommendations"

_client: Optional[MongoClient] = None


class DuplicateEntryError(Exception):
    """A document with the same unique key already exists."""


def get_client(uri: str) -> MongoClient:
    """Get or create the process-wide MongoDB client."""
    global _client
    if _client is None:
        server_api = ServerApi("1", strict=True, deprecation_errors=True)
        _client = MongoClient(uri, server_api=server_api)
    return _client


def get_database(uri: str, name: str) -> Database:
    return get_client(uri)[name]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


def ping(db: Database) -> bool:
    """Check that the database answers."""
    try:
        db.client.admin.command("ping")
        return True
    except PyMongoError as e:
        logger.error(f"MongoDB connection error: {e}")
        return False


def ensure_indexes(db: Database) -> None:
    """Create the indexes the handlers rely on (idempotent)."""
    db[USERS].create_index("email", unique=True)
    db[CONVERSATIONS].create_index([("userId", ASCENDING), ("updatedAt", DESCENDING)])
    db[MESSAGES].create_index([("conversationId", ASCENDING), ("createdAt", ASCENDING)])
    db[READING_LIST].create_index(
        [("userId", ASCENDING), ("bookId", ASCENDING)], unique=True
    )
    db[RECOMMENDATIONS].create_index(
        [("userId", ASCENDING), ("bookId", ASCENDING)], unique=True
    )
    logger.debug("MongoDB indexes ensured")


def utcnow() -> datetime:
    """Current UTC time as the naive datetime MongoDB hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id from a URL or payload; None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def to_json_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_json_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_json_value(v) for v in value]
    return value


def serialize_document(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a stored document into JSON-safe data, with the id as both _id and id."""
    data = to_json_value(dict(doc))
    if "_id" in data:
        data["id"] = data["_id"]
    return data
