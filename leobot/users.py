"""User accounts stored in the ``users`` collection."""

from typing import Any, Dict, Optional

from loguru import logger
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from leobot.database import (
    USERS,
    DuplicateEntryError,
    to_json_value,
    to_object_id,
    utcnow,
)


class UserStore:
    def __init__(self, db: Database):
        self.collection = db[USERS]

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"email": email.lower()})

    def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def create(self, email: str, password_hash: str, name: str) -> Dict[str, Any]:
        """Insert a new user. Email is stored lower-cased and name trimmed."""
        now = utcnow()
        user = {
            "email": email.lower(),
            "password": password_hash,
            "name": name.strip(),
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            result = self.collection.insert_one(user)
        except DuplicateKeyError as e:
            message = f"Email {user['email']} already registered"
            raise DuplicateEntryError(message) from e
        user["_id"] = result.inserted_id
        logger.info(f"Registered user {result.inserted_id}")
        return user

    def touch_last_login(self, user_id) -> None:
        self.collection.update_one({"_id": user_id}, {"$set": {"lastLogin": utcnow()}})


def session_for(user: Dict[str, Any], include_created: bool = True) -> Dict[str, Any]:
    """The public session payload for a stored user."""
    session = {
        "userId": str(user["_id"]),
        "email": user["email"],
        "name": user["name"],
    }
    if include_created and user.get("createdAt"):
        session["createdAt"] = to_json_value(user["createdAt"])
    return session
