"""
Conversations and their messages.

Messages are saved through ``save_message``, which refuses to store the same
(role, content) twice within a short window so that a client retrying or
double-submitting does not duplicate the transcript.
"""

from datetime import timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from leobot.database import CONVERSATIONS, MESSAGES, to_object_id, utcnow

DEFAULT_TITLE = "New conversation"
LIST_LIMIT = 20
DUPLICATE_WINDOW = timedelta(seconds=2)
PREVIEW_LENGTH = 100
ROLES = ("user", "assistant")


def duplicate_message_ids(messages: List[Dict[str, Any]]) -> List[Any]:
    """
    Ids of messages repeating an earlier (role, content) within the same second.
    Input must be oldest first.
    """
    seen = set()
    duplicates = []
    for message in messages:
        created = message.get("createdAt")
        second = None
        if created:
            second = int(created.replace(tzinfo=timezone.utc).timestamp())
        key = (message.get("role"), message.get("content"), second)
        if key in seen:
            duplicates.append(message["_id"])
        else:
            seen.add(key)
    return duplicates


class ConversationStore:
    def __init__(self, db: Database):
        self.conversations = db[CONVERSATIONS]
        self.messages = db[MESSAGES]

    def list_for_user(
        self, user_id: str, limit: int = LIST_LIMIT
    ) -> List[Dict[str, Any]]:
        """Most recently updated conversations first."""
        cursor = (
            self.conversations.find({"userId": user_id})
            .sort("updatedAt", DESCENDING)
            .limit(limit)
        )
        return list(cursor)

    def get(self, conversation_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """A conversation owned by the user, or None."""
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        return self.conversations.find_one({"_id": oid, "userId": user_id})

    def create(
        self,
        user_id: str,
        title: Optional[str] = None,
        first_message: Optional[str] = None,
    ) -> Dict[str, Any]:
        now = utcnow()
        conversation = {
            "userId": user_id,
            "title": title or DEFAULT_TITLE,
            "preview": first_message or "",
            "messageCount": 1 if first_message else 0,
            "createdAt": now,
            "updatedAt": now,
        }
        result = self.conversations.insert_one(conversation)
        conversation["_id"] = result.inserted_id
        return conversation

    def update(self, conversation_id: str, user_id: str, **fields) -> bool:
        """
        Set title/messageCount/preview (those not None) and bump updatedAt.
        False when not found.
        """
        oid = to_object_id(conversation_id)
        if oid is None:
            return False
        update = {k: v for k, v in fields.items() if v is not None}
        update["updatedAt"] = utcnow()
        result = self.conversations.update_one(
            {"_id": oid, "userId": user_id}, {"$set": update}
        )
        return result.matched_count > 0

    def delete(self, conversation_id: str, user_id: str) -> bool:
        """Delete the conversation and its messages. False when not found."""
        oid = to_object_id(conversation_id)
        if oid is None:
            return False
        result = self.conversations.delete_one({"_id": oid, "userId": user_id})
        if result.deleted_count == 0:
            return False
        removed = self.messages.delete_many({"conversationId": str(oid)})
        logger.info(f"Deleted conversation {oid} with {removed.deleted_count} messages")
        return True

    def list_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        """All messages of a conversation, oldest first."""
        cursor = self.messages.find({"conversationId": conversation_id})
        return list(cursor.sort("createdAt", ASCENDING))

    def recent_messages(self, conversation_id: str, limit: int) -> List[Dict[str, Any]]:
        """The last ``limit`` messages, oldest first."""
        cursor = (
            self.messages.find({"conversationId": conversation_id})
            .sort("createdAt", DESCENDING)
            .limit(limit)
        )
        return list(reversed(list(cursor)))

    def save_message(
        self,
        conversation: Dict[str, Any],
        role: str,
        content: str,
        books: Optional[List[Dict[str, Any]]] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Store a message in an owned conversation.

        Returns (message, created). When an identical message was saved within the
        duplicate window the existing one is returned with created=False and nothing
        is written.
        """
        conversation_id = str(conversation["_id"])
        now = utcnow()
        duplicate = self.messages.find_one(
            {
                "conversationId": conversation_id,
                "role": role,
                "content": content,
                "createdAt": {"$gte": now - DUPLICATE_WINDOW},
            }
        )
        if duplicate:
            logger.debug(f"Skipping duplicate {role} message in {conversation_id}")
            return duplicate, False

        message = {
            "conversationId": conversation_id,
            "role": role,
            "content": content,
            "books": books or [],
            "createdAt": now,
        }
        result = self.messages.insert_one(message)
        message["_id"] = result.inserted_id

        update: Dict[str, Any] = {
            "$set": {"updatedAt": now},
            "$inc": {"messageCount": 1},
        }
        if role == "user" and not conversation.get("preview") and content:
            update["$set"]["preview"] = content[:PREVIEW_LENGTH]
        self.conversations.update_one({"_id": conversation["_id"]}, update)
        return message, True

    def remove_duplicates(self, conversation: Dict[str, Any]) -> int:
        """
        Delete repeated messages from a conversation and reset its messageCount.
        Returns how many were removed.
        """
        messages = self.list_messages(str(conversation["_id"]))
        duplicates = duplicate_message_ids(messages)
        if not duplicates:
            return 0
        result = self.messages.delete_many({"_id": {"$in": duplicates}})
        self.conversations.update_one(
            {"_id": conversation["_id"]},
            {"$set": {"messageCount": len(messages) - result.deleted_count}},
        )
        return result.deleted_count
