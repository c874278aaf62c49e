"""Per-user reading list: books saved for later, optionally marked as read and rated."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from leobot.database import READING_LIST, DuplicateEntryError, utcnow

PRIORITIES = ("high", "medium", "low")
DEFAULT_PRIORITY = "medium"

BOOK_FIELDS = (
    "title",
    "thumbnail",
    "description",
    "publishedDate",
    "pageCount",
    "averageRating",
)


class ReadingListStore:
    def __init__(self, db: Database):
        self.collection = db[READING_LIST]

    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"userId": user_id})
        return list(cursor.sort("addedAt", DESCENDING))

    def add(self, user_id: str, book: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add a book to the user's list. ``book`` must carry bookId and title; an
        unknown priority falls back to medium. Raises DuplicateEntryError when the
        book is already on the list.
        """
        book_id = book["bookId"]
        if self.collection.find_one({"userId": user_id, "bookId": book_id}):
            raise DuplicateEntryError(f"Book {book_id} already in reading list")

        priority = book.get("priority")
        entry = {
            "userId": user_id,
            "bookId": book_id,
            **{field: book.get(field) for field in BOOK_FIELDS},
            "authors": book.get("authors") or [],
            "categories": book.get("categories") or [],
            "addedAt": utcnow(),
            "isRead": False,
            "priority": priority if priority in PRIORITIES else DEFAULT_PRIORITY,
            "notes": book.get("notes") or "",
        }
        try:
            result = self.collection.insert_one(entry)
        except DuplicateKeyError as e:
            raise DuplicateEntryError(f"Book {book_id} already in reading list") from e
        entry["_id"] = result.inserted_id
        return entry

    def remove(self, user_id: str, book_id: str) -> bool:
        result = self.collection.delete_one({"userId": user_id, "bookId": book_id})
        return result.deleted_count > 0

    def mark_as_read(
        self,
        user_id: str,
        book_id: str,
        rating: Optional[int] = None,
        review: Optional[str] = None,
        date_finished: Optional[datetime] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Mark a listed book as read. Returns the applied update, or None when the book
        is not listed.
        """
        update: Dict[str, Any] = {
            "isRead": True,
            "dateFinished": date_finished or utcnow(),
        }
        if rating is not None:
            update["userRating"] = rating
        if review:
            update["userReview"] = review

        result = self.collection.update_one(
            {"userId": user_id, "bookId": book_id}, {"$set": update}
        )
        if result.matched_count == 0:
            return None
        return update
