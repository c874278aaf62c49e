"""Books a user opened from chat recommendations, most recent click first."""

from typing import Any, Dict, List, Tuple

from pymongo import DESCENDING
from pymongo.database import Database

from leobot.database import RECOMMENDATIONS, utcnow

LIST_LIMIT = 20

BOOK_FIELDS = (
    "title",
    "authors",
    "thumbnail",
    "description",
    "publishedDate",
    "publisher",
    "pageCount",
    "rating",
    "previewLink",
)


class RecommendationStore:
    def __init__(self, db: Database):
        self.collection = db[RECOMMENDATIONS]

    def list_for_user(
        self, user_id: str, limit: int = LIST_LIMIT
    ) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"userId": user_id})
        return list(cursor.sort("clickedAt", DESCENDING).limit(limit))

    def record_click(
        self, user_id: str, book: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Record that the user opened a recommended book.

        A book already recorded for the user only has its clickedAt refreshed.
        Returns (recommendation, created).
        """
        now = utcnow()
        existing = self.collection.find_one(
            {"userId": user_id, "bookId": book["bookId"]}
        )
        if existing:
            self.collection.update_one(
                {"_id": existing["_id"]}, {"$set": {"clickedAt": now}}
            )
            existing["clickedAt"] = now
            return existing, False

        recommendation = {
            "userId": user_id,
            "bookId": book["bookId"],
            **{field: book.get(field) for field in BOOK_FIELDS},
            "clickedAt": now,
        }
        result = self.collection.insert_one(recommendation)
        recommendation["_id"] = result.inserted_id
        return recommendation, True
