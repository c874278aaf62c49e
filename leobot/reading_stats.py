"""
Reading statistics over the books a user has marked as read.

The heavy lifting is a single $facet aggregation run by MongoDB; the streak and the
optional grouping are derived from its output here.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from pymongo.database import Database

from leobot.database import READING_LIST, utcnow

PERIODS = ("all-time", "year", "month", "week")
GROUP_BY = ("genre", "author", "year")
TOP_N = 10


def period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """First instant counted for the period; None for all-time."""
    now = now or utcnow()
    if period == "year":
        return datetime(now.year, 1, 1)
    if period == "month":
        return datetime(now.year, now.month, 1)
    if period == "week":
        return now - timedelta(days=7)
    return None


def _top(field: str) -> List[Dict[str, Any]]:
    return [
        {"$unwind": {"path": f"${field}", "preserveNullAndEmptyArrays": False}},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
        {"$limit": TOP_N},
    ]


def build_pipeline(user_id: str, start: Optional[datetime]) -> List[Dict[str, Any]]:
    match: Dict[str, Any] = {"userId": user_id, "isRead": True}
    if start is not None:
        match["dateFinished"] = {"$gte": start}

    finished = {"$ifNull": ["$dateFinished", datetime(1970, 1, 1)]}
    pages = {"$sum": {"$ifNull": ["$pageCount", 0]}}
    day = {"$dateToString": {"format": "%Y-%m-%d", "date": "$dateFinished"}}
    return [
        {"$match": match},
        {
            "$facet": {
                "totalBooks": [{"$count": "count"}],
                "totalPages": [{"$group": {"_id": None, "pages": pages}}],
                "avgRating": [
                    {"$group": {"_id": None, "avg": {"$avg": "$userRating"}}}
                ],
                "genres": _top("categories"),
                "authors": _top("authors"),
                "booksByPeriod": [
                    {
                        "$group": {
                            "_id": {
                                "year": {"$year": finished},
                                "month": {"$month": finished},
                            },
                            "count": {"$sum": 1},
                        }
                    },
                    {"$sort": {"_id.year": 1, "_id.month": 1}},
                ],
                "finishedDates": [
                    {"$match": {"dateFinished": {"$ne": None}}},
                    {"$project": {"dateStr": day}},
                    {"$group": {"_id": None, "dates": {"$addToSet": "$dateStr"}}},
                ],
            }
        },
    ]


def current_streak(finished_dates: Iterable[str], today: date) -> int:
    """
    Consecutive days, counting back from today, with at least one finished book.
    Dates are YYYY-MM-DD strings.
    """
    finished = set(d for d in finished_dates if d)
    streak = 0
    day = today
    while day.isoformat() in finished:
        streak += 1
        day -= timedelta(days=1)
    return streak


def _first(facet: Dict[str, Any], name: str, key: str, default=None):
    rows = facet.get(name) or []
    if rows and rows[0].get(key) is not None:
        return rows[0][key]
    return default


def summarize(
    facet: Dict[str, Any], period: str, group_by: Optional[str], today: date
) -> Dict[str, Any]:
    """Shape the facet output into the stats response."""
    genres = [
        {"genre": g["_id"], "count": g["count"]} for g in facet.get("genres") or []
    ]
    authors = [
        {"author": a["_id"], "count": a["count"]} for a in facet.get("authors") or []
    ]
    by_period = [
        {"year": b["_id"]["year"], "month": b["_id"]["month"], "count": b["count"]}
        for b in facet.get("booksByPeriod") or []
    ]

    grouped: Any = None
    if group_by == "genre":
        grouped = genres
    elif group_by == "author":
        grouped = authors
    elif group_by == "year":
        grouped = {}
        for row in by_period:
            key = str(row["year"])
            grouped[key] = grouped.get(key, 0) + row["count"]

    finished_dates = _first(facet, "finishedDates", "dates", [])
    return {
        "totalBooks": _first(facet, "totalBooks", "count", 0),
        "totalPages": _first(facet, "totalPages", "pages", 0),
        "avgRating": _first(facet, "avgRating", "avg"),
        "topGenres": genres,
        "topAuthors": authors,
        "booksByPeriod": by_period,
        "currentStreakDays": current_streak(finished_dates, today),
        "groupBy": grouped,
        "period": period,
    }


class ReadingStats:
    def __init__(self, db: Database):
        self.collection = db[READING_LIST]

    def compute(
        self, user_id: str, period: str = "all-time", group_by: Optional[str] = None
    ) -> Dict[str, Any]:
        now = utcnow()
        pipeline = build_pipeline(user_id, period_start(period, now))
        results = list(self.collection.aggregate(pipeline))
        facet = results[0] if results else {}
        return summarize(facet, period, group_by, now.date())
