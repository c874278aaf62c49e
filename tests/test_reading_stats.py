from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from leobot.database import utcnow
from leobot.reading_stats import (
    ReadingStats,
    build_pipeline,
    current_streak,
    period_start,
    summarize,
)

NOW = datetime(2024, 6, 15, 10, 30)

FACET = {
    "totalBooks": [{"count": 3}],
    "totalPages": [{"_id": None, "pages": 1200}],
    "avgRating": [{"_id": None, "avg": 4.0}],
    "genres": [{"_id": "Fiction", "count": 2}, {"_id": "History", "count": 1}],
    "authors": [{"_id": "Gabriel García Márquez", "count": 2}],
    "booksByPeriod": [
        {"_id": {"year": 2023, "month": 12}, "count": 1},
        {"_id": {"year": 2024, "month": 6}, "count": 2},
    ],
    "finishedDates": [
        {"_id": None, "dates": ["2024-06-15", "2024-06-14", "2023-12-01"]}
    ],
}


@pytest.mark.parametrize(
    "period,expected",
    [
        ("all-time", None),
        ("year", datetime(2024, 1, 1)),
        ("month", datetime(2024, 6, 1)),
        ("week", datetime(2024, 6, 8, 10, 30)),
    ],
)
def test_period_start(period, expected):
    assert period_start(period, NOW) == expected


def test_pipeline_filters_read_books_in_period():
    match = build_pipeline("u1", datetime(2024, 1, 1))[0]["$match"]

    assert match == {
        "userId": "u1",
        "isRead": True,
        "dateFinished": {"$gte": datetime(2024, 1, 1)},
    }
    assert "dateFinished" not in build_pipeline("u1", None)[0]["$match"]


def test_current_streak():
    today = date(2024, 6, 15)

    dates = ["2024-06-15", "2024-06-14", "2024-06-13", "2024-06-10"]

    assert current_streak(dates, today) == 3
    assert current_streak(["2024-06-14"], today) == 0
    assert current_streak([], today) == 0


def test_summarize():
    stats = summarize(FACET, "all-time", None, date(2024, 6, 15))

    assert stats["totalBooks"] == 3
    assert stats["totalPages"] == 1200
    assert stats["avgRating"] == 4.0
    assert stats["topGenres"][0] == {"genre": "Fiction", "count": 2}
    assert stats["topAuthors"] == [{"author": "Gabriel García Márquez", "count": 2}]
    assert stats["booksByPeriod"][1] == {"year": 2024, "month": 6, "count": 2}
    assert stats["currentStreakDays"] == 2
    assert stats["groupBy"] is None
    assert stats["period"] == "all-time"


def test_summarize_empty():
    stats = summarize({}, "week", None, date(2024, 6, 15))

    assert stats["totalBooks"] == 0
    assert stats["totalPages"] == 0
    assert stats["avgRating"] is None
    assert stats["topGenres"] == []
    assert stats["currentStreakDays"] == 0


def test_summarize_grouping():
    today = date(2024, 6, 15)

    def grouped(group_by):
        return summarize(FACET, "all-time", group_by, today)["groupBy"]

    assert grouped("genre") == summarize(FACET, "all-time", None, today)["topGenres"]
    assert grouped("author")[0]["author"] == "Gabriel García Márquez"
    assert grouped("year") == {"2023": 1, "2024": 2}


def test_compute_runs_aggregation():
    db = MagicMock()
    db.__getitem__.return_value.aggregate.return_value = iter([FACET])

    stats = ReadingStats(db).compute("u1", "year", "genre")

    db.__getitem__.assert_called_with("reading_list")
    pipeline = db.__getitem__.return_value.aggregate.call_args.args[0]
    assert pipeline[0]["$match"]["userId"] == "u1"
    assert "$gte" in pipeline[0]["$match"]["dateFinished"]
    assert stats["totalBooks"] == 3
    assert stats["period"] == "year"


def test_compute_without_reads():
    db = MagicMock()
    db.__getitem__.return_value.aggregate.return_value = iter([])

    assert ReadingStats(db).compute("u1")["totalBooks"] == 0


def test_compute_against_collection(db):
    now = utcnow()
    yesterday = now - timedelta(days=1)
    db.reading_list.insert_many(
        [
            {
                "userId": "u1",
                "bookId": "a",
                "isRead": True,
                "dateFinished": now,
                "categories": ["Fiction"],
                "authors": ["Gabriel García Márquez"],
                "pageCount": 471,
                "userRating": 5,
            },
            {
                "userId": "u1",
                "bookId": "b",
                "isRead": True,
                "dateFinished": yesterday,
                "categories": ["Fiction", "History"],
                "authors": ["Gabriel García Márquez"],
                "pageCount": 329,
                "userRating": 3,
            },
            {"userId": "u1", "bookId": "c", "isRead": False, "pageCount": 900},
            {"userId": "u2", "bookId": "a", "isRead": True, "dateFinished": now},
        ]
    )

    stats = ReadingStats(db).compute("u1", "all-time", "author")

    assert stats["totalBooks"] == 2
    assert stats["totalPages"] == 800
    assert stats["avgRating"] == 4.0
    assert stats["topGenres"][0] == {"genre": "Fiction", "count": 2}
    assert {"genre": "History", "count": 1} in stats["topGenres"]
    assert stats["groupBy"] == [{"author": "Gabriel García Márquez", "count": 2}]
    assert sum(row["count"] for row in stats["booksByPeriod"]) == 2
    assert stats["currentStreakDays"] == 2


# ============================================================================
# Endpoint
# ============================================================================


def test_stats_endpoint(app, client, auth_headers, user, monkeypatch):
    stats = app.extensions["leobot"].stats
    compute = MagicMock(return_value={"totalBooks": 0, "period": "month"})
    monkeypatch.setattr(stats, "compute", compute)

    payload = {"period": "month", "groupBy": "author"}

    response = client.post("/api/reading-stats", json=payload, headers=auth_headers)

    assert response.status_code == 200
    compute.assert_called_once_with(user["userId"], "month", "author")


def test_stats_endpoint_defaults_to_all_time(
    app, client, auth_headers, user, monkeypatch
):
    compute = MagicMock(return_value={})
    monkeypatch.setattr(app.extensions["leobot"].stats, "compute", compute)

    client.post("/api/reading-stats", json={}, headers=auth_headers)

    compute.assert_called_once_with(user["userId"], "all-time", None)


@pytest.mark.parametrize("payload", [{"period": "decade"}, {"groupBy": "publisher"}])
def test_stats_endpoint_validation(client, auth_headers, payload):
    response = client.post("/api/reading-stats", json=payload, headers=auth_headers)

    assert response.status_code == 400


def test_stats_endpoint_requires_login(client):
    assert client.post("/api/reading-stats", json={}).status_code == 401
