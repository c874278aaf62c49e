"""Reading list, recommendation history and reading statistics endpoints."""

from datetime import datetime, timezone

from flask import Blueprint, g, jsonify, request

from leobot.app import get_services, json_body
from leobot.auth import login_required
from leobot.database import DuplicateEntryError, serialize_document, to_json_value
from leobot.reading_stats import GROUP_BY, PERIODS

bp = Blueprint("library", __name__, url_prefix="/api")


def _parse_date(value):
    """ISO-8601 string to a naive UTC datetime; None when unparseable."""
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _required_strings(data, *fields) -> bool:
    return all(isinstance(data.get(f), str) and data.get(f) for f in fields)


# Reading list


@bp.route("/reading-list", methods=["GET"])
@login_required
def get_reading_list():
    books = get_services().reading_list.list_for_user(g.user["userId"])
    return jsonify(
        {"books": [serialize_document(b) for b in books], "total": len(books)}
    )


@bp.route("/reading-list", methods=["POST"])
@login_required
def add_to_reading_list():
    data = json_body()
    if not _required_strings(data, "bookId", "title"):
        return jsonify({"error": "bookId and title are required"}), 400

    try:
        entry = get_services().reading_list.add(g.user["userId"], data)
    except DuplicateEntryError:
        return jsonify({"error": "The book is already in your reading list"}), 409

    return jsonify(
        {
            "book": serialize_document(entry),
            "message": "Book added to your reading list",
        }
    )


@bp.route("/reading-list", methods=["DELETE"])
@login_required
def remove_from_reading_list():
    book_id = request.args.get("bookId")
    if not book_id:
        return jsonify({"error": "bookId is required"}), 400

    if not get_services().reading_list.remove(g.user["userId"], book_id):
        return jsonify({"error": "Book not found in your reading list"}), 404
    return jsonify({"message": "Book removed from your reading list"})


@bp.route("/reading-list", methods=["PATCH"])
@login_required
def mark_as_read():
    data = json_body()
    if not _required_strings(data, "bookId"):
        return jsonify({"error": "bookId is required"}), 400

    rating = data.get("rating")
    if rating is not None and (
        isinstance(rating, bool)
        or not isinstance(rating, (int, float))
        or not 1 <= rating <= 5
    ):
        return jsonify({"error": "Rating must be between 1 and 5"}), 400

    review = data.get("review")
    if review is not None and not isinstance(review, str):
        return jsonify({"error": "review must be a string"}), 400

    date_finished = None
    if data.get("dateFinished"):
        date_finished = _parse_date(data["dateFinished"])
        if date_finished is None:
            return jsonify({"error": "dateFinished must be an ISO-8601 date"}), 400

    update = get_services().reading_list.mark_as_read(
        g.user["userId"],
        data["bookId"],
        rating=rating,
        review=review,
        date_finished=date_finished,
    )
    if update is None:
        return jsonify({"error": "Book not found in your reading list"}), 404
    return jsonify({"message": "Book marked as read", "data": to_json_value(update)})


# Recommendations


@bp.route("/recommendations", methods=["GET"])
@login_required
def get_recommendations():
    recommendations = get_services().recommendations.list_for_user(g.user["userId"])
    return jsonify(
        {"recommendations": [serialize_document(r) for r in recommendations]}
    )


@bp.route("/recommendations", methods=["POST"])
@login_required
def save_recommendation():
    data = json_body()
    if not _required_strings(data, "bookId", "title", "previewLink"):
        return jsonify({"error": "bookId, title and previewLink are required"}), 400

    recommendation, _ = get_services().recommendations.record_click(
        g.user["userId"], data
    )
    return jsonify({"recommendation": serialize_document(recommendation)})


# Reading stats


@bp.route("/reading-stats", methods=["POST"])
@login_required
def reading_stats():
    data = json_body()
    period = data.get("period") or "all-time"
    group_by = data.get("groupBy")

    if not isinstance(period, str) or period not in PERIODS:
        return jsonify({"error": f"period must be one of {', '.join(PERIODS)}"}), 400
    if group_by is not None and (
        not isinstance(group_by, str) or group_by not in GROUP_BY
    ):
        return jsonify({"error": f"groupBy must be one of {', '.join(GROUP_BY)}"}), 400

    return jsonify(get_services().stats.compute(g.user["userId"], period, group_by))
