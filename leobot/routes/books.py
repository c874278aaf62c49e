"""Google Books proxy endpoints."""

from flask import Blueprint, current_app, jsonify, request
from loguru import logger

from leobot.app import get_services
from leobot.google_books import (
    MAX_RESULTS_LIMIT,
    ORDER_BY_VALUES,
    BookNotFoundError,
    BookSearchError,
)

bp = Blueprint("books", __name__, url_prefix="/api/books")


@bp.route("/search", methods=["GET"])
def search_books():
    query = request.args.get("query", "")
    if not query.strip():
        return jsonify({"error": 'The "query" parameter is required'}), 400

    try:
        max_results = int(request.args.get("maxResults", "10"))
        start_index = int(request.args.get("startIndex", "0"))
    except ValueError:
        return jsonify({"error": "maxResults and startIndex must be integers"}), 400
    order_by = request.args.get("orderBy", "relevance")

    if not 1 <= max_results <= MAX_RESULTS_LIMIT:
        message = f"maxResults must be between 1 and {MAX_RESULTS_LIMIT}"
        return jsonify({"error": message}), 400
    if order_by not in ORDER_BY_VALUES:
        return jsonify({"error": 'orderBy must be "relevance" or "newest"'}), 400
    if start_index < 0:
        return jsonify({"error": "startIndex must not be negative"}), 400

    try:
        result = get_services().books.search(
            query, max_results=max_results, order_by=order_by, start_index=start_index
        )
    except BookSearchError as e:
        return jsonify({"error": "Error searching Google Books"}), e.status_code
    except Exception as e:
        logger.exception(f"Error in /api/books/search: {e}")
        body = {"error": "Internal server error"}
        if not current_app.config["SETTINGS"].is_production:
            body["details"] = str(e)
        return jsonify(body), 500

    return jsonify(result)


@bp.route("/<book_id>", methods=["GET"])
def book_details(book_id):
    try:
        book = get_services().books.get_book(book_id)
    except BookNotFoundError:
        return jsonify({"success": False, "error": "Book not found"}), 404
    except BookSearchError as e:
        logger.error(f"Error fetching book details for {book_id}: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

    return jsonify({"success": True, "book": book})
