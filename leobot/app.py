"""
Flask application factory. Wires settings, the MongoDB database, the Google Books
client and the chat agent into the app, registers the API blueprints, and installs
request logging and JSON error handling.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from flask import Flask, current_app, g, jsonify, request
from loguru import logger
from pymongo.database import Database
from werkzeug.exceptions import HTTPException

from leobot.config import Settings, configure_logging
from leobot.conversations import ConversationStore
from leobot.database import ensure_indexes, get_database, ping
from leobot.google_books import GoogleBooksClient
from leobot.llm_agent import BookChatAgent
from leobot.reading_list import ReadingListStore
from leobot.reading_stats import ReadingStats
from leobot.recommendations import RecommendationStore
from leobot.users import UserStore


@dataclass
class Services:
    db: Database
    books: GoogleBooksClient
    agent: BookChatAgent
    users: UserStore
    conversations: ConversationStore
    reading_list: ReadingListStore
    recommendations: RecommendationStore
    stats: ReadingStats


def get_services() -> Services:
    return current_app.extensions["leobot"]


def json_body() -> Dict[str, Any]:
    """The request's JSON body when it is an object; {} otherwise."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    books_client: Optional[GoogleBooksClient] = None,
    agent: Optional[BookChatAgent] = None,
) -> Flask:
    """Build the app. Collaborators not passed in are created from the settings."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.json.sort_keys = False

    if db is None:
        db = get_database(settings.mongodb_uri, settings.mongodb_db)
    ensure_indexes(db)

    books_client = books_client or GoogleBooksClient(
        api_key=settings.google_books_api_key, lang_restrict=settings.google_books_lang
    )
    agent = agent or BookChatAgent.from_settings(settings, books_client)

    app.extensions["leobot"] = Services(
        db=db,
        books=books_client,
        agent=agent,
        users=UserStore(db),
        conversations=ConversationStore(db),
        reading_list=ReadingListStore(db),
        recommendations=RecommendationStore(db),
        stats=ReadingStats(db),
    )

    from leobot.routes import register_blueprints

    register_blueprints(app)

    @app.route("/api/health")
    def health():
        database_ok = ping(get_services().db)
        status = 200 if database_ok else 503
        body = {"status": "ok" if database_ok else "degraded", "database": database_ok}
        return jsonify(body), status

    _install_request_logging(app)
    _install_error_handlers(app)

    logger.info(
        f"LeoBot app created (env={settings.app_env}, db={settings.mongodb_db})"
    )
    return app


def _install_request_logging(app: Flask) -> None:
    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def log_request(response):
        started = g.get("request_started")
        elapsed = (time.perf_counter() - started) * 1000 if started else 0.0
        logger.info(
            f"{request.method} {request.path} -> {response.status_code} "
            f"({elapsed:.1f} ms)"
        )
        return response


def _install_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"error": error.description or error.name}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.path}: {error}")
        return jsonify({"error": "Internal server error"}), 500
