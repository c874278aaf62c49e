"""HTTP API blueprints."""

from flask import Flask

from leobot.routes.auth import bp as auth_bp
from leobot.routes.books import bp as books_bp
from leobot.routes.chat import bp as chat_bp
from leobot.routes.conversations import bp as conversations_bp
from leobot.routes.library import bp as library_bp


def register_blueprints(app: Flask) -> None:
    for blueprint in (auth_bp, books_bp, chat_bp, conversations_bp, library_bp):
        app.register_blueprint(blueprint)
