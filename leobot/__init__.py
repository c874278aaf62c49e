"""LeoBot - Conversational book discovery backed by Google Books and MongoDB."""

from leobot.app import create_app
from leobot.config import Settings
from leobot.google_books import GoogleBooksClient
from leobot.llm_agent import BookChatAgent

__all__ = [
    "create_app",
    "Settings",
    "GoogleBooksClient",
    "BookChatAgent",
]
