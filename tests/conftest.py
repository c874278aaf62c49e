"""
Shared fixtures: an in-memory MongoDB, a stubbed Google Books client and an app
wired to both.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import mongomock
import pytest

from leobot.app import create_app
from leobot.auth import generate_token, hash_password
from leobot.config import Settings
from leobot.google_books import GoogleBooksClient
from leobot.llm_agent import BookChatAgent
from leobot.users import UserStore, session_for

TEST_SECRET = "test-secret"
PASSWORD = "Password123"

SAMPLE_BOOK = {
    "id": "zyTCAlFPjgYC",
    "title": "Cien años de soledad",
    "authors": ["Gabriel García Márquez"],
    "description": (
        "La historia de la familia Buendía a lo largo de siete generaciones "
        "en Macondo."
    ),
    "thumbnail": "http://books.google.com/thumb.jpg",
    "publishedDate": "1967",
    "publisher": "Sudamericana",
    "pageCount": 471,
    "categories": ["Fiction"],
    "averageRating": 4.5,
    "ratingsCount": 120,
    "language": "es",
    "previewLink": "http://books.google.com/preview",
    "infoLink": "http://books.google.com/info",
}

SAMPLE_DETAILS = {
    "id": "zyTCAlFPjgYC",
    "title": "Cien años de soledad",
    "subtitle": None,
    "authors": ["Gabriel García Márquez"],
    "publisher": "Sudamericana",
    "publishedDate": "1967",
    "description": "Descripción completa.",
    "isbn": [{"type": "ISBN_13", "identifier": "9780307474728"}],
    "pageCount": 471,
    "categories": ["Fiction"],
    "averageRating": 4.5,
    "ratingsCount": 120,
    "maturityRating": "NOT_MATURE",
    "language": "es",
    "imageLinks": {"thumbnail": "http://books.google.com/thumb.jpg"},
    "previewLink": "http://books.google.com/preview",
    "infoLink": "http://books.google.com/info",
    "canonicalVolumeLink": "http://books.google.com/canonical",
    "saleInfo": {
        "saleability": "FOR_SALE",
        "isEbook": True,
        "listPrice": {"amount": 9.99, "currencyCode": "EUR"},
    },
}


# ============================================================================
# Streaming completion doubles
# ============================================================================


def text_chunk(content: str):
    delta = SimpleNamespace(content=content, tool_calls=None)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)])


def tool_chunk(index: int, call_id=None, name=None, arguments=None):
    fragment = SimpleNamespace(
        index=index,
        id=call_id,
        function=SimpleNamespace(name=name, arguments=arguments),
    )
    delta = SimpleNamespace(content=None, tool_calls=[fragment])
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)])


def llm_client(*rounds) -> MagicMock:
    """
    An OpenAI client double whose streamed completions yield the given rounds of
    chunks in order.
    """
    client = MagicMock()
    client.chat.completions.create.side_effect = [iter(chunks) for chunks in rounds]
    return client


# ============================================================================
# App fixtures
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(jwt_secret=TEST_SECRET, log_level="WARNING")


@pytest.fixture
def db():
    return mongomock.MongoClient()["leobot_test"]


@pytest.fixture
def books_client() -> MagicMock:
    client = MagicMock(spec=GoogleBooksClient)
    client.search.return_value = {"books": [SAMPLE_BOOK], "totalItems": 1}
    client.get_book.return_value = SAMPLE_DETAILS
    return client


@pytest.fixture
def agent(books_client) -> BookChatAgent:
    # No API key: offline mode
    return BookChatAgent(books_client)


@pytest.fixture
def app(settings, db, books_client, agent):
    return create_app(settings, db=db, books_client=books_client, agent=agent)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user(db):
    stored = UserStore(db).create(
        "reader@example.com", hash_password(PASSWORD), "Reader"
    )
    return session_for(stored, include_created=False)


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {generate_token(user, TEST_SECRET)}"}
