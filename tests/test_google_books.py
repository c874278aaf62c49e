import httpx
import pytest

from leobot.google_books import (
    BookNotFoundError,
    BookSearchError,
    GoogleBooksClient,
    format_book,
)

VOLUME = {
    "id": "abc123",
    "volumeInfo": {
        "title": "Rayuela",
        "authors": ["Julio Cortázar"],
        "description": "Novela.",
        "imageLinks": {"smallThumbnail": "http://img/small.jpg"},
        "pageCount": 600,
        "industryIdentifiers": [{"type": "ISBN_10", "identifier": "8437604575"}],
    },
    "saleInfo": {"country": "ES", "saleability": "NOT_FOR_SALE", "isEbook": False},
}


def make_client(handler, api_key=""):
    return GoogleBooksClient(
        api_key=api_key, lang_restrict="es", transport=httpx.MockTransport(handler)
    )


def test_search_sends_expected_params_and_normalizes():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json={"totalItems": 1, "items": [VOLUME]})

    client = make_client(handler, api_key="KEY")

    result = client.search("cortazar", max_results=5, order_by="newest")

    assert seen["q"] == "cortazar"
    assert seen["maxResults"] == "5"
    assert seen["orderBy"] == "newest"
    assert seen["printType"] == "books"
    assert seen["langRestrict"] == "es"
    assert seen["key"] == "KEY"
    assert result["totalItems"] == 1
    book = result["books"][0]
    assert book["id"] == "abc123"
    assert book["thumbnail"] == "http://img/small.jpg"
    assert book["categories"] == []


def test_search_without_items():
    client = make_client(lambda request: httpx.Response(200, json={"totalItems": 0}))

    assert client.search("nothing") == {"books": [], "totalItems": 0}


def test_search_error_keeps_upstream_status():
    client = make_client(lambda request: httpx.Response(429, json={"error": {}}))

    with pytest.raises(BookSearchError) as exc_info:
        client.search("anything")
    assert exc_info.value.status_code == 429


def test_search_network_failure():
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(BookSearchError):
        make_client(handler).search("anything")


@pytest.mark.parametrize(
    "body",
    [{"text": "<html>quota exceeded</html>"}, {"json": ["not", "an", "object"]}],
)
def test_search_rejects_malformed_body(body):
    client = make_client(lambda request: httpx.Response(200, **body))

    with pytest.raises(BookSearchError):
        client.search("anything")


def test_get_book_rejects_non_json_body():
    client = make_client(lambda request: httpx.Response(200, text="not json"))

    with pytest.raises(BookSearchError):
        client.get_book("abc123")


def test_get_book_details():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/volumes/abc123")
        return httpx.Response(200, json=VOLUME)

    book = make_client(handler).get_book("abc123")

    assert book["title"] == "Rayuela"
    assert book["isbn"] == [{"type": "ISBN_10", "identifier": "8437604575"}]
    assert book["imageLinks"]["smallThumbnail"] == "http://img/small.jpg"
    assert book["imageLinks"]["large"] is None
    assert book["saleInfo"]["saleability"] == "NOT_FOR_SALE"


def test_get_book_not_found():
    client = make_client(lambda request: httpx.Response(404, json={}))

    with pytest.raises(BookNotFoundError):
        client.get_book("missing")


def test_format_book_fills_defaults():
    book = format_book({"id": "x", "volumeInfo": {}})

    assert book["title"] == "Untitled"
    assert book["authors"] == ["Unknown author"]
    assert book["pageCount"] == 0
    assert book["thumbnail"] == ""


# ============================================================================
# Endpoints
# ============================================================================


def test_search_endpoint(client, books_client):
    response = client.get(
        "/api/books/search?query=garcia&maxResults=5&orderBy=newest&startIndex=10"
    )

    assert response.status_code == 200
    assert response.get_json()["totalItems"] == 1
    books_client.search.assert_called_once_with(
        "garcia", max_results=5, order_by="newest", start_index=10
    )


@pytest.mark.parametrize(
    "query_string",
    [
        "query=%20",
        "",
        "query=x&maxResults=0",
        "query=x&maxResults=41",
        "query=x&maxResults=ten",
        "query=x&orderBy=oldest",
        "query=x&startIndex=-1",
    ],
)
def test_search_endpoint_validation(client, query_string):
    assert client.get(f"/api/books/search?{query_string}").status_code == 400


def test_search_endpoint_propagates_upstream_status(client, books_client):
    books_client.search.side_effect = BookSearchError("quota", status_code=403)

    response = client.get("/api/books/search?query=x")

    assert response.status_code == 403
    assert response.get_json()["error"] == "Error searching Google Books"


def test_book_details_endpoint(client):
    response = client.get("/api/books/zyTCAlFPjgYC")

    assert response.status_code == 200
    assert response.get_json()["book"]["pageCount"] == 471


def test_book_details_not_found(client, books_client):
    books_client.get_book.side_effect = BookNotFoundError("nope")

    response = client.get("/api/books/nope")

    assert response.status_code == 404
    assert response.get_json()["success"] is False
