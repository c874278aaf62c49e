"""
Google Books API client. Searches volumes and fetches a single volume, normalizing
both into the shapes the chat and the HTTP API hand out.
"""

from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
ORDER_BY_VALUES = ("relevance", "newest")
MAX_RESULTS_LIMIT = 40

IMAGE_SIZES = ("smallThumbnail", "thumbnail", "small", "medium", "large", "extraLarge")


class BookSearchError(Exception):
    """The book search provider failed or answered with an error status."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


class BookNotFoundError(BookSearchError):
    def __init__(self, book_id: str):
        super().__init__(f"Book '{book_id}' not found", status_code=404)
        self.book_id = book_id


def format_book(item: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a search result volume."""
    info = item.get("volumeInfo") or {}
    images = info.get("imageLinks") or {}
    return {
        "id": item.get("id", ""),
        "title": info.get("title") or "Untitled",
        "authors": info.get("authors") or ["Unknown author"],
        "description": info.get("description") or "No description available",
        "thumbnail": images.get("thumbnail") or images.get("smallThumbnail") or "",
        "publishedDate": info.get("publishedDate") or "",
        "publisher": info.get("publisher") or "",
        "pageCount": info.get("pageCount") or 0,
        "categories": info.get("categories") or [],
        "averageRating": info.get("averageRating") or 0,
        "ratingsCount": info.get("ratingsCount") or 0,
        "language": info.get("language") or "",
        "previewLink": info.get("previewLink") or "",
        "infoLink": info.get("infoLink") or "",
    }


def format_book_details(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a full volume, keeping identifiers, every cover size and sale info."""
    info = data.get("volumeInfo") or {}
    images = info.get("imageLinks") or {}
    sale = data.get("saleInfo")
    return {
        "id": data.get("id", ""),
        "title": info.get("title"),
        "subtitle": info.get("subtitle"),
        "authors": info.get("authors") or [],
        "publisher": info.get("publisher"),
        "publishedDate": info.get("publishedDate"),
        "description": info.get("description"),
        "isbn": [
            {"type": ident.get("type"), "identifier": ident.get("identifier")}
            for ident in info.get("industryIdentifiers") or []
        ],
        "pageCount": info.get("pageCount"),
        "categories": info.get("categories") or [],
        "averageRating": info.get("averageRating"),
        "ratingsCount": info.get("ratingsCount"),
        "maturityRating": info.get("maturityRating"),
        "language": info.get("language"),
        "imageLinks": {size: images.get(size) for size in IMAGE_SIZES},
        "previewLink": info.get("previewLink"),
        "infoLink": info.get("infoLink"),
        "canonicalVolumeLink": info.get("canonicalVolumeLink"),
        "saleInfo": (
            {
                "country": sale.get("country"),
                "saleability": sale.get("saleability"),
                "isEbook": sale.get("isEbook"),
                "listPrice": sale.get("listPrice"),
                "retailPrice": sale.get("retailPrice"),
                "buyLink": sale.get("buyLink"),
            }
            if sale
            else None
        ),
    }


class GoogleBooksClient:
    """Thin synchronous wrapper over the Google Books volumes endpoints."""

    def __init__(
        self,
        api_key: str = "",
        lang_restrict: str = "es",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.lang_restrict = lang_restrict
        self._http = httpx.Client(
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def close(self):
        self._http.close()

    def _params(self, **params) -> Dict[str, Any]:
        params = {k: v for k, v in params.items() if v not in (None, "")}
        if self.api_key:
            params["key"] = self.api_key
        return params

    def _get(self, url: str, params: Dict[str, Any]) -> httpx.Response:
        try:
            return self._http.get(url, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Google Books request failed: {e}")
            raise BookSearchError(f"Google Books request failed: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        """Decode a 200 body, which must be a JSON object."""
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Google Books returned a non-JSON body: {e}")
            raise BookSearchError("Invalid response from Google Books") from e
        if not isinstance(data, dict):
            logger.error(f"Google Books returned {type(data).__name__}, not an object")
            raise BookSearchError("Invalid response from Google Books")
        return data

    def search(
        self,
        query: str,
        max_results: int = 10,
        order_by: str = "relevance",
        start_index: int = 0,
    ) -> Dict[str, Any]:
        """Search volumes; returns {"books": [...], "totalItems": n}."""
        params = self._params(
            q=query,
            maxResults=str(max_results),
            orderBy=order_by,
            startIndex=str(start_index),
            printType="books",
            langRestrict=self.lang_restrict,
        )
        response = self._get(GOOGLE_BOOKS_URL, params)

        if response.status_code != 200:
            status, reason = response.status_code, response.reason_phrase
            logger.error(f"Google Books API error: {status} {reason}")
            raise BookSearchError(
                "Error searching Google Books", status_code=response.status_code
            )

        data = self._json(response)
        books: List[Dict[str, Any]] = [
            format_book(item) for item in data.get("items") or []
        ]
        logger.debug(f"Google Books search '{query}' returned {len(books)} books")
        return {"books": books, "totalItems": data.get("totalItems") or 0}

    def get_book(self, book_id: str) -> Dict[str, Any]:
        """Fetch one volume by id."""
        response = self._get(f"{GOOGLE_BOOKS_URL}/{book_id}", self._params())

        if response.status_code == 404:
            raise BookNotFoundError(book_id)
        if response.status_code != 200:
            raise BookSearchError(
                f"Google Books API error: {response.status_code}",
                status_code=response.status_code,
            )
        return format_book_details(self._json(response))
