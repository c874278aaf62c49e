"""
LLM chat with tool calling. Talks to an OpenAI-compatible endpoint (OpenRouter by
default) and lets the model search Google Books and look up a single book. Responses
are streamed: tool-call fragments are assembled from the stream, executed, fed back,
and the final answer's text deltas are passed through as they arrive.
"""

import html
import json
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

import openai
from openai import OpenAI
from loguru import logger

from leobot.google_books import (
    MAX_RESULTS_LIMIT,
    ORDER_BY_VALUES,
    BookSearchError,
    GoogleBooksClient,
)

MAX_MESSAGE_LENGTH = 5000
DESCRIPTION_PREVIEW = 200


def sanitize_text(text: str) -> str:
    """Escape HTML, trim and cap the length of text headed for the model."""
    return html.escape(text, quote=True).strip()[:MAX_MESSAGE_LENGTH]


def llm_error_status(error: Exception) -> Tuple[int, str]:
    """Map a provider failure to the HTTP status and message shown to the user."""
    if isinstance(error, openai.APITimeoutError):
        return 408, "The request took too long. Please try again."
    if isinstance(error, openai.AuthenticationError):
        return 401, "Authentication with the language model failed. Check the API key."
    if isinstance(error, openai.RateLimitError):
        return 429, "Too many requests. Please wait a moment."
    return 500, str(error) or "Unknown error"


class BookChatAgent:
    """
    Conversational book-discovery agent.

    Capabilities:
    - Google Books search and single-book lookup through tool calling
    - Streaming of the model's answer, with tool calls assembled from streamed fragments
    - Multi-turn context, including the books shown in earlier turns
    - Offline mode (no API key) that answers with a plain search
    """

    TOOLS = [
        {
            "name": "searchBooks",
            "description": (
                "Search Google Books by title, author, topic or keywords. Use it "
                "whenever the user asks for recommendations on a topic, books by an "
                "author, or what is available in a category."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Search terms: title, author, topic or keywords",
                    },
                    "maxResults": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": MAX_RESULTS_LIMIT,
                        "description": "Maximum number of results (1-40, default 10)",
                    },
                    "orderBy": {
                        "type": "string",
                        "enum": list(ORDER_BY_VALUES),
                        "description": "'relevance' (default) or 'newest'",
                    },
                },
                "required": ["query"],
            },
        },
        {
            "name": "getBookDetails",
            "description": (
                "Get the complete information of one book by its Google Books id "
                "(bookId from searchBooks). ALWAYS use it when the user asks for more "
                "about a specific book, e.g. 'tell me about the first one', 'how many "
                "pages does the second have', 'full description'. Returns full "
                "description, page count, ISBN, categories, ratings and price."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "bookId": {
                        "type": "string",
                        "description": (
                            "Unique Google Books id of the book (from searchBooks)"
                        ),
                    }
                },
                "required": ["bookId"],
            },
        },
    ]

    TOOL_DISPLAY_NAMES = {
        "searchBooks": "Searching books",
        "getBookDetails": "Looking up book details",
    }

    SYSTEM_PROMPT = """You are LeoBot, a friendly assistant that helps people discover
books.

RULES:
- Answer clearly and concisely, in the language the user writes in (Spanish by default)
- Use searchBooks for any request for books, recommendations, authors or topics
- Use getBookDetails when the user asks about a specific book; "the first",
  "the second"... refer to the position of the books shown in the latest results
- Books you find are shown to the user as cards, so mention at most a few titles
  and never paste raw data
- NEVER output JSON, code, or tool names

You can only: recommend books, answer questions about books, and help the user
choose what to read next."""

    MAX_TOOL_ROUNDS = 3
    HISTORY_LIMIT = 10

    def __init__(
        self,
        books_client: GoogleBooksClient,
        api_key: str = "",
        base_url: Optional[str] = None,
        model: str = "anthropic/claude-3-haiku",
        site_url: str = "http://localhost:5001",
        timeout: float = 60.0,
        max_retries: int = 2,
        client=None,
    ):
        self.books = books_client
        self.model = model

        if client is not None:
            self.client = client
        elif api_key:
            self.client = OpenAI(
                api_key=api_key,
                base_url=base_url,
                default_headers={"HTTP-Referer": site_url, "X-Title": "LeoBot"},
                timeout=timeout,
                max_retries=max_retries,
            )
        else:
            logger.warning("No LLM API key configured, chat runs in offline mode")
            self.client = None

    @classmethod
    def from_settings(
        cls, settings, books_client: GoogleBooksClient
    ) -> "BookChatAgent":
        return cls(
            books_client,
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            model=settings.openrouter_model,
            site_url=settings.site_url,
            timeout=settings.llm_timeout,
            max_retries=settings.llm_max_retries,
        )

    # Tools

    def _execute_tool(
        self, tool_name: str, arguments: Dict, user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Execute a tool on behalf of a user and return its result for the model.
        Failures come back as {"success": False, "error": ...} and never raise.
        """
        logger.info(f"Tool {tool_name} for user {user_id or 'anonymous'}: {arguments}")
        if not isinstance(arguments, dict):
            return {"success": False, "error": "Tool arguments must be an object"}
        try:
            if tool_name == "searchBooks":
                return self._search_books(
                    arguments.get("query", ""),
                    arguments.get("maxResults", 10),
                    arguments.get("orderBy", "relevance"),
                )
            if tool_name == "getBookDetails":
                return self._get_book_details(arguments.get("bookId", ""))
        except Exception as e:
            logger.exception(f"Tool {tool_name} failed: {e}")
            return {"success": False, "error": str(e) or "Tool failed"}
        return {"success": False, "error": f"Unknown tool: {tool_name}"}

    def _search_books(
        self, query: str, max_results=10, order_by: str = "relevance"
    ) -> Dict[str, Any]:
        if not isinstance(query, str) or not query.strip():
            return {
                "success": False,
                "error": "A search query is required",
                "books": [],
                "totalItems": 0,
            }
        try:
            max_results = min(max(int(max_results), 1), MAX_RESULTS_LIMIT)
        except (TypeError, ValueError):
            max_results = 10
        if order_by not in ORDER_BY_VALUES:
            order_by = "relevance"

        try:
            data = self.books.search(query, max_results=max_results, order_by=order_by)
        except BookSearchError as e:
            logger.error(f"searchBooks failed: {e}")
            return {"success": False, "error": str(e), "books": [], "totalItems": 0}

        books = [self._book_card(i, book) for i, book in enumerate(data["books"], 1)]
        return {
            "success": True,
            "message": (
                f"Found {len(books)} books. Each book has a unique id you can pass to "
                "getBookDetails for the complete information."
            ),
            "chatMessage": (
                f'I found {len(books)} books for "{query}". Ask me for more details '
                "about any of them by its number."
            ),
            "books": books,
            "totalItems": data["totalItems"],
            "query": query,
            "instruction": (
                "If the user asks for more about a specific book (e.g. 'the first "
                "one', 'the second'), call getBookDetails with the matching bookId."
            ),
        }

    @staticmethod
    def _book_card(position: int, book: Dict[str, Any]) -> Dict[str, Any]:
        """Compact view of a search result, as shown to the model and the user."""
        description = book.get("description") or ""
        if len(description) > DESCRIPTION_PREVIEW:
            description = description[:DESCRIPTION_PREVIEW] + "..."
        rating = (
            f"{book['averageRating']}/5 ({book.get('ratingsCount', 0)} reviews)"
            if book.get("averageRating")
            else "No rating"
        )
        return {
            "position": position,
            "bookId": book["id"],
            "id": book["id"],
            "title": book["title"],
            "authors": ", ".join(book.get("authors") or []),
            "description": description,
            "thumbnail": book.get("thumbnail", ""),
            "publishedDate": book.get("publishedDate", ""),
            "publisher": book.get("publisher", ""),
            "pageCount": book.get("pageCount", 0),
            "categories": ", ".join(book.get("categories") or []),
            "rating": rating,
            "previewLink": book.get("previewLink", ""),
        }

    def _get_book_details(self, book_id: str) -> Dict[str, Any]:
        if not book_id or not isinstance(book_id, str):
            return {"success": False, "error": "A bookId is required", "book": None}
        try:
            book = self.books.get_book(book_id)
        except BookSearchError as e:
            logger.error(f"getBookDetails failed for {book_id}: {e}")
            return {"success": False, "error": str(e), "book": None}

        sale = book.get("saleInfo")
        authors = ", ".join(book.get("authors") or []) or "Unknown author"
        pages = book.get("pageCount") or "N/A"
        return {
            "success": True,
            "chatMessage": (
                f"Details of {book['title']} by {authors}. It has {pages} pages."
            ),
            "book": {
                "id": book["id"],
                "title": book["title"],
                "subtitle": book.get("subtitle"),
                "authors": book.get("authors"),
                "publisher": book.get("publisher"),
                "publishedDate": book.get("publishedDate"),
                "description": book.get("description"),
                "isbn": book.get("isbn"),
                "pageCount": book.get("pageCount"),
                "categories": book.get("categories"),
                "language": book.get("language"),
                "rating": {
                    "average": book.get("averageRating"),
                    "count": book.get("ratingsCount"),
                    "maturity": book.get("maturityRating"),
                },
                "images": book.get("imageLinks"),
                "links": {
                    "preview": book.get("previewLink"),
                    "info": book.get("infoLink"),
                    "canonical": book.get("canonicalVolumeLink"),
                },
                "saleInfo": (
                    {
                        "available": sale.get("saleability") == "FOR_SALE",
                        "isEbook": sale.get("isEbook"),
                        "price": sale.get("listPrice"),
                        "buyLink": sale.get("buyLink"),
                    }
                    if sale
                    else None
                ),
            },
        }

    # Conversation state

    def prepare_history(self, entries: List[Dict[str, Any]]) -> List[Dict[str, str]]:
        """
        Turn earlier turns (stored messages or client-sent history) into model messages.

        Entries without a user/assistant role or string content are dropped and only
        the last HISTORY_LIMIT are kept. Assistant turns that showed books get a
        listing of them appended, so that references such as "the second one" still
        resolve after the conversation is reloaded.
        """
        history = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            role, content = entry.get("role"), entry.get("content")
            if role not in ("user", "assistant") or not isinstance(content, str):
                continue
            content = sanitize_text(content)
            books = entry.get("books") or []
            if role == "assistant" and isinstance(books, list) and books:
                content = f"{content}\n\n{self._books_listing(books)}".strip()
            if content:
                history.append({"role": role, "content": content})
        return history[-self.HISTORY_LIMIT :]

    @staticmethod
    def _books_listing(books: List[Dict[str, Any]]) -> str:
        lines = ["[Books shown to the user]"]
        for i, book in enumerate(books, start=1):
            if not isinstance(book, dict):
                continue
            position = book.get("position", i)
            book_id = book.get("bookId") or book.get("id", "")
            title = book.get("title", "Untitled")
            lines.append(f"{position}. {title} (bookId: {book_id})")
        return "\n".join(lines)

    def _build_messages(
        self, message: str, history: List[Dict[str, str]]
    ) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": self.SYSTEM_PROMPT}
        ]
        messages.extend(history)
        messages.append({"role": "user", "content": message})
        return messages

    # Chat

    def run(
        self, message: str, history: List[Dict[str, str]], user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Process a chat message and return the assembled result."""
        result: Dict[str, Any] = {}
        for event in self.stream(message, history, user_id=user_id):
            if event["type"] == "result":
                result = event["result"]
        return result

    def stream(
        self, message: str, history: List[Dict[str, str]], user_id: Optional[str] = None
    ) -> Iterator[Dict[str, Any]]:
        """
        Yield chat events: ``tool`` when a tool runs, ``text`` for answer deltas, and a
        final ``result`` carrying {"message", "books", "toolCalls"}. ``message`` must
        already be sanitized.

        Text deltas are a preview: once a round's text looks like leaked tool JSON the
        rest of that round is withheld, and the cleaned ``result`` message is the
        authoritative answer.
        """
        if self.client is None:
            yield from self._offline_stream(message, user_id)
            return

        messages = self._build_messages(message, history)
        tool_calls: List[Dict[str, Any]] = []
        books: List[Dict[str, Any]] = []
        text_parts: List[str] = []

        for round_number in range(self.MAX_TOOL_ROUNDS + 1):
            # The last round is forced to answer without tools
            use_tools = round_number < self.MAX_TOOL_ROUNDS
            round_text: List[str] = []
            requested = yield from self._stream_round(messages, use_tools, round_text)
            text_parts.extend(round_text)

            if not requested:
                break

            messages.append(
                {
                    "role": "assistant",
                    "content": "".join(round_text) or None,
                    "tool_calls": [
                        {
                            "id": call["id"],
                            "type": "function",
                            "function": {
                                "name": call["name"],
                                "arguments": call["arguments"],
                            },
                        }
                        for call in requested
                    ],
                }
            )
            for call in requested:
                name = call["name"]
                yield {
                    "type": "tool",
                    "tool": name,
                    "name": self.TOOL_DISPLAY_NAMES.get(name, f"Processing {name}"),
                }
                try:
                    args = json.loads(call["arguments"] or "{}")
                except json.JSONDecodeError:
                    logger.warning(
                        f"Malformed arguments for {name}: {call['arguments']!r}"
                    )
                    args = {}
                if not isinstance(args, dict):
                    logger.warning(
                        f"Non-object arguments for {name}: {call['arguments']!r}"
                    )
                    args = {}
                result = self._execute_tool(name, args, user_id=user_id)
                tool_calls.append(
                    {
                        "name": name,
                        "input": args,
                        "success": result.get("success", False),
                    }
                )
                if name == "searchBooks" and result.get("success"):
                    books = result["books"]
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call["id"],
                        "content": json.dumps(result),
                    }
                )

        final_text = self._sanitize_response("".join(text_parts))
        if not final_text:
            final_text = "Sorry, I couldn't generate an answer."
        yield {
            "type": "result",
            "result": {"message": final_text, "books": books, "toolCalls": tool_calls},
        }

    def _stream_round(
        self, messages: List[Dict[str, Any]], use_tools: bool, text_out: List[str]
    ):
        """
        Run one streamed completion. Text deltas are yielded as ``text`` events and
        collected into ``text_out``; returns the tool calls the model requested,
        assembled from their streamed fragments.
        """
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": 1000,
            "temperature": 0.7,
            "stream": True,
        }
        if use_tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool["name"],
                        "description": tool["description"],
                        "parameters": tool["parameters"],
                    },
                }
                for tool in self.TOOLS
            ]
            kwargs["tool_choice"] = "auto"

        pending: Dict[int, Dict[str, str]] = {}
        withholding = False
        for chunk in self.client.chat.completions.create(**kwargs):
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta is None:
                continue
            if delta.content:
                text_out.append(delta.content)
                # A brace means tool JSON may be leaking into the answer
                withholding = withholding or "{" in "".join(text_out)
                if not withholding:
                    yield {"type": "text", "delta": delta.content}
            for fragment in delta.tool_calls or []:
                call = pending.setdefault(
                    fragment.index, {"id": "", "name": "", "arguments": ""}
                )
                if fragment.id:
                    call["id"] = fragment.id
                if fragment.function is not None:
                    if fragment.function.name:
                        call["name"] += fragment.function.name
                    if fragment.function.arguments:
                        call["arguments"] += fragment.function.arguments

        return [pending[index] for index in sorted(pending) if pending[index]["name"]]

    def _sanitize_response(self, response: str) -> str:
        """Remove any tool JSON that slipped into the response."""
        response = re.sub(r'\{[^{}]*"(?:query|books|bookId)"[^{}]*\}', "", response)
        # Strip remaining JSON-like structures, innermost first
        previous = None
        while previous != response and ('{"' in response or "[{" in response):
            previous = response
            response = re.sub(r'\{"[^{}]*\}', "", response)
            response = re.sub(r"\[\{[^\[\]]*\]", "", response)
        response = re.sub(r"[ \t]+", " ", response)
        response = re.sub(r"\n{3,}", "\n\n", response)
        return response.strip()

    def _offline_stream(
        self, message: str, user_id: Optional[str]
    ) -> Iterator[Dict[str, Any]]:
        """Without a model, search with the user's message and show the top results."""
        yield {
            "type": "tool",
            "tool": "searchBooks",
            "name": self.TOOL_DISPLAY_NAMES["searchBooks"],
        }
        query = html.unescape(message)
        result = self._execute_tool(
            "searchBooks", {"query": query, "maxResults": 10}, user_id=user_id
        )
        books = result.get("books", []) if result.get("success") else []
        response = (
            self._generate_book_talk(books)
            if books
            else "I'd love to help! What kind of books are you looking for?"
        )
        yield {"type": "text", "delta": response}
        yield {
            "type": "result",
            "result": {
                "message": response,
                "books": books,
                "toolCalls": [
                    {
                        "name": "searchBooks",
                        "input": {"query": query},
                        "success": result.get("success", False),
                    }
                ],
            },
        }

    def _generate_book_talk(self, books: List[Dict]) -> str:
        """Brief presentation of the first few results."""
        lines = [
            f"**{book['title']}** by {book['authors'] or 'Unknown author'}"
            for book in books[:3]
        ]
        picks = "\n".join(lines)
        return f"Here are some picks for you:\n{picks}\n\nWant details on any of these?"
