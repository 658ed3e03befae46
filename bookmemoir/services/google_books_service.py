import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from bookmemoir.config import settings

logger = logging.getLogger(__name__)

# Checked in order; the first one present wins
THUMBNAIL_KEYS = ("thumbnail", "smallThumbnail")


@dataclass
class BookMetadata:
    """Normalized result of a Google Books ISBN lookup.

    Text fields are never None: a field the catalog leaves out comes back as "".
    """
    isbn: str
    title: str = ""
    subtitle: str = ""
    authors: List[str] = field(default_factory=list)
    published_date: str = ""
    page_count: Optional[int] = None
    cover_url: str = ""

    @property
    def author(self) -> str:
        return ", ".join(self.authors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isbn": self.isbn,
            "title": self.title,
            "subtitle": self.subtitle,
            "authors": self.authors,
            "author": self.author,
            "published_date": self.published_date,
            "page_count": self.page_count,
            "cover_url": self.cover_url,
        }


class BookLookupError(LookupError):
    """Base class for lookup failures; ``message`` is safe to show to the reader."""
    message = "Lookup failed."

    def __init__(self, message: Optional[str] = None) -> None:
        if message:
            self.message = message
        super().__init__(self.message)


class LookupTransportError(BookLookupError):
    """The catalog could not be reached or answered with an HTTP error."""


class BookNotFoundError(BookLookupError):
    message = "No book found for this ISBN."


class LookupParseError(BookLookupError):
    message = "Failed to parse response."


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


class GoogleBooksService:
    """Fetches book metadata from the Google Books volumes endpoint."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key or settings.google_books_api_key
        self.base_url = (base_url or settings.google_books_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.google_books_timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        if self.transport is not None:
            kwargs["transport"] = self.transport
        return httpx.AsyncClient(**kwargs)

    async def fetch_book_by_isbn(self, isbn: str) -> BookMetadata:
        """
        Fetch book data by ISBN from Google Books.

        Args:
            isbn: The ISBN as typed; it is sent as-is apart from surrounding whitespace.

        Returns:
            BookMetadata for the first catalog match.

        Raises:
            LookupTransportError: network failure or an HTTP error status.
            BookNotFoundError: the catalog returned no items.
            LookupParseError: the body is not the expected JSON shape.
        """
        isbn = (isbn or "").strip()
        params = {"q": f"isbn:{isbn}"}
        if self.api_key:
            params["key"] = self.api_key

        url = f"{self.base_url}/volumes"
        try:
            async with self._client() as client:
                response = await client.get(url, params=params)
        except httpx.RequestError as exc:
            logger.error(f"Google Books request failed for ISBN {isbn}: {exc}")
            raise LookupTransportError(f"Error: {exc}") from exc

        if response.status_code >= 400:
            logger.error(f"Google Books returned {response.status_code} for ISBN {isbn}")
            raise LookupTransportError(f"Error: the catalog answered with HTTP {response.status_code}.")

        book = self._parse_response(response, isbn)
        logger.info(f"Book found via Google Books: {book.title} by {book.author or 'unknown author'}")
        return book

    def _parse_response(self, response: httpx.Response, isbn: str) -> BookMetadata:
        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning(f"Google Books sent a non-JSON body for ISBN {isbn}")
            raise LookupParseError() from exc

        if not isinstance(payload, dict):
            raise LookupParseError()

        items = payload.get("items")
        if not items:
            logger.info(f"Book not found in Google Books: ISBN {isbn}")
            raise BookNotFoundError()
        if not isinstance(items, list) or not isinstance(items[0], dict):
            raise LookupParseError()

        volume_info = items[0].get("volumeInfo")
        if not isinstance(volume_info, dict):
            raise LookupParseError()
        return self._parse_volume_info(volume_info, isbn)

    @staticmethod
    def _parse_volume_info(volume_info: Dict[str, Any], isbn: str) -> BookMetadata:
        authors = volume_info.get("authors")
        if not isinstance(authors, list):
            authors = []

        page_count = volume_info.get("pageCount")
        if isinstance(page_count, bool) or not isinstance(page_count, int) or page_count < 0:
            page_count = None

        image_links = volume_info.get("imageLinks")
        cover_url = ""
        if isinstance(image_links, dict):
            for key in THUMBNAIL_KEYS:
                if _text(image_links.get(key)):
                    cover_url = image_links[key]
                    break

        return BookMetadata(
            isbn=isbn,
            title=_text(volume_info.get("title")),
            subtitle=_text(volume_info.get("subtitle")),
            authors=[a for a in authors if isinstance(a, str)],
            published_date=_text(volume_info.get("publishedDate")),
            page_count=page_count,
            cover_url=cover_url,
        )

    def is_available(self) -> bool:
        return settings.enable_google_books
