import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from bookmemoir.book import Book, ReadingStatus
from bookmemoir.config import settings
from bookmemoir.library import Library
from bookmemoir.services.google_books_service import BookLookupError, BookMetadata, GoogleBooksService

logger = logging.getLogger(__name__)


def parse_page_count(text: Optional[str]) -> Optional[int]:
    """Page count typed by the reader; anything that is not a non-negative whole number means 'unknown'."""
    try:
        value = int((text or "").strip())
    except ValueError:
        return None
    return value if value >= 0 else None


class AddBookFlow:
    """State of the 'Add Book' form.

    The form is filled either from an ISBN lookup or by hand, then saved into a
    :class:`Library` as a to-read book. At most one lookup is in flight: starting
    another cancels the previous one, so a slow stale answer never lands in the
    form.
    """

    def __init__(self) -> None:
        self._lookup_task: Optional[asyncio.Task] = None
        self.destination: Optional[ReadingStatus] = None
        self._clear_fields()

    def _clear_fields(self) -> None:
        self.isbn = ""
        self.title = ""
        self.subtitle = ""
        self.author = ""
        self.published_date = ""
        self.page_count_text = ""
        self.cover_url = ""
        self.cover_image_data: Optional[bytes] = None
        self.is_loading = False
        self.error_message: Optional[str] = None
        self.lookup_error: Optional[BookLookupError] = None

    # ------------------------- Form state ------------------------- #
    @property
    def can_save(self) -> bool:
        return bool(self.title.strip())

    @property
    def can_lookup(self) -> bool:
        return bool(self.isbn.strip())

    @property
    def page_count(self) -> Optional[int]:
        return parse_page_count(self.page_count_text)

    @property
    def lookup_in_flight(self) -> bool:
        return self._lookup_task is not None and not self._lookup_task.done()

    def attach_image(self, data: bytes, filename: Optional[str] = None) -> None:
        if not data:
            raise ValueError("The image is empty.")
        if len(data) > settings.max_upload_size:
            raise ValueError(f"The image is larger than {settings.max_upload_size} bytes.")
        if filename is not None and Path(filename).suffix.lower() not in settings.allowed_image_extensions:
            raise ValueError(f"Unsupported image type: {Path(filename).suffix or filename}")
        self.cover_image_data = data

    def attach_image_file(self, path: Union[str, Path]) -> None:
        path = Path(path)
        self.attach_image(path.read_bytes(), filename=path.name)

    def apply_metadata(self, metadata: BookMetadata) -> None:
        # Lookup results overwrite whatever was typed; the cover only when the catalog has one
        self.title = metadata.title
        self.subtitle = metadata.subtitle
        self.author = metadata.author
        self.published_date = metadata.published_date
        self.page_count_text = str(metadata.page_count) if metadata.page_count is not None else ""
        if metadata.cover_url:
            self.cover_url = metadata.cover_url

    # ------------------------- Lookup ------------------------- #
    def start_lookup(self, service: GoogleBooksService) -> asyncio.Task:
        """Schedule a lookup of the current ISBN, cancelling any lookup still running."""
        if not self.can_lookup:
            raise ValueError("Enter an ISBN to search for.")
        self.cancel_lookup()
        self.is_loading = True
        self.error_message = None
        self.lookup_error = None
        self._lookup_task = asyncio.get_running_loop().create_task(self._run_lookup(service, self.isbn))
        return self._lookup_task

    async def lookup(self, service: GoogleBooksService) -> Optional[BookMetadata]:
        """Look up the current ISBN and fill the form.

        Returns the metadata, or None when the lookup failed (see
        ``error_message``) or was superseded by a newer one.
        """
        task = self.start_lookup(service)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.cancelled():
            return None
        return task.result()

    def cancel_lookup(self) -> None:
        if self.lookup_in_flight:
            logger.debug("Cancelling in-flight lookup")
            self._lookup_task.cancel()
        self._lookup_task = None
        self.is_loading = False

    async def _run_lookup(self, service: GoogleBooksService, isbn: str) -> Optional[BookMetadata]:
        try:
            metadata = await service.fetch_book_by_isbn(isbn)
        except BookLookupError as exc:
            self.lookup_error = exc
            self.error_message = exc.message
            return None
        finally:
            # A superseded task must not clear the loading flag of its successor
            if asyncio.current_task() is self._lookup_task:
                self.is_loading = False
        self.apply_metadata(metadata)
        return metadata

    # ------------------------- Save / cancel ------------------------- #
    def save(self, library: Library) -> Book:
        """Insert the book described by the form and reset it."""
        if not self.can_save:
            raise ValueError("A title is required to save a book.")

        book = Book(
            title=self.title.strip(),
            author=self.author.strip(),
            cover_url=self.cover_url.strip() or None,
            cover_image_data=self.cover_image_data,
            page_count=self.page_count,
        )
        library.insert(book)

        self.cancel_lookup()
        self._clear_fields()
        self.destination = ReadingStatus.TO_READ
        return book

    def cancel(self) -> None:
        """Discard everything typed or fetched so far."""
        self.cancel_lookup()
        self._clear_fields()
