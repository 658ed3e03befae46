import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from bookmemoir.book import Book, ReadingStatus, utc_now
from bookmemoir.covers import CoverSource, display_cover
from bookmemoir.library import Library

logger = logging.getLogger(__name__)

EMPTY_MESSAGES = {
    ReadingStatus.TO_READ: "No books in To-Read list!",
    ReadingStatus.READING: "You are not reading anything right now.",
    ReadingStatus.FINISHED: "No finished books yet.",
}


class LibraryPresenter:
    """The three shelf views over a :class:`Library` and the actions taken on them.

    Every action mutates the book through the library and commits straight
    away; a failed commit propagates as ``PersistenceError``.
    """

    def __init__(self, library: Library, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.library = library
        self.clock = clock or utc_now

    # ------------------------- Views ------------------------- #
    def books(self, status: ReadingStatus = ReadingStatus.TO_READ) -> List[Book]:
        return self.library.books_with_status(status)

    def partition(self) -> Dict[ReadingStatus, List[Book]]:
        shelves: Dict[ReadingStatus, List[Book]] = {status: [] for status in ReadingStatus}
        for book in self.library.query_all():
            shelves[book.status].append(book)
        return shelves

    @staticmethod
    def empty_message(status: ReadingStatus) -> str:
        return EMPTY_MESSAGES[status]

    @staticmethod
    def cover_for(book: Book) -> Optional[CoverSource]:
        return display_cover(book)

    # ------------------------- Actions ------------------------- #
    def start_reading(self, book: Book) -> Book:
        now = self.clock()
        self.library.mutate(book, lambda b: b.start_reading(now))
        self.library.commit()
        logger.info(f"Started reading '{book.title}'")
        return book

    def mark_finished(self, book: Book) -> Book:
        now = self.clock()
        self.library.mutate(book, lambda b: b.mark_finished(now))
        self.library.commit()
        logger.info(f"Finished '{book.title}' in {book.reading_duration} day(s)")
        return book

    def update_notes(self, book: Book, text: Optional[str]) -> Book:
        def setter(b: Book) -> None:
            b.notes = text or None

        self.library.mutate(book, setter)
        self.library.commit()
        return book

    def update_summary(self, book: Book, text: Optional[str]) -> Book:
        def setter(b: Book) -> None:
            b.summary = text or None

        self.library.mutate(book, setter)
        self.library.commit()
        return book
