import logging
import sqlite3
import threading
from typing import Any, Callable, Dict, List, Optional, Set

from bookmemoir.book import Book, ReadingStatus
from bookmemoir.database import BOOK_COLUMNS, get_db_connection, initialize_database

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the library could not be written to disk."""


class Library:
    """Holds the reader's books in memory and persists them to SQLite.

    A single instance may be shared by several threads (the API's handlers):
    inserts, mutations and commits are serialized by one lock. Commits only
    write the columns a mutation actually changed, so another process working
    on the same database file keeps its own changes to other fields.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file
        self._lock = threading.RLock()
        try:
            initialize_database(db_file)
            self.books: List[Book] = self._load_books_from_db()
        except sqlite3.Error as exc:
            logger.error(f"Could not open library database: {exc}")
            raise PersistenceError(f"Could not open library database: {exc}") from exc
        # book id -> columns changed since the last commit
        self._dirty: Dict[str, Set[str]] = {}

    # ------------------------- Core operations ------------------------- #
    def insert(self, book: Book) -> Book:
        """Add a new book and write it to the database straight away."""
        with self._lock:
            if any(existing.id == book.id for existing in self.books):
                raise ValueError(f"Book with id {book.id} already exists.")

            conn = None
            try:
                conn = get_db_connection(self.db_file)
                conn.execute(
                    f"INSERT INTO books ({', '.join(BOOK_COLUMNS)}) "
                    f"VALUES ({', '.join('?' for _ in BOOK_COLUMNS)})",
                    self._row_values(book),
                )
                conn.commit()
            except sqlite3.Error as exc:
                logger.error(f"Failed to save '{book.title}': {exc}")
                raise PersistenceError(f"The book '{book.title}' was not saved: {exc}") from exc
            finally:
                if conn is not None:
                    conn.close()

            self.books.append(book)
        logger.info(f"Added '{book.title}' ({book.id})")
        return book

    def query_all(self) -> List[Book]:
        """All books, in the order they were added."""
        return list(self.books)

    def books_with_status(self, status: ReadingStatus) -> List[Book]:
        return [book for book in self.books if book.status is status]

    def find_book(self, book_id: str) -> Optional[Book]:
        """Find a book by id, or by an unambiguous id prefix."""
        needle = (book_id or "").strip().lower()
        if not needle:
            return None
        for book in self.books:
            if book.id == needle:
                return book
        matches = [book for book in self.books if book.id.startswith(needle)]
        return matches[0] if len(matches) == 1 else None

    def mutate(self, book: Book, setter: Callable[[Book], Any]) -> Book:
        """Apply ``setter`` to a stored book. Call :meth:`commit` to persist it.

        Only the columns whose value the setter changed are recorded.
        """
        with self._lock:
            if not any(existing is book for existing in self.books):
                raise ValueError(f"Book with id {book.id} is not in this library.")
            before = self._row_values(book)
            setter(book)
            after = self._row_values(book)
            changed = {column for column, old, new in zip(BOOK_COLUMNS, before, after) if old != new}
            if changed:
                self._dirty.setdefault(book.id, set()).update(changed)
        return book

    def commit(self) -> int:
        """Write every mutated book to the database and return how many were written."""
        with self._lock:
            if not self._dirty:
                return 0

            # Mutations made while writing land in a fresh dirty set
            pending, self._dirty = self._dirty, {}
            books = {book.id: book for book in self.books}
            conn = None
            try:
                conn = get_db_connection(self.db_file)
                with conn:
                    for book_id, columns in pending.items():
                        values = dict(zip(BOOK_COLUMNS, self._row_values(books[book_id])))
                        ordered = sorted(columns)
                        conn.execute(
                            f"UPDATE books SET {', '.join(f'{c} = ?' for c in ordered)} WHERE id = ?",
                            [values[c] for c in ordered] + [book_id],
                        )
            except sqlite3.Error as exc:
                # Put the changes back so the next commit retries them
                for book_id, columns in pending.items():
                    self._dirty.setdefault(book_id, set()).update(columns)
                logger.error(f"Failed to commit {len(pending)} change(s): {exc}")
                raise PersistenceError(f"Your changes were not saved: {exc}") from exc
            finally:
                if conn is not None:
                    conn.close()

        logger.debug(f"Committed {len(pending)} change(s)")
        return len(pending)

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._dirty)

    def get_statistics(self) -> Dict[str, Any]:
        """Counts per shelf and the average number of days a finished book took."""
        by_status = {status.value: len(self.books_with_status(status)) for status in ReadingStatus}
        durations = [book.reading_duration for book in self.books if book.reading_duration is not None]
        return {
            "total_books": len(self.books),
            "by_status": by_status,
            "average_reading_days": round(sum(durations) / len(durations), 1) if durations else None,
        }

    # ------------------------- Persistence ------------------------- #
    def _load_books_from_db(self) -> List[Book]:
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(f"SELECT {', '.join(BOOK_COLUMNS)} FROM books ORDER BY rowid")
            return [Book.from_dict(dict(row)) for row in cursor.fetchall()]
        finally:
            conn.close()

    @staticmethod
    def _row_values(book: Book) -> tuple:
        return (
            book.id,
            book.title,
            book.author,
            book.cover_url,
            sqlite3.Binary(book.cover_image_data) if book.cover_image_data else None,
            book.page_count,
            book.status.value,
            book.start_date.isoformat() if book.start_date else None,
            book.finish_date.isoformat() if book.finish_date else None,
            book.notes,
            book.summary,
            book.created_at.isoformat(),
        )

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        if self._dirty:
            logger.warning(f"Closing library with {len(self._dirty)} uncommitted change(s)")
