import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from bookmemoir.book import Book, ReadingStatus
from bookmemoir.database import get_db_connection
from bookmemoir.library import Library, PersistenceError

START = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def _broken_connection(*args, **kwargs):
    raise sqlite3.OperationalError("disk I/O error")


def test_insert_and_query_all(lib):
    assert lib.query_all() == []

    first = lib.insert(Book("Ulysses", "James Joyce"))
    second = lib.insert(Book("Sapiens", "Yuval Noah Harari"))

    assert [b.id for b in lib.query_all()] == [first.id, second.id]
    assert lib.query_all()[0].status is ReadingStatus.TO_READ


def test_insertion_order_survives_reload(lib):
    titles = ["Zorba", "Anna Karenina", "Middlemarch"]
    for title in titles:
        lib.insert(Book(title))

    reloaded = Library(db_file=lib.db_file)
    assert [b.title for b in reloaded.query_all()] == titles


def test_all_fields_persist(lib):
    book = Book("Dune", "Frank Herbert", cover_url="http://books.test/dune.jpg",
                cover_image_data=b"\x89PNG\r\n\x1a\nfake", page_count=412)
    lib.insert(book)
    lib.mutate(book, lambda b: b.start_reading(START))
    lib.mutate(book, lambda b: b.mark_finished(START + timedelta(days=9)))
    lib.mutate(book, lambda b: setattr(b, "notes", "Fear is the mind-killer."))
    lib.mutate(book, lambda b: setattr(b, "summary", "Desert politics."))
    assert lib.commit() == 1

    restored = Library(db_file=lib.db_file).find_book(book.id)

    assert restored.title == "Dune"
    assert restored.author == "Frank Herbert"
    assert restored.cover_url == "http://books.test/dune.jpg"
    assert restored.cover_image_data == b"\x89PNG\r\n\x1a\nfake"
    assert restored.page_count == 412
    assert restored.status is ReadingStatus.FINISHED
    assert restored.start_date == START
    assert restored.finish_date == START + timedelta(days=9)
    assert restored.reading_duration == 9
    assert restored.notes == "Fear is the mind-killer."
    assert restored.summary == "Desert politics."


def test_insert_same_book_twice_rejected(lib):
    book = Book("Test Book", "Test Author")
    lib.insert(book)

    with pytest.raises(ValueError, match="already exists"):
        lib.insert(book)

    assert len(lib.query_all()) == 1


def test_empty_title_is_not_enforced_by_store(lib):
    # The add-book form guards the title; the store accepts what it is given
    lib.insert(Book(""))
    assert len(lib.query_all()) == 1


def test_books_with_status(lib):
    to_read = lib.insert(Book("A"))
    reading = lib.insert(Book("B"))
    lib.mutate(reading, lambda b: b.start_reading(START))
    lib.commit()

    assert lib.books_with_status(ReadingStatus.TO_READ) == [to_read]
    assert lib.books_with_status(ReadingStatus.READING) == [reading]
    assert lib.books_with_status(ReadingStatus.FINISHED) == []


def test_find_book_by_id_and_prefix(lib):
    book = lib.insert(Book("Dune"))
    assert lib.find_book(book.id) is book
    assert lib.find_book(book.id[:8]) is book
    assert lib.find_book(book.id[:8].upper()) is book
    assert lib.find_book("") is None
    assert lib.find_book("nonexistent") is None


def test_find_book_ambiguous_prefix(lib):
    lib.insert(Book("A", book_id="abc-1"))
    lib.insert(Book("B", book_id="abc-2"))
    assert lib.find_book("abc") is None
    assert lib.find_book("abc-2").title == "B"


def test_mutate_then_commit(lib):
    book = lib.insert(Book("Old Title"))
    assert lib.commit() == 0

    lib.mutate(book, lambda b: setattr(b, "title", "New Title"))
    assert lib.has_pending_changes
    assert lib.commit() == 1
    assert not lib.has_pending_changes

    assert Library(db_file=lib.db_file).find_book(book.id).title == "New Title"


def test_uncommitted_changes_are_not_persisted(lib):
    book = lib.insert(Book("Original"))
    lib.mutate(book, lambda b: setattr(b, "title", "Changed"))

    assert Library(db_file=lib.db_file).find_book(book.id).title == "Original"


def test_failed_setter_marks_nothing_dirty(lib):
    book = lib.insert(Book("Dune"))
    with pytest.raises(ValueError):
        lib.mutate(book, lambda b: b.mark_finished(START))
    assert not lib.has_pending_changes


def test_mutate_unknown_book_rejected(lib):
    with pytest.raises(ValueError, match="not in this library"):
        lib.mutate(Book("Stranger"), lambda b: setattr(b, "notes", "x"))


def test_commit_failure_is_surfaced_and_retried(lib, monkeypatch):
    book = lib.insert(Book("Dune"))
    lib.mutate(book, lambda b: setattr(b, "notes", "draft"))

    monkeypatch.setattr("bookmemoir.library.get_db_connection", _broken_connection)
    with pytest.raises(PersistenceError, match="not saved"):
        lib.commit()
    assert lib.has_pending_changes

    monkeypatch.undo()
    assert lib.commit() == 1
    assert Library(db_file=lib.db_file).find_book(book.id).notes == "draft"


def test_commit_failure_is_logged(lib, monkeypatch, caplog):
    book = lib.insert(Book("Dune"))
    lib.mutate(book, lambda b: setattr(b, "notes", "draft"))
    monkeypatch.setattr("bookmemoir.library.get_db_connection", _broken_connection)

    with caplog.at_level("ERROR", logger="bookmemoir.library"):
        with pytest.raises(PersistenceError):
            lib.commit()

    assert "disk I/O error" in caplog.text


def test_insert_failure_keeps_book_out_of_memory(lib, monkeypatch):
    monkeypatch.setattr("bookmemoir.library.get_db_connection", _broken_connection)
    with pytest.raises(PersistenceError):
        lib.insert(Book("Lost"))
    assert lib.query_all() == []


def test_old_database_gets_new_columns(tmp_path):
    db_file = str(tmp_path / "old.db")
    conn = sqlite3.connect(db_file)
    conn.execute("""
        CREATE TABLE books (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            author TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'To-Read',
            created_at TEXT NOT NULL
        )
    """)
    conn.execute(
        "INSERT INTO books (id, title, author, created_at) VALUES (?, ?, ?, ?)",
        ("legacy-1", "Emma", "Jane Austen", "2024-05-01T10:00:00+00:00"),
    )
    conn.commit()
    conn.close()

    lib = Library(db_file=db_file)
    book = lib.find_book("legacy-1")

    assert book.status is ReadingStatus.TO_READ
    assert book.notes is None
    assert book.cover_url is None
    assert book.page_count is None

    lib.mutate(book, lambda b: setattr(b, "summary", "Matchmaking goes wrong."))
    assert lib.commit() == 1


def test_get_statistics(lib):
    lib.insert(Book("A"))
    done = lib.insert(Book("B"))
    lib.mutate(done, lambda b: b.start_reading(START))
    lib.mutate(done, lambda b: b.mark_finished(START + timedelta(days=4)))
    lib.commit()

    stats = lib.get_statistics()

    assert stats["total_books"] == 2
    assert stats["by_status"] == {"To-Read": 1, "Reading": 0, "Finished": 1}
    assert stats["average_reading_days"] == 4.0


def test_commit_only_writes_changed_columns(lib):
    book = lib.insert(Book("Dune"))
    other = Library(db_file=lib.db_file)

    lib.mutate(book, lambda b: b.start_reading(START))
    lib.commit()

    # The second library still holds the To-Read copy it loaded
    stale = other.find_book(book.id)
    assert stale.status is ReadingStatus.TO_READ
    other.mutate(stale, lambda b: setattr(b, "notes", "great"))
    other.commit()

    on_disk = Library(db_file=lib.db_file).find_book(book.id)
    assert on_disk.status is ReadingStatus.READING
    assert on_disk.start_date == START
    assert on_disk.notes == "great"


def test_setter_that_changes_nothing_is_not_pending(lib):
    book = lib.insert(Book("Dune", notes="same"))
    lib.mutate(book, lambda b: setattr(b, "notes", "same"))
    assert not lib.has_pending_changes
    assert lib.commit() == 0


def test_mutation_during_commit_is_kept_for_next_commit(lib, monkeypatch):
    first = lib.insert(Book("First"))
    second = lib.insert(Book("Second"))
    lib.mutate(first, lambda b: setattr(b, "notes", "one"))

    def connection_with_interleaved_edit(*args, **kwargs):
        # Another caller edits a book while this commit is writing
        lib.mutate(second, lambda b: setattr(b, "notes", "two"))
        return get_db_connection(*args, **kwargs)

    monkeypatch.setattr("bookmemoir.library.get_db_connection", connection_with_interleaved_edit)
    assert lib.commit() == 1
    monkeypatch.undo()

    assert lib.has_pending_changes
    assert lib.commit() == 1
    restored = Library(db_file=lib.db_file)
    assert restored.find_book(first.id).notes == "one"
    assert restored.find_book(second.id).notes == "two"
