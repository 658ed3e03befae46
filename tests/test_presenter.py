import threading

import pytest

from bookmemoir.book import Book, InvalidTransitionError, ReadingStatus
from bookmemoir.library import Library, PersistenceError
from bookmemoir.presenter import LibraryPresenter


@pytest.fixture
def presenter(lib, clock):
    return LibraryPresenter(lib, clock=clock)


def test_every_book_is_on_exactly_one_shelf(lib, presenter):
    a = lib.insert(Book("A"))
    b = lib.insert(Book("B"))
    c = lib.insert(Book("C"))
    presenter.start_reading(b)
    presenter.start_reading(c)
    presenter.mark_finished(c)

    shelves = presenter.partition()

    assert shelves[ReadingStatus.TO_READ] == [a]
    assert shelves[ReadingStatus.READING] == [b]
    assert shelves[ReadingStatus.FINISHED] == [c]
    assert sum(len(books) for books in shelves.values()) == 3


def test_shelves_keep_insertion_order(lib, presenter):
    books = [lib.insert(Book(title)) for title in ("Zeta", "Alpha", "Mu")]
    assert presenter.books(ReadingStatus.TO_READ) == books


def test_empty_shelves_have_messages(presenter):
    assert presenter.books() == []
    assert presenter.empty_message(ReadingStatus.TO_READ) == "No books in To-Read list!"
    assert presenter.empty_message(ReadingStatus.READING) == "You are not reading anything right now."
    assert presenter.empty_message(ReadingStatus.FINISHED) == "No finished books yet."


def test_start_reading_moves_book_and_persists(lib, presenter, clock):
    book = lib.insert(Book("Dune"))

    presenter.start_reading(book)

    assert presenter.books(ReadingStatus.TO_READ) == []
    assert presenter.books(ReadingStatus.READING) == [book]
    restored = Library(db_file=lib.db_file).find_book(book.id)
    assert restored.status is ReadingStatus.READING
    assert restored.start_date == clock.now


def test_mark_finished_records_duration(lib, presenter, clock):
    book = lib.insert(Book("Dune"))
    presenter.start_reading(book)
    clock.advance(days=6, hours=3)

    presenter.mark_finished(book)

    assert book.finish_date == clock.now
    assert book.reading_duration == 6
    assert Library(db_file=lib.db_file).find_book(book.id).reading_duration == 6


def test_finish_from_to_read_is_rejected(lib, presenter):
    book = lib.insert(Book("Dune"))
    with pytest.raises(InvalidTransitionError):
        presenter.mark_finished(book)
    assert book.status is ReadingStatus.TO_READ
    assert not lib.has_pending_changes


def test_notes_and_summary_are_saved(lib, presenter):
    book = lib.insert(Book("Dune"))

    presenter.update_notes(book, "Chapter 3 twist")
    presenter.update_summary(book, "A boy and a desert.")

    restored = Library(db_file=lib.db_file).find_book(book.id)
    assert restored.notes == "Chapter 3 twist"
    assert restored.summary == "A boy and a desert."


def test_empty_text_clears_notes(lib, presenter):
    book = lib.insert(Book("Dune", notes="old"))
    presenter.update_notes(book, "")
    assert book.notes is None


def test_notes_on_finished_book_are_allowed(lib, presenter):
    book = lib.insert(Book("Dune"))
    presenter.start_reading(book)
    presenter.mark_finished(book)
    presenter.update_notes(book, "Reread someday")
    assert book.notes == "Reread someday"


def test_commit_failure_propagates(lib, presenter, monkeypatch):
    book = lib.insert(Book("Dune"))

    def broken(*args, **kwargs):
        import sqlite3
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr("bookmemoir.library.get_db_connection", broken)
    with pytest.raises(PersistenceError):
        presenter.update_summary(book, "unsaved")
    assert lib.has_pending_changes


def test_cover_for_prefers_image(presenter):
    book = Book("Dune", cover_url="https://x.test/c.jpg", cover_image_data=b"\x89PNG")
    assert presenter.cover_for(book).kind == "image"
    assert presenter.cover_for(Book("Plain")) is None


def test_concurrent_starts_only_one_wins(lib, clock):
    book = lib.insert(Book("Dune"))
    presenter = LibraryPresenter(lib, clock=clock)
    barrier = threading.Barrier(8)
    outcomes = []

    def start():
        barrier.wait()
        try:
            presenter.start_reading(book)
            outcomes.append("started")
        except InvalidTransitionError:
            outcomes.append("refused")

    threads = [threading.Thread(target=start) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("started") == 1
    assert outcomes.count("refused") == 7
    assert not lib.has_pending_changes
    assert Library(db_file=lib.db_file).find_book(book.id).status is ReadingStatus.READING


def test_concurrent_note_edits_are_all_written(lib):
    books = [lib.insert(Book(f"Book {i}")) for i in range(6)]
    presenter = LibraryPresenter(lib)

    threads = [
        threading.Thread(target=presenter.update_notes, args=(book, f"note {i}"))
        for i, book in enumerate(books)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not lib.has_pending_changes
    restored = Library(db_file=lib.db_file)
    assert [restored.find_book(b.id).notes for b in books] == [f"note {i}" for i in range(6)]
