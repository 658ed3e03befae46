import asyncio
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Optional

import typer

from bookmemoir.add_flow import AddBookFlow
from bookmemoir.book import Book, InvalidTransitionError, ReadingStatus
from bookmemoir.config import settings, setup_logging
from bookmemoir.library import Library, PersistenceError
from bookmemoir.presenter import LibraryPresenter
from bookmemoir.services.google_books_service import BookLookupError, GoogleBooksService
from bookmemoir.utils.ui_helpers import (
    OUTPUT_MODE_ENV,
    print_book_detail,
    print_metadata,
    print_shelf,
    print_stats_result,
    set_output_mode,
)

logger = logging.getLogger(__name__)

app = typer.Typer(help="BookMemoir: keep track of what you read.")

_state = {"db_file": None, "library": None}


def get_library() -> Library:
    """The library for this invocation, opened on first use."""
    if _state["library"] is None:
        _state["library"] = Library(db_file=_state["db_file"])
    return _state["library"]


def get_presenter() -> LibraryPresenter:
    return LibraryPresenter(get_library())


def get_lookup_service() -> GoogleBooksService:
    return GoogleBooksService()


def _find_or_report(book_id: str) -> Optional[Book]:
    book = get_library().find_book(book_id)
    if book is None:
        print(f"Book with id {book_id} not found.")
    return book


def _parse_status(raw: str) -> ReadingStatus:
    try:
        return ReadingStatus.parse(raw)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.callback()
def _global_options(
    db: Optional[str] = typer.Option(
        None, "--db", envvar="BOOKMEMOIR_DB_FILE", help="SQLite file holding the library"
    ),
    output: str = typer.Option(
        "plain", "--output", "-o", envvar=OUTPUT_MODE_ENV, help="Output format: plain | json | rich"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Global options (database file, output mode, logging)."""
    setup_logging(verbose)
    set_output_mode(output)
    _state["db_file"] = db
    _state["library"] = None


@app.command("list")
def cli_list(
    status: str = typer.Option("to-read", "--status", "-s", help="Shelf: to-read | reading | finished"),
):
    """List the books on one shelf."""
    shelf = _parse_status(status)
    presenter = get_presenter()
    print_shelf(presenter.books(shelf), shelf, presenter.empty_message(shelf))


@app.command("show")
def cli_show(book_id: str = typer.Argument(..., help="Book id or a unique prefix of it")):
    """Show every detail of one book."""
    book = _find_or_report(book_id)
    if book:
        print_book_detail(book)


@app.command("lookup")
def cli_lookup(isbn: str):
    """Look an ISBN up in Google Books without saving anything."""
    try:
        metadata = asyncio.run(get_lookup_service().fetch_book_by_isbn(isbn))
    except BookLookupError as e:
        print(e.message)
        return
    print_metadata(metadata.to_dict())


@app.command("add")
def cli_add(
    isbn: Optional[str] = typer.Option(None, "--isbn", help="Fill the book in from Google Books"),
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    pages: Optional[str] = typer.Option(None, "--pages", "-p", help="Page count"),
    cover_url: Optional[str] = typer.Option(None, "--cover-url"),
    cover_image: Optional[Path] = typer.Option(None, "--cover-image", help="Image file to use as the cover"),
):
    """Add a book to the To-Read shelf, by ISBN lookup or by hand.

    Values given on the command line win over what the lookup returns.
    """
    flow = AddBookFlow()

    if isbn:
        flow.isbn = isbn
        asyncio.run(flow.lookup(get_lookup_service()))
        if flow.error_message:
            print(flow.error_message)
            if not title:
                return

    if title is not None:
        flow.title = title
    if author is not None:
        flow.author = author
    if pages is not None:
        flow.page_count_text = pages
    if cover_url is not None:
        flow.cover_url = cover_url

    try:
        if cover_image is not None:
            flow.attach_image_file(cover_image)
        book = flow.save(get_library())
    except (ValueError, OSError) as e:
        print(f"Error: {e}")
        return
    except PersistenceError as e:
        print(f"Could not save: {e}")
        return

    line = f"Added to To-Read: {book.title}"
    if book.author:
        line += f" by {book.author}"
    print(f"{line} ({book.id[:8]})")


def _run_action(book_id: str, action, done: str) -> None:
    book = _find_or_report(book_id)
    if not book:
        return
    try:
        action(book)
    except InvalidTransitionError as e:
        print(str(e))
        return
    except PersistenceError as e:
        print(f"Could not save: {e}")
        return
    print(done.format(title=book.title, days=book.reading_duration))


@app.command("start")
def cli_start(book_id: str):
    """Move a To-Read book onto the Reading shelf."""
    _run_action(book_id, get_presenter().start_reading, "Started reading: {title}")


@app.command("finish")
def cli_finish(book_id: str):
    """Mark a book you are reading as finished."""
    _run_action(book_id, get_presenter().mark_finished, "Finished: {title} ({days} days)")


@app.command("notes")
def cli_notes(book_id: str, text: str = typer.Argument("", help="New notes; empty clears them")):
    """Replace the notes of a book."""
    presenter = get_presenter()
    _run_action(book_id, lambda b: presenter.update_notes(b, text), "Notes saved for: {title}")


@app.command("summary")
def cli_summary(book_id: str, text: str = typer.Argument("", help="New summary; empty clears it")):
    """Replace the summary of a book."""
    presenter = get_presenter()
    _run_action(book_id, lambda b: presenter.update_summary(b, text), "Summary saved for: {title}")


@app.command("stats")
def cli_stats():
    """Show library statistics."""
    print_stats_result(get_library().get_statistics())


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    """Start the HTTP API with Uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "bookmemoir.api:app",
        "--host", host,
        "--port", str(port),
    ]
    env = dict(os.environ)
    if _state["db_file"]:
        env["BOOKMEMOIR_DB_FILE"] = _state["db_file"]
    try:
        subprocess.run(args, env=env, check=False)
    except KeyboardInterrupt:
        print("Stopped.")


if __name__ == "__main__":
    app()
