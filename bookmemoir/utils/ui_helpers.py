import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from bookmemoir.book import Book, ReadingStatus
from bookmemoir.covers import display_cover

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "BOOKMEMOIR_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _short_id(book: Book) -> str:
    return book.id[:8]


def _date(value) -> str:
    return value.strftime("%b %d, %Y") if value else ""


def print_shelf(books: List[Book], status: ReadingStatus, empty_message: str) -> None:
    """Print one shelf in the current output mode.

    - plain: one line per book, with the field that matters for that shelf
    - json: list of book dicts
    - rich: table
    """
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
        return

    if not books:
        print(empty_message)
        return

    if mode == "rich":
        table = Table(title=f"📚 {status.value}", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        if status is ReadingStatus.READING:
            table.add_column("Started", style="green")
        elif status is ReadingStatus.FINISHED:
            table.add_column("Days", style="green", justify="right")
        for b in books:
            row = [_short_id(b), escape(b.title), escape(b.author)]
            if status is ReadingStatus.READING:
                row.append(_date(b.start_date))
            elif status is ReadingStatus.FINISHED:
                row.append("" if b.reading_duration is None else str(b.reading_duration))
            table.add_row(*row)
        _console.print(table)
        return

    for b in books:
        line = f"{_short_id(b)} - {b.title}"
        if b.author:
            line += f" by {b.author}"
        if status is ReadingStatus.READING and b.start_date:
            line += f" (Started: {_date(b.start_date)})"
        elif status is ReadingStatus.FINISHED and b.reading_duration is not None:
            line += f" (Finished in {b.reading_duration} days)"
        print(line)


def print_book_detail(book: Book) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(book.to_dict(), ensure_ascii=False))
        return

    cover = display_cover(book)
    if cover is None:
        cover_text = "No Cover"
    elif cover.kind == "image":
        cover_text = f"attached image ({len(cover.image_data)} bytes)"
    else:
        cover_text = cover.url

    lines = [
        ("ID", book.id),
        ("Title", book.title),
        ("Author", book.author),
        ("Status", book.status.value),
        ("Pages", "" if book.page_count is None else str(book.page_count)),
        ("Cover", cover_text),
        ("Started", _date(book.start_date)),
        ("Finished", _date(book.finish_date)),
        ("Days", "" if book.reading_duration is None else str(book.reading_duration)),
        ("Notes", book.notes or ""),
        ("Summary", book.summary or ""),
    ]
    lines = [(label, value) for label, value in lines if value]

    if mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {escape(value)}" for label, value in lines)
        _console.print(Panel.fit(content, title=f"📖 {escape(book.title)}", border_style="blue"))
    else:
        for label, value in lines:
            print(f"{label}: {value}")


def print_metadata(metadata: Dict[str, Any]) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(metadata, ensure_ascii=False))
        return

    lines = [
        ("Title", metadata.get("title")),
        ("Subtitle", metadata.get("subtitle")),
        ("Author", metadata.get("author")),
        ("Published", metadata.get("published_date")),
        ("Pages", metadata.get("page_count")),
        ("Cover", metadata.get("cover_url")),
    ]
    lines = [(label, str(value)) for label, value in lines if value not in (None, "")]
    if mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {escape(value)}" for label, value in lines)
        _console.print(Panel.fit(content, title="🔎 Google Books", border_style="cyan"))
    else:
        for label, value in lines:
            print(f"{label}: {value}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print library statistics in the current output mode."""
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
        return

    total = stats.get("total_books", 0)
    by_status = stats.get("by_status", {})
    average = stats.get("average_reading_days")
    lines = [f"Total Books: {total}"]
    lines += [f"{status}: {count}" for status, count in by_status.items()]
    if average is not None:
        lines.append(f"Average Days to Finish: {average}")

    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines), title="📊 Stats", border_style="blue"))
    else:
        for line in lines:
            print(line)
