from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone


class ReadingStatus(enum.Enum):
    """Where a book sits on the shelf."""

    TO_READ = "To-Read"
    READING = "Reading"
    FINISHED = "Finished"

    @classmethod
    def parse(cls, raw: str) -> "ReadingStatus":
        """Accept the stored value, the enum name or a dashed CLI spelling ('to-read')."""
        text = (raw or "").strip()
        for status in cls:
            if text == status.value or text.upper().replace("-", "_") == status.name:
                return status
        raise ValueError(f"Unknown reading status: {raw!r}")

    @property
    def slug(self) -> str:
        return self.name.lower().replace("_", "-")

    def can_transition_to(self, target: "ReadingStatus") -> bool:
        return target in _TRANSITIONS[self]


# Finished is terminal; there is no way back to an earlier shelf.
_TRANSITIONS = {
    ReadingStatus.TO_READ: {ReadingStatus.READING},
    ReadingStatus.READING: {ReadingStatus.FINISHED},
    ReadingStatus.FINISHED: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when a status change is requested from the wrong shelf."""

    def __init__(self, book: "Book", target: ReadingStatus) -> None:
        self.book_id = book.id
        self.current = book.status
        self.target = target
        if book.status is target:
            message = f"'{book.title}' is already on the {target.value} shelf."
        else:
            message = f"Cannot move '{book.title}' from {book.status.value} to {target.value}."
        super().__init__(message)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Book:
    """A single item in the reader's library.

    ``id``, ``status``, ``start_date`` and ``finish_date`` are read-only; the
    status and its dates only change through :meth:`start_reading` and
    :meth:`mark_finished`.
    """

    def __init__(self, title: str, author: str = "", cover_url: str | None = None,
                 cover_image_data: bytes | None = None, page_count: int | None = None,
                 notes: str | None = None, summary: str | None = None,
                 # Stored state, only passed when loading an existing record
                 book_id: str | None = None, status: ReadingStatus = ReadingStatus.TO_READ,
                 start_date: datetime | None = None, finish_date: datetime | None = None,
                 created_at: datetime | None = None) -> None:
        if page_count is not None and page_count < 0:
            raise ValueError("page_count must be non-negative")
        self._id = book_id or str(uuid.uuid4())
        self.title = title
        self.author = author or ""
        self.cover_url = cover_url
        self.cover_image_data = cover_image_data
        self.page_count = page_count
        self.notes = notes
        self.summary = summary
        self._status = status
        self._start_date = start_date
        self._finish_date = finish_date
        self.created_at = created_at or utc_now()

    def __str__(self) -> str:
        return f"{self.title} by {self.author or 'Unknown author'} [{self.status.value}]"

    def __repr__(self) -> str:
        return f"Book(id={self.id!r}, title={self.title!r}, status={self.status.name})"

    @property
    def id(self) -> str:
        return self._id

    @property
    def status(self) -> ReadingStatus:
        return self._status

    @property
    def start_date(self) -> datetime | None:
        return self._start_date

    @property
    def finish_date(self) -> datetime | None:
        return self._finish_date

    # ------------------------- Transitions ------------------------- #
    def start_reading(self, at: datetime | None = None) -> None:
        if not self._status.can_transition_to(ReadingStatus.READING):
            raise InvalidTransitionError(self, ReadingStatus.READING)
        self._status = ReadingStatus.READING
        self._start_date = at or utc_now()

    def mark_finished(self, at: datetime | None = None) -> None:
        if not self._status.can_transition_to(ReadingStatus.FINISHED):
            raise InvalidTransitionError(self, ReadingStatus.FINISHED)
        self._status = ReadingStatus.FINISHED
        self._finish_date = at or utc_now()

    # ------------------------- Derived values ------------------------- #
    @property
    def reading_duration(self) -> int | None:
        """Whole days between starting and finishing, or None if either date is missing."""
        if self._start_date is None or self._finish_date is None:
            return None
        return abs(self._finish_date - self._start_date).days

    @property
    def preferred_cover(self) -> str | None:
        if self.cover_image_data:
            return "image"
        if self.cover_url:
            return "url"
        return None

    # ------------------------- Serialization ------------------------- #
    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "cover_url": self.cover_url,
            "has_cover_image": bool(self.cover_image_data),
            "page_count": self.page_count,
            "status": self.status.value,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "finish_date": self.finish_date.isoformat() if self.finish_date else None,
            "reading_duration": self.reading_duration,
            "notes": self.notes,
            "summary": self.summary,
            "created_at": self.created_at.isoformat(),
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # SQLite hands back BLOBs as bytes and timestamps as ISO strings
        image = data.get("cover_image")
        return Book(
            book_id=data["id"],
            title=data["title"],
            author=data.get("author") or "",
            cover_url=data.get("cover_url"),
            cover_image_data=bytes(image) if image is not None else None,
            page_count=data.get("page_count"),
            notes=data.get("notes"),
            summary=data.get("summary"),
            status=ReadingStatus(data.get("status") or ReadingStatus.TO_READ.value),
            start_date=_parse_timestamp(data.get("start_date")),
            finish_date=_parse_timestamp(data.get("finish_date")),
            created_at=_parse_timestamp(data.get("created_at")),
        )
