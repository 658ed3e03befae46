"""Cover art helpers: make catalog image URLs loadable and pick what to display."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import quote, urlsplit

from bookmemoir.book import Book

# Characters left untouched when encoding: the URL query-allowed set, plus '%'
# so that existing escapes survive a second pass.
QUERY_SAFE = "!$&'()*+,-./:;=?@_~%"

# A '%' that does not start a valid escape is literal text and must be encoded.
_BARE_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")


def normalize_cover_url(raw: str | None) -> str | None:
    """Return a percent-encoded https URL for ``raw``, or None if it is not usable."""
    if raw is None or not raw.strip():
        return None

    try:
        encoded = quote(_BARE_PERCENT.sub("%25", raw.strip()), safe=QUERY_SAFE)
    except UnicodeEncodeError:
        return None

    if encoded[:7].lower() == "http://":
        encoded = "https://" + encoded[7:]

    try:
        parts = urlsplit(encoded)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return encoded


@dataclass(frozen=True)
class CoverSource:
    kind: str  # "image" or "url"
    image_data: bytes | None = None
    url: str | None = None


def display_cover(book: Book) -> CoverSource | None:
    """What to render for ``book``: attached image bytes win over a cover URL."""
    if book.cover_image_data:
        return CoverSource(kind="image", image_data=book.cover_image_data)
    url = normalize_cover_url(book.cover_url)
    if url:
        return CoverSource(kind="url", url=url)
    return None


def guess_image_type(data: bytes) -> str:
    """Media type for image bytes, judged from the file signature."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[4:12] in (b"ftypheic", b"ftypheix", b"ftypmif1"):
        return "image/heic"
    return "application/octet-stream"
