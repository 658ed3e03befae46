from datetime import datetime, timedelta, timezone

import httpx
import pytest

from bookmemoir.library import Library
from bookmemoir.services.google_books_service import GoogleBooksService

CATALOG_URL = "https://catalog.test/books/v1"


@pytest.fixture
def lib(tmp_path, request):
    # A fresh database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 8, 5, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def make_service():
    """Build a GoogleBooksService whose HTTP calls go to ``handler`` instead of the network."""
    def factory(handler):
        return GoogleBooksService(api_key="", base_url=CATALOG_URL, transport=httpx.MockTransport(handler))
    return factory


@pytest.fixture
def volume():
    """A catalog response with one match built from the given volumeInfo fields."""
    def factory(**volume_info):
        return {"kind": "books#volumes", "totalItems": 1, "items": [{"volumeInfo": volume_info}]}
    return factory
