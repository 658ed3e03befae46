import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, Field

from bookmemoir.add_flow import AddBookFlow
from bookmemoir.book import Book, InvalidTransitionError, ReadingStatus
from bookmemoir.config import settings
from bookmemoir.covers import guess_image_type
from bookmemoir.library import Library, PersistenceError
from bookmemoir.presenter import LibraryPresenter
from bookmemoir.services.google_books_service import (
    BookLookupError,
    BookNotFoundError,
    GoogleBooksService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version=settings.app_version)

_library: Optional[Library] = None


def get_library() -> Library:
    global _library
    if _library is None:
        _library = Library()
    return _library


def get_lookup_service() -> GoogleBooksService:
    return GoogleBooksService()


def get_presenter(library: Library = Depends(get_library)) -> LibraryPresenter:
    return LibraryPresenter(library)


# --- Models ---
class BookModel(BaseModel):
    id: str
    title: str
    author: str
    cover_url: Optional[str] = None
    has_cover_image: bool = False
    page_count: Optional[int] = None
    status: str
    start_date: Optional[str] = None
    finish_date: Optional[str] = None
    reading_duration: Optional[int] = None
    notes: Optional[str] = None
    summary: Optional[str] = None
    created_at: str


class BookCreateModel(BaseModel):
    isbn: Optional[str] = Field(default=None, description="Fill the book in from Google Books")
    title: Optional[str] = Field(default=None, description="Overrides the looked-up title")
    author: Optional[str] = None
    page_count: Optional[str] = Field(default=None, description="Free text; anything non-numeric means unknown")
    cover_url: Optional[str] = None


class BookUpdateModel(BaseModel):
    notes: Optional[str] = None
    summary: Optional[str] = None


class MetadataModel(BaseModel):
    isbn: str
    title: str
    subtitle: str
    authors: List[str]
    author: str
    published_date: str
    page_count: Optional[int] = None
    cover_url: str


class StatsModel(BaseModel):
    total_books: int
    by_status: Dict[str, int]
    average_reading_days: Optional[float] = None


# --- Helpers ---
def _book_or_404(library: Library, book_id: str) -> Book:
    book = library.find_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found.")
    return book


def _lookup_status(exc: BookLookupError) -> int:
    return 404 if isinstance(exc, BookNotFoundError) else 502


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# --- Routes ---
@app.get("/health")
def health(library: Library = Depends(get_library)):
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "total_books": len(library.query_all()),
        "services": {"google_books": settings.enable_google_books},
    }


@app.get("/stats", response_model=StatsModel)
def get_stats(library: Library = Depends(get_library)):
    return StatsModel(**library.get_statistics())


@app.get("/books", response_model=List[BookModel])
def list_books(
    status: str = Query("to-read", description="to-read | reading | finished"),
    presenter: LibraryPresenter = Depends(get_presenter),
):
    """One shelf of the library."""
    try:
        shelf = ReadingStatus.parse(status)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return [BookModel(**book.to_dict()) for book in presenter.books(shelf)]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str, library: Library = Depends(get_library)):
    return BookModel(**_book_or_404(library, book_id).to_dict())


@app.post("/books", response_model=BookModel, status_code=201)
async def add_book(
    payload: BookCreateModel,
    library: Library = Depends(get_library),
    service: GoogleBooksService = Depends(get_lookup_service),
):
    """Add a To-Read book, optionally filled in from an ISBN lookup.

    Fields given in the payload win over the looked-up values.
    """
    flow = AddBookFlow()
    if payload.isbn:
        flow.isbn = payload.isbn
        await flow.lookup(service)
        if flow.lookup_error and not payload.title:
            raise HTTPException(status_code=_lookup_status(flow.lookup_error), detail=flow.lookup_error.message)

    if payload.title is not None:
        flow.title = payload.title
    if payload.author is not None:
        flow.author = payload.author
    if payload.page_count is not None:
        flow.page_count_text = payload.page_count
    if payload.cover_url is not None:
        flow.cover_url = payload.cover_url

    try:
        book = flow.save(library)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return BookModel(**book.to_dict())


@app.post("/books/{book_id}/start", response_model=BookModel)
def start_reading(book_id: str, presenter: LibraryPresenter = Depends(get_presenter)):
    book = _book_or_404(presenter.library, book_id)
    try:
        presenter.start_reading(book)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return BookModel(**book.to_dict())


@app.post("/books/{book_id}/finish", response_model=BookModel)
def mark_finished(book_id: str, presenter: LibraryPresenter = Depends(get_presenter)):
    book = _book_or_404(presenter.library, book_id)
    try:
        presenter.mark_finished(book)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return BookModel(**book.to_dict())


@app.patch("/books/{book_id}", response_model=BookModel)
def update_book(book_id: str, update: BookUpdateModel, presenter: LibraryPresenter = Depends(get_presenter)):
    """Edit notes and/or summary. An empty string clears the field."""
    if update.notes is None and update.summary is None:
        raise HTTPException(status_code=400, detail="Provide notes and/or summary.")
    book = _book_or_404(presenter.library, book_id)
    if update.notes is not None:
        presenter.update_notes(book, update.notes)
    if update.summary is not None:
        presenter.update_summary(book, update.summary)
    return BookModel(**book.to_dict())


@app.put("/books/{book_id}/cover", response_model=BookModel)
async def upload_cover(book_id: str, request: Request, library: Library = Depends(get_library)):
    """Attach the raw request body as the book's cover image."""
    book = _book_or_404(library, book_id)
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="The image is empty.")
    if len(data) > settings.max_upload_size:
        raise HTTPException(status_code=413, detail="The image is too large.")

    def setter(b: Book) -> None:
        b.cover_image_data = data

    library.mutate(book, setter)
    library.commit()
    return BookModel(**book.to_dict())


@app.get("/books/{book_id}/cover")
def get_cover(book_id: str, presenter: LibraryPresenter = Depends(get_presenter)):
    """Attached image bytes, or a redirect to the normalized cover URL."""
    book = _book_or_404(presenter.library, book_id)
    cover = presenter.cover_for(book)
    if cover is None:
        raise HTTPException(status_code=404, detail="No Cover")
    if cover.kind == "image":
        return Response(content=cover.image_data, media_type=guess_image_type(cover.image_data))
    return RedirectResponse(url=cover.url, status_code=307)


@app.get("/lookup/{isbn}", response_model=MetadataModel)
async def lookup_isbn(isbn: str, service: GoogleBooksService = Depends(get_lookup_service)):
    """Google Books metadata for an ISBN, without saving anything."""
    try:
        metadata = await service.fetch_book_by_isbn(isbn)
    except BookLookupError as e:
        raise HTTPException(status_code=_lookup_status(e), detail=e.message)
    return MetadataModel(**metadata.to_dict())
