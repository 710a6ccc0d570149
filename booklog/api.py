import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from booklog import __version__
from booklog.book import Principal
from booklog.config import settings
from booklog.database import get_db_connection
from booklog.errors import (
    AuthenticationError,
    ConflictError,
    FieldError,
    LibraryError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from booklog.library import Library

logger = logging.getLogger(__name__)


# --- Models ---
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookWriteModel(CamelModel):
    """Body of create and update requests.

    Values pass through untyped: the core validator checks types and domain
    rules together so one 400 lists every offending field.
    """

    title: Any = None
    author: Any = None
    genre: Any = None
    publication_year: Any = None
    is_read: Any = None
    cover_image_url: Any = None
    isbn: Any = None
    description: Any = None
    notes: Any = None
    rating: Any = None
    tags: Any = None


class BorrowModel(BaseModel):
    borrower_name: Any = Field(
        default=None, validation_alias=AliasChoices("borrowerName", "borrowedBy", "borrower_name")
    )


class BookOut(CamelModel):
    id: str
    owner: str
    title: str
    author: str
    genre: str
    publication_year: int
    is_read: bool
    cover_image_url: Optional[str] = None
    isbn: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    rating: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    is_borrowed: bool
    borrowed_by: Optional[str] = None
    borrowed_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaginationOut(CamelModel):
    current: int
    pages: int
    total: int
    page_size: int
    has_next: bool
    has_prev: bool


class GenreCountOut(BaseModel):
    genre: str
    count: int


class StatsOut(CamelModel):
    total_books: int
    read_books: int
    unread_books: int
    borrowed_books: int
    read_percentage: int
    genre_distribution: List[GenreCountOut]


class BookListResponse(BaseModel):
    success: bool = True
    books: List[BookOut]
    pagination: PaginationOut


class BookResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    book: BookOut


class StatsResponse(BaseModel):
    success: bool = True
    stats: StatsOut


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# --- Error responses ---
_STATUS_CODES = {
    AuthenticationError: 401,
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 500,
}


def _error_response(status_code: int, message: str, errors: Optional[List[FieldError]] = None,
                    headers: Optional[dict] = None) -> JSONResponse:
    body = {"success": False, "message": message}
    if errors is not None:
        body["errors"] = [e.to_dict() for e in errors]
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def handle_library_error(request: Request, exc: LibraryError) -> JSONResponse:
    status_code = next((code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 500)
    if isinstance(exc, ValidationError):
        return _error_response(status_code, exc.message, exc.errors)
    if isinstance(exc, AuthenticationError):
        return _error_response(status_code, exc.message, headers={"WWW-Authenticate": "Bearer"})
    if status_code == 500:
        # Storage internals never reach the caller; the repository already logged the cause
        return _error_response(500, "Server error")
    return _error_response(status_code, exc.message)


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        field = ".".join(loc[1:]) if len(loc) > 1 else ".".join(loc)
        errors.append(FieldError(field or "body", err.get("msg", "Invalid value")))
    return _error_response(400, "Validation failed", errors)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


# --- Dependencies ---
bearer_scheme = HTTPBearer(auto_error=False)


def get_library(request: Request) -> Library:
    return request.app.state.library


def get_principal(
    request: Request,
    library: Library = Depends(get_library),
    _credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Principal:
    """Resolve the caller before any handler logic runs."""
    return library.authenticate(request.headers.get("Authorization"))


def _book_out(book) -> BookOut:
    return BookOut(**book.to_dict())


# --- Application ---
def create_app(library: Optional[Library] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create the library at startup unless one was injected
        if app.state.library is None:
            app.state.library = Library(settings.db_file)
        try:
            yield
        finally:
            app.state.library.close()

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.library = library

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        # Catalog data is per-owner and must never be served stale
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    app.add_exception_handler(LibraryError, handle_library_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)

    # --- Health ---
    @app.get("/health")
    def health(library: Library = Depends(get_library)):
        """Lightweight liveness probe with a quick database check."""
        db_ok = True
        try:
            conn = get_db_connection(library.principals.db_file)
            conn.execute("SELECT 1")
            conn.close()
        except sqlite3.Error:
            logger.exception("Health check could not reach the database")
            db_ok = False
        return {
            "status": "healthy" if db_ok else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "db": db_ok,
            "version": __version__,
        }

    # --- Books ---
    @app.get("/api/books", response_model=BookListResponse)
    def list_books(
        principal: Principal = Depends(get_principal),
        library: Library = Depends(get_library),
        search: Optional[str] = Query(None, description="Matches title, author or description"),
        genre: Optional[str] = Query(None, description="Exact genre"),
        is_read: Optional[str] = Query(None, alias="isRead", description="true|false"),
        is_borrowed: Optional[str] = Query(None, alias="isBorrowed", description="true|false"),
        page: Optional[str] = Query(None, description="Page number, starting at 1"),
        page_size: Optional[str] = Query(None, alias="pageSize", description="Items per page (1-100)"),
        limit: Optional[str] = Query(None, description="Synonym for pageSize"),
    ):
        """List the caller's books, newest first, with filters and pagination."""
        params = {
            "search": search,
            "genre": genre,
            "isRead": is_read,
            "isBorrowed": is_borrowed,
            "page": page,
            "pageSize": page_size,
            "limit": limit,
        }
        result = library.list_books(principal, params)
        return BookListResponse(
            books=[_book_out(b) for b in result.items],
            pagination=PaginationOut(**result.pagination.to_dict()),
        )

    @app.get("/api/books/stats/summary", response_model=StatsResponse)
    def get_stats(principal: Principal = Depends(get_principal), library: Library = Depends(get_library)):
        """Totals, read/unread, borrowed and genre breakdown for the caller."""
        stats = library.get_statistics(principal)
        return StatsResponse(stats=StatsOut(**stats.to_dict()))

    @app.get("/api/books/{book_id}", response_model=BookResponse)
    def get_book(book_id: str, principal: Principal = Depends(get_principal),
                 library: Library = Depends(get_library)):
        return BookResponse(book=_book_out(library.get_book(principal, book_id)))

    @app.post("/api/books", response_model=BookResponse, status_code=201)
    def add_book(payload: BookWriteModel, principal: Principal = Depends(get_principal),
                 library: Library = Depends(get_library)):
        book = library.add_book(principal, payload.model_dump())
        return BookResponse(message="Book added successfully", book=_book_out(book))

    @app.put("/api/books/{book_id}", response_model=BookResponse)
    def update_book(book_id: str, payload: BookWriteModel, principal: Principal = Depends(get_principal),
                    library: Library = Depends(get_library)):
        patch = payload.model_dump(exclude_unset=True)
        if not patch:
            raise ValidationError.single("body", "Provide at least one field to update")
        book = library.update_book(principal, book_id, patch)
        return BookResponse(message="Book updated successfully", book=_book_out(book))

    @app.delete("/api/books/{book_id}", response_model=MessageResponse)
    def delete_book(book_id: str, principal: Principal = Depends(get_principal),
                    library: Library = Depends(get_library)):
        library.remove_book(principal, book_id)
        return MessageResponse(message="Book deleted successfully")

    # --- Lending ---
    @app.patch("/api/books/{book_id}/borrow", response_model=BookResponse)
    def borrow_book(book_id: str, payload: Optional[BorrowModel] = None,
                    principal: Principal = Depends(get_principal), library: Library = Depends(get_library)):
        borrower = payload.borrower_name if payload else None
        book = library.borrow_book(principal, book_id, borrower)
        return BookResponse(message="Book marked as borrowed", book=_book_out(book))

    @app.patch("/api/books/{book_id}/return", response_model=BookResponse)
    def return_book(book_id: str, principal: Principal = Depends(get_principal),
                    library: Library = Depends(get_library)):
        book = library.return_book(principal, book_id)
        return BookResponse(message="Book marked as returned", book=_book_out(book))

    return app


app = create_app()
