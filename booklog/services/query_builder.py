"""Turns a raw filter request into a repository query plus pagination metadata."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from booklog.book import Book, Genre
from booklog.config import settings
from booklog.errors import FieldError, ValidationError
from booklog.services.book_repository import BookFilter, BookRepository

_TRUE = {"true", "1"}
_FALSE = {"false", "0"}


@dataclass(frozen=True)
class BookQuery:
    filter: BookFilter
    page: int = 1
    page_size: int = 10


@dataclass(frozen=True)
class Pagination:
    current: int
    pages: int
    total: int
    page_size: int

    @property
    def has_next(self) -> bool:
        return self.current < self.pages

    @property
    def has_prev(self) -> bool:
        return self.current > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "pages": self.pages,
            "total": self.total,
            "pageSize": self.page_size,
            "hasNext": self.has_next,
            "hasPrev": self.has_prev,
        }


@dataclass
class BookPage:
    items: List[Book] = field(default_factory=list)
    pagination: Optional[Pagination] = None


def _parse_bool(raw: Any) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.strip().lower() in _TRUE:
        return True
    if isinstance(raw, str) and raw.strip().lower() in _FALSE:
        return False
    raise ValueError(raw)


def _parse_int(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError(raw)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        return int(raw.strip())
    raise ValueError(raw)


def _present(params: Mapping[str, Any], key: str) -> bool:
    value = params.get(key)
    return value is not None and value != ""


class QueryBuilder:
    """Parses filter requests and computes pagination.

    Recognized parameters: ``search``, ``genre``, ``isRead``, ``isBorrowed``,
    ``page`` and ``pageSize`` (``limit`` is accepted as a synonym).
    """

    def __init__(self, default_page_size: Optional[int] = None, max_page_size: Optional[int] = None,
                 max_search_length: Optional[int] = None) -> None:
        self.default_page_size = default_page_size or settings.default_page_size
        self.max_page_size = max_page_size or settings.max_page_size
        self.max_search_length = max_search_length or settings.max_search_length

    def build(self, params: Mapping[str, Any]) -> BookQuery:
        """Validate every parameter; all offending fields are reported together."""
        errors: List[FieldError] = []

        search = params.get("search")
        if search is not None:
            if not isinstance(search, str):
                errors.append(FieldError("search", "Search term must be text"))
                search = None
            else:
                search = search.strip() or None
                if search and len(search) > self.max_search_length:
                    errors.append(FieldError("search", "Search term too long"))

        genre = None
        if _present(params, "genre"):
            try:
                genre = Genre.parse(params["genre"])
            except ValueError:
                errors.append(FieldError("genre", "Invalid genre"))

        flags: Dict[str, Optional[bool]] = {"isRead": None, "isBorrowed": None}
        for key in flags:
            if _present(params, key):
                try:
                    flags[key] = _parse_bool(params[key])
                except ValueError:
                    errors.append(FieldError(key, f"{key} must be a boolean"))

        page = 1
        if _present(params, "page"):
            try:
                page = _parse_int(params["page"])
                if page < 1:
                    raise ValueError(page)
            except ValueError:
                errors.append(FieldError("page", "Page must be a positive integer"))

        size_key = "pageSize" if _present(params, "pageSize") else "limit"
        page_size = self.default_page_size
        if _present(params, size_key):
            try:
                page_size = _parse_int(params[size_key])
                if not 1 <= page_size <= self.max_page_size:
                    raise ValueError(page_size)
            except ValueError:
                errors.append(FieldError(size_key, f"{size_key} must be between 1 and {self.max_page_size}"))

        if errors:
            raise ValidationError(errors)

        return BookQuery(
            filter=BookFilter(search=search, genre=genre, is_read=flags["isRead"], is_borrowed=flags["isBorrowed"]),
            page=page,
            page_size=page_size,
        )

    @staticmethod
    def paginate(total: int, page: int, page_size: int) -> Pagination:
        # An empty result still has one (empty) page
        pages = max(1, -(-total // page_size))
        return Pagination(current=page, pages=pages, total=total, page_size=page_size)

    def run(self, repository: BookRepository, owner_id: str, query: BookQuery) -> BookPage:
        items, total = repository.find(owner_id, query.filter, query.page, query.page_size)
        return BookPage(items=items, pagination=self.paginate(total, query.page, query.page_size))
