from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List


class Genre(str, Enum):
    """Closed set of genres. Declaration order is the statistics tie-break order."""

    FICTION = "Fiction"
    NON_FICTION = "Non-Fiction"
    MYSTERY = "Mystery"
    ROMANCE = "Romance"
    SCIENCE_FICTION = "Science Fiction"
    FANTASY = "Fantasy"
    BIOGRAPHY = "Biography"
    HISTORY = "History"
    SELF_HELP = "Self-Help"
    BUSINESS = "Business"
    TECHNOLOGY = "Technology"
    HEALTH = "Health"
    TRAVEL = "Travel"
    COOKING = "Cooking"
    ART = "Art"
    RELIGION = "Religion"
    PHILOSOPHY = "Philosophy"
    PSYCHOLOGY = "Psychology"
    EDUCATION = "Education"
    CHILDREN = "Children"
    YOUNG_ADULT = "Young Adult"
    POETRY = "Poetry"
    DRAMA = "Drama"
    HORROR = "Horror"
    THRILLER = "Thriller"
    ADVENTURE = "Adventure"
    OTHER = "Other"

    @property
    def position(self) -> int:
        return _GENRE_ORDER[self]

    @classmethod
    def parse(cls, value: Any) -> "Genre":
        """Return the member for ``value``; raises ValueError for anything outside the set."""
        if isinstance(value, cls):
            return value
        return cls(value)


_GENRE_ORDER = {g: i for i, g in enumerate(Genre)}


class LendingState(str, Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"


@dataclass(frozen=True)
class Principal:
    """An authenticated owner. The core references it but never mutates it."""

    id: str
    name: str
    created_at: str | None = None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class Book:
    """A single catalog entry owned by one principal."""

    def __init__(self, id: str, owner_id: str, title: str, author: str, genre: Genre,
                 publication_year: int, is_read: bool = False,
                 cover_image_url: str | None = None, isbn: str | None = None,
                 description: str | None = None, notes: str | None = None,
                 rating: int | None = None, tags: List[str] | None = None,
                 lending_state: LendingState = LendingState.AVAILABLE,
                 borrowed_by: str | None = None, borrowed_date: datetime | None = None,
                 created_at: datetime | None = None, updated_at: datetime | None = None) -> None:
        self.id = id
        self.owner_id = owner_id
        self.title = title
        self.author = author
        self.genre = Genre.parse(genre)
        self.publication_year = publication_year
        self.is_read = bool(is_read)
        self.cover_image_url = cover_image_url
        self.isbn = isbn
        self.description = description
        self.notes = notes
        self.rating = rating
        self.tags = list(tags or [])

        # Lending
        self.lending_state = LendingState(lending_state)
        self.borrowed_by = borrowed_by
        self.borrowed_date = borrowed_date

        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.publication_year})"

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Book {self.id} {self.title!r} {self.lending_state.value}>"

    @property
    def is_borrowed(self) -> bool:
        return self.lending_state is LendingState.BORROWED

    def to_dict(self) -> Dict[str, Any]:
        """Public representation, using the field names of the HTTP interface."""
        return {
            "id": self.id,
            "owner": self.owner_id,
            "title": self.title,
            "author": self.author,
            "genre": self.genre.value,
            "publicationYear": self.publication_year,
            "isRead": self.is_read,
            "coverImageUrl": self.cover_image_url,
            "isbn": self.isbn,
            "description": self.description,
            "notes": self.notes,
            "rating": self.rating,
            "tags": list(self.tags),
            "isBorrowed": self.is_borrowed,
            "borrowedBy": self.borrowed_by,
            "borrowedDate": _iso(self.borrowed_date),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Book":
        # SQLite hands tags back as a JSON string
        tags = row.get("tags")
        if isinstance(tags, str):
            tags = json.loads(tags) if tags else []

        return Book(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            author=row["author"],
            genre=row["genre"],
            publication_year=row["publication_year"],
            is_read=bool(row.get("is_read")),
            cover_image_url=row.get("cover_image_url"),
            isbn=row.get("isbn"),
            description=row.get("description"),
            notes=row.get("notes"),
            rating=row.get("rating"),
            tags=tags,
            lending_state=row.get("lending_state") or LendingState.AVAILABLE,
            borrowed_by=row.get("borrowed_by"),
            borrowed_date=_parse_dt(row.get("borrowed_date")),
            created_at=_parse_dt(row.get("created_at")),
            updated_at=_parse_dt(row.get("updated_at")),
        )
