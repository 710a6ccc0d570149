from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from booklog.book import Genre
from booklog.services.book_repository import BookRepository


def read_percentage(read_books: int, total_books: int) -> int:
    """Whole-number percentage, halves rounded up; 0 for an empty catalog."""
    if total_books == 0:
        return 0
    return (200 * read_books + total_books) // (2 * total_books)


@dataclass
class LibraryStats:
    total_books: int
    read_books: int
    borrowed_books: int
    genre_distribution: List[Tuple[Genre, int]] = field(default_factory=list)

    @property
    def unread_books(self) -> int:
        return self.total_books - self.read_books

    @property
    def read_percentage(self) -> int:
        return read_percentage(self.read_books, self.total_books)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalBooks": self.total_books,
            "readBooks": self.read_books,
            "unreadBooks": self.unread_books,
            "borrowedBooks": self.borrowed_books,
            "readPercentage": self.read_percentage,
            "genreDistribution": [
                {"genre": genre.value, "count": count} for genre, count in self.genre_distribution
            ],
        }


class StatsAggregator:
    """Read-only summary of one owner's catalog, computed fresh on every call."""

    def __init__(self, repository: BookRepository) -> None:
        self.repository = repository

    def compute(self, owner_id: str) -> LibraryStats:
        total, read, borrowed, genres = self.repository.summarize(owner_id)
        return LibraryStats(
            total_books=total,
            read_books=read,
            borrowed_books=borrowed,
            genre_distribution=genres,
        )
