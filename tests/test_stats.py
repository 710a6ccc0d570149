from unittest.mock import MagicMock

import pytest

from booklog.book import Genre
from booklog.services.book_repository import BookRepository
from booklog.services.stats import StatsAggregator, read_percentage


@pytest.mark.parametrize("read,total,expected", [
    (0, 0, 0), (0, 5, 0), (5, 5, 100), (1, 3, 33), (2, 3, 67), (1, 8, 13), (1, 2, 50),
])
def test_read_percentage(read, total, expected):
    assert read_percentage(read, total) == expected


def test_empty_catalog(lib, owner):
    stats = StatsAggregator(lib.repository).compute(owner[0].id)
    assert stats.to_dict() == {
        "totalBooks": 0,
        "readBooks": 0,
        "unreadBooks": 0,
        "borrowedBooks": 0,
        "readPercentage": 0,
        "genreDistribution": [],
    }


def test_counts_only_the_callers_books(lib, owner, other_owner, book_data):
    repo = lib.repository
    oid = owner[0].id
    repo.create(oid, book_data(genre="Poetry", is_read=True))
    repo.create(oid, book_data(genre="Fantasy"))
    lent = repo.create(oid, book_data(genre="Poetry"))
    lib.lifecycle.borrow(oid, lent.id, "Eve")
    repo.create(other_owner[0].id, book_data(genre="Horror", is_read=True))

    stats = StatsAggregator(repo).compute(oid)
    assert stats.total_books == 3
    assert stats.read_books == 1
    assert stats.unread_books == 2
    assert stats.borrowed_books == 1
    assert stats.read_percentage == 33
    assert stats.genre_distribution == [(Genre.POETRY, 2), (Genre.FANTASY, 1)]


def test_reflects_changes_immediately(lib, owner, book_data):
    oid = owner[0].id
    aggregator = StatsAggregator(lib.repository)
    book = lib.repository.create(oid, book_data())
    assert aggregator.compute(oid).read_books == 0
    lib.repository.update(oid, book.id, {"is_read": True})
    assert aggregator.compute(oid).read_percentage == 100


def test_uses_a_single_repository_read():
    repo = MagicMock(spec=BookRepository)
    repo.summarize.return_value = (4, 1, 2, [(Genre.FICTION, 4)])

    stats = StatsAggregator(repo).compute("owner-1")

    repo.summarize.assert_called_once_with("owner-1")
    repo.count.assert_not_called()
    repo.aggregate_by_genre.assert_not_called()
    assert stats.unread_books == 3
    assert stats.read_percentage == 25
