"""Core services: authentication, owner-scoped storage, queries, lending and statistics."""

from booklog.services.auth_gate import AuthGate, PrincipalStore
from booklog.services.book_repository import BookFilter, BookRepository, SQLiteBookRepository
from booklog.services.lifecycle import LifecycleManager
from booklog.services.query_builder import BookPage, BookQuery, Pagination, QueryBuilder
from booklog.services.stats import LibraryStats, StatsAggregator

__all__ = [
    "AuthGate",
    "BookFilter",
    "BookPage",
    "BookQuery",
    "BookRepository",
    "LibraryStats",
    "LifecycleManager",
    "Pagination",
    "PrincipalStore",
    "QueryBuilder",
    "SQLiteBookRepository",
    "StatsAggregator",
]
