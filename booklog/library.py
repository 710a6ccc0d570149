import logging
from typing import Any, Mapping, Optional

from booklog.book import Book, Principal
from booklog.errors import NotFoundError
from booklog.services.auth_gate import AuthGate, PrincipalStore
from booklog.services.book_repository import BookRepository, SQLiteBookRepository
from booklog.services.lifecycle import LifecycleManager
from booklog.services.query_builder import BookPage, QueryBuilder
from booklog.services.stats import LibraryStats, StatsAggregator

logger = logging.getLogger(__name__)


class Library:
    """Entry point shared by the API and the CLI.

    Every catalog operation takes the already-resolved Principal and passes its
    id down to the repository; nothing here works without one.
    """

    def __init__(self, db_file: Optional[str] = None, repository: Optional[BookRepository] = None,
                 principals: Optional[PrincipalStore] = None) -> None:
        self.repository = repository or SQLiteBookRepository(db_file)
        self.principals = principals or PrincipalStore(db_file)
        self.auth = AuthGate(self.principals)
        self.queries = QueryBuilder()
        self.lifecycle = LifecycleManager(self.repository)
        self.stats = StatsAggregator(self.repository)

    # ------------------------- Authentication ------------------------- #
    def authenticate(self, authorization: Optional[str]) -> Principal:
        """Resolve an ``Authorization`` header value to its owner."""
        return self.auth.resolve_header(authorization)

    # ------------------------- Catalog ------------------------- #
    def list_books(self, principal: Principal, params: Mapping[str, Any]) -> BookPage:
        query = self.queries.build(params)
        return self.queries.run(self.repository, principal.id, query)

    def get_book(self, principal: Principal, book_id: str) -> Book:
        book = self.repository.find_by_id(principal.id, book_id)
        if book is None:
            raise NotFoundError()
        return book

    def add_book(self, principal: Principal, data: Mapping[str, Any]) -> Book:
        book = self.repository.create(principal.id, data)
        logger.info(f"Book {book.id} added for {principal.id}")
        return book

    def update_book(self, principal: Principal, book_id: str, patch: Mapping[str, Any]) -> Book:
        book = self.repository.update(principal.id, book_id, patch)
        if book is None:
            raise NotFoundError()
        return book

    def remove_book(self, principal: Principal, book_id: str) -> None:
        if not self.repository.delete(principal.id, book_id):
            raise NotFoundError()
        logger.info(f"Book {book_id} removed for {principal.id}")

    # ------------------------- Lending ------------------------- #
    def borrow_book(self, principal: Principal, book_id: str, borrower_name: str) -> Book:
        return self.lifecycle.borrow(principal.id, book_id, borrower_name)

    def return_book(self, principal: Principal, book_id: str) -> Book:
        return self.lifecycle.return_book(principal.id, book_id)

    # ------------------------- Statistics ------------------------- #
    def get_statistics(self, principal: Principal) -> LibraryStats:
        return self.stats.compute(principal.id)

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None
