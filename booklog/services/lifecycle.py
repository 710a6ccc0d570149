"""Borrow/return state machine.

Available --borrow(name)--> Borrowed --return--> Available

Each transition is one compare-and-set on the stored lending state, so two
concurrent borrows of the same book cannot both succeed.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from booklog.book import Book, LendingState
from booklog.errors import ConflictError, NotFoundError
from booklog.services.book_repository import BookRepository
from booklog.utils.validators import validate_borrower_name

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleManager:
    def __init__(self, repository: BookRepository, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.repository = repository
        self.clock = clock or _utcnow

    def borrow(self, owner_id: str, book_id: str, borrower_name: str) -> Book:
        name = validate_borrower_name(borrower_name)
        book, applied = self.repository.transition(
            owner_id, book_id, LendingState.AVAILABLE, borrowed_by=name, borrowed_date=self.clock()
        )
        if book is None:
            raise NotFoundError()
        if not applied:
            raise ConflictError("Book is already borrowed")
        logger.info(f"Book {book_id} lent out")
        return book

    def return_book(self, owner_id: str, book_id: str) -> Book:
        book, applied = self.repository.transition(
            owner_id, book_id, LendingState.BORROWED, borrowed_by=None, borrowed_date=None
        )
        if book is None:
            raise NotFoundError()
        if not applied:
            raise ConflictError("Book is not borrowed")
        logger.info(f"Book {book_id} returned")
        return book
