"""Owner-scoped book storage.

Every method takes the owner id as an explicit first argument; there is no
ambient scope. A record that exists but belongs to another owner is reported
exactly like a record that does not exist.
"""

import json
import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from booklog.book import Book, Genre, LendingState
from booklog.database import get_db_connection, initialize_database
from booklog.errors import LibraryError, StorageError
from booklog.utils.validators import reject_protected_fields, validate_book_fields

logger = logging.getLogger(__name__)

_EDITABLE_COLUMNS = (
    "title", "author", "genre", "publication_year", "is_read", "cover_image_url",
    "isbn", "description", "notes", "rating", "tags",
)


@dataclass(frozen=True)
class BookFilter:
    """Predicates combined with AND. ``None`` means "not filtered"."""

    search: Optional[str] = None
    genre: Optional[Genre] = None
    is_read: Optional[bool] = None
    is_borrowed: Optional[bool] = None


class BookRepository(ABC):
    """Storage contract consumed by the core services."""

    @abstractmethod
    def find(self, owner_id: str, flt: BookFilter, page: int, page_size: int) -> Tuple[List[Book], int]:
        """Return the page of matching books (newest first) and the total match count."""

    @abstractmethod
    def find_by_id(self, owner_id: str, book_id: str) -> Optional[Book]:
        ...

    @abstractmethod
    def create(self, owner_id: str, data: Mapping[str, Any]) -> Book:
        ...

    @abstractmethod
    def update(self, owner_id: str, book_id: str, patch: Mapping[str, Any]) -> Optional[Book]:
        ...

    @abstractmethod
    def delete(self, owner_id: str, book_id: str) -> bool:
        ...

    @abstractmethod
    def count(self, owner_id: str, flt: Optional[BookFilter] = None) -> int:
        ...

    @abstractmethod
    def aggregate_by_genre(self, owner_id: str) -> List[Tuple[Genre, int]]:
        """Genre counts, highest first; ties keep the enumeration order."""

    @abstractmethod
    def summarize(self, owner_id: str) -> Tuple[int, int, int, List[Tuple[Genre, int]]]:
        """``(total, read, borrowed, genre counts)`` read from one consistent snapshot."""

    @abstractmethod
    def transition(self, owner_id: str, book_id: str, expected: LendingState,
                   borrowed_by: Optional[str], borrowed_date: Optional[datetime]) -> Tuple[Optional[Book], bool]:
        """Compare-and-set the lending fields.

        Applies only if the book is currently in ``expected``. Returns
        ``(book, applied)``; ``book`` is None when no scoped record exists,
        otherwise it reflects the state after the call.
        """


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _where(owner_id: str, flt: Optional[BookFilter]) -> Tuple[str, List[Any]]:
    clauses = ["owner_id = ?"]
    params: List[Any] = [owner_id]
    if flt is None:
        return " AND ".join(clauses), params

    if flt.search:
        needle = flt.search.casefold()
        clauses.append(
            "(instr(casefold(title), ?) > 0"
            " OR instr(casefold(author), ?) > 0"
            " OR instr(casefold(coalesce(description, '')), ?) > 0)"
        )
        params.extend([needle, needle, needle])
    if flt.genre is not None:
        clauses.append("genre = ?")
        params.append(flt.genre.value)
    if flt.is_read is not None:
        clauses.append("is_read = ?")
        params.append(int(flt.is_read))
    if flt.is_borrowed is not None:
        clauses.append("lending_state = ?")
        state = LendingState.BORROWED if flt.is_borrowed else LendingState.AVAILABLE
        params.append(state.value)
    return " AND ".join(clauses), params


def _row_to_book(row: sqlite3.Row) -> Book:
    return Book.from_row(dict(row))


def _sorted_genre_counts(rows: List[sqlite3.Row]) -> List[Tuple[Genre, int]]:
    counts = [(Genre(r["genre"]), r["n"]) for r in rows]
    counts.sort(key=lambda item: (-item[1], item[0].position))
    return counts


def _column_values(record: Mapping[str, Any]) -> List[Any]:
    values = []
    for column in _EDITABLE_COLUMNS:
        value = record.get(column)
        if column == "genre":
            value = Genre.parse(value).value
        elif column == "is_read":
            value = int(bool(value))
        elif column == "tags":
            value = json.dumps(list(value or []), ensure_ascii=False)
        values.append(value)
    return values


class SQLiteBookRepository(BookRepository):
    """BookRepository backed by a single SQLite file."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = initialize_database(db_file)

    @contextmanager
    def _session(self, operation: str, write: bool = False) -> Iterator[sqlite3.Connection]:
        """One connection, one transaction.

        Writes take the database write lock up front (BEGIN IMMEDIATE) so a
        read-validate-write sequence cannot interleave with another writer.
        """
        try:
            conn = get_db_connection(self.db_file)
        except sqlite3.Error as e:
            logger.exception(f"Could not open database for {operation}")
            raise StorageError(operation=operation) from e
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except LibraryError:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception(f"Database error during {operation}")
            raise StorageError(operation=operation) from e
        finally:
            conn.close()

    # ------------------------- Reads ------------------------- #
    def find(self, owner_id: str, flt: BookFilter, page: int, page_size: int) -> Tuple[List[Book], int]:
        where, params = _where(owner_id, flt)
        offset = (page - 1) * page_size
        with self._session("find") as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM books WHERE {where}", params).fetchone()[0]
            # Past the last page; also keeps huge offsets out of SQLite's 64-bit range
            if offset >= total:
                return [], total
            rows = conn.execute(
                f"SELECT * FROM books WHERE {where} ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                params + [page_size, offset],
            ).fetchall()
        return [_row_to_book(r) for r in rows], total

    def find_by_id(self, owner_id: str, book_id: str) -> Optional[Book]:
        with self._session("find_by_id") as conn:
            row = conn.execute(
                "SELECT * FROM books WHERE id = ? AND owner_id = ?", (book_id, owner_id)
            ).fetchone()
        return _row_to_book(row) if row else None

    def count(self, owner_id: str, flt: Optional[BookFilter] = None) -> int:
        where, params = _where(owner_id, flt)
        with self._session("count") as conn:
            return conn.execute(f"SELECT COUNT(*) FROM books WHERE {where}", params).fetchone()[0]

    def aggregate_by_genre(self, owner_id: str) -> List[Tuple[Genre, int]]:
        with self._session("aggregate_by_genre") as conn:
            rows = conn.execute(
                "SELECT genre, COUNT(*) AS n FROM books WHERE owner_id = ? GROUP BY genre", (owner_id,)
            ).fetchall()
        return _sorted_genre_counts(rows)

    def summarize(self, owner_id: str) -> Tuple[int, int, int, List[Tuple[Genre, int]]]:
        with self._session("summarize") as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS n_total,
                       COALESCE(SUM(is_read), 0) AS n_read,
                       COALESCE(SUM(lending_state = ?), 0) AS n_borrowed
                FROM books WHERE owner_id = ?
                """,
                (LendingState.BORROWED.value, owner_id),
            ).fetchone()
            rows = conn.execute(
                "SELECT genre, COUNT(*) AS n FROM books WHERE owner_id = ? GROUP BY genre", (owner_id,)
            ).fetchall()
        return row["n_total"], row["n_read"], row["n_borrowed"], _sorted_genre_counts(rows)

    # ------------------------- Writes ------------------------- #
    def create(self, owner_id: str, data: Mapping[str, Any]) -> Book:
        reject_protected_fields(data)
        record = validate_book_fields(data)
        book_id = uuid.uuid4().hex
        now = _utcnow()
        columns = ", ".join(("id", "owner_id") + _EDITABLE_COLUMNS + ("lending_state", "created_at", "updated_at"))
        placeholders = ", ".join("?" * (len(_EDITABLE_COLUMNS) + 5))
        with self._session("create", write=True) as conn:
            conn.execute(
                f"INSERT INTO books ({columns}) VALUES ({placeholders})",
                [book_id, owner_id] + _column_values(record)
                + [LendingState.AVAILABLE.value, now.isoformat(), now.isoformat()],
            )
        return Book(id=book_id, owner_id=owner_id, created_at=now, updated_at=now, **record)

    def update(self, owner_id: str, book_id: str, patch: Mapping[str, Any]) -> Optional[Book]:
        reject_protected_fields(patch)
        with self._session("update", write=True) as conn:
            row = conn.execute(
                "SELECT * FROM books WHERE id = ? AND owner_id = ?", (book_id, owner_id)
            ).fetchone()
            if row is None:
                return None
            current = _row_to_book(row)
            merged: Dict[str, Any] = {c: getattr(current, c) for c in _EDITABLE_COLUMNS}
            merged.update(patch)
            # The whole resulting record is checked, not only the patched fields
            record = validate_book_fields(merged)
            now = _utcnow()
            assignments = ", ".join(f"{c} = ?" for c in _EDITABLE_COLUMNS)
            conn.execute(
                f"UPDATE books SET {assignments}, updated_at = ? WHERE id = ? AND owner_id = ?",
                _column_values(record) + [now.isoformat(), book_id, owner_id],
            )
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return _row_to_book(row)

    def delete(self, owner_id: str, book_id: str) -> bool:
        with self._session("delete", write=True) as conn:
            cursor = conn.execute("DELETE FROM books WHERE id = ? AND owner_id = ?", (book_id, owner_id))
            return cursor.rowcount > 0

    def transition(self, owner_id: str, book_id: str, expected: LendingState,
                   borrowed_by: Optional[str], borrowed_date: Optional[datetime]) -> Tuple[Optional[Book], bool]:
        target = LendingState.BORROWED if expected is LendingState.AVAILABLE else LendingState.AVAILABLE
        with self._session("transition", write=True) as conn:
            cursor = conn.execute(
                "UPDATE books SET lending_state = ?, borrowed_by = ?, borrowed_date = ?, updated_at = ?"
                " WHERE id = ? AND owner_id = ? AND lending_state = ?",
                (
                    target.value,
                    borrowed_by,
                    borrowed_date.isoformat() if borrowed_date else None,
                    _utcnow().isoformat(),
                    book_id,
                    owner_id,
                    expected.value,
                ),
            )
            applied = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM books WHERE id = ? AND owner_id = ?", (book_id, owner_id)
            ).fetchone()
        return (_row_to_book(row) if row else None), applied
