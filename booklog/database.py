import logging
import os
import sqlite3
import tempfile
from typing import Optional

from booklog.config import settings

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE (explicit override, read through settings)
# 2) per-user file in the temp directory
DEFAULT_DATABASE_FILE = settings.db_file or os.path.join(tempfile.gettempdir(), "booklog.db")


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    One connection per operation; callers close it. ``casefold`` is registered
    so searches can match case-insensitively beyond ASCII.
    """
    conn = sqlite3.connect(db_file or DEFAULT_DATABASE_FILE, timeout=settings.database_timeout)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.create_function("casefold", 1, _casefold, deterministic=True)
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS principals (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS api_tokens (
                token_hash TEXT PRIMARY KEY,
                principal_id TEXT NOT NULL,
                label TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (principal_id) REFERENCES principals(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                genre TEXT NOT NULL,
                publication_year INTEGER NOT NULL,
                is_read INTEGER NOT NULL DEFAULT 0,
                cover_image_url TEXT,
                isbn TEXT,
                description TEXT,
                notes TEXT,
                rating INTEGER CHECK(rating IS NULL OR (rating >= 1 AND rating <= 5)),
                tags TEXT NOT NULL DEFAULT '[]',
                lending_state TEXT NOT NULL DEFAULT 'available',
                borrowed_by TEXT,
                borrowed_date TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                CHECK (
                    (lending_state = 'available' AND borrowed_by IS NULL AND borrowed_date IS NULL)
                    OR (lending_state = 'borrowed' AND borrowed_by IS NOT NULL AND borrowed_date IS NOT NULL)
                ),
                FOREIGN KEY (owner_id) REFERENCES principals(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_api_tokens_principal ON api_tokens(principal_id);
            CREATE INDEX IF NOT EXISTS idx_books_owner_created ON books(owner_id, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_books_owner_genre ON books(owner_id, genre);
            CREATE INDEX IF NOT EXISTS idx_books_owner_read ON books(owner_id, is_read);
            CREATE INDEX IF NOT EXISTS idx_books_owner_lending ON books(owner_id, lending_state);
            """
        )
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> str:
    """Create the schema if needed and return the database file in use."""
    path = db_file or DEFAULT_DATABASE_FILE
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    create_tables(path)
    logger.debug(f"Database ready at {path}")
    return path
