"""Bearer-credential resolution.

Tokens are opaque random strings handed out once; only their SHA-256 hash is
stored. Resolving a token either yields the owning Principal or raises
AuthenticationError, before any other component sees the request.
"""

import hashlib
import logging
import re
import secrets
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

from booklog.book import Principal
from booklog.database import get_db_connection, initialize_database
from booklog.errors import AuthenticationError, StorageError

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
# token_urlsafe(32) yields 43 characters; accept a little slack for older tokens
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{20,128}$")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class PrincipalStore:
    """Operator-facing registry of principals and their API tokens."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = initialize_database(db_file)

    def _connect(self) -> sqlite3.Connection:
        return get_db_connection(self.db_file)

    def create_principal(self, name: str, label: str = "default") -> Tuple[Principal, str]:
        """Register a new owner and return it together with its first token."""
        name = (name or "").strip()
        if not name:
            raise ValueError("Principal name cannot be empty.")
        principal = Principal(
            id=uuid.uuid4().hex, name=name, created_at=datetime.now(timezone.utc).isoformat()
        )
        conn = None
        try:
            conn = self._connect()
            conn.execute(
                "INSERT INTO principals (id, name, created_at) VALUES (?, ?, ?)",
                (principal.id, principal.name, principal.created_at),
            )
            conn.commit()
        except sqlite3.Error as e:
            logger.exception("Could not create principal")
            raise StorageError(operation="create_principal") from e
        finally:
            if conn is not None:
                conn.close()
        logger.info(f"Created principal {principal.id}")
        return principal, self.issue_token(principal.id, label)

    def issue_token(self, principal_id: str, label: str = "default") -> str:
        """Issue an additional token. The plain token is returned once and never stored."""
        if self.get(principal_id) is None:
            raise LookupError(f"Principal {principal_id} not found.")
        token = secrets.token_urlsafe(TOKEN_BYTES)
        conn = None
        try:
            conn = self._connect()
            conn.execute(
                "INSERT INTO api_tokens (token_hash, principal_id, label, created_at) VALUES (?, ?, ?, ?)",
                (hash_token(token), principal_id, label, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        except sqlite3.Error as e:
            logger.exception("Could not issue token")
            raise StorageError(operation="issue_token") from e
        finally:
            if conn is not None:
                conn.close()
        return token

    def get(self, principal_id: str) -> Optional[Principal]:
        conn = None
        try:
            conn = self._connect()
            row = conn.execute(
                "SELECT id, name, created_at FROM principals WHERE id = ?", (principal_id,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.exception("Could not read principal")
            raise StorageError(operation="get_principal") from e
        finally:
            if conn is not None:
                conn.close()
        return Principal(**dict(row)) if row else None

    def remove_principal(self, principal_id: str) -> bool:
        """Delete a principal; its tokens and books go with it."""
        conn = None
        try:
            conn = self._connect()
            cursor = conn.execute("DELETE FROM principals WHERE id = ?", (principal_id,))
            conn.commit()
            removed = cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.exception("Could not remove principal")
            raise StorageError(operation="remove_principal") from e
        finally:
            if conn is not None:
                conn.close()
        if removed:
            logger.info(f"Removed principal {principal_id}")
        return removed

    def principal_for_token_hash(self, token_hash: str) -> Optional[Principal]:
        conn = None
        try:
            conn = self._connect()
            row = conn.execute(
                """
                SELECT p.id, p.name, p.created_at
                FROM api_tokens t JOIN principals p ON p.id = t.principal_id
                WHERE t.token_hash = ?
                """,
                (token_hash,),
            ).fetchone()
        except sqlite3.Error as e:
            logger.exception("Could not resolve token")
            raise StorageError(operation="resolve_token") from e
        finally:
            if conn is not None:
                conn.close()
        return Principal(**dict(row)) if row else None


class AuthGate:
    """Resolves a bearer credential to its Principal, or rejects the request."""

    def __init__(self, principals: PrincipalStore) -> None:
        self.principals = principals

    @staticmethod
    def parse_authorization(header: Optional[str]) -> str:
        """Extract the token from an ``Authorization: Bearer <token>`` header value."""
        if not header or not header.strip():
            raise AuthenticationError("No token provided, access denied")
        scheme, _, token = header.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Token is not valid")
        return token.strip()

    def resolve(self, credential: Optional[str]) -> Principal:
        if not credential:
            raise AuthenticationError("No token provided, access denied")
        if not _TOKEN_RE.match(credential):
            logger.warning("Rejected malformed credential")
            raise AuthenticationError("Token is not valid")

        principal = self.principals.principal_for_token_hash(hash_token(credential))
        if principal is None:
            logger.warning("Rejected unknown credential")
            raise AuthenticationError("Token is not valid")
        return principal

    def resolve_header(self, header: Optional[str]) -> Principal:
        return self.resolve(self.parse_authorization(header))
