import pytest

from booklog.errors import AuthenticationError, StorageError
from booklog.services.auth_gate import AuthGate, hash_token


def test_token_resolves_to_its_principal(lib, owner):
    principal, token = owner
    assert lib.auth.resolve(token) == principal


def test_tokens_are_stored_hashed(lib, owner, db_file):
    from booklog.database import get_db_connection

    _, token = owner
    conn = get_db_connection(db_file)
    try:
        stored = [r[0] for r in conn.execute("SELECT token_hash FROM api_tokens")]
    finally:
        conn.close()
    assert token not in stored
    assert hash_token(token) in stored


def test_additional_tokens(lib, owner):
    principal, _ = owner
    second = lib.principals.issue_token(principal.id, "laptop")
    assert lib.auth.resolve(second) == principal


def test_issue_token_for_unknown_principal(lib):
    with pytest.raises(LookupError):
        lib.principals.issue_token("nobody")


@pytest.mark.parametrize("header", [
    None,
    "",
    "Bearer",
    "Bearer   ",
    "Basic dXNlcjpwYXNz",
    "Bearer short",
    "Bearer not a token at all!!",
    "Bearer " + "A" * 43,
])
def test_rejected_headers(lib, owner, header):
    with pytest.raises(AuthenticationError):
        lib.authenticate(header)


def test_header_parsing_is_case_insensitive_on_scheme(lib, owner):
    principal, token = owner
    assert lib.authenticate(f"bearer {token}") == principal


def test_removed_principal_token_is_rejected(lib, owner, book_data):
    principal, token = owner
    lib.add_book(principal, book_data())
    assert lib.principals.remove_principal(principal.id) is True
    with pytest.raises(AuthenticationError):
        lib.auth.resolve(token)
    assert lib.repository.count(principal.id) == 0


def test_parse_authorization():
    assert AuthGate.parse_authorization("Bearer abc") == "abc"
    with pytest.raises(AuthenticationError):
        AuthGate.parse_authorization("Token abc")


def test_create_principal_requires_name(lib):
    with pytest.raises(ValueError):
        lib.principals.create_principal("   ")


def test_unreachable_store_raises_storage_error(lib, owner, tmp_path):
    principal, token = owner
    lib.principals.db_file = str(tmp_path / "missing-dir" / "auth.db")
    with pytest.raises(StorageError):
        lib.principals.get(principal.id)
    with pytest.raises(StorageError):
        lib.auth.resolve(token)
