import pytest
from fastapi.testclient import TestClient

from booklog.api import create_app
from booklog.library import Library


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def owner(lib):
    """(principal, token) for the owner most tests act as."""
    return lib.principals.create_principal("Alice Owner")


@pytest.fixture
def other_owner(lib):
    return lib.principals.create_principal("Bob Owner")


@pytest.fixture
def book_data():
    def make(**overrides):
        data = {
            "title": "The Left Hand of Darkness",
            "author": "Ursula K. Le Guin",
            "genre": "Science Fiction",
            "publication_year": 1969,
        }
        data.update(overrides)
        return data
    return make


@pytest.fixture
def client(lib):
    return TestClient(create_app(lib))


@pytest.fixture
def auth_headers(owner):
    _, token = owner
    return {"Authorization": f"Bearer {token}"}
