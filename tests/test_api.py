import pytest
from fastapi.testclient import TestClient

from booklog.api import create_app
from booklog.library import Library
from booklog.services.book_repository import SQLiteBookRepository


def new_book(**overrides):
    payload = {
        "title": "A Wizard of Earthsea",
        "author": "Ursula K. Le Guin",
        "genre": "Fantasy",
        "publicationYear": 1968,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def other_headers(other_owner):
    _, token = other_owner
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def created(client, auth_headers):
    response = client.post("/api/books", headers=auth_headers, json=new_book())
    assert response.status_code == 201
    return response.json()["book"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["db"] is True


@pytest.mark.parametrize("method,path", [
    ("get", "/api/books"),
    ("get", "/api/books/stats/summary"),
    ("get", "/api/books/abc"),
    ("post", "/api/books"),
    ("put", "/api/books/abc"),
    ("delete", "/api/books/abc"),
    ("patch", "/api/books/abc/borrow"),
    ("patch", "/api/books/abc/return"),
])
def test_every_catalog_route_requires_a_token(client, method, path):
    response = getattr(client, method)(path)
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "No token provided, access denied"}
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_unknown_token_is_rejected(client):
    response = client.get("/api/books", headers={"Authorization": "Bearer " + "x" * 43})
    assert response.status_code == 401
    assert response.json()["message"] == "Token is not valid"


def test_create_book(client, auth_headers, owner):
    response = client.post("/api/books", headers=auth_headers, json=new_book(
        isbn="0-306-40615-2", tags=["classic", "classic", " magic "], rating=5,
    ))
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Book added successfully"
    book = body["book"]
    assert book["owner"] == owner[0].id
    assert book["publicationYear"] == 1968
    assert book["isRead"] is False
    assert book["isBorrowed"] is False
    assert book["borrowedBy"] is None
    assert book["isbn"] == "0306406152"
    assert book["tags"] == ["classic", "magic"]
    assert book["createdAt"]


def test_create_reports_every_invalid_field(client, auth_headers):
    response = client.post("/api/books", headers=auth_headers, json={
        "title": "  ", "genre": "Space Opera", "publicationYear": 3000, "isbn": "12345",
    })
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    fields = {e["field"] for e in body["errors"]}
    assert {"title", "author", "genre", "publicationYear", "isbn"} <= fields


def test_create_rejects_wrong_json_types(client, auth_headers):
    response = client.post("/api/books", headers=auth_headers, json=new_book(publicationYear="1968"))
    assert response.status_code == 400
    assert response.json()["errors"] == [
        {"field": "publicationYear", "message": "Publication year must be an integer"},
    ]


def test_type_errors_do_not_hide_other_invalid_fields(client, auth_headers):
    response = client.post("/api/books", headers=auth_headers, json={
        "title": "", "genre": "Nope", "publicationYear": "abc", "isRead": "yes", "tags": "x",
    })
    assert response.status_code == 400
    fields = {e["field"] for e in response.json()["errors"]}
    assert fields == {"title", "author", "genre", "publicationYear", "isRead", "tags"}


def test_create_ignores_client_supplied_owner(client, auth_headers, owner, other_owner):
    response = client.post("/api/books", headers=auth_headers, json=new_book(owner=other_owner[0].id))
    assert response.status_code == 201
    assert response.json()["book"]["owner"] == owner[0].id


def test_get_book(client, auth_headers, created):
    response = client.get(f"/api/books/{created['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["book"]["title"] == "A Wizard of Earthsea"


def test_other_owners_books_do_not_exist(client, other_headers, created):
    book_id = created["id"]
    assert client.get(f"/api/books/{book_id}", headers=other_headers).status_code == 404
    assert client.put(f"/api/books/{book_id}", headers=other_headers,
                      json={"title": "Mine now"}).status_code == 404
    assert client.patch(f"/api/books/{book_id}/borrow", headers=other_headers,
                        json={"borrowerName": "Eve"}).status_code == 404
    assert client.patch(f"/api/books/{book_id}/return", headers=other_headers).status_code == 404
    assert client.delete(f"/api/books/{book_id}", headers=other_headers).status_code == 404
    listed = client.get("/api/books", headers=other_headers).json()
    assert listed["books"] == []
    assert listed["pagination"]["total"] == 0


def test_missing_book_message(client, auth_headers):
    response = client.get("/api/books/does-not-exist", headers=auth_headers)
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Book not found"}


def test_update_book(client, auth_headers, created):
    response = client.put(f"/api/books/{created['id']}", headers=auth_headers,
                          json={"isRead": True, "rating": 4})
    assert response.status_code == 200
    book = response.json()["book"]
    assert response.json()["message"] == "Book updated successfully"
    assert book["isRead"] is True
    assert book["rating"] == 4
    assert book["title"] == created["title"]


def test_invalid_update_leaves_book_unchanged(client, auth_headers, created):
    response = client.put(f"/api/books/{created['id']}", headers=auth_headers,
                          json={"title": "New title", "rating": 9})
    assert response.status_code == 400
    assert [e["field"] for e in response.json()["errors"]] == ["rating"]
    current = client.get(f"/api/books/{created['id']}", headers=auth_headers).json()["book"]
    assert current["title"] == created["title"]


def test_empty_update_is_rejected(client, auth_headers, created):
    response = client.put(f"/api/books/{created['id']}", headers=auth_headers, json={})
    assert response.status_code == 400


def test_delete_book(client, auth_headers, created):
    response = client.delete(f"/api/books/{created['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Book deleted successfully"}
    assert client.get(f"/api/books/{created['id']}", headers=auth_headers).status_code == 404
    assert client.delete(f"/api/books/{created['id']}", headers=auth_headers).status_code == 404


def test_borrow_and_return(client, auth_headers, created):
    url = f"/api/books/{created['id']}"
    response = client.patch(f"{url}/borrow", headers=auth_headers, json={"borrowerName": "  Eve  "})
    assert response.status_code == 200
    book = response.json()["book"]
    assert response.json()["message"] == "Book marked as borrowed"
    assert book["isBorrowed"] is True
    assert book["borrowedBy"] == "Eve"
    assert book["borrowedDate"]

    again = client.patch(f"{url}/borrow", headers=auth_headers, json={"borrowerName": "Mallory"})
    assert again.status_code == 409
    assert again.json()["message"] == "Book is already borrowed"
    still = client.get(url, headers=auth_headers).json()["book"]
    assert still["borrowedBy"] == "Eve"

    returned = client.patch(f"{url}/return", headers=auth_headers)
    assert returned.status_code == 200
    book = returned.json()["book"]
    assert book["isBorrowed"] is False
    assert book["borrowedBy"] is None
    assert book["borrowedDate"] is None

    assert client.patch(f"{url}/return", headers=auth_headers).status_code == 409


def test_borrow_requires_a_name(client, auth_headers, created):
    url = f"/api/books/{created['id']}/borrow"
    assert client.patch(url, headers=auth_headers, json={"borrowerName": "   "}).status_code == 400
    assert client.patch(url, headers=auth_headers).status_code == 400
    response = client.patch(url, headers=auth_headers, json={"borrowerName": "x" * 101})
    assert response.json()["errors"][0]["field"] == "borrowerName"


def test_lending_fields_cannot_be_set_through_update(client, auth_headers, created):
    response = client.put(f"/api/books/{created['id']}", headers=auth_headers,
                          json={"title": "Still mine", "borrowedBy": "Eve", "isBorrowed": True})
    assert response.status_code == 200
    book = response.json()["book"]
    assert book["isBorrowed"] is False
    assert book["borrowedBy"] is None


def test_list_filters_and_pagination(client, auth_headers):
    for i in range(12):
        client.post("/api/books", headers=auth_headers, json=new_book(
            title=f"Book {i}", genre="Poetry" if i % 3 == 0 else "Fantasy", isRead=i % 2 == 0,
        ))

    first = client.get("/api/books", headers=auth_headers).json()
    assert len(first["books"]) == 10
    assert first["books"][0]["title"] == "Book 11"
    assert first["pagination"] == {
        "current": 1, "pages": 2, "total": 12, "pageSize": 10, "hasNext": True, "hasPrev": False,
    }

    second = client.get("/api/books", headers=auth_headers, params={"page": 2}).json()
    assert [b["title"] for b in second["books"]] == ["Book 1", "Book 0"]

    poetry_read = client.get("/api/books", headers=auth_headers,
                             params={"genre": "Poetry", "isRead": "true"}).json()
    assert sorted(b["title"] for b in poetry_read["books"]) == ["Book 0", "Book 6"]

    limited = client.get("/api/books", headers=auth_headers, params={"limit": 5, "search": "book 1"}).json()
    assert limited["pagination"]["total"] == 3
    assert limited["pagination"]["pageSize"] == 5


def test_list_reports_every_bad_query_parameter(client, auth_headers):
    response = client.get("/api/books", headers=auth_headers,
                          params={"page": "0", "pageSize": "500", "isRead": "maybe", "genre": "Nope"})
    assert response.status_code == 400
    fields = {e["field"] for e in response.json()["errors"]}
    assert fields == {"page", "pageSize", "isRead", "genre"}


def test_stats_summary(client, auth_headers, other_headers, created):
    client.post("/api/books", headers=auth_headers, json=new_book(genre="Poetry", isRead=True))
    client.post("/api/books", headers=other_headers, json=new_book(genre="Horror"))
    client.patch(f"/api/books/{created['id']}/borrow", headers=auth_headers, json={"borrowerName": "Eve"})

    response = client.get("/api/books/stats/summary", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "stats": {
            "totalBooks": 2,
            "readBooks": 1,
            "unreadBooks": 1,
            "borrowedBooks": 1,
            "readPercentage": 50,
            "genreDistribution": [{"genre": "Fantasy", "count": 1}, {"genre": "Poetry", "count": 1}],
        },
    }


def test_api_responses_are_not_cached(client, auth_headers):
    response = client.get("/api/books", headers=auth_headers)
    assert response.headers["Cache-Control"] == "no-store"


def test_page_far_past_the_end_is_empty(client, auth_headers, created):
    response = client.get("/api/books", headers=auth_headers, params={"page": "99999999999999999999"})
    assert response.status_code == 200
    body = response.json()
    assert body["books"] == []
    assert body["pagination"]["total"] == 1
    assert body["pagination"]["hasNext"] is False
    assert body["pagination"]["hasPrev"] is True


def test_storage_failure_is_opaque(tmp_path, lib, auth_headers):
    broken = SQLiteBookRepository(str(tmp_path / "books.db"))
    broken.db_file = str(tmp_path / "missing-dir" / "books.db")
    client = TestClient(create_app(Library(repository=broken, principals=lib.principals)))

    response = client.get("/api/books", headers=auth_headers)
    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Server error"}
