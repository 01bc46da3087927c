from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from lending import api as api_module
from lending.config import settings
from lending.models import Role, utcnow

API_KEY = {"X-API-Key": settings.api_key}


@pytest.fixture
def client(desk, monkeypatch):
    monkeypatch.setattr(api_module, "desk", desk)
    return TestClient(api_module.app)


def as_user(user, with_key=True):
    headers = {"X-User-Id": str(user.id)}
    if with_key:
        headers.update(API_KEY)
    return headers


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_get_books(client, make_book):
    make_book(title="Dune")
    response = client.get("/books")
    assert response.status_code == 200
    assert [b["title"] for b in response.json()] == ["Dune"]


def test_invalid_sort_is_bad_request(client):
    response = client.get("/books", params={"sort": "price"})
    assert response.status_code == 400


def test_add_book_requires_staff_and_key(client, librarian, reader):
    payload = {"title": "Dune", "author": "Frank Herbert", "isbn": "978-0441013593", "stock": 2}

    response = client.post("/books", headers={"X-User-Id": str(librarian.id), "X-API-Key": "invalid-key"}, json=payload)
    assert response.status_code == 403

    response = client.post("/books", headers=as_user(reader), json=payload)
    assert response.status_code == 403

    response = client.post("/books", headers=as_user(librarian), json=payload)
    assert response.status_code == 201
    assert response.json()["isbn"] == "9780441013593"

    response = client.post("/books", headers=as_user(librarian), json=payload)
    assert response.status_code == 409


def test_update_and_delete_book(client, librarian, make_book):
    book = make_book(stock=1)
    response = client.put(f"/books/{book.id}", headers=as_user(librarian), json={"stock": 4})
    assert response.status_code == 200
    assert response.json()["stock"] == 4

    assert client.delete(f"/books/{book.id}", headers=as_user(librarian)).status_code == 200
    assert client.delete(f"/books/{book.id}", headers=as_user(librarian)).status_code == 404
    assert client.get(f"/books/{book.id}").status_code == 404


def test_books_query_with_category_and_sort(client, desk, make_book, make_user):
    low = make_book(title="Alpha Saga", category="Fiction")
    high = make_book(title="Beta Saga", category="Fiction")
    make_book(title="Gamma Saga", category="History")
    desk.ratings.rate(low.id, make_user().id, 1)
    desk.ratings.rate(high.id, make_user().id, 4)

    response = client.get("/books", params={"q": "saga", "category": "fiction", "sort": "rating"})
    assert response.status_code == 200
    assert [b["title"] for b in response.json()] == ["Beta Saga", "Alpha Saga"]

    response = client.get("/books", params={"q": "saga", "sort": "price"})
    assert response.status_code == 400


def test_book_categories(client, make_book):
    make_book(category="Software")
    make_book(category="Fiction")
    response = client.get("/books/categories")
    assert response.status_code == 200
    assert response.json() == ["Fiction", "Software"]


def test_clear_book_cover(client, desk, librarian, make_book):
    book = make_book(category="Fiction")
    desk.books.update_book(book.id, cover_url="/covers/1.jpg")

    response = client.put(f"/books/{book.id}", headers=as_user(librarian), json={"stock": 3})
    assert response.json()["cover_url"] == "/covers/1.jpg"

    response = client.put(f"/books/{book.id}", headers=as_user(librarian), json={"cover_url": None})
    assert response.status_code == 200
    assert response.json()["cover_url"] is None
    assert response.json()["category"] == "Fiction"

    response = client.put(f"/books/{book.id}", headers=as_user(librarian), json={"title": None})
    assert response.status_code == 400

    desk.books.update_book(book.id, cover_url="/covers/2.jpg")
    response = client.delete(f"/books/{book.id}/cover", headers=as_user(librarian))
    assert response.status_code == 200
    assert desk.books.get_book(book.id).cover_url is None


def test_unknown_user_is_unauthorized(client):
    response = client.get("/users/me", headers={"X-User-Id": "9999"})
    assert response.status_code == 401


def test_lending_flow_over_http(client, make_book, reader, librarian):
    book = make_book(stock=2)

    response = client.post("/reservations", headers=as_user(reader), json={"book_id": book.id})
    assert response.status_code == 201
    reservation_id = response.json()["id"]
    assert client.get(f"/books/{book.id}").json()["stock"] == 1

    response = client.post(f"/reservations/{reservation_id}/check-in-request", headers=as_user(reader))
    assert response.json()["check_in_requested"] is True

    # Okuyucu teslimi kendisi onaylayamaz
    response = client.post(f"/reservations/{reservation_id}/check-in", headers=as_user(reader))
    assert response.status_code == 403

    response = client.post(f"/reservations/{reservation_id}/check-in", headers=as_user(librarian), json={"borrow_days": 7})
    assert response.status_code == 200
    borrow = response.json()
    assert borrow["approved_by"] == librarian.id

    response = client.post(f"/borrows/{borrow['id']}/return-request", headers=as_user(reader))
    assert response.json()["status"] == "ReturnRequested"
    assert len(client.get("/borrows/return-requests", headers=as_user(librarian)).json()) == 1

    response = client.post(f"/borrows/{borrow['id']}/return", headers=as_user(librarian))
    assert response.json()["status"] == "Returned"
    assert client.get(f"/books/{book.id}").json()["stock"] == 2


def test_error_status_codes(client, desk, make_book, make_user):
    book = make_book(stock=3)
    first, second = make_user(), make_user()
    client.post("/reservations", headers=as_user(first), json={"book_id": book.id})

    response = client.post("/reservations", headers=as_user(second), json={"book_id": book.id})
    assert response.status_code == 409
    assert response.json()["error"] == "ConflictError"

    response = client.post("/reservations", headers=as_user(second), json={"book_id": 9999})
    assert response.status_code == 404

    past = utcnow() - timedelta(days=2)
    other = make_book(stock=1)
    expired = desk.reservations.reserve(other.id, second.id, now=past)
    response = client.post(f"/reservations/{expired.id}/check-in-request", headers=as_user(second))
    assert response.status_code == 410


def test_rating_endpoint(client, make_book, reader, librarian):
    book = make_book()
    response = client.post(f"/books/{book.id}/rating", headers=as_user(reader), json={"value": 4})
    assert response.status_code == 200
    assert response.json()["rating_count"] == 1

    response = client.post(f"/books/{book.id}/rating", headers=as_user(reader), json={"value": 7})
    assert response.status_code == 400

    response = client.post(f"/books/{book.id}/rating", headers=as_user(librarian), json={"value": 3})
    assert response.status_code == 403

    response = client.get(f"/books/{book.id}/rating", headers=as_user(reader, with_key=False))
    assert response.json()["value"] == 4


def test_create_user_and_set_password(client, librarian, email_service):
    response = client.post(
        "/users",
        headers=as_user(librarian),
        json={"username": "newbie", "email": "newbie@example.com", "role": "EndUser"},
    )
    assert response.status_code == 201
    assert response.json()["is_active"] is False
    assert response.json()["role_display"] == "Reader"

    response = client.post(
        "/users",
        headers=as_user(librarian),
        json={"username": "boss", "email": "boss@example.com", "role": "Admin"},
    )
    assert response.status_code == 403

    token = email_service.sent[0]["token"]
    response = client.post(
        "/account/create-password",
        headers=API_KEY,
        json={"email": "newbie@example.com", "token": token, "password": "pw123"},
    )
    assert response.status_code == 200
    assert response.json()["is_active"] is True

    response = client.post("/account/login", headers=API_KEY, json={"email": "newbie@example.com", "password": "pw123"})
    assert response.status_code == 200
    response = client.post("/account/login", headers=API_KEY, json={"email": "newbie@example.com", "password": "nope"})
    assert response.status_code == 401


def test_creatable_roles(client, make_user):
    admin = make_user(Role.ADMIN)
    response = client.get("/users/me/creatable-roles", headers=as_user(admin, with_key=False))
    assert [r["role"] for r in response.json()] == ["Admin", "Librarian"]


def test_sweep_and_stats(client, desk, make_book, reader, librarian):
    desk.reservations.reserve(make_book().id, reader.id, now=utcnow() - timedelta(days=2))

    assert client.post("/admin/sweep", headers=as_user(reader)).status_code == 403
    response = client.post("/admin/sweep", headers=as_user(librarian))
    assert response.json() == {"expired_reservations": 1, "overdue_borrows": 0}

    stats = client.get("/stats").json()
    assert stats["total_books"] == 1
    assert stats["active_reservations"] == 0
