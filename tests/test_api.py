import pytest
from fastapi.testclient import TestClient

from api import create_app
from config import settings

HEADERS = {"X-API-Key": settings.api_key}


@pytest.fixture
def client(ledger):
    with TestClient(create_app(ledger)) as test_client:
        yield test_client


def add_book(client, title="Clean Code", author="Robert C. Martin", quantity=1):
    response = client.post("/books", headers=HEADERS, json={"title": title, "author": author, "quantity": quantity})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_get_books(client):
    response = client.get("/books")
    assert response.status_code == 200
    assert response.json() == []


def test_add_book_with_valid_api_key(client):
    book = add_book(client, quantity=3)
    assert book["title"] == "Clean Code"
    assert book["available"] == 3
    assert client.get(f"/books/{book['id']}").json() == book


@pytest.mark.parametrize("headers", [{"X-API-Key": "invalid-key"}, {}])
def test_add_book_without_valid_api_key(client, headers):
    response = client.post("/books", headers=headers, json={"title": "T", "author": "A", "quantity": 1})
    assert response.status_code == 403


def test_add_book_invalid_quantity(client):
    response = client.post("/books", headers=HEADERS, json={"title": "T", "author": "A", "quantity": 0})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_argument"


def test_get_unknown_book(client):
    response = client.get("/books/404")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_issue_and_out_of_stock(client):
    book = add_book(client)
    response = client.post("/issues", json={"user_id": 1, "book_id": book["id"]})
    assert response.status_code == 201
    assert response.json()["return_date"] is None

    response = client.post("/issues", json={"user_id": 2, "book_id": book["id"]})
    assert response.status_code == 409
    assert response.json()["code"] == "out_of_stock"


def test_duplicate_loan(client):
    book = add_book(client, quantity=2)
    client.post("/issues", json={"user_id": 1, "book_id": book["id"]})
    response = client.post("/issues", json={"user_id": 1, "book_id": book["id"]})
    assert response.status_code == 409
    assert response.json()["code"] == "duplicate_loan"


def test_return_and_already_returned(client):
    book = add_book(client)
    issue = client.post("/issues", json={"user_id": 1, "book_id": book["id"]}).json()

    assert client.post(f"/issues/{issue['id']}/return").status_code == 204
    response = client.post(f"/issues/{issue['id']}/return")
    assert response.status_code == 409
    assert response.json()["code"] == "already_returned"
    assert client.post("/issues/999/return").status_code == 404


def test_delete_book_in_use(client):
    book = add_book(client)
    issue = client.post("/issues", json={"user_id": 1, "book_id": book["id"]}).json()

    response = client.delete(f"/books/{book['id']}", headers=HEADERS)
    assert response.status_code == 409
    assert response.json()["code"] == "book_in_use"

    client.post(f"/issues/{issue['id']}/return")
    assert client.delete(f"/books/{book['id']}", headers=HEADERS).status_code == 204
    assert client.get("/books").json() == []


def test_update_book_quantity(client):
    book = add_book(client, quantity=5)
    for user_id in (1, 2, 3):
        client.post("/issues", json={"user_id": user_id, "book_id": book["id"]})

    response = client.patch(f"/books/{book['id']}", headers=HEADERS, json={"quantity": 2})
    assert response.status_code == 409
    assert response.json()["code"] == "invariant_violation"

    response = client.patch(f"/books/{book['id']}", headers=HEADERS, json={"quantity": 4})
    assert response.status_code == 200
    assert response.json()["available"] == 1


def test_issue_views_and_stats(client):
    user = client.post("/auth/register", json={"username": "alice", "password": "pw", "full_name": "Alice"}).json()
    book = add_book(client, title="Wonderland", author="Lewis Carroll", quantity=2)
    client.post("/issues", json={"user_id": user["id"], "book_id": book["id"]})

    mine = client.get(f"/users/{user['id']}/issues").json()
    assert mine[0]["book_title"] == "Wonderland"
    assert mine[0]["book_author"] == "Lewis Carroll"

    everything = client.get("/issues").json()
    assert everything[0]["username"] == "alice"
    assert client.get("/issues/recent", params={"limit": 1}).json() == everything[:1]
    assert client.get("/issues/recent", params={"limit": 0}).json() == []

    response = client.get("/issues/recent", params={"limit": -1})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_argument"

    stats = client.get("/stats").json()
    assert stats == {"total_titles": 1, "total_copies": 2, "issued_copies": 1, "active_borrowers": 1}


def test_register_and_login(client):
    response = client.post("/auth/register", json={"username": "bob", "password": "pw", "full_name": "Bob"})
    assert response.status_code == 201
    assert response.json()["role"] == "borrower"
    assert "password" not in response.json()

    response = client.post("/auth/register", json={"username": "bob", "password": "x", "full_name": "Bob"})
    assert response.status_code == 409

    assert client.post("/auth/login", json={"username": "bob", "password": "pw"}).status_code == 200
    response = client.post("/auth/login", json={"username": "bob", "password": "nope"})
    assert response.status_code == 401
    assert response.json()["code"] == "invalid_credentials"
