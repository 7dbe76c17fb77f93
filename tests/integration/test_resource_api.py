"""
Resource router integration tests
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from resource_api.api.deps import get_db
from resource_api.config import Settings
from resource_api.controllers.base import ResourceController
from resource_api.main import create_app
from tests.models import Author, Book


class BookController(ResourceController):
    model = Book
    default_exclude = ["created_at"]


class AuthorController(ResourceController):
    model = Author


@pytest_asyncio.fixture
async def client(db_session):
    app = create_app([("/api/books", BookController), ("/api/authors", AuthorController)])
    app.dependency_overrides[get_db] = lambda: db_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_list_with_query_string(client, seeded):
    resp = await client.get(
        "/api/books?author.name=Ann&order[year]=desc&limit=1&attributes=id,title"
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["meta"] == {"count": 1, "total": 2, "limit": 1, "offset": 0}
    assert body["data"][0]["title"] == "Beta"
    assert body["data"][0]["author"]["name"] == "Ann"


@pytest.mark.asyncio
async def test_list_repeated_include(client, seeded):
    resp = await client.get("/api/books?include=author&include=reviews&title=Alpha")
    assert resp.status_code == 200, resp.text
    (alpha,) = resp.json()["data"]
    assert alpha["author"]["name"] == "Ann"
    assert sorted(review["rating"] for review in alpha["reviews"]) == [3, 5]


@pytest.mark.asyncio
async def test_list_validation_error(client, seeded):
    resp = await client.get("/api/books?limit=abc")
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "invalid_pagination"
    assert "details" not in resp.json()["error"]


@pytest.mark.asyncio
async def test_limit_above_max(client, seeded):
    resp = await client.get("/api/books?limit=1001")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_by_id(client, seeded):
    resp = await client.get(f"/api/books/{seeded['gamma']}?include=author")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["title"] == "Gamma"
    assert data["price"] == "20.00"
    assert data["author"]["name"] == "Bob"


@pytest.mark.asyncio
async def test_get_by_id_not_found(client, seeded):
    resp = await client.get("/api/books/999")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "book_not_found"


@pytest.mark.asyncio
async def test_get_by_bad_id(client, seeded):
    resp = await client.get("/api/books/abc")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create(client, seeded):
    resp = await client.post(
        "/api/books",
        json={"title": "Delta", "year": 2011, "author_id": seeded["bob"]},
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["data"]["title"] == "Delta"
    assert "created_at" not in resp.json()["data"]
    assert resp.json()["meta"] == {"created": True}


@pytest.mark.asyncio
async def test_create_duplicate_returns_existing(client, seeded):
    resp = await client.post("/api/authors", json={"name": "Bob"})
    assert resp.status_code == 200
    assert resp.json()["data"]["id"] == seeded["bob"]
    assert resp.json()["meta"] == {"created": False}


@pytest.mark.asyncio
async def test_update(client, seeded):
    resp = await client.put(f"/api/books/{seeded['alpha']}", json={"year": 1991})
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"meta": {"affected": 1}}

    resp = await client.get(f"/api/books/{seeded['alpha']}")
    assert resp.json()["data"]["year"] == 1991


@pytest.mark.asyncio
async def test_update_missing_is_no_content(client, seeded):
    resp = await client.put("/api/books/999", json={"year": 1991})
    assert resp.status_code == 204
    assert resp.content == b""


@pytest.mark.asyncio
async def test_delete(client, seeded):
    resp = await client.delete(f"/api/books/{seeded['beta']}")
    assert resp.status_code == 200
    assert resp.json() == {"meta": {"affected": 1}}

    resp = await client.get(f"/api/books/{seeded['beta']}")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_with_condition_not_matching(client, seeded):
    resp = await client.delete(f"/api/books/{seeded['beta']}?year=1800")
    assert resp.status_code == 202
    assert resp.json()["error"]["code"] == "not_deleted"


@pytest.mark.asyncio
async def test_delete_referenced_conflict(client, seeded):
    resp = await client.delete(f"/api/authors/{seeded['ann']}")
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_create_wrong_value_shape(client, seeded):
    resp = await client.post(
        "/api/books",
        json={"title": "Delta", "year": [1], "author_id": seeded["bob"]},
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "invalid_value"

    resp = await client.get("/api/books")
    assert resp.status_code == 200
    assert resp.json()["meta"]["total"] == 3


@pytest.mark.asyncio
async def test_validation_details_in_debug(client, seeded, monkeypatch):
    monkeypatch.setattr("resource_api.main.get_settings", lambda: Settings(DEBUG=True))

    resp = await client.get("/api/books?isbn=1")
    assert resp.status_code == 422
    assert resp.json()["error"]["details"]["field"] == ["isbn"]


class BrokenController(ResourceController):
    model = Book

    async def find(self, params=None):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_unhandled_error_is_generic_500(db_session):
    app = create_app([("/api/broken", BrokenController)])
    app.dependency_overrides[get_db] = lambda: db_session

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.get("/api/broken")

    assert resp.status_code == 500
    assert resp.json() == {
        "error": {
            "message": "Internal server error",
            "type": "internal_error",
            "code": "internal_error",
        }
    }
