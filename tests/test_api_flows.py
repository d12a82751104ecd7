import pytest


def _create(client, headers, url="https://example.com", title="Example"):
    response = client.post(
        "/api/v1/bookmarks", headers=headers, json={"url": url, "title": title}
    )
    assert response.status_code == 201
    return response.get_json()


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/api/v1/bookmarks"),
        ("post", "/api/v1/bookmarks"),
        ("get", "/api/v1/bookmarks/some-id"),
        ("patch", "/api/v1/bookmarks/some-id"),
        ("delete", "/api/v1/bookmarks/some-id"),
        ("get", "/api/v1/bookmarks/events"),
    ],
)
def test_routes_require_authentication(client, method, path):
    response = getattr(client, method)(path, json={})
    assert response.status_code == 401
    assert response.get_json() == {"error": "authentication required"}


def test_revoked_or_unknown_token_is_rejected(client):
    response = client.get(
        "/api/v1/bookmarks", headers={"Authorization": "Bearer sm_nope"}
    )
    assert response.status_code == 401


def test_token_requires_valid_credentials(client, make_user):
    make_user("alice")

    response = client.post(
        "/api/v1/auth/token", json={"username": "alice", "password": "wrong"}
    )
    assert response.status_code == 401

    response = client.post("/api/v1/auth/token", json={"username": "alice"})
    assert response.status_code == 400


def test_session_login_grants_api_access(client, make_user):
    make_user("alice")

    response = client.post("/login", data={"username": "alice", "password": "secret"})
    assert response.status_code == 200

    response = client.get("/api/v1/bookmarks")
    assert response.status_code == 200

    response = client.post("/logout")
    assert response.status_code == 200
    assert client.get("/api/v1/bookmarks").status_code == 401


def test_create_and_list(client, auth_headers):
    headers = auth_headers("alice")
    created = _create(client, headers)

    response = client.get("/api/v1/bookmarks?page=1&limit=10", headers=headers)

    assert response.status_code == 200
    assert response.get_json() == {
        "data": [created],
        "total": 1,
        "page": 1,
        "limit": 10,
        "totalPages": 1,
    }
    assert set(created) == {"id", "url", "title", "created_at", "updated_at"}


def test_list_search_and_pagination_params(client, auth_headers):
    headers = auth_headers("alice")
    _create(client, headers, "https://a.example", "Alpha")
    _create(client, headers, "https://b.example", "Beta")
    for i in range(3):
        _create(client, headers, f"https://c.example/{i}", f"Gamma {i}")

    response = client.get("/api/v1/bookmarks?search=alp", headers=headers)
    assert [item["title"] for item in response.get_json()["data"]] == ["Alpha"]

    response = client.get("/api/v1/bookmarks?page=2&limit=2", headers=headers)
    payload = response.get_json()
    assert payload["totalPages"] == 3
    assert [item["title"] for item in payload["data"]] == ["Gamma 0", "Beta"]

    response = client.get("/api/v1/bookmarks?page=-4&limit=1000", headers=headers)
    payload = response.get_json()
    assert payload["page"] == 1
    assert payload["limit"] == 100


def test_create_rejects_missing_fields(client, auth_headers):
    headers = auth_headers("alice")

    response = client.post(
        "/api/v1/bookmarks", headers=headers, json={"url": "https://example.com"}
    )
    assert response.status_code == 400
    assert response.get_json() == {"error": "URL and title are required"}

    response = client.post(
        "/api/v1/bookmarks", headers=headers, json=["https://example.com"]
    )
    assert response.status_code == 400


def test_get_one_is_owner_scoped(client, auth_headers):
    alice = auth_headers("alice")
    bob = auth_headers("bob")
    created = _create(client, alice)

    path = f"/api/v1/bookmarks/{created['id']}"
    assert client.get(path, headers=alice).get_json() == created
    assert client.get(path, headers=bob).status_code == 404


def test_patch_updates_and_enforces_owner(client, auth_headers):
    alice = auth_headers("alice")
    bob = auth_headers("bob")
    created = _create(client, alice)

    response = client.patch(
        f"/api/v1/bookmarks/{created['id']}", headers=bob, json={"title": "Mine now"}
    )
    assert response.status_code == 404
    assert response.get_json() == {"error": "bookmark not found"}

    response = client.patch(
        f"/api/v1/bookmarks/{created['id']}", headers=alice, json={"title": "Renamed"}
    )
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["title"] == "Renamed"
    assert payload["url"] == created["url"]
    assert payload["updated_at"] >= payload["created_at"]

    response = client.patch(
        f"/api/v1/bookmarks/{created['id']}", headers=alice, json={"url": "nope"}
    )
    assert response.status_code == 400


def test_delete_answers_success_for_any_id(client, auth_headers):
    alice = auth_headers("alice")
    bob = auth_headers("bob")
    created = _create(client, alice)

    response = client.delete(f"/api/v1/bookmarks/{created['id']}", headers=bob)
    assert response.status_code == 200
    assert response.get_json() == {"success": True}
    path = f"/api/v1/bookmarks/{created['id']}"
    assert client.get(path, headers=alice).status_code == 200

    for _ in range(2):
        response = client.delete(f"/api/v1/bookmarks/{created['id']}", headers=alice)
        assert response.status_code == 200
        assert response.get_json() == {"success": True}

    assert client.get("/api/v1/bookmarks", headers=alice).get_json()["total"] == 0


def test_store_failure_maps_to_500(client, auth_headers, app):
    from shelfmark.extensions import db
    from shelfmark.models import Bookmark

    headers = auth_headers("alice")
    with app.app_context():
        Bookmark.__table__.drop(db.engine)

    response = client.get("/api/v1/bookmarks", headers=headers)

    assert response.status_code == 500
    assert response.get_json() == {"error": "Failed to fetch bookmark"}
