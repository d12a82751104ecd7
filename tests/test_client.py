import json
import threading
import time

import httpx
import pytest

from shelfmark.client import BookmarksClient, EventStreamListener, parse_sse
from shelfmark.errors import InvalidInput, StoreUnavailable, Unauthenticated
from shelfmark.services.change_feed import ACTION_RESYNC

BOOKMARK = {
    "id": "3f6c",
    "url": "https://example.com",
    "title": "Example",
    "created_at": "2024-05-01T10:00:00+00:00",
    "updated_at": "2024-05-02T10:00:00+00:00",
}


def _client(handler) -> BookmarksClient:
    return BookmarksClient(
        "http://shelfmark.test/",
        token="sm_token",
        transport=httpx.MockTransport(handler),
    )


def test_list_sends_params_and_parses_page():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = request.url
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(
            200,
            json={
                "data": [BOOKMARK],
                "total": 11,
                "page": 2,
                "limit": 10,
                "totalPages": 2,
            },
        )

    with _client(handler) as client:
        page = client.list_bookmarks(page=2, page_size=10, search="exa")

    assert seen["url"].path == "/api/v1/bookmarks"
    assert seen["url"].params["page"] == "2"
    assert seen["url"].params["search"] == "exa"
    assert seen["auth"] == "Bearer sm_token"
    assert page.total == 11
    assert page.total_pages == 2
    assert page.items[0].title == "Example"
    assert page.items[0].created_at.year == 2024
    assert page.items[0].updated_at > page.items[0].created_at


def test_error_statuses_map_to_error_types():
    responses = {
        "/api/v1/bookmarks": httpx.Response(
            400, json={"error": "URL and title are required"}
        ),
        "/api/v1/bookmarks/missing": httpx.Response(
            404, json={"error": "bookmark not found"}
        ),
        "/api/v1/bookmarks/boom": httpx.Response(
            500, json={"error": "Failed to update bookmark"}
        ),
    }

    def handler(request: httpx.Request):
        if request.headers.get("Authorization") != "Bearer sm_token":
            return httpx.Response(401, json={"error": "authentication required"})
        return responses[request.url.path]

    with _client(handler) as client:
        with pytest.raises(InvalidInput) as excinfo:
            client.create_bookmark("", "")
        assert excinfo.value.message == "URL and title are required"

        assert client.get_bookmark("missing") is None

        with pytest.raises(StoreUnavailable):
            client.update_bookmark("boom", title="x")

    anonymous = BookmarksClient(
        "http://shelfmark.test", transport=httpx.MockTransport(handler)
    )
    with pytest.raises(Unauthenticated):
        anonymous.list_bookmarks()


def test_update_sends_only_given_fields():
    bodies = []

    def handler(request: httpx.Request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=BOOKMARK)

    with _client(handler) as client:
        client.update_bookmark("3f6c", title="Renamed")

    assert bodies == [{"title": "Renamed"}]


def test_transport_errors_become_store_unavailable():
    def handler(request: httpx.Request):
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client:
        with pytest.raises(StoreUnavailable):
            client.delete_bookmark("3f6c")


def test_parse_sse_frames():
    lines = [
        "retry: 3000",
        "",
        ": keepalive",
        "",
        "id: 5",
        "event: insert",
        'data: {"action":"insert","bookmark_id":"a"}',
        "",
        'data: {"action":"resync"}',
        "",
    ]

    events = list(parse_sse(lines))

    assert events == [
        {"action": "insert", "bookmark_id": "a", "id": 5},
        {"action": "resync"},
    ]


def test_listener_resumes_from_last_event_id():
    requested = []
    streams = [
        "id: 3\nevent: update\ndata: {\"id\":3,\"action\":\"update\"}\n\n",
        "id: 4\nevent: delete\ndata: {\"id\":4,\"action\":\"delete\"}\n\n",
    ]

    def handler(request: httpx.Request):
        requested.append(request.headers.get("Last-Event-ID"))
        return httpx.Response(
            200,
            headers={"Content-Type": "text/event-stream"},
            content=streams[len(requested) - 1].encode(),
        )

    received = []
    with _client(handler) as client:
        listener = EventStreamListener(client, received.append)
        assert listener.run_once() is True
        assert listener.run_once() is True

    assert requested == [None, "3"]
    assert [event["action"] for event in received] == ["update", "delete"]
    assert listener.last_event_id == 4


def test_listener_reports_drop_and_stops_on_auth_failure():
    def dropped(request: httpx.Request):
        raise httpx.ReadError("connection reset", request=request)

    def rejected(request: httpx.Request):
        return httpx.Response(401, json={"error": "authentication required"})

    with _client(dropped) as client:
        listener = EventStreamListener(client, lambda event: None)
        assert listener.run_once() is False
        assert listener.stopped is False

    with _client(rejected) as client:
        listener = EventStreamListener(client, lambda event: None)
        assert listener.run_once() is False
        assert listener.stopped is True


def test_listener_thread_emits_resync_after_reconnect():
    attempts = []

    def handler(request: httpx.Request):
        attempts.append(1)
        if len(attempts) == 1:
            raise httpx.ReadError("connection reset", request=request)
        return httpx.Response(401, json={"error": "authentication required"})

    received = []
    with _client(handler) as client:
        listener = EventStreamListener(client, received.append, reconnect_delay=0.01)
        listener.start()
        listener._thread.join(timeout=5)

    assert received == [{"action": ACTION_RESYNC}]
    assert listener.stopped is True


def test_client_against_app(app, auth_headers):
    headers = auth_headers("alice")
    token = headers["Authorization"].removeprefix("Bearer ")
    transport = httpx.WSGITransport(app=app)

    with BookmarksClient(
        "http://shelfmark.test", token=token, transport=transport
    ) as client:
        created = client.create_bookmark("https://example.com", "Example")
        page = client.list_bookmarks(search="exam")
        fetched = client.get_bookmark(created.id)
        client.delete_bookmark(created.id)
        client.delete_bookmark(created.id)

        assert page.total == 1
        assert page.items == [created]
        assert fetched == created
        assert client.get_bookmark(created.id) is None


def test_parse_sse_reports_keepalives_on_request():
    lines = [": keepalive", "", 'data: {"action":"insert"}', ""]

    assert list(parse_sse(lines)) == [{"action": "insert"}]
    assert list(parse_sse(lines, keepalives=True)) == [None, {"action": "insert"}]


def test_close_releases_a_quiet_stream():
    opened = threading.Event()

    def keepalives():
        opened.set()
        for _ in range(200):
            yield b": keepalive\n\n"
            time.sleep(0.05)

    def handler(request: httpx.Request):
        return httpx.Response(
            200,
            headers={"Content-Type": "text/event-stream"},
            content=keepalives(),
        )

    received = []
    with _client(handler) as client:
        listener = EventStreamListener(client, received.append).start()
        assert opened.wait(timeout=5)
        time.sleep(0.3)

        listener.close()

        assert not listener._thread.is_alive()
        assert listener._response is None
    assert received == []
