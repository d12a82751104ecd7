from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterable, Iterator

import httpx

from shelfmark.errors import (
    InvalidInput,
    NotFoundOrForbidden,
    ShelfmarkError,
    StoreUnavailable,
    Unauthenticated,
)
from shelfmark.listing import BookmarkRecord, ListingPage
from shelfmark.services.change_feed import ACTION_RESYNC

log = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "ShelfmarkClient/1.0",
    "Accept": "application/json",
}

_ERRORS_BY_STATUS = {
    400: InvalidInput,
    401: Unauthenticated,
    403: NotFoundOrForbidden,
    404: NotFoundOrForbidden,
}


def _error_for(response: httpx.Response) -> ShelfmarkError:
    try:
        message = response.json().get("error")
    except (ValueError, AttributeError):
        message = None
    error_cls = _ERRORS_BY_STATUS.get(response.status_code, StoreUnavailable)
    return error_cls(message)


def parse_sse(lines: Iterable[str], keepalives: bool = False) -> Iterator[dict | None]:
    """Yield one dict per data frame; with ``keepalives``, ``None`` per comment."""
    event_id = None
    data: list[str] = []
    for line in lines:
        if line == "":
            if data:
                payload = json.loads("\n".join(data))
                if event_id is not None and "id" not in payload:
                    payload["id"] = int(event_id) if event_id.isdigit() else event_id
                yield payload
            event_id = None
            data = []
            continue
        if line.startswith(":"):
            if keepalives:
                yield None
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            data.append(value)
        elif name == "id":
            event_id = value


class BookmarksClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        stream_read_timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = dict(DEFAULT_HEADERS)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.stream_timeout = httpx.Timeout(timeout, read=stream_read_timeout)
        self._client = httpx.Client(
            base_url=f"{base_url.rstrip('/')}/api/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BookmarksClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"request to {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise _error_for(response)
        return response.json()

    def list_bookmarks(
        self, page: int = 1, page_size: int = 10, search: str = ""
    ) -> ListingPage:
        params = {"page": page, "limit": page_size}
        if search:
            params["search"] = search
        return ListingPage.from_dict(self._request("GET", "/bookmarks", params=params))

    def get_bookmark(self, bookmark_id: str) -> BookmarkRecord | None:
        try:
            payload = self._request("GET", f"/bookmarks/{bookmark_id}")
        except NotFoundOrForbidden:
            return None
        return BookmarkRecord.from_dict(payload)

    def create_bookmark(self, url: str, title: str) -> BookmarkRecord:
        payload = self._request("POST", "/bookmarks", json={"url": url, "title": title})
        return BookmarkRecord.from_dict(payload)

    def update_bookmark(
        self, bookmark_id: str, url: str | None = None, title: str | None = None
    ) -> BookmarkRecord:
        body = {}
        if url is not None:
            body["url"] = url
        if title is not None:
            body["title"] = title
        payload = self._request("PATCH", f"/bookmarks/{bookmark_id}", json=body)
        return BookmarkRecord.from_dict(payload)

    def delete_bookmark(self, bookmark_id: str) -> None:
        self._request("DELETE", f"/bookmarks/{bookmark_id}")

    def iter_events(
        self,
        last_event_id: int | None = None,
        keepalives: bool = False,
        on_open: Callable[[httpx.Response], None] | None = None,
    ) -> Iterator[dict | None]:
        headers = {"Accept": "text/event-stream"}
        if last_event_id is not None:
            headers["Last-Event-ID"] = str(last_event_id)
        try:
            with self._client.stream(
                "GET", "/bookmarks/events", headers=headers, timeout=self.stream_timeout
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    raise _error_for(response)
                if on_open is not None:
                    on_open(response)
                yield from parse_sse(response.iter_lines(), keepalives=keepalives)
        except (httpx.HTTPError, httpx.StreamError) as exc:
            raise StoreUnavailable(f"event stream failed: {exc}") from exc


class EventStreamListener:
    """Follows the server event stream on a thread, reconnecting after drops."""

    def __init__(
        self,
        client: BookmarksClient,
        callback: Callable[[dict], None],
        reconnect_delay: float = 3.0,
    ):
        self.client = client
        self.callback = callback
        self.reconnect_delay = reconnect_delay
        self.last_event_id: int | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._response: httpx.Response | None = None

    def start(self) -> EventStreamListener:
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="shelfmark-event-stream"
        )
        self._thread.start()
        return self

    def close(self) -> None:
        self._stop.set()
        response = self._response
        if response is not None:
            # Unblocks a read waiting on the socket.
            response.close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.reconnect_delay + 1)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _attach(self, response: httpx.Response) -> None:
        self._response = response
        if self._stop.is_set():
            response.close()

    def run_once(self) -> bool:
        """Consume one stream connection; returns False when it ended in error."""
        events = self.client.iter_events(
            last_event_id=self.last_event_id, keepalives=True, on_open=self._attach
        )
        try:
            for event in events:
                if self._stop.is_set():
                    return True
                if event is None:
                    continue
                if isinstance(event.get("id"), int):
                    self.last_event_id = event["id"]
                self._dispatch(event)
        except Unauthenticated:
            log.error("event stream rejected the credentials; stopping listener")
            self._stop.set()
            return False
        except StoreUnavailable as exc:
            if self._stop.is_set():
                return True
            log.warning("event stream dropped: %s", exc)
            return False
        finally:
            events.close()
            self._response = None
        return True

    def _run(self) -> None:
        dropped = False
        while not self._stop.is_set():
            if dropped:
                # Anything may have changed while the stream was down.
                self._dispatch({"action": ACTION_RESYNC})
            dropped = not self.run_once()
            if dropped and not self._stop.is_set():
                self._stop.wait(self.reconnect_delay)

    def _dispatch(self, event: dict) -> None:
        try:
            self.callback(event)
        except Exception:
            log.exception("event stream callback failed")
