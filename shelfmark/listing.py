"""Paginated, searchable bookmark listing that refreshes on change events.

A ``ListingController`` owns the state of one listing view. It fetches pages
from a source (anything with ``list_bookmarks(page, page_size, search)``),
holds one change-feed subscription while mounted, and refetches the current
page whenever an event arrives or the view itself adds or deletes a bookmark.
Every fetch carries a generation number and only the newest generation may
update the state.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Protocol

from dateutil import parser as dt_parser

log = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10


@dataclass(frozen=True)
class BookmarkRecord:
    id: str
    url: str
    title: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_dict(cls, payload: dict) -> BookmarkRecord:
        return cls(
            id=str(payload["id"]),
            url=payload["url"],
            title=payload["title"],
            created_at=dt_parser.isoparse(payload["created_at"]),
            updated_at=dt_parser.isoparse(payload["updated_at"]),
        )


@dataclass
class ListingPage:
    items: list[BookmarkRecord]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def from_dict(cls, payload: dict) -> ListingPage:
        return cls(
            items=[BookmarkRecord.from_dict(item) for item in payload.get("data", [])],
            total=int(payload.get("total", 0)),
            page=int(payload.get("page", 1)),
            page_size=int(payload.get("limit", DEFAULT_PAGE_SIZE)),
            total_pages=int(payload.get("totalPages", 0)),
        )


class BookmarkSource(Protocol):
    def list_bookmarks(self, page: int, page_size: int, search: str) -> ListingPage:
        ...

    def create_bookmark(self, url: str, title: str) -> BookmarkRecord:
        ...

    def delete_bookmark(self, bookmark_id: str) -> None:
        ...


class Closeable(Protocol):
    def close(self) -> None:
        ...


Subscriber = Callable[[Callable[[dict], None]], Closeable]


@dataclass
class ListingState:
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    search: str = ""
    items: list[BookmarkRecord] = field(default_factory=list)
    total: int = 0
    total_pages: int = 0
    loading: bool = False
    error: str | None = None

    def snapshot(self) -> ListingState:
        return replace(self, items=list(self.items))


@dataclass(frozen=True)
class MutationResult:
    success: bool
    error: str | None = None


class ListingController:
    def __init__(
        self,
        source: BookmarkSource,
        subscribe: Subscriber | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        page: int = 1,
        search: str = "",
        executor: Executor | None = None,
    ):
        self.source = source
        self._subscribe = subscribe
        self._executor = executor
        self._lock = threading.RLock()
        self._generation = 0
        self._subscription: Closeable | None = None
        self._mounted = False
        self._listeners: list[Callable[[ListingState], None]] = []
        self._state = ListingState(
            page=max(page, 1), page_size=page_size, search=search or ""
        )

    @property
    def state(self) -> ListingState:
        with self._lock:
            return self._state.snapshot()

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def generation(self) -> int:
        return self._generation

    def on_change(self, callback: Callable[[ListingState], None]) -> None:
        self._listeners.append(callback)

    def mount(self) -> None:
        with self._lock:
            if self._mounted:
                return
            self._mounted = True
        try:
            if self._subscribe is not None:
                self._subscription = self._subscribe(self.handle_change)
            self.refresh()
        except BaseException:
            self.unmount()
            raise

    def unmount(self) -> None:
        with self._lock:
            subscription = self._subscription
            self._subscription = None
            self._mounted = False
            # Responses still in flight belong to a view that no longer exists.
            self._generation += 1
            self._state.loading = False
        if subscription is not None:
            subscription.close()

    def __enter__(self) -> ListingController:
        self.mount()
        return self

    def __exit__(self, *exc_info) -> None:
        self.unmount()

    def set_search(self, term: str | None) -> bool:
        term = (term or "").strip()
        with self._lock:
            if term == self._state.search:
                return False
            self._state.search = term
            self._state.page = 1
        self.refresh()
        return True

    def go_to_page(self, page: int) -> bool:
        with self._lock:
            if page < 1 or page > self._state.total_pages:
                return False
            if page == self._state.page:
                return False
            self._state.page = page
        self.refresh()
        return True

    def next_page(self) -> bool:
        return self.go_to_page(self._state.page + 1)

    def previous_page(self) -> bool:
        return self.go_to_page(self._state.page - 1)

    def add_bookmark(self, url: str, title: str) -> MutationResult:
        return self._mutate("add", self.source.create_bookmark, url, title)

    def delete_bookmark(self, bookmark_id: str) -> MutationResult:
        return self._mutate("delete", self.source.delete_bookmark, bookmark_id)

    def _mutate(self, verb: str, operation: Callable, *args) -> MutationResult:
        try:
            operation(*args)
        except Exception as exc:
            log.warning("bookmark %s failed: %s", verb, exc)
            return MutationResult(False, str(exc) or f"Failed to {verb} bookmark")
        # The acting view does not wait for its own change event.
        self.refresh()
        return MutationResult(True)

    def handle_change(self, event: dict) -> None:
        if not self._mounted:
            return
        log.debug("listing refetch after %s event", event.get("action"))
        self.refresh()

    def refresh(self) -> int:
        with self._lock:
            self._generation += 1
            generation = self._generation
            page = self._state.page
            page_size = self._state.page_size
            search = self._state.search
            self._state.loading = True
        self._notify()

        if self._executor is None:
            self._fetch(generation, page, page_size, search)
        else:
            self._executor.submit(self._fetch, generation, page, page_size, search)
        return generation

    def _fetch(self, generation: int, page: int, page_size: int, search: str) -> None:
        try:
            result = self.source.list_bookmarks(page, page_size, search)
        except Exception as exc:
            log.warning("bookmark listing fetch failed: %s", exc)
            self._complete(generation, error=str(exc) or exc.__class__.__name__)
        else:
            self._complete(generation, result=result)

    def _complete(
        self,
        generation: int,
        result: ListingPage | None = None,
        error: str | None = None,
    ) -> bool:
        with self._lock:
            if generation != self._generation:
                log.debug("discarding stale listing response %s", generation)
                return False
            if result is not None:
                self._state.items = list(result.items)
                self._state.total = result.total
                self._state.total_pages = result.total_pages
                self._state.error = None
            else:
                self._state.error = error
            self._state.loading = False
        self._notify()
        return True

    def _notify(self) -> None:
        snapshot = self.state
        for callback in list(self._listeners):
            callback(snapshot)
