"""In-process adapters that let a ``ListingController`` run against the app."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from flask import Flask

from shelfmark.listing import BookmarkRecord, ListingPage
from shelfmark.services.bookmarks import (
    create_bookmark,
    delete_bookmark,
    list_bookmarks,
)
from shelfmark.services.change_feed import (
    ACTION_RESYNC,
    ChangeFeed,
    SubscriptionClosed,
)

log = logging.getLogger(__name__)


class LocalBookmarkSource:
    def __init__(self, app: Flask, owner_id: int):
        self.app = app
        self.owner_id = owner_id

    def list_bookmarks(self, page: int, page_size: int, search: str) -> ListingPage:
        with self.app.app_context():
            result = list_bookmarks(self.owner_id, page, page_size, search)
            return ListingPage(
                items=[
                    BookmarkRecord.from_dict(item.as_dict()) for item in result.items
                ],
                total=result.total,
                page=result.page,
                page_size=result.page_size,
                total_pages=result.total_pages,
            )

    def create_bookmark(self, url: str, title: str) -> BookmarkRecord:
        with self.app.app_context():
            bookmark = create_bookmark(self.owner_id, url, title)
            return BookmarkRecord.from_dict(bookmark.as_dict())

    def delete_bookmark(self, bookmark_id: str) -> None:
        with self.app.app_context():
            delete_bookmark(bookmark_id, self.owner_id)


class FeedListener:
    def __init__(
        self,
        feed: ChangeFeed,
        owner_id: int,
        callback: Callable[[dict], None],
        poll_interval: float = 0.5,
    ):
        self.feed = feed
        self.owner_id = owner_id
        self.callback = callback
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._subscription = None
        self._thread: threading.Thread | None = None

    def start(self) -> FeedListener:
        self._subscription = self.feed.subscribe(self.owner_id)
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"change-feed-listener-{self.owner_id}",
        )
        self._thread.start()
        return self

    def close(self) -> None:
        self._stop.set()
        if self._subscription is not None:
            self._subscription.close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)

    def _run(self) -> None:
        try:
            while not self._stop.is_set():
                try:
                    event = self._subscription.get(timeout=self.poll_interval)
                except SubscriptionClosed:
                    if self._stop.is_set():
                        break
                    log.warning(
                        "change feed subscription for owner %s dropped; resubscribing",
                        self.owner_id,
                    )
                    self._subscription = self.feed.subscribe(self.owner_id)
                    self._dispatch({"action": ACTION_RESYNC})
                    continue
                if event is not None:
                    self._dispatch(event)
        finally:
            self._subscription.close()

    def _dispatch(self, event: dict) -> None:
        try:
            self.callback(event)
        except Exception:
            log.exception("change feed listener callback failed")


def local_subscriber(feed: ChangeFeed, owner_id: int):
    def subscribe(callback: Callable[[dict], None]) -> FeedListener:
        return FeedListener(feed, owner_id, callback).start()

    return subscribe
