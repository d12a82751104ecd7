from __future__ import annotations

import logging
import queue
import threading

log = logging.getLogger(__name__)

ACTION_INSERT = "insert"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"
ACTION_RESYNC = "resync"

CHANGE_ACTIONS = {ACTION_INSERT, ACTION_UPDATE, ACTION_DELETE}

_CLOSED = object()


class SubscriptionClosed(Exception):
    pass


class Subscription:
    def __init__(self, feed: ChangeFeed, owner_id: int, maxsize: int):
        self.owner_id = owner_id
        self._feed = feed
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: dict) -> bool:
        with self._lock:
            if self._closed:
                return False
            try:
                self._queue.put_nowait(event)
                return True
            except queue.Full:
                # Buffered events are superseded by a single refetch.
                self._drain()
                self._queue.put_nowait({"action": ACTION_RESYNC})
                log.warning(
                    "change feed subscriber for owner %s overflowed; sent resync",
                    self.owner_id,
                )
                return False

    def get(self, timeout: float | None = None) -> dict | None:
        if self._closed and self._queue.empty():
            raise SubscriptionClosed()
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            raise SubscriptionClosed()
        return item

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._drain()
            self._queue.put_nowait(_CLOSED)
        self._feed._discard(self)

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ChangeFeed:
    """In-process fan-out of bookmark change events to per-owner subscribers."""

    def __init__(self, maxsize: int = 256):
        self.maxsize = maxsize
        self._lock = threading.Lock()
        self._subscribers: dict[int, set[Subscription]] = {}

    def init_app(self, app) -> None:
        self.maxsize = app.config.get("CHANGE_FEED_QUEUE_SIZE", self.maxsize)
        app.extensions["change_feed"] = self

    def subscribe(self, owner_id: int) -> Subscription:
        subscription = Subscription(self, owner_id, self.maxsize)
        with self._lock:
            self._subscribers.setdefault(owner_id, set()).add(subscription)
        return subscription

    def publish(self, owner_id: int, event: dict) -> int:
        with self._lock:
            targets = list(self._subscribers.get(owner_id, ()))
        delivered = 0
        for subscription in targets:
            if subscription.deliver(event):
                delivered += 1
        return delivered

    def subscriber_count(self, owner_id: int | None = None) -> int:
        with self._lock:
            if owner_id is not None:
                return len(self._subscribers.get(owner_id, ()))
            return sum(len(subs) for subs in self._subscribers.values())

    def close_all(self) -> None:
        with self._lock:
            targets = [sub for subs in self._subscribers.values() for sub in subs]
        for subscription in targets:
            subscription.close()

    def _discard(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.owner_id)
            if not subs:
                return
            subs.discard(subscription)
            if not subs:
                del self._subscribers[subscription.owner_id]
