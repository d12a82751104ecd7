from __future__ import annotations

import json
from datetime import timedelta

from flask import Flask

from shelfmark.extensions import change_feed, db
from shelfmark.models import ChangeEvent, utcnow
from shelfmark.services.change_feed import CHANGE_ACTIONS

_PENDING_KEY = "shelfmark_pending_changes"


def record_change(
    owner_id: int, bookmark_id: str, action: str, payload: dict
) -> ChangeEvent:
    if action not in CHANGE_ACTIONS:
        raise ValueError(f"unknown change action: {action}")
    event = ChangeEvent(
        user_id=owner_id,
        bookmark_id=bookmark_id,
        action=action,
        payload=payload,
    )
    db.session.add(event)
    db.session.flush()
    db.session.info.setdefault(_PENDING_KEY, []).append((owner_id, event.as_dict()))
    return event


def publish_pending_changes() -> int:
    """Fan out events recorded in the just-committed transaction."""
    pending = db.session.info.pop(_PENDING_KEY, [])
    delivered = 0
    for owner_id, event in pending:
        delivered += change_feed.publish(owner_id, event)
    return delivered


def discard_pending_changes() -> None:
    db.session.info.pop(_PENDING_KEY, None)


def events_since(owner_id: int, cursor: int, limit: int = 500) -> list[dict]:
    rows = (
        ChangeEvent.query.filter(ChangeEvent.user_id == owner_id)
        .filter(ChangeEvent.id > cursor)
        .order_by(ChangeEvent.id.asc())
        .limit(limit)
        .all()
    )
    return [row.as_dict() for row in rows]


def format_sse(event: dict) -> str:
    lines = []
    if event.get("id") is not None:
        lines.append(f"id: {event['id']}")
    lines.append(f"event: {event.get('action', 'message')}")
    lines.append(f"data: {json.dumps(event, separators=(',', ':'))}")
    return "\n".join(lines) + "\n\n"


def prune_change_events(app: Flask) -> int:
    with app.app_context():
        cutoff = utcnow() - timedelta(hours=app.config["CHANGE_EVENT_RETENTION_HOURS"])
        removed = ChangeEvent.query.filter(ChangeEvent.created_at < cutoff).delete(
            synchronize_session=False
        )
        db.session.commit()
        if removed:
            app.logger.info("pruned %s change events older than %s", removed, cutoff)
        return removed
