from __future__ import annotations

import time

from flask import Response, current_app, g, jsonify, request, stream_with_context

from shelfmark.api import api_bp
from shelfmark.errors import InvalidInput, NotFoundOrForbidden, ShelfmarkError
from shelfmark.extensions import change_feed, db
from shelfmark.models import ApiToken, User
from shelfmark.services.bookmarks import (
    create_bookmark,
    delete_bookmark,
    get_bookmark,
    list_bookmarks,
    update_bookmark,
)
from shelfmark.services.change_feed import SubscriptionClosed
from shelfmark.services.notifications import events_since, format_sse
from shelfmark.services.security import api_auth_required

REPLAY_BATCH_SIZE = 500


@api_bp.errorhandler(ShelfmarkError)
def handle_shelfmark_error(error: ShelfmarkError):
    return jsonify(error.as_dict()), error.status_code


def _json_object() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidInput("request body must be a JSON object")
    return payload


def _last_event_id() -> int | None:
    raw = request.headers.get("Last-Event-ID") or request.args.get("last_event_id")
    if raw is None:
        return None
    try:
        return max(int(raw), 0)
    except ValueError:
        return None


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Shelfmark"})


@api_bp.route("/auth/token", methods=["POST"])
def create_token_with_credentials():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    token_name = (payload.get("token_name") or "Shelfmark API Token").strip()

    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400

    user = User.query.filter_by(username=username).first()
    if not user or not user.is_active or not user.check_password(password):
        return jsonify({"error": "invalid credentials"}), 401

    token, token_hash = ApiToken.issue_token()
    row = ApiToken(user_id=user.id, name=token_name, token_hash=token_hash)
    db.session.add(row)
    db.session.commit()
    return jsonify({"token": token, "token_name": token_name, "user_id": user.id})


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required
def bookmarks_list_api():
    result = list_bookmarks(
        g.api_user.id,
        page=request.args.get("page"),
        page_size=request.args.get("limit"),
        search=request.args.get("search", ""),
    )
    return jsonify(result.as_dict())


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required
def bookmarks_create_api():
    payload = _json_object()
    bookmark = create_bookmark(g.api_user.id, payload.get("url"), payload.get("title"))
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/bookmarks/events", methods=["GET"])
@api_auth_required
def bookmarks_events_api():
    owner_id = g.api_user.id
    heartbeat = current_app.config["EVENT_STREAM_HEARTBEAT_SECONDS"]
    max_seconds = current_app.config["EVENT_STREAM_MAX_SECONDS"]

    subscription = change_feed.subscribe(owner_id)
    cursor = _last_event_id()
    replay = cursor is not None
    if not replay:
        # The queue only holds events published after subscribing.
        cursor = 0

    def generate():
        nonlocal cursor
        try:
            yield "retry: 3000\n\n"
            while replay:
                batch = events_since(owner_id, cursor, limit=REPLAY_BATCH_SIZE)
                for event in batch:
                    cursor = event["id"]
                    yield format_sse(event)
                if len(batch) < REPLAY_BATCH_SIZE:
                    break

            deadline = time.monotonic() + max_seconds
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    event = subscription.get(timeout=min(heartbeat, remaining))
                except SubscriptionClosed:
                    break
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                event_id = event.get("id")
                if event_id is not None:
                    if event_id <= cursor:
                        continue
                    cursor = event_id
                yield format_sse(event)
        finally:
            subscription.close()

    response = Response(stream_with_context(generate()), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    response.call_on_close(subscription.close)
    return response


@api_bp.route("/bookmarks/<bookmark_id>", methods=["GET"])
@api_auth_required
def bookmarks_get_api(bookmark_id: str):
    bookmark = get_bookmark(bookmark_id, g.api_user.id)
    if bookmark is None:
        raise NotFoundOrForbidden()
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<bookmark_id>", methods=["PATCH"])
@api_auth_required
def bookmarks_update_api(bookmark_id: str):
    payload = _json_object()
    bookmark = update_bookmark(bookmark_id, g.api_user.id, payload)
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<bookmark_id>", methods=["DELETE"])
@api_auth_required
def bookmarks_delete_api(bookmark_id: str):
    delete_bookmark(bookmark_id, g.api_user.id)
    return jsonify({"success": True})
