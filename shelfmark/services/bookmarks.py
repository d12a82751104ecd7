from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from shelfmark.errors import InvalidInput, NotFoundOrForbidden, StoreUnavailable
from shelfmark.extensions import db
from shelfmark.models import Bookmark, utcnow
from shelfmark.services.change_feed import ACTION_DELETE, ACTION_INSERT, ACTION_UPDATE
from shelfmark.services.notifications import (
    discard_pending_changes,
    publish_pending_changes,
    record_change,
)
from shelfmark.services.row_policy import owner_scope
from shelfmark.services.validation import (
    clamp_pagination,
    is_valid_title,
    is_valid_url,
    sanitize,
    total_pages,
)


@dataclass
class BookmarkPage:
    items: list[Bookmark]
    total: int
    page: int
    page_size: int
    total_pages: int

    def as_dict(self):
        return {
            "data": [item.as_dict() for item in self.items],
            "total": self.total,
            "page": self.page,
            "limit": self.page_size,
            "totalPages": self.total_pages,
        }


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _store_failure(owner_id: int, operation: str) -> StoreUnavailable:
    db.session.rollback()
    discard_pending_changes()
    current_app.logger.exception(
        "bookmark store failure during %s for owner %s", operation, owner_id
    )
    return StoreUnavailable(f"Failed to {operation} bookmark")


def _rollback() -> None:
    db.session.rollback()
    discard_pending_changes()


def _clean_url(value) -> str:
    url = sanitize(value)
    if not url:
        raise InvalidInput("URL and title are required")
    if not is_valid_url(url, current_app.config["URL_MAX_LENGTH"]):
        raise InvalidInput("URL must be a valid http:// or https:// address")
    return url


def _clean_title(value) -> str:
    title = sanitize(value)
    if not title:
        raise InvalidInput("URL and title are required")
    max_length = current_app.config["TITLE_MAX_LENGTH"]
    if not is_valid_title(title, max_length):
        raise InvalidInput(f"Title must be at most {max_length} characters")
    return title


def _owned_bookmark(bookmark_id: str, owner_id: int) -> Bookmark | None:
    return Bookmark.query.filter_by(id=str(bookmark_id), user_id=owner_id).first()


def list_bookmarks(
    owner_id: int, page=None, page_size=None, search: str | None = ""
) -> BookmarkPage:
    page, page_size = clamp_pagination(
        page,
        page_size,
        default_page_size=current_app.config["PAGE_SIZE_DEFAULT"],
        max_page_size=current_app.config["PAGE_SIZE_MAX"],
    )
    term = sanitize(search)

    with owner_scope(owner_id):
        query = Bookmark.query.filter(Bookmark.user_id == owner_id)
        if term:
            pattern = f"%{_escape_like(term)}%"
            query = query.filter(
                or_(
                    Bookmark.title.ilike(pattern, escape="\\"),
                    Bookmark.url.ilike(pattern, escape="\\"),
                )
            )
        try:
            total = query.count()
            items = (
                query.order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
        except SQLAlchemyError:
            raise _store_failure(owner_id, "fetch") from None

    return BookmarkPage(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages(total, page_size),
    )


def create_bookmark(owner_id: int, url, title) -> Bookmark:
    if not sanitize(url) or not sanitize(title):
        raise InvalidInput("URL and title are required")
    url = _clean_url(url)
    title = _clean_title(title)

    now = utcnow()
    bookmark = Bookmark(
        user_id=owner_id, url=url, title=title, created_at=now, updated_at=now
    )
    with owner_scope(owner_id):
        try:
            db.session.add(bookmark)
            db.session.flush()
            bookmark_id = bookmark.id
            record_change(owner_id, bookmark_id, ACTION_INSERT, bookmark.as_dict())
            db.session.commit()
        except SQLAlchemyError:
            raise _store_failure(owner_id, "create") from None
        except NotFoundOrForbidden:
            _rollback()
            raise

    publish_pending_changes()
    current_app.logger.debug("owner %s created bookmark %s", owner_id, bookmark_id)
    return bookmark


def update_bookmark(bookmark_id: str, owner_id: int, fields: dict | None) -> Bookmark:
    fields = fields or {}
    changes = {}
    if "url" in fields:
        changes["url"] = _clean_url(fields["url"])
    if "title" in fields:
        changes["title"] = _clean_title(fields["title"])

    with owner_scope(owner_id):
        try:
            bookmark = _owned_bookmark(bookmark_id, owner_id)
        except SQLAlchemyError:
            raise _store_failure(owner_id, "update") from None
        if bookmark is None:
            raise NotFoundOrForbidden()

        for field, value in changes.items():
            setattr(bookmark, field, value)
        bookmark.updated_at = utcnow()
        try:
            db.session.flush()
            record_change(owner_id, bookmark.id, ACTION_UPDATE, bookmark.as_dict())
            db.session.commit()
        except SQLAlchemyError:
            raise _store_failure(owner_id, "update") from None
        except NotFoundOrForbidden:
            _rollback()
            raise

    publish_pending_changes()
    return bookmark


def delete_bookmark(bookmark_id: str, owner_id: int) -> bool:
    with owner_scope(owner_id):
        try:
            bookmark = _owned_bookmark(bookmark_id, owner_id)
            if bookmark is None:
                # Missing and foreign ids both end here; delete stays idempotent.
                return False
            removed_id = bookmark.id
            db.session.delete(bookmark)
            record_change(owner_id, removed_id, ACTION_DELETE, {"id": removed_id})
            db.session.commit()
        except SQLAlchemyError:
            raise _store_failure(owner_id, "delete") from None
        except NotFoundOrForbidden:
            _rollback()
            raise

    publish_pending_changes()
    return True


def get_bookmark(bookmark_id: str, owner_id: int) -> Bookmark | None:
    with owner_scope(owner_id):
        try:
            return _owned_bookmark(bookmark_id, owner_id)
        except SQLAlchemyError:
            raise _store_failure(owner_id, "fetch") from None
