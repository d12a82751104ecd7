"""Store-level ownership policy for bookmark rows.

While an owner scope is active every ORM select of ``Bookmark`` is restricted
to that owner's rows, and flushes that would write a row belonging to someone
else are refused. Application code filters by owner on its own as well; this
module is the backstop that holds even when a query forgets to.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager

from sqlalchemy import event
from sqlalchemy.orm import Session, attributes, with_loader_criteria

from shelfmark.errors import RowPolicyViolation
from shelfmark.models import Bookmark

_current_owner: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "shelfmark_row_owner", default=None
)


def current_owner() -> int | None:
    return _current_owner.get()


@contextmanager
def owner_scope(owner_id: int):
    token = _current_owner.set(owner_id)
    try:
        yield owner_id
    finally:
        _current_owner.reset(token)


def _restrict_selects(orm_execute_state) -> None:
    owner_id = _current_owner.get()
    if owner_id is None:
        return
    if (
        orm_execute_state.is_select
        and not orm_execute_state.is_column_load
        and not orm_execute_state.is_relationship_load
    ):
        orm_execute_state.statement = orm_execute_state.statement.options(
            with_loader_criteria(
                Bookmark,
                lambda cls: cls.user_id == owner_id,
                include_aliases=True,
            )
        )


def _check_write(mapper, connection, target) -> None:
    owner_id = _current_owner.get()
    if owner_id is None:
        return
    if target.user_id != owner_id:
        raise RowPolicyViolation()


def _check_update(mapper, connection, target) -> None:
    for column in ("id", "user_id"):
        if attributes.get_history(target, column).deleted:
            raise RowPolicyViolation(f"bookmark {column} is immutable")
    _check_write(mapper, connection, target)


_LISTENERS = (
    (Session, "do_orm_execute", _restrict_selects),
    (Bookmark, "before_insert", _check_write),
    (Bookmark, "before_update", _check_update),
    (Bookmark, "before_delete", _check_write),
)


def install_row_policy() -> None:
    for target, name, listener in _LISTENERS:
        if not event.contains(target, name, listener):
            event.listen(target, name, listener)
