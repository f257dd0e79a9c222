"""
Change Feed — project-scoped row change notifications.

Writes to the workflow tables are captured by SQLAlchemy mapper events,
buffered on the session, and handed to subscribers only after the
transaction commits. A rollback discards the buffer, so subscribers never
hear about rows that do not exist.

Event shape::

    {"table": "project_tasks", "action": "UPDATE", "project_id": 7, "row_id": 42}

Subscribers receive notifications only for the project they subscribed to
and are expected to refetch the projection they display ("task with
assignments", "project with stats").

Usage:
    from production_hub.services.change_feed import change_feed

    unsubscribe = change_feed.subscribe(project_id, handler)
    ...
    unsubscribe()
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, object_session

from production_hub.models.project import (
    Project,
    ProjectCrewAssignment,
    ProjectRole,
    ProjectTask,
    ProjectTaskAssignment,
)

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], None]

_BUFFER_KEY = "change_feed.pending"

# model class → (published table name, attribute holding the project id)
_WATCHED = {
    Project: ("projects", "id"),
    ProjectRole: ("project_roles", "project_id"),
    ProjectCrewAssignment: ("project_crew_assignments", "project_id"),
    ProjectTask: ("project_tasks", "project_id"),
    ProjectTaskAssignment: ("project_task_assignments", "project_id"),
}


class ChangeFeed:
    """In-process publish/subscribe keyed by project id."""

    def __init__(self) -> None:
        self._subscribers: dict[int, list[Handler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, project_id: int, handler: Handler) -> Callable[[], None]:
        """Register *handler* for one project. Returns an unsubscribe callable."""
        with self._lock:
            self._subscribers.setdefault(project_id, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(project_id, [])
                if handler in handlers:
                    handlers.remove(handler)
                if not handlers:
                    self._subscribers.pop(project_id, None)

        return _unsubscribe

    def subscriber_count(self, project_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(project_id, []))

    def publish(self, change: dict[str, Any]) -> int:
        """Deliver *change* to the subscribers of its project.

        A failing handler is logged and skipped; the others still run.
        Returns the number of handlers that accepted the event.
        """
        with self._lock:
            handlers = list(self._subscribers.get(change.get("project_id"), []))
        delivered = 0
        for handler in handlers:
            try:
                handler(change)
                delivered += 1
            except Exception:
                logger.exception(
                    "Change feed handler failed table=%s action=%s",
                    change.get("table"), change.get("action"),
                    extra={"project_id": change.get("project_id")},
                )
        return delivered

    def clear(self) -> None:
        """Drop every subscription (used on app teardown and in tests)."""
        with self._lock:
            self._subscribers.clear()


change_feed = ChangeFeed()


# ── Session buffering ────────────────────────────────────────────────────────


def record_change(session: Session, table: str, action: str, project_id: int, row_id: int) -> None:
    """Queue a change on *session*; it is published when the session commits."""
    session.info.setdefault(_BUFFER_KEY, []).append({
        "table": table,
        "action": action,
        "project_id": project_id,
        "row_id": row_id,
    })


def _capture(action: str):
    def _listener(mapper, connection, target):
        session = object_session(target)
        if session is None:
            return
        if action == "UPDATE" and not session.is_modified(target, include_collections=False):
            return
        table, project_attr = _WATCHED[type(target)]
        record_change(session, table, action, getattr(target, project_attr), target.id)
    return _listener


def _register_mapper_events() -> None:
    for model_cls in _WATCHED:
        event.listen(model_cls, "after_insert", _capture("INSERT"))
        event.listen(model_cls, "after_update", _capture("UPDATE"))
        event.listen(model_cls, "after_delete", _capture("DELETE"))


@event.listens_for(Session, "after_commit")
def _publish_after_commit(session):
    pending = session.info.pop(_BUFFER_KEY, [])
    for change in pending:
        change_feed.publish(change)
    if pending:
        logger.debug("Change feed published %d change(s)", len(pending))


@event.listens_for(Session, "after_soft_rollback")
def _discard_after_rollback(session, previous_transaction):
    if previous_transaction.nested:
        return
    dropped = session.info.pop(_BUFFER_KEY, [])
    if dropped:
        logger.debug("Change feed discarded %d change(s) on rollback", len(dropped))


_register_mapper_events()
