"""
Change notification for read paths.

Committed sessions publish one ``ChangeEvent`` per touched entity. Subscribers
register per collection (table name) and are called synchronously in the
committing thread, after the commit is durable.
"""
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

CREATED = "created"
MODIFIED = "modified"
DELETED = "deleted"

PENDING_CHANGES_KEY = "recicla.pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    entity_id: str
    op: str


Subscriber = Callable[[ChangeEvent], None]


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def subscribe(self, collection: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``collection``; returns the unsubscribe function."""
        with self._lock:
            self._subscribers[collection].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._subscribers[collection].remove(callback)
                except ValueError:
                    pass

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(event.collection, ()))
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                # one broken listener must not hide the change from the others
                logger.exception(f"Change subscriber failed for {event.collection}/{event.entity_id}")

    def subscriber_count(self, collection: str) -> int:
        with self._lock:
            return len(self._subscribers.get(collection, ()))


def record_change(db: Session, collection: str, entity_id: str, op: str = MODIFIED) -> None:
    """Queue a change made through a core UPDATE/DELETE statement, which the ORM does not track."""
    db.info.setdefault(PENDING_CHANGES_KEY, []).append(ChangeEvent(collection, entity_id, op))


def _entity_events(session: Session) -> list[ChangeEvent]:
    events = []
    for op, objects in ((CREATED, session.new), (MODIFIED, session.dirty), (DELETED, session.deleted)):
        for obj in objects:
            if op == MODIFIED and not session.is_modified(obj):
                continue
            table = getattr(obj, "__tablename__", None)
            entity_id = getattr(obj, "id", None)
            if table and entity_id is not None:
                events.append(ChangeEvent(table, str(entity_id), op))
    return events


def track_changes(session_factory, feed: ChangeFeed) -> None:
    """Wire ORM session events so every commit fans out to ``feed``."""
    from sqlalchemy import event

    @event.listens_for(session_factory, "after_flush")
    def _collect(session, flush_context):
        session.info.setdefault(PENDING_CHANGES_KEY, []).extend(_entity_events(session))

    @event.listens_for(session_factory, "after_commit")
    def _publish(session):
        pending = session.info.pop(PENDING_CHANGES_KEY, [])
        seen = set()
        for change in pending:
            if change in seen:
                continue
            seen.add(change)
            feed.publish(change)

    @event.listens_for(session_factory, "after_rollback")
    def _discard(session):
        session.info.pop(PENDING_CHANGES_KEY, None)
