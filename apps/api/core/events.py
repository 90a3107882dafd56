"""
Committed-change hub.

Services record document changes on the session while they work; the
session's `after_commit` hook hands them to subscribers, and a rollback
discards them. Subscribers therefore only ever see committed state, in
commit order, and there is no polling.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Collection names
COLLECTION_SUBMISSIONS = "submissions"
COLLECTION_REVIEWS = "reviews"
COLLECTION_COMMENTS = "comments"
COLLECTION_NOTIFICATIONS = "notifications"

_PENDING_KEY = "pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    """One committed write. `document` is None when the row was deleted."""

    collection: str
    document_id: str
    document: Optional[Dict[str, Any]]


# Event registry: collection -> list of handlers
_handlers: Dict[str, List[Callable[[ChangeEvent], None]]] = {}
_lock = threading.Lock()


def subscribe(collection: str, handler: Callable[[ChangeEvent], None]) -> Callable[[], None]:
    """
    Subscribe a handler to committed changes on a collection.

    Returns an idempotent unsubscribe callable. Once the last handler for
    a collection unsubscribes, the collection entry is dropped entirely.
    """
    with _lock:
        _handlers.setdefault(collection, []).append(handler)
    logger.debug(f"Subscribed handler to collection: {collection}")

    def unsubscribe() -> None:
        with _lock:
            handlers = _handlers.get(collection)
            if not handlers or handler not in handlers:
                return
            handlers.remove(handler)
            if not handlers:
                del _handlers[collection]
        logger.debug(f"Unsubscribed handler from collection: {collection}")

    return unsubscribe


def emit(change: ChangeEvent) -> None:
    """Deliver a committed change to every current subscriber of its collection."""
    with _lock:
        handlers = list(_handlers.get(change.collection, ()))

    for handler in handlers:
        try:
            handler(change)
        except Exception as e:
            logger.error(f"Error in change handler for {change.collection}: {e}", exc_info=True)


def listener_count(collection: Optional[str] = None) -> int:
    with _lock:
        if collection is not None:
            return len(_handlers.get(collection, ()))
        return sum(len(h) for h in _handlers.values())


def record_change(
    db: Session,
    collection: str,
    document_id: Any,
    document: Optional[Dict[str, Any]],
) -> None:
    """Queue a change for delivery when `db` commits."""
    pending: Dict[tuple, ChangeEvent] = db.info.setdefault(_PENDING_KEY, {})
    key = (collection, str(document_id))
    # Re-recording a document in the same transaction keeps the latest state
    # but its first position, so delivery order follows first-touch order.
    pending[key] = ChangeEvent(collection=collection, document_id=str(document_id), document=document)


@event.listens_for(Session, "after_commit")
def _deliver_pending_changes(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for change in pending.values():
        emit(change)


@event.listens_for(Session, "after_rollback")
def _discard_pending_changes(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
