"""
Live queue projections over the submissions table.

A projection is a filtered, ordered view: the unclaimed queue (pending,
oldest first), a coach's queue (their claims, oldest first) and an
athlete's own submissions (newest first). Opening one returns a
QueueSubscription holding the initial snapshot; committed writes then
arrive from core.events as ordered `added | modified | removed` changes
carrying old and new positions.

Subscriptions must be closed. Use them as context managers:

    with unclaimed_queue(db) as queue:
        render(queue.snapshot)
        for change in queue.wait(timeout=30):
            ...

Closing removes the listener from the hub; with no open subscriptions
the hub holds nothing for the collection and no work continues.

The same machinery backs other versioned collections; see
services.notifications.notification_feed.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Query, Session

from core.config import settings
from core.events import COLLECTION_SUBMISSIONS, ChangeEvent, subscribe
from core.exceptions import ValidationError
from models import STATUS_CLAIMED, STATUS_PENDING, Submission

logger = logging.getLogger(__name__)

ADDED = "added"
MODIFIED = "modified"
REMOVED = "removed"

Document = Dict[str, Any]


@dataclass(frozen=True)
class DocumentChange:
    """One positional change to a projection. Indexes are -1 where not applicable."""

    type: str
    document: Document
    old_index: int
    new_index: int

    def to_dict(self) -> Document:
        return {
            "type": self.type,
            "document": self.document,
            "old_index": self.old_index,
            "new_index": self.new_index,
        }


def _by_creation(doc: Document):
    return (datetime.fromisoformat(doc["created_at"]), doc["id"])


class QueueSubscription:
    def __init__(
        self,
        name: str,
        predicate: Callable[[Document], bool],
        sort_key: Callable[[Document], Any] = _by_creation,
        newest_first: bool = False,
        collection: str = COLLECTION_SUBMISSIONS,
        model: Any = Submission,
    ):
        self.name = name
        self._collection = collection
        self._model = model
        self._predicate = predicate
        self._sort_key = sort_key
        self._reverse = newest_first

        self._cond = threading.Condition()
        self._documents: List[Document] = []
        self._versions: Dict[str, int] = {}
        self._pending: Deque[DocumentChange] = deque()
        # Events that arrive while the snapshot is loading; None once live.
        self._early: Optional[Dict[str, ChangeEvent]] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.snapshot: List[Document] = []
        self.closed = False

    # -- lifecycle ----------------------------------------------------------

    def open(self, db: Session, query: Query) -> "QueueSubscription":
        # Subscribe before reading so no commit can fall between the two.
        self._unsubscribe = subscribe(self._collection, self._on_change)
        try:
            rows = query.populate_existing().all()
            with self._cond:
                for row in rows:
                    doc = row.to_document()
                    self._versions[doc["id"]] = doc["version"]
                    self._documents.append(doc)
                self._documents.sort(key=self._sort_key, reverse=self._reverse)
            self._settle(db)
        except Exception:
            self.close()
            raise

        with self._cond:
            self.snapshot = list(self._documents)
        logger.debug(f"Opened {self.name} queue subscription with {len(self.snapshot)} documents")
        return self

    def _settle(self, db: Session) -> None:
        """Fold changes that raced the snapshot read into the snapshot itself."""
        while True:
            with self._cond:
                early = self._early
                if not early:
                    self._early = None
                    return
                self._early = {}

            # Re-read the rows rather than trusting event order across writers.
            ids = [UUID(doc_id) for doc_id in early]
            rows = db.query(self._model).filter(self._model.id.in_(ids)).populate_existing().all()
            fresh = {str(row.id): row.to_document() for row in rows}
            with self._cond:
                for doc_id in early:
                    self._apply(doc_id, fresh.get(doc_id))

    def close(self) -> None:
        with self._cond:
            if self.closed:
                return
            self.closed = True
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            self._cond.notify_all()
        if unsubscribe is not None:
            unsubscribe()
        logger.debug(f"Closed {self.name} queue subscription")

    def __enter__(self) -> "QueueSubscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- reading ------------------------------------------------------------

    @property
    def documents(self) -> List[Document]:
        """The current ordered view, snapshot plus every change applied so far."""
        with self._cond:
            return list(self._documents)

    def drain(self) -> List[DocumentChange]:
        with self._cond:
            changes = list(self._pending)
            self._pending.clear()
            return changes

    def wait(self, timeout: Optional[float] = None) -> List[DocumentChange]:
        """Block until changes arrive, the subscription closes, or `timeout` passes."""
        with self._cond:
            self._cond.wait_for(lambda: self._pending or self.closed, timeout=timeout)
            changes = list(self._pending)
            self._pending.clear()
            return changes

    # -- change handling ----------------------------------------------------

    def _on_change(self, change: ChangeEvent) -> None:
        with self._cond:
            if self.closed:
                return
            if self._early is not None:
                self._early[change.document_id] = change
                return
            applied = self._apply(change.document_id, change.document)
            if applied is not None:
                self._pending.append(applied)
                self._cond.notify_all()

    def _index_of(self, doc_id: str) -> int:
        for i, doc in enumerate(self._documents):
            if doc["id"] == doc_id:
                return i
        return -1

    def _insertion_index(self, document: Document) -> int:
        key = self._sort_key(document)
        for i, existing in enumerate(self._documents):
            other = self._sort_key(existing)
            if (key > other) if self._reverse else (key < other):
                return i
        return len(self._documents)

    def _apply(self, doc_id: str, document: Optional[Document]) -> Optional[DocumentChange]:
        if document is not None:
            # Stale or duplicate delivery; the view already reflects something newer.
            version = document.get("version") or 0
            if version <= self._versions.get(doc_id, -1):
                return None
            self._versions[doc_id] = version

        old_index = self._index_of(doc_id)
        matches = document is not None and self._predicate(document)
        if old_index < 0 and not matches:
            return None

        previous = self._documents.pop(old_index) if old_index >= 0 else None
        if not matches:
            return DocumentChange(REMOVED, previous, old_index, -1)

        new_index = self._insertion_index(document)
        self._documents.insert(new_index, document)
        if previous is None:
            return DocumentChange(ADDED, document, -1, new_index)
        return DocumentChange(MODIFIED, document, old_index, new_index)


# =============================================================================
# Projections
# =============================================================================


def unclaimed_queue(db: Session, skill_tag: Optional[str] = None) -> QueueSubscription:
    """Pending submissions, optionally for one skill, oldest first."""
    if skill_tag is not None and skill_tag not in settings.skill_tags:
        raise ValidationError(f"Unknown skill tag: {skill_tag!r}", field="skill_tag")

    def predicate(doc: Document) -> bool:
        return doc["status"] == STATUS_PENDING and (skill_tag is None or doc["skill_tag"] == skill_tag)

    query = db.query(Submission).filter(Submission.status == STATUS_PENDING)
    if skill_tag is not None:
        query = query.filter(Submission.skill_tag == skill_tag)
    return QueueSubscription("unclaimed", predicate).open(db, query)


def my_queue(db: Session, coach_uid: str) -> QueueSubscription:
    """Submissions this coach currently holds, oldest first."""

    def predicate(doc: Document) -> bool:
        return doc["status"] == STATUS_CLAIMED and doc["coach_uid"] == coach_uid

    query = db.query(Submission).filter(
        Submission.status == STATUS_CLAIMED,
        Submission.coach_uid == coach_uid,
    )
    return QueueSubscription(f"coach:{coach_uid}", predicate).open(db, query)


def athlete_queue(db: Session, athlete_uid: str) -> QueueSubscription:
    """Every submission this athlete made, newest first."""

    def predicate(doc: Document) -> bool:
        return doc["athlete_uid"] == athlete_uid

    query = db.query(Submission).filter(Submission.athlete_uid == athlete_uid)
    return QueueSubscription(f"athlete:{athlete_uid}", predicate, newest_first=True).open(db, query)
