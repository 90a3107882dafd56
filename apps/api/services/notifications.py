"""
Notification service.

Workflow operations enqueue notifications inside their own transaction,
so a notification exists exactly when the change it announces commits.
Only the recipient may flip the read flag. Recipients can switch off
individual types; a switched-off type is never created for them.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.auth import Principal
from core.events import COLLECTION_NOTIFICATIONS, record_change
from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from models import (
    NOTIFY_COMMENT_ADDED,
    NOTIFY_REVIEW_PUBLISHED,
    NOTIFY_SLA_BREACH,
    NOTIFY_SUBMISSION_CLAIMED,
    NOTIFY_SUBMISSION_DECLINED,
    Notification,
    NotificationPreference,
    utcnow,
)
from services.pagination import Page, paginate_newest_first
from services.queue_projection import QueueSubscription

logger = logging.getLogger(__name__)

# type -> (title, message)
_TEMPLATES = {
    NOTIFY_REVIEW_PUBLISHED: ("Your review is ready", "A coach has published feedback on your video."),
    NOTIFY_SUBMISSION_CLAIMED: ("A coach picked up your video", "Your submission is now being reviewed."),
    NOTIFY_SUBMISSION_DECLINED: ("Submission declined", "A coach declined your submission."),
    NOTIFY_COMMENT_ADDED: ("New comment", "Someone replied on your review."),
    NOTIFY_SLA_BREACH: ("Review is running late", "Your submission has been waiting longer than expected."),
}


# =============================================================================
# Preferences
# =============================================================================


def get_preferences(db: Session, recipient_uid: str) -> Dict[str, Any]:
    """Effective preferences: every known type is listed, defaulting to on."""
    row = db.get(NotificationPreference, recipient_uid)
    types = {notification_type: True for notification_type in _TEMPLATES}
    if row is None:
        return {"email_enabled": True, "push_enabled": True, "types": types}

    types.update({t: bool(enabled) for t, enabled in (row.types or {}).items() if t in _TEMPLATES})
    return {"email_enabled": bool(row.email_enabled), "push_enabled": bool(row.push_enabled), "types": types}


def update_preferences(
    db: Session,
    recipient_uid: str,
    *,
    email_enabled: Optional[bool] = None,
    push_enabled: Optional[bool] = None,
    types: Optional[Dict[str, bool]] = None,
) -> Dict[str, Any]:
    """Partial update; types not mentioned keep their current setting."""
    unknown = set(types or {}) - set(_TEMPLATES)
    if unknown:
        raise ValidationError(f"Unknown notification types: {sorted(unknown)}", field="types")

    row = db.get(NotificationPreference, recipient_uid)
    if row is None:
        row = NotificationPreference(recipient_uid=recipient_uid, email_enabled=True, push_enabled=True, types={})
        db.add(row)

    if email_enabled is not None:
        row.email_enabled = email_enabled
    if push_enabled is not None:
        row.push_enabled = push_enabled
    if types:
        # New dict so the JSON column registers the change.
        row.types = {**(row.types or {}), **types}
    row.updated_at = utcnow()
    db.flush()

    logger.info(f"Updated notification preferences for {recipient_uid}")
    return get_preferences(db, recipient_uid)


def wants_notification(db: Session, recipient_uid: str, type: str) -> bool:
    row = db.get(NotificationPreference, recipient_uid)
    if row is None:
        return True
    return bool((row.types or {}).get(type, True))


# =============================================================================
# Notifications
# =============================================================================


def enqueue_notification(
    db: Session,
    *,
    recipient_uid: str,
    type: str,
    submission_id: Optional[UUID] = None,
    review_id: Optional[UUID] = None,
    comment_id: Optional[UUID] = None,
    message: Optional[str] = None,
) -> Optional[Notification]:
    """Create a notification, or return None if the recipient switched this type off."""
    if type not in _TEMPLATES:
        raise ValidationError(f"Unknown notification type: {type!r}", field="type")
    if not wants_notification(db, recipient_uid, type):
        logger.debug(f"Skipped {type} notification for {recipient_uid}: switched off")
        return None
    title, default_message = _TEMPLATES[type]

    notification = Notification(
        recipient_uid=recipient_uid,
        type=type,
        title=title,
        message=message or default_message,
        submission_id=submission_id,
        review_id=review_id,
        comment_id=comment_id,
        read=False,
        created_at=utcnow(),
        version=1,
    )
    db.add(notification)
    db.flush()
    record_change(db, COLLECTION_NOTIFICATIONS, notification.id, notification.to_document())
    logger.debug(f"Enqueued {type} notification for {recipient_uid}")
    return notification


def list_notifications(
    db: Session,
    recipient_uid: str,
    *,
    unread_only: bool = False,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
) -> Page[Notification]:
    query = db.query(Notification).filter(Notification.recipient_uid == recipient_uid)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return paginate_newest_first(query, Notification, limit, cursor)


def unread_count(db: Session, recipient_uid: str) -> int:
    return (
        db.query(Notification)
        .filter(Notification.recipient_uid == recipient_uid, Notification.read.is_(False))
        .count()
    )


def mark_read(db: Session, notification_id: UUID, principal: Principal) -> Notification:
    notification = db.get(Notification, notification_id)
    if not notification:
        raise NotFoundError("Notification", notification_id)
    if notification.recipient_uid != principal.uid:
        raise ForbiddenError("Only the recipient can update a notification")

    if not notification.read:
        notification.read = True
        notification.read_at = utcnow()
        notification.version = Notification.version + 1
        db.flush()
        record_change(db, COLLECTION_NOTIFICATIONS, notification.id, notification.to_document())
    return notification


def mark_all_read(db: Session, recipient_uid: str) -> int:
    unread = Notification.recipient_uid == recipient_uid, Notification.read.is_(False)
    ids = [notification_id for (notification_id,) in db.query(Notification.id).filter(*unread)]
    if not ids:
        return 0

    updated = (
        db.query(Notification)
        .filter(Notification.id.in_(ids), *unread)
        .update(
            {"read": True, "read_at": utcnow(), "version": Notification.version + 1},
            synchronize_session=False,
        )
    )
    for notification in db.query(Notification).filter(Notification.id.in_(ids)).populate_existing():
        record_change(db, COLLECTION_NOTIFICATIONS, notification.id, notification.to_document())
    logger.debug(f"Marked {updated} notifications read for {recipient_uid}")
    return updated


def purge_read_notifications(db: Session, days_old: int) -> int:
    """Delete read notifications older than `days_old` days. Unread ones are kept."""
    cutoff = utcnow() - timedelta(days=days_old)
    deleted = (
        db.query(Notification)
        .filter(Notification.read.is_(True), Notification.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    return deleted


# =============================================================================
# Live feed
# =============================================================================


def notification_feed(db: Session, recipient_uid: str, unread_only: bool = False) -> QueueSubscription:
    """The recipient's notifications, newest first, kept live. Close it when done."""

    def predicate(doc: Dict[str, Any]) -> bool:
        return doc["recipient_uid"] == recipient_uid and not (unread_only and doc["read"])

    query = db.query(Notification).filter(Notification.recipient_uid == recipient_uid)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return QueueSubscription(
        f"notifications:{recipient_uid}",
        predicate,
        newest_first=True,
        collection=COLLECTION_NOTIFICATIONS,
        model=Notification,
    ).open(db, query)


def feed_unread_count(feed: QueueSubscription) -> int:
    return sum(1 for doc in feed.documents if not doc["read"])
