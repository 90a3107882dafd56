"""
Comment threads on published reviews.

Threads are two levels deep: replies to a reply attach to the top-level
comment. Deletion is soft and takes the replies with it. The submission's
comment_count moves in the same transaction as the comment itself.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from core.auth import Principal
from core.events import COLLECTION_COMMENTS, record_change
from core.exceptions import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from core.logging import log_workflow_event
from models import NOTIFY_COMMENT_ADDED, REVIEW_PUBLISHED, Comment, Review, Submission, utcnow
from services.notifications import enqueue_notification
from services.submission_store import get_submission, reload_submission

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 2000

Thread = Tuple[Comment, List[Comment]]


def _clean_body(body: Optional[str]) -> str:
    text = (body or "").strip()
    if not text:
        raise ValidationError("Comment body is required", field="body")
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comment body exceeds {MAX_COMMENT_LENGTH} characters", field="body")
    return text


def _participants(db: Session, review: Review) -> Tuple[Submission, set]:
    submission = get_submission(db, review.submission_id)
    return submission, {submission.athlete_uid, review.coach_uid}


def _get_review(db: Session, review_id: UUID) -> Review:
    review = db.get(Review, review_id, populate_existing=True)
    if not review:
        raise NotFoundError("Review", review_id)
    return review


def _get_comment(db: Session, comment_id: UUID) -> Comment:
    comment = db.get(Comment, comment_id)
    if not comment or comment.deleted:
        raise NotFoundError("Comment", comment_id)
    return comment


def _adjust_comment_count(db: Session, submission_id: UUID, delta: int) -> None:
    db.query(Submission).filter(Submission.id == submission_id).update(
        {
            "comment_count": Submission.comment_count + delta,
            "version": Submission.version + 1,
            "updated_at": utcnow(),
        },
        synchronize_session=False,
    )
    reload_submission(db, submission_id)


def add_comment(
    db: Session,
    review_id: UUID,
    principal: Principal,
    body: str,
    parent_comment_id: Optional[UUID] = None,
    media_timestamp_s: Optional[int] = None,
) -> Comment:
    text = _clean_body(body)
    review = _get_review(db, review_id)
    if review.status != REVIEW_PUBLISHED:
        raise InvalidStateError("Comments can only be added to published reviews")

    submission, participants = _participants(db, review)
    if not principal.is_admin and principal.uid not in participants:
        raise ForbiddenError("Only the athlete and the reviewing coach can comment")

    if parent_comment_id is not None:
        parent = _get_comment(db, parent_comment_id)
        if parent.review_id != review.id:
            raise ValidationError("Parent comment belongs to a different review", field="parent_comment_id")
        if parent.parent_comment_id is not None:
            parent_comment_id = parent.parent_comment_id

    comment = Comment(
        review_id=review.id,
        submission_id=submission.id,
        parent_comment_id=parent_comment_id,
        author_uid=principal.uid,
        author_role=principal.role,
        body=text,
        media_timestamp_s=media_timestamp_s,
        edited=False,
        deleted=False,
        created_at=utcnow(),
    )
    db.add(comment)
    db.flush()

    _adjust_comment_count(db, submission.id, 1)
    for recipient in sorted(participants - {principal.uid}):
        enqueue_notification(
            db,
            recipient_uid=recipient,
            type=NOTIFY_COMMENT_ADDED,
            submission_id=submission.id,
            review_id=review.id,
            comment_id=comment.id,
        )

    record_change(db, COLLECTION_COMMENTS, comment.id, comment.to_document())
    log_workflow_event(logger, "comment.added", review_id=review.id, comment_id=comment.id, actor=principal.uid)
    return comment


def list_comments(db: Session, review_id: UUID, principal: Principal) -> List[Thread]:
    """Top-level comments in creation order, each with its replies."""
    review = _get_review(db, review_id)
    _, participants = _participants(db, review)
    if not principal.is_admin and principal.uid not in participants:
        raise ForbiddenError("You do not have access to these comments")

    comments = (
        db.query(Comment)
        .filter(Comment.review_id == review.id, Comment.deleted.is_(False))
        .order_by(Comment.created_at.asc(), Comment.id.asc())
        .all()
    )

    threads: List[Thread] = []
    replies = {}
    for comment in comments:
        if comment.parent_comment_id is None:
            entry: Thread = (comment, [])
            threads.append(entry)
            replies[comment.id] = entry[1]
    for comment in comments:
        if comment.parent_comment_id is not None and comment.parent_comment_id in replies:
            replies[comment.parent_comment_id].append(comment)
    return threads


def edit_comment(db: Session, comment_id: UUID, principal: Principal, body: str) -> Comment:
    comment = _get_comment(db, comment_id)
    if comment.author_uid != principal.uid:
        raise ForbiddenError("Only the author can edit a comment")

    comment.body = _clean_body(body)
    comment.edited = True
    comment.edited_at = utcnow()
    db.flush()
    record_change(db, COLLECTION_COMMENTS, comment.id, comment.to_document())
    return comment


def delete_comment(db: Session, comment_id: UUID, principal: Principal) -> int:
    """Soft-delete a comment and its replies. Author or admin. Returns how many were removed."""
    comment = _get_comment(db, comment_id)
    if comment.author_uid != principal.uid and not principal.is_admin:
        raise ForbiddenError("Only the author or an admin can delete a comment")

    doomed = [comment]
    if comment.parent_comment_id is None:
        doomed.extend(
            db.query(Comment)
            .filter(Comment.parent_comment_id == comment.id, Comment.deleted.is_(False))
            .all()
        )
    for c in doomed:
        c.deleted = True
        record_change(db, COLLECTION_COMMENTS, c.id, None)
    db.flush()

    _adjust_comment_count(db, comment.submission_id, -len(doomed))
    log_workflow_event(
        logger,
        "comment.deleted",
        comment_id=comment.id,
        actor=principal.uid,
        moderated=comment.author_uid != principal.uid,
        removed=len(doomed),
    )
    return len(doomed)
