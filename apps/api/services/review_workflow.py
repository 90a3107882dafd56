"""
Review workflow: claim → draft → publish, plus release and decline.

    pending ──claim──▶ claimed ──publish──▶ completed
       ▲                  │
       └────release───────┘
    pending | claimed ──decline──▶ declined

Every status change is a single conditional UPDATE guarded on the state
the caller expects (services.submission_store.compare_and_set), so the
store decides races: of N concurrent claimants exactly one sees a changed
row and the rest get AlreadyClaimedError. Nothing here retries.

Publishing touches three rows (review, submission, notification) inside
the caller's transaction; the caller commits once, so readers see either
all three changes or none.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.auth import Principal
from core.config import settings
from core.events import COLLECTION_REVIEWS, record_change
from core.exceptions import (
    AlreadyClaimedError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from core.logging import log_workflow_event
from models import (
    NOTIFY_REVIEW_PUBLISHED,
    NOTIFY_SUBMISSION_CLAIMED,
    NOTIFY_SUBMISSION_DECLINED,
    REVIEW_DRAFT,
    REVIEW_PUBLISHED,
    STATUS_CLAIMED,
    STATUS_COMPLETED,
    STATUS_DECLINED,
    STATUS_PENDING,
    TERMINAL_STATUSES,
    Review,
    Submission,
    utcnow,
)
from schemas import ReviewContent
from services.notifications import enqueue_notification
from services.review_stats import invalidate_coach_stats
from services.submission_store import compare_and_set, get_submission, reload_submission

logger = logging.getLogger(__name__)


def _current_state(db: Session, submission_id: UUID) -> Submission:
    # Bypass the identity map: the conditional UPDATE may have lost to a
    # concurrent writer and we need the committed row.
    submission = db.get(Submission, submission_id, populate_existing=True)
    if not submission:
        raise NotFoundError("Submission", submission_id)
    return submission


def _review_for_update(db: Session, submission_id: UUID) -> Optional[Review]:
    return (
        db.query(Review)
        .filter(Review.submission_id == submission_id)
        .populate_existing()
        .with_for_update()
        .first()
    )


# =============================================================================
# Transitions
# =============================================================================


def claim_submission(db: Session, submission_id: UUID, coach_uid: str) -> Submission:
    """pending → claimed, exclusive to one coach."""
    claimed = compare_and_set(
        db,
        submission_id,
        expected_statuses=[STATUS_PENDING],
        values={"status": STATUS_CLAIMED, "coach_uid": coach_uid, "claimed_at": utcnow()},
    )
    if not claimed:
        current = _current_state(db, submission_id)
        if current.status == STATUS_CLAIMED:
            log_workflow_event(logger, "submission.claim_lost", submission_id=submission_id, actor=coach_uid)
            raise AlreadyClaimedError(submission_id)
        raise InvalidStateError(f"Cannot claim a {current.status} submission")

    submission = reload_submission(db, submission_id)
    enqueue_notification(
        db,
        recipient_uid=submission.athlete_uid,
        type=NOTIFY_SUBMISSION_CLAIMED,
        submission_id=submission.id,
    )
    log_workflow_event(logger, "submission.claimed", submission_id=submission_id, actor=coach_uid)
    return submission


def _require_claimant(submission: Submission, coach_uid: str) -> None:
    if submission.status == STATUS_PENDING:
        raise InvalidStateError("Submission must be claimed before it can be reviewed")
    if submission.coach_uid != coach_uid:
        raise ForbiddenError("Submission is claimed by another coach")
    if submission.status != STATUS_CLAIMED:
        raise InvalidStateError(f"Cannot review a {submission.status} submission")


def save_draft_review(
    db: Session,
    submission_id: UUID,
    coach_uid: str,
    content: ReviewContent,
) -> Review:
    """claimed → claimed: create or replace the claimant's draft review."""
    submission = get_submission(db, submission_id)
    _require_claimant(submission, coach_uid)

    review = _review_for_update(db, submission_id)
    if review is not None:
        if review.status == REVIEW_PUBLISHED:
            raise InvalidStateError("Published reviews cannot be edited")
        if review.coach_uid != coach_uid:
            raise ForbiddenError("Only the authoring coach can edit this review")
    else:
        review = Review(
            submission_id=submission_id,
            coach_uid=coach_uid,
            status=REVIEW_DRAFT,
            created_at=utcnow(),
        )
        db.add(review)

    review.rubric_scores = [s.model_dump() for s in content.rubric_scores]
    review.annotations = [a.model_dump() for a in content.annotations]
    review.drill_recommendations = [d.model_dump() for d in content.drill_recommendations]
    review.overall_feedback = content.overall_feedback
    review.next_steps = content.next_steps
    review.updated_at = utcnow()
    db.flush()

    record_change(db, COLLECTION_REVIEWS, review.id, review.to_document())
    log_workflow_event(logger, "review.draft_saved", submission_id=submission_id, review_id=review.id, actor=coach_uid)
    return review


def publish_review(db: Session, submission_id: UUID, coach_uid: str) -> Review:
    """claimed → completed: publish the draft, complete the submission, notify the athlete."""
    submission = get_submission(db, submission_id)
    _require_claimant(submission, coach_uid)

    review = _review_for_update(db, submission_id)
    if review is None:
        raise InvalidStateError("No draft review exists for this submission")
    if review.status != REVIEW_DRAFT:
        raise InvalidStateError("Review is already published")
    if review.coach_uid != coach_uid:
        raise ForbiddenError("Only the authoring coach can publish this review")
    if review.is_empty:
        raise ValidationError("Cannot publish an empty review: add a rubric score or an annotation")

    now = utcnow()
    review.status = REVIEW_PUBLISHED
    review.published_at = now
    review.updated_at = now
    db.flush()

    completed = compare_and_set(
        db,
        submission_id,
        expected_statuses=[STATUS_CLAIMED],
        expected_coach_uid=coach_uid,
        values={"status": STATUS_COMPLETED, "reviewed_at": now, "review_id": review.id},
    )
    if not completed:
        # Caller's rollback undoes the review flip above.
        raise InvalidStateError("Submission changed while publishing; nothing was published")

    submission = reload_submission(db, submission_id)
    enqueue_notification(
        db,
        recipient_uid=submission.athlete_uid,
        type=NOTIFY_REVIEW_PUBLISHED,
        submission_id=submission.id,
        review_id=review.id,
    )
    record_change(db, COLLECTION_REVIEWS, review.id, review.to_document())
    invalidate_coach_stats(coach_uid)
    log_workflow_event(logger, "review.published", submission_id=submission_id, review_id=review.id, actor=coach_uid)
    return review


def release_claim(db: Session, submission_id: UUID, coach_uid: str) -> Submission:
    """claimed → pending: hand the submission back to the open queue."""
    if not settings.ALLOW_CLAIM_RELEASE:
        raise ForbiddenError("Releasing claims is disabled")

    released = compare_and_set(
        db,
        submission_id,
        expected_statuses=[STATUS_CLAIMED],
        expected_coach_uid=coach_uid,
        values={"status": STATUS_PENDING, "coach_uid": None, "claimed_at": None},
    )
    if not released:
        current = _current_state(db, submission_id)
        if current.status == STATUS_CLAIMED:
            raise ForbiddenError("Submission is claimed by another coach")
        raise InvalidStateError("Submission is not claimed by you")

    # The draft belonged to the released claim.
    db.query(Review).filter(
        Review.submission_id == submission_id,
        Review.status == REVIEW_DRAFT,
    ).delete(synchronize_session=False)

    submission = reload_submission(db, submission_id)
    log_workflow_event(logger, "submission.released", submission_id=submission_id, actor=coach_uid)
    return submission


def _may_decline(submission: Submission, principal: Principal) -> bool:
    if principal.is_admin:
        return True
    if not principal.is_coach:
        return False
    if submission.status == STATUS_PENDING:
        return True
    return submission.coach_uid == principal.uid


def decline_submission(db: Session, submission_id: UUID, principal: Principal, reason: str) -> Submission:
    """pending | claimed → declined. Terminal; no review is created."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to decline a submission", field="reason")

    submission = get_submission(db, submission_id)
    if submission.status in TERMINAL_STATUSES:
        raise InvalidStateError(f"Cannot decline a {submission.status} submission")
    if not _may_decline(submission, principal):
        raise ForbiddenError("Not permitted to decline this submission")

    declined = compare_and_set(
        db,
        submission_id,
        expected_statuses=[submission.status],
        expected_coach_uid=submission.coach_uid if submission.status == STATUS_CLAIMED else None,
        values={"status": STATUS_DECLINED, "decline_reason": reason, "declined_by": principal.uid},
    )
    if not declined:
        raise InvalidStateError("Submission changed concurrently; refresh and try again")

    submission = reload_submission(db, submission_id)
    enqueue_notification(
        db,
        recipient_uid=submission.athlete_uid,
        type=NOTIFY_SUBMISSION_DECLINED,
        submission_id=submission.id,
        message=f"A coach declined your submission: {reason}",
    )
    log_workflow_event(logger, "submission.declined", submission_id=submission_id, actor=principal.uid, reason=reason)
    return submission


# =============================================================================
# Reads and athlete feedback
# =============================================================================


def get_review_for_submission(db: Session, submission_id: UUID, principal: Principal) -> Review:
    """
    Drafts: authoring coach and admins only.
    Published: also the submission's athlete.
    """
    submission = get_submission(db, submission_id)
    review = db.query(Review).filter(Review.submission_id == submission_id).first()
    if review is None:
        raise NotFoundError("Review", submission_id)

    if principal.is_admin or principal.uid == review.coach_uid:
        return review
    if principal.uid == submission.athlete_uid:
        if review.status != REVIEW_PUBLISHED:
            # Drafts do not exist from the athlete's point of view.
            raise NotFoundError("Review", submission_id)
        return review
    raise ForbiddenError("You do not have access to this review")


def submit_athlete_feedback(
    db: Session,
    review_id: UUID,
    athlete_uid: str,
    score: int,
    feedback: Optional[str] = None,
) -> Review:
    review = db.get(Review, review_id, populate_existing=True)
    if not review:
        raise NotFoundError("Review", review_id)
    if review.status != REVIEW_PUBLISHED:
        raise InvalidStateError("Feedback can only be left on published reviews")

    submission = get_submission(db, review.submission_id)
    if submission.athlete_uid != athlete_uid:
        raise ForbiddenError("Only the athlete who submitted the video can rate its review")
    if not 1 <= score <= 5:
        raise ValidationError("score must be between 1 and 5", field="score")

    review.athlete_satisfaction = score
    review.athlete_feedback = feedback or ""
    review.updated_at = utcnow()
    db.flush()

    invalidate_coach_stats(review.coach_uid)
    log_workflow_event(logger, "review.rated", review_id=review.id, actor=athlete_uid, score=score)
    return review
