"""
Submission store.

Creation, lookup, listing and field-owned patching of athlete video
submissions. The unclaimed queue is a filtered view over this same table,
so a new submission is visible to coaches as soon as it commits.

Workflow transitions live in services.review_workflow; they go through
`compare_and_set` here so every status change is one conditional UPDATE.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.auth import Principal
from core.config import settings
from core.events import COLLECTION_SUBMISSIONS, record_change
from core.exceptions import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from core.logging import log_workflow_event
from models import (
    NOTIFY_SLA_BREACH,
    STATUS_CLAIMED,
    STATUS_DECLINED,
    STATUS_PENDING,
    SUBMISSION_STATUSES,
    TERMINAL_STATUSES,
    Submission,
    utcnow,
)
from services.notifications import enqueue_notification
from services.pagination import Page, paginate_newest_first

logger = logging.getLogger(__name__)

# Field ownership for generic patches.
ATHLETE_FIELDS = frozenset({"media_ref", "athlete_context", "athlete_goals", "specific_questions"})
CLAIM_FIELDS = frozenset(
    {"status", "coach_uid", "claimed_at", "reviewed_at", "review_id", "decline_reason", "declined_by"}
)
# Written together with the review row by publish_review, never by a patch.
PUBLISH_FIELDS = frozenset({"review_id", "reviewed_at"})
# Status edges a patch may take. claimed -> completed is publish-only.
PATCH_TRANSITIONS = frozenset(
    {
        (STATUS_PENDING, STATUS_CLAIMED),
        (STATUS_CLAIMED, STATUS_PENDING),
        (STATUS_PENDING, STATUS_DECLINED),
        (STATUS_CLAIMED, STATUS_DECLINED),
    }
)


def _normalize_media_ref(media_ref: Optional[str]) -> str:
    ref = (media_ref or "").strip()
    if not ref:
        raise ValidationError("media_ref is required", field="media_ref")
    return ref


def create_submission(
    db: Session,
    *,
    athlete_uid: str,
    media_ref: str,
    skill_tag: str,
    athlete_context: Optional[str] = None,
    athlete_goals: Optional[str] = None,
    specific_questions: Optional[str] = None,
) -> Submission:
    media_ref = _normalize_media_ref(media_ref)
    tag = (skill_tag or "").strip()
    if tag not in settings.skill_tags:
        raise ValidationError(f"Unknown skill tag: {skill_tag!r}", field="skill_tag")

    now = utcnow()
    submission = Submission(
        athlete_uid=athlete_uid,
        coach_uid=None,
        media_ref=media_ref,
        skill_tag=tag,
        athlete_context=athlete_context,
        athlete_goals=athlete_goals,
        specific_questions=specific_questions,
        status=STATUS_PENDING,
        sla_deadline=now + timedelta(hours=settings.SLA_HOURS),
        sla_breach=False,
        comment_count=0,
        version=1,
        created_at=now,
        updated_at=now,
    )
    db.add(submission)
    db.flush()  # ensures submission.id

    record_change(db, COLLECTION_SUBMISSIONS, submission.id, submission.to_document())
    log_workflow_event(logger, "submission.created", submission_id=submission.id, actor=athlete_uid)
    return submission


def get_submission(db: Session, submission_id: UUID) -> Submission:
    # Always the stored row: other sessions may have moved it since this one last looked.
    submission = db.get(Submission, submission_id, populate_existing=True)
    if not submission:
        raise NotFoundError("Submission", submission_id)
    return submission


def can_view(submission: Submission, principal: Principal) -> bool:
    if principal.is_admin:
        return True
    if submission.athlete_uid == principal.uid:
        return True
    if principal.is_coach:
        # Any coach can inspect what sits in the open queue; after that only the claimant.
        return submission.status == STATUS_PENDING or submission.coach_uid == principal.uid
    return False


def get_submission_for_viewer(db: Session, submission_id: UUID, principal: Principal) -> Submission:
    submission = get_submission(db, submission_id)
    if not can_view(submission, principal):
        raise ForbiddenError("You do not have access to this submission")
    return submission


def list_by_athlete(
    db: Session,
    athlete_uid: str,
    *,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
) -> Page[Submission]:
    query = db.query(Submission).filter(Submission.athlete_uid == athlete_uid)
    return paginate_newest_first(query, Submission, limit, cursor)


def list_by_coach(
    db: Session,
    coach_uid: str,
    *,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    status: Optional[str] = None,
) -> Page[Submission]:
    """Everything this coach has claimed, whatever happened to it since."""
    query = db.query(Submission).filter(Submission.coach_uid == coach_uid)
    if status is not None:
        if status not in SUBMISSION_STATUSES:
            raise ValidationError(f"Unknown status: {status!r}", field="status")
        query = query.filter(Submission.status == status)
    return paginate_newest_first(query, Submission, limit, cursor)


def _may_change(submission: Submission, field: str, principal: Principal) -> bool:
    if principal.is_admin:
        return True
    if field in ATHLETE_FIELDS:
        return submission.athlete_uid == principal.uid
    # Claim-owned fields belong to the claiming coach.
    return submission.coach_uid is not None and submission.coach_uid == principal.uid


def _check_claim_patch(submission: Submission, patch: Dict[str, Any]) -> None:
    """Claim-owned fields may only move along a workflow edge."""
    touched = set(patch) & CLAIM_FIELDS
    if not touched:
        return
    if submission.status in TERMINAL_STATUSES:
        raise InvalidStateError(f"A {submission.status} submission can no longer change")
    if touched & PUBLISH_FIELDS:
        raise InvalidStateError("review_id and reviewed_at are set only by publishing a review")

    new_status = patch.get("status", submission.status)
    new_coach = patch.get("coach_uid", submission.coach_uid)
    if new_status not in SUBMISSION_STATUSES:
        raise ValidationError(f"Unknown status: {new_status!r}", field="status")
    if new_status == STATUS_PENDING and new_coach is not None:
        raise ValidationError("A pending submission cannot have a coach", field="coach_uid")
    if new_status == STATUS_CLAIMED and new_coach is None:
        raise ValidationError("A claimed submission needs a coach", field="coach_uid")

    if new_status != submission.status and (submission.status, new_status) not in PATCH_TRANSITIONS:
        raise InvalidStateError(f"Cannot move a submission from {submission.status} to {new_status}")
    if new_status == submission.status and new_coach != submission.coach_uid:
        raise InvalidStateError("The claiming coach changes only by release and a new claim")


def update_submission(
    db: Session,
    submission_id: UUID,
    patch: Dict[str, Any],
    principal: Principal,
) -> Submission:
    """
    Field-owned generic patch.

    Athlete fields: owning athlete. Claim fields: claiming coach.
    Admins may change either. Claim fields follow the edges in
    PATCH_TRANSITIONS; completion happens only through publish_review.

    Written as a conditional UPDATE on the version that was checked, so a
    transition committed in between fails the patch instead of being
    overwritten.
    """
    unknown = set(patch) - ATHLETE_FIELDS - CLAIM_FIELDS
    if unknown:
        raise ValidationError(f"Unknown submission fields: {sorted(unknown)}")

    submission = get_submission(db, submission_id)
    for field in patch:
        if not _may_change(submission, field, principal):
            raise ForbiddenError(f"Not permitted to change {field}")

    if "media_ref" in patch:
        patch = {**patch, "media_ref": _normalize_media_ref(patch["media_ref"])}
    _check_claim_patch(submission, patch)

    if not compare_and_set(
        db,
        submission_id,
        expected_statuses=[submission.status],
        expected_version=submission.version,
        values=dict(patch),
    ):
        raise InvalidStateError("Submission changed while it was being edited; reload and retry")

    submission = reload_submission(db, submission_id)
    log_workflow_event(
        logger,
        "submission.updated",
        submission_id=submission.id,
        actor=principal.uid,
        fields=",".join(sorted(patch)),
    )
    return submission


def compare_and_set(
    db: Session,
    submission_id: UUID,
    *,
    expected_statuses: Iterable[str],
    values: Dict[str, Any],
    expected_coach_uid: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> bool:
    """
    Conditional write: apply `values` only if the row is still in one of
    `expected_statuses` (and, when given, still held by `expected_coach_uid`
    and still at `expected_version`).

    Issued as a single UPDATE ... WHERE, so the check and the write are one
    statement and concurrent callers cannot both pass. The version is bumped
    in SQL, never from a value read earlier. Returns whether the row changed.
    """
    query = db.query(Submission).filter(
        Submission.id == submission_id,
        Submission.status.in_(list(expected_statuses)),
    )
    if expected_coach_uid is not None:
        query = query.filter(Submission.coach_uid == expected_coach_uid)
    if expected_version is not None:
        query = query.filter(Submission.version == expected_version)

    rowcount = query.update(
        {
            **values,
            "updated_at": utcnow(),
            "version": Submission.version + 1,
        },
        synchronize_session=False,
    )
    return rowcount == 1


def reload_submission(db: Session, submission_id: UUID) -> Submission:
    """Re-read after a conditional write and queue the change for subscribers."""
    submission = db.get(Submission, submission_id, populate_existing=True)
    if not submission:
        raise NotFoundError("Submission", submission_id)
    record_change(db, COLLECTION_SUBMISSIONS, submission.id, submission.to_document())
    return submission


def flag_sla_breaches(db: Session) -> int:
    """
    Mark open submissions whose SLA deadline has passed and tell their athletes.

    Each row is flagged with its own conditional write so a submission that
    completes concurrently is left alone.
    """
    overdue = (
        db.query(Submission.id)
        .filter(
            Submission.status.in_([STATUS_PENDING, STATUS_CLAIMED]),
            Submission.sla_breach.is_(False),
            Submission.sla_deadline < utcnow(),
        )
        .all()
    )

    flagged = 0
    for (submission_id,) in overdue:
        if not compare_and_set(
            db,
            submission_id,
            expected_statuses=[STATUS_PENDING, STATUS_CLAIMED],
            values={"sla_breach": True},
        ):
            continue
        submission = reload_submission(db, submission_id)
        enqueue_notification(
            db,
            recipient_uid=submission.athlete_uid,
            type=NOTIFY_SLA_BREACH,
            submission_id=submission.id,
        )
        log_workflow_event(logger, "submission.sla_breached", submission_id=submission_id, status=submission.status)
        flagged += 1
    return flagged
