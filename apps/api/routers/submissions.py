"""
Submissions API Router

Athlete submissions and the coach review workflow on them:
claim, release, decline, draft and publish.

Services flush; every mutating endpoint commits once the operation has
succeeded so the whole transition lands in a single transaction.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.auth import Principal, get_current_principal, require_athlete, require_coach, require_coach_or_admin
from core.database import get_db
from schemas import (
    ApiResponse,
    DeclineRequest,
    ReviewContent,
    ReviewResponse,
    SubmissionCreate,
    SubmissionPage,
    SubmissionPatch,
    SubmissionResponse,
    ok,
)
from services import review_workflow, submission_store

router = APIRouter(prefix="/v1/submissions", tags=["submissions"])


def _submission(submission) -> dict:
    return ok(SubmissionResponse.model_validate(submission))


@router.post("", response_model=ApiResponse[SubmissionResponse], status_code=201)
def create_submission(
    request: SubmissionCreate,
    principal: Principal = Depends(require_athlete),
    db: Session = Depends(get_db),
):
    """Upload metadata for a new clip. It joins the unclaimed queue on commit."""
    submission = submission_store.create_submission(
        db,
        athlete_uid=principal.uid,
        media_ref=request.media_ref,
        skill_tag=request.skill_tag,
        athlete_context=request.athlete_context,
        athlete_goals=request.athlete_goals,
        specific_questions=request.specific_questions,
    )
    db.commit()
    return _submission(submission)


@router.get("/mine", response_model=ApiResponse[SubmissionPage])
def list_my_submissions(
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """The caller's own submissions, newest first."""
    page = submission_store.list_by_athlete(db, principal.uid, limit=limit, cursor=cursor)
    return ok(
        SubmissionPage(
            items=[SubmissionResponse.model_validate(s) for s in page.items],
            next_cursor=page.next_cursor,
            has_more=page.has_more,
        )
    )


@router.get("/{submission_id}", response_model=ApiResponse[SubmissionResponse])
def get_submission(
    submission_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _submission(submission_store.get_submission_for_viewer(db, submission_id, principal))


@router.patch("/{submission_id}", response_model=ApiResponse[SubmissionResponse])
def patch_submission(
    submission_id: UUID,
    request: SubmissionPatch,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Edit athlete-owned fields (media reference and context)."""
    submission = submission_store.update_submission(
        db, submission_id, request.model_dump(exclude_unset=True), principal
    )
    db.commit()
    return _submission(submission)


# =============================================================================
# Workflow transitions
# =============================================================================


@router.post("/{submission_id}/claim", response_model=ApiResponse[SubmissionResponse])
def claim_submission(
    submission_id: UUID,
    principal: Principal = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """
    Claim a pending submission.

    409 ALREADY_CLAIMED means another coach won; refresh the queue.
    """
    submission = review_workflow.claim_submission(db, submission_id, principal.uid)
    db.commit()
    return _submission(submission)


@router.post("/{submission_id}/release", response_model=ApiResponse[SubmissionResponse])
def release_claim(
    submission_id: UUID,
    principal: Principal = Depends(require_coach),
    db: Session = Depends(get_db),
):
    submission = review_workflow.release_claim(db, submission_id, principal.uid)
    db.commit()
    return _submission(submission)


@router.post("/{submission_id}/decline", response_model=ApiResponse[SubmissionResponse])
def decline_submission(
    submission_id: UUID,
    request: DeclineRequest,
    principal: Principal = Depends(require_coach_or_admin),
    db: Session = Depends(get_db),
):
    submission = review_workflow.decline_submission(db, submission_id, principal, request.reason)
    db.commit()
    return _submission(submission)


@router.put("/{submission_id}/review", response_model=ApiResponse[ReviewResponse])
def save_draft_review(
    submission_id: UUID,
    content: ReviewContent,
    principal: Principal = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Create or replace the draft review. Only the claiming coach may write it."""
    review = review_workflow.save_draft_review(db, submission_id, principal.uid, content)
    db.commit()
    return ok(ReviewResponse.model_validate(review))


@router.post("/{submission_id}/review/publish", response_model=ApiResponse[ReviewResponse])
def publish_review(
    submission_id: UUID,
    principal: Principal = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Publish the draft, complete the submission and notify the athlete, all or nothing."""
    review = review_workflow.publish_review(db, submission_id, principal.uid)
    db.commit()
    return ok(ReviewResponse.model_validate(review))


@router.get("/{submission_id}/review", response_model=ApiResponse[ReviewResponse])
def get_review(
    submission_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    review = review_workflow.get_review_for_submission(db, submission_id, principal)
    return ok(ReviewResponse.model_validate(review))
