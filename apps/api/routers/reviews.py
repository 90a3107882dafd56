"""
Reviews API Router

Athlete feedback on a published review, and the comment threads under it.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import Principal, get_current_principal, require_athlete
from core.database import get_db
from schemas import (
    ApiResponse,
    AthleteFeedbackRequest,
    CommentCreate,
    CommentResponse,
    CommentThread,
    ReviewResponse,
    ok,
)
from services import comments as comment_service
from services import review_workflow

router = APIRouter(prefix="/v1/reviews", tags=["reviews"])


@router.post("/{review_id}/feedback", response_model=ApiResponse[ReviewResponse])
def rate_review(
    review_id: UUID,
    request: AthleteFeedbackRequest,
    principal: Principal = Depends(require_athlete),
    db: Session = Depends(get_db),
):
    """Athlete rates how useful the review was (1-5)."""
    review = review_workflow.submit_athlete_feedback(
        db, review_id, principal.uid, request.score, request.feedback
    )
    db.commit()
    return ok(ReviewResponse.model_validate(review))


@router.post("/{review_id}/comments", response_model=ApiResponse[CommentResponse], status_code=201)
def add_comment(
    review_id: UUID,
    request: CommentCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    comment = comment_service.add_comment(
        db,
        review_id,
        principal,
        request.body,
        parent_comment_id=request.parent_comment_id,
        media_timestamp_s=request.media_timestamp_s,
    )
    db.commit()
    return ok(CommentResponse.model_validate(comment))


@router.get("/{review_id}/comments", response_model=ApiResponse[List[CommentThread]])
def list_comments(
    review_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    threads = comment_service.list_comments(db, review_id, principal)
    return ok(
        [
            CommentThread(
                comment=CommentResponse.model_validate(comment),
                replies=[CommentResponse.model_validate(r) for r in replies],
            )
            for comment, replies in threads
        ]
    )
