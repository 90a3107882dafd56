"""
Coach API Router

A coach's history of claimed work and their review statistics.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.auth import Principal, require_coach
from core.database import get_db
from schemas import ApiResponse, CoachStatsResponse, SubmissionPage, SubmissionResponse, ok
from services import review_stats, submission_store

router = APIRouter(prefix="/v1/coach", tags=["coach"])


@router.get("/submissions", response_model=ApiResponse[SubmissionPage])
def list_coach_submissions(
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    principal: Principal = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Everything the coach has claimed, any status, newest first."""
    page = submission_store.list_by_coach(db, principal.uid, limit=limit, cursor=cursor, status=status)
    return ok(
        SubmissionPage(
            items=[SubmissionResponse.model_validate(s) for s in page.items],
            next_cursor=page.next_cursor,
            has_more=page.has_more,
        )
    )


@router.get("/stats", response_model=ApiResponse[CoachStatsResponse])
def get_coach_stats(
    principal: Principal = Depends(require_coach),
    db: Session = Depends(get_db),
):
    return ok(CoachStatsResponse(**review_stats.coach_review_stats(db, principal.uid)))
