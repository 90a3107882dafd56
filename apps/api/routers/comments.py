"""
Comments API Router

Edit and delete. Creation and listing hang off the review (routers/reviews.py).
"""
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import Principal, get_current_principal
from core.database import get_db
from schemas import ApiResponse, CommentResponse, CommentUpdate, ok
from services import comments as comment_service

router = APIRouter(prefix="/v1/comments", tags=["comments"])


@router.patch("/{comment_id}", response_model=ApiResponse[CommentResponse])
def edit_comment(
    comment_id: UUID,
    request: CommentUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    comment = comment_service.edit_comment(db, comment_id, principal, request.body)
    db.commit()
    return ok(CommentResponse.model_validate(comment))


@router.delete("/{comment_id}")
def delete_comment(
    comment_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Author, or an admin moderating. Replies go with the comment."""
    removed = comment_service.delete_comment(db, comment_id, principal)
    db.commit()
    return ok({"deleted": removed})
