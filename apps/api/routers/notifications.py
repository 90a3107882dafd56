"""
Notifications API Router

The caller's own notification list, per-type preferences and a live feed.
Only the recipient can mark read.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket
from sqlalchemy.orm import Session

from core.auth import Principal, get_current_principal
from core.database import get_db
from routers.queues import serve_live
from schemas import (
    ApiResponse,
    NotificationPage,
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    NotificationResponse,
    UnreadCountResponse,
    ok,
)
from services import notifications as notification_service

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


@router.get("", response_model=ApiResponse[NotificationPage])
def list_notifications(
    unread_only: bool = Query(False),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    page = notification_service.list_notifications(
        db, principal.uid, unread_only=unread_only, limit=limit, cursor=cursor
    )
    return ok(
        NotificationPage(
            items=[NotificationResponse.model_validate(n) for n in page.items],
            next_cursor=page.next_cursor,
            has_more=page.has_more,
        )
    )


@router.get("/unread-count", response_model=ApiResponse[UnreadCountResponse])
def unread_count(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return ok(UnreadCountResponse(unread=notification_service.unread_count(db, principal.uid)))


@router.get("/preferences", response_model=ApiResponse[NotificationPreferencesResponse])
def get_preferences(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return ok(notification_service.get_preferences(db, principal.uid))


@router.put("/preferences", response_model=ApiResponse[NotificationPreferencesResponse])
def update_preferences(
    request: NotificationPreferencesUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    preferences = notification_service.update_preferences(
        db,
        principal.uid,
        email_enabled=request.email_enabled,
        push_enabled=request.push_enabled,
        types=request.types,
    )
    db.commit()
    return ok(preferences)


@router.post("/read-all")
def mark_all_read(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    updated = notification_service.mark_all_read(db, principal.uid)
    db.commit()
    return ok({"updated": updated})


@router.post("/{notification_id}/read", response_model=ApiResponse[NotificationResponse])
def mark_read(
    notification_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    notification = notification_service.mark_read(db, notification_id, principal)
    db.commit()
    return ok(NotificationResponse.model_validate(notification))


@router.websocket("/live")
async def notifications_live(
    ws: WebSocket,
    token: Optional[str] = Query(None),
    unread_only: bool = Query(False),
):
    """The caller's notifications, newest first, with the unread count on every message."""
    await serve_live(
        ws,
        token,
        lambda db, principal: notification_service.notification_feed(db, principal.uid, unread_only),
        summarize=lambda feed: {"unread": notification_service.feed_unread_count(feed)},
    )
