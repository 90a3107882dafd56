"""
Queue API Router

Snapshots over HTTP, live views over WebSocket.

Live protocol (server → client, JSON):
    {"type": "snapshot", "documents": [...]}
    {"type": "changes", "changes": [{"type", "document", "old_index", "new_index"}, ...]}
    {"type": "heartbeat"}
Clients may send {"type": "ping"} and get {"type": "pong"}. Views that
carry a summary (the notification feed's unread count) add it to the
snapshot and changes messages.

WebSocket clients pass the bearer token as the `token` query parameter.
The subscription is closed on every exit path.
"""
import asyncio
import json
import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from core.auth import Principal, get_current_principal, principal_from_token, require_coach
from core.database import SessionLocal, get_db
from core.exceptions import APIException
from schemas import ApiResponse, SubmissionResponse, ok
from services.queue_projection import QueueSubscription, athlete_queue, my_queue, unclaimed_queue

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/queues", tags=["queues"])

HEARTBEAT_SECONDS = 15


@router.get("/unclaimed", response_model=ApiResponse[List[SubmissionResponse]])
def get_unclaimed_queue(
    skill_tag: Optional[str] = Query(None),
    principal: Principal = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Pending submissions, oldest first."""
    with unclaimed_queue(db, skill_tag) as queue:
        return ok(queue.snapshot)


@router.get("/mine", response_model=ApiResponse[List[SubmissionResponse]])
def get_my_queue(
    principal: Principal = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Submissions the calling coach currently holds."""
    with my_queue(db, principal.uid) as queue:
        return ok(queue.snapshot)


# =============================================================================
# Live views
# =============================================================================


def _open(factory: Callable[[Session], QueueSubscription]) -> QueueSubscription:
    db = SessionLocal()
    try:
        return factory(db)
    finally:
        db.close()


def _no_summary(subscription: QueueSubscription) -> dict:
    return {}


async def _pump(ws: WebSocket, subscription: QueueSubscription, summarize) -> None:
    while not subscription.closed:
        changes = await run_in_threadpool(subscription.wait, HEARTBEAT_SECONDS)
        if subscription.closed:
            return
        if changes:
            await ws.send_json(
                {"type": "changes", "changes": [c.to_dict() for c in changes], **summarize(subscription)}
            )
        else:
            await ws.send_json({"type": "heartbeat"})


async def serve_live(
    ws: WebSocket,
    token: Optional[str],
    factory: Callable[[Session, Principal], QueueSubscription],
    coach_only: bool = False,
    summarize: Callable[[QueueSubscription], dict] = _no_summary,
) -> None:
    """Run one live view over a WebSocket until the client goes away."""
    try:
        principal = principal_from_token(token)
    except APIException:
        await ws.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if coach_only and not principal.is_coach:
        await ws.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await ws.accept()
    try:
        subscription = await run_in_threadpool(_open, lambda db: factory(db, principal))
    except APIException as e:
        await ws.send_json({"success": False, "error": e.detail, "error_code": e.error_code})
        await ws.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    with subscription:
        await ws.send_json({"type": "snapshot", "documents": subscription.snapshot, **summarize(subscription)})
        pump = asyncio.create_task(_pump(ws, subscription, summarize))
        try:
            while True:
                data = await ws.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if msg.get("type") == "ping":
                    await ws.send_json({"type": "pong"})
        except WebSocketDisconnect:
            pass
        finally:
            subscription.close()
            try:
                await pump
            except Exception as e:
                logger.warning(f"Queue stream for {subscription.name} ended with error: {e}")


@router.websocket("/unclaimed/live")
async def unclaimed_queue_live(
    ws: WebSocket,
    token: Optional[str] = Query(None),
    skill_tag: Optional[str] = Query(None),
):
    await serve_live(ws, token, lambda db, principal: unclaimed_queue(db, skill_tag), coach_only=True)


@router.websocket("/mine/live")
async def my_queue_live(ws: WebSocket, token: Optional[str] = Query(None)):
    await serve_live(ws, token, lambda db, principal: my_queue(db, principal.uid), coach_only=True)


@router.websocket("/submitted/live")
async def athlete_queue_live(ws: WebSocket, token: Optional[str] = Query(None)):
    """The caller's own submissions, newest first, with status changes as they happen."""
    await serve_live(ws, token, lambda db, principal: athlete_queue(db, principal.uid))
