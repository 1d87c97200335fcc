"""
Inbound events from the browser surfaces: messages, fired alarms and
notification responses, plus the notification outbox.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Path, Request

from closure.api.models import (
    AlarmResponse,
    MessageRequest,
    NotificationResponse,
    OutboxItem,
    OutboxResponse,
)
from closure.observability.logging import get_logger
from closure.scheduler.notifications import OutboxNotifier

router = APIRouter(prefix="/api", tags=["events"])
logger = get_logger(__name__)


def _orchestrator(request: Request):
    return request.app.state.orchestrator


@router.post("/messages")
async def post_message(body: MessageRequest, request: Request) -> dict[str, Any]:
    return await _orchestrator(request).handle_message(body.to_message())


@router.post("/alarms/{name}", response_model=AlarmResponse)
async def fire_alarm(
    request: Request, name: str = Path(min_length=1, max_length=128)
) -> AlarmResponse:
    await _orchestrator(request).handle_alarm(name)
    return AlarmResponse(name=name)


@router.post(
    "/notifications/{notification_id}/buttons/{index}", response_model=NotificationResponse
)
async def notification_button(
    request: Request,
    notification_id: str = Path(min_length=1, max_length=128),
    index: int = Path(ge=0, le=1),
) -> NotificationResponse:
    handled = await _orchestrator(request).handle_notification_button(notification_id, index)
    return NotificationResponse(notification_id=notification_id, handled=handled)


@router.post("/notifications/{notification_id}/closed", response_model=NotificationResponse)
async def notification_closed(
    request: Request, notification_id: str = Path(min_length=1, max_length=128)
) -> NotificationResponse:
    handled = await _orchestrator(request).handle_notification_closed(notification_id)
    return NotificationResponse(notification_id=notification_id, handled=handled)


@router.get("/outbox", response_model=OutboxResponse)
async def drain_outbox(request: Request) -> OutboxResponse:
    """Hand queued notifications to the browser surface (outbox notifier only)."""
    notifier = _orchestrator(request).notifier
    if not isinstance(notifier, OutboxNotifier):
        raise HTTPException(status_code=404, detail="No outbox configured")
    items = [
        OutboxItem(
            notification_id=n.notification_id,
            title=n.title,
            message=n.message,
            buttons=n.buttons,
        )
        for n in notifier.drain()
    ]
    return OutboxResponse(notifications=items, badge_text=notifier.badge_text)
