from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..auth import get_current_caller
from ..dependencies import get_document_store
from ..document_store import DocumentStore
from ..domain.scheduling.schemas import Caller
from ..services.notification_service import NotificationDispatcher

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    read: bool = False
    appointmentId: Optional[str] = None
    actionUrl: Optional[str] = None
    metadata: dict[str, Any] = {}
    createdAt: Optional[str] = None


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unreadCount: int


class MarkAllReadResponse(BaseModel):
    updated: int


def get_dispatcher(store: DocumentStore = Depends(get_document_store)) -> NotificationDispatcher:
    return NotificationDispatcher(store)


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    caller: Caller = Depends(get_current_caller),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Newest first"""
    notifications = dispatcher.list_for_user(caller.uid, unread_only=unread_only, limit=limit)
    unread = len(dispatcher.list_for_user(caller.uid, unread_only=True, limit=1000))
    return NotificationListResponse(
        notifications=[NotificationResponse(**n) for n in notifications],
        unreadCount=unread,
    )


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    caller: Caller = Depends(get_current_caller),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return MarkAllReadResponse(updated=dispatcher.mark_all_read(caller.uid))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    caller: Caller = Depends(get_current_caller),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return NotificationResponse(**dispatcher.mark_read(caller.uid, notification_id))
