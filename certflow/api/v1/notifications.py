"""In-app notifications and delivery preferences."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.api.deps import get_current_user, get_db
from certflow.common.enums import NotificationType
from certflow.common.exceptions import NotFoundError
from certflow.common.pagination import PaginatedResponse, PaginationParams, paginate
from certflow.db.models.notification import Notification
from certflow.db.models.user import User

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ---------- Schemas ----------

class NotificationResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID | None
    sender_id: uuid.UUID | None
    channel: str
    category: str
    title: str
    body: str
    related_type: str | None
    related_id: uuid.UUID | None
    is_read: bool
    created_at: str


class NotificationListResponse(PaginatedResponse[NotificationResponse]):
    unread_count: int


class NotificationPreferences(BaseModel):
    email_enabled: bool = True
    categories: dict[str, bool] = Field(
        default_factory=lambda: {c.value: True for c in NotificationType}
    )


# ---------- Endpoints ----------

def _inbox(user: User, project_id: uuid.UUID | None = None) -> list:
    conditions = [Notification.user_id == user.id, Notification.is_deleted.is_(False)]
    if project_id:
        conditions.append(Notification.project_id == project_id)
    return conditions


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    params: PaginationParams = Depends(),
    unread_only: bool = False,
    category: NotificationType | None = None,
    project_id: uuid.UUID | None = None,
):
    inbox = _inbox(current_user, project_id)
    query = select(Notification).where(*inbox)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    if category:
        query = query.where(Notification.category == category.value)

    items, total = await paginate(db, query, params, Notification)
    unread_count = await db.scalar(
        select(func.count(Notification.id)).where(*inbox, Notification.is_read.is_(False))
    )

    return NotificationListResponse.build(
        [_notif_response(n) for n in items], total, params, unread_count=unread_count or 0
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notif = await db.scalar(
        select(Notification).where(Notification.id == notification_id, *_inbox(current_user))
    )
    if not notif:
        raise NotFoundError("Notification", str(notification_id))

    notif.is_read = True
    await db.flush()
    await db.refresh(notif)
    return _notif_response(notif)


@router.post("/read-all")
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    project_id: uuid.UUID | None = None,
):
    """Mark the inbox read, optionally only what concerns one project."""
    result = await db.execute(
        update(Notification)
        .where(*_inbox(current_user, project_id), Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    return {"updated": result.rowcount}


@router.get("/preferences", response_model=NotificationPreferences)
async def get_preferences(current_user: User = Depends(get_current_user)):
    prefs = current_user.preferences or {}
    notif_prefs = prefs.get("notifications", {})
    return NotificationPreferences(**notif_prefs) if notif_prefs else NotificationPreferences()


@router.put("/preferences", response_model=NotificationPreferences)
async def update_preferences(
    body: NotificationPreferences,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    prefs = dict(current_user.preferences or {})
    prefs["notifications"] = body.model_dump()
    current_user.preferences = prefs
    await db.flush()
    return body


def _notif_response(n: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=n.id, project_id=n.project_id, sender_id=n.sender_id, channel=n.channel,
        category=n.category, title=n.title, body=n.body,
        related_type=n.related_type, related_id=n.related_id,
        is_read=n.is_read, created_at=n.created_at.isoformat(),
    )
