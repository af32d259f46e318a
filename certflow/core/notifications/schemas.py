import uuid
from typing import Any

from pydantic import BaseModel, Field

from certflow.common.enums import NotificationType, UserRole


class NotificationEvent(BaseModel):
    """Who should hear about something and what to tell them.

    Recipients are the union of ``user_ids``, every active user holding one of
    ``roles`` and the people attached to ``project_id`` through one of
    ``project_roles`` (lead, client or team membership).
    """

    category: NotificationType
    title: str
    body: str
    sender_id: uuid.UUID | None = None
    project_id: uuid.UUID | None = None
    related_type: str | None = None
    related_id: uuid.UUID | None = None
    user_ids: list[uuid.UUID] = Field(default_factory=list)
    roles: list[UserRole] = Field(default_factory=list)
    project_roles: list[UserRole] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
