import uuid

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from certflow.common.enums import ChecklistResponseStatus
from certflow.db.base import BaseModel


class ChecklistResponse(BaseModel):
    __tablename__ = "checklist_responses"
    __table_args__ = (
        UniqueConstraint(
            "schedule_id", "item_id", "responder_id", name="uq_checklist_response_item"
        ),
    )

    schedule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("schedules.id"), nullable=False, index=True
    )
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    responder_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    response: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    status: Mapped[ChecklistResponseStatus] = mapped_column(
        String(20), nullable=False, default=ChecklistResponseStatus.DRAFT
    )
