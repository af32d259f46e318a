import uuid

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from certflow.common.enums import ChainStatus
from certflow.db.base import BaseModel


class ApprovalChain(BaseModel):
    __tablename__ = "approval_chains"

    entity_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    steps: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # [{"role", "advance_to"}]
    current_step: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[ChainStatus] = mapped_column(
        String(20), nullable=False, default=ChainStatus.IN_PROGRESS
    )
    submitted_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )


class ApprovalDecision(BaseModel):
    """Append-only record of one decision on one chain step."""

    __tablename__ = "approval_decisions"

    chain_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("approval_chains.id"), nullable=False, index=True
    )
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    decided_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
