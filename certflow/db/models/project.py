import uuid

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from certflow.common.enums import ApplicationType, ProjectStatus
from certflow.db.base import BaseModel, VersionedMixin


class Project(BaseModel, VersionedMixin):
    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(String(500), nullable=False)
    application_type: Mapped[ApplicationType] = mapped_column(
        String(10), nullable=False, default=ApplicationType.SLF
    )
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    city: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    project_lead_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True
    )
    admin_lead_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    status: Mapped[ProjectStatus] = mapped_column(
        String(30), nullable=False, default=ProjectStatus.DRAFT
    )
    # review state a rejection came from; decides where `rejected` returns to
    rejected_from: Mapped[str | None] = mapped_column(String(30), nullable=True)
    status_notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class ProjectTeamMember(BaseModel):
    __tablename__ = "project_team_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_team_member"),)

    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    role_in_project: Mapped[str] = mapped_column(String(30), nullable=False)
