"""Assignment manager: project teams and who does which schedule or report."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.common.enums import (
    ADMIN_ROLES,
    NotificationType,
    ReportStatus,
    ScheduleStatus,
    ScheduleType,
    UserRole,
)
from certflow.common.exceptions import (
    BadRequestError,
    IllegalTransitionError,
    NotFoundError,
    NotTeamMemberError,
    PermissionDeniedError,
    RoleMismatchError,
    UnauthorizedTransitionError,
)
from certflow.common.logging import get_logger
from certflow.core.notifications.schemas import NotificationEvent
from certflow.core.notifications.service import NotificationDispatcher
from certflow.core.store.repository import EntityStore
from certflow.core.workflow.service import state_value
from certflow.db.models.project import Project, ProjectTeamMember
from certflow.db.models.report import Report
from certflow.db.models.schedule import Schedule
from certflow.db.models.user import User

logger = get_logger("assignments.service")

ASSIGNER_ROLES = {UserRole.PROJECT_LEAD, UserRole.ADMIN_LEAD, UserRole.ADMIN_TEAM}

# schedule types not listed here accept any team member
REQUIRED_ROLE_BY_TYPE = {
    ScheduleType.INSPECTION.value: UserRole.INSPECTOR,
    ScheduleType.REPORT_DRAFTING.value: UserRole.DRAFTER,
}


class AssignmentManager:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = EntityStore(db)
        self.notifications = NotificationDispatcher(db)

    # ---------- checks ----------

    def _ensure_assigner(self, actor: User) -> None:
        if UserRole(actor.role) not in ASSIGNER_ROLES:
            raise UnauthorizedTransitionError(
                f"Role '{actor.role}' may not assign work; requires one of: "
                f"{', '.join(sorted(r.value for r in ASSIGNER_ROLES))}"
            )

    async def _ensure_team_manager(self, project: Project, actor: User) -> None:
        role = UserRole(actor.role)
        if role in ADMIN_ROLES:
            return
        if role == UserRole.PROJECT_LEAD and project.project_lead_id == actor.id:
            return
        raise PermissionDeniedError("Only the project lead or admins can manage the project team")

    async def _load_assignee(self, user_id: uuid.UUID, required: UserRole | None, project_id: uuid.UUID) -> User:
        assignee = await self.store.get(User, user_id)
        if required is not None and assignee.role != required.value:
            raise RoleMismatchError(required.value, assignee.role)
        if not await self.store.is_team_member(project_id, assignee.id):
            raise NotTeamMemberError(str(assignee.id), str(project_id))
        return assignee

    # ---------- schedules ----------

    async def assign(self, schedule_id: uuid.UUID, user_id: uuid.UUID, actor: User) -> Schedule:
        self._ensure_assigner(actor)
        schedule = await self.store.get_for_update(Schedule, schedule_id)
        await self.store.get_project_for(schedule.project_id, actor)

        required = REQUIRED_ROLE_BY_TYPE.get(state_value(schedule.schedule_type))
        assignee = await self._load_assignee(user_id, required, schedule.project_id)

        status = state_value(schedule.status)
        if status != ScheduleStatus.SCHEDULED.value:
            raise IllegalTransitionError(
                "schedule", status, status, "assignment can only change while the schedule is scheduled"
            )

        if schedule.assigned_to == assignee.id:
            logger.info("Schedule %s already assigned to %s; nothing to do", schedule.id, assignee.id)
            return schedule

        previous = schedule.assigned_to
        await self.store.compare_and_set(schedule, schedule.version, {"assigned_to": assignee.id})
        await self.store.add_audit(
            "schedule", schedule.id, "assign", actor,
            status, status, {"from_user": str(previous) if previous else None, "to_user": str(assignee.id)},
        )
        logger.info("Assigned schedule %s to %s (%s)", schedule.id, assignee.id, assignee.role)

        await self.notifications.notify(NotificationEvent(
            category=NotificationType.SCHEDULE_ASSIGNED,
            title=f"New assignment: {schedule.title}",
            body=(
                f"You have been assigned to '{schedule.title}' on "
                f"{schedule.scheduled_date:%Y-%m-%d %H:%M}."
            ),
            sender_id=actor.id,
            project_id=schedule.project_id,
            related_type="schedule",
            related_id=schedule.id,
            user_ids=[assignee.id],
        ))
        return schedule

    # ---------- reports ----------

    async def assign_report_drafter(self, report_id: uuid.UUID, user_id: uuid.UUID, actor: User) -> Report:
        self._ensure_assigner(actor)
        report = await self.store.get_for_update(Report, report_id)
        await self.store.get_project_for(report.project_id, actor)

        assignee = await self._load_assignee(user_id, UserRole.DRAFTER, report.project_id)

        status = state_value(report.status)
        if status not in (ReportStatus.DRAFT.value, ReportStatus.REJECTED.value):
            raise IllegalTransitionError(
                "report", status, status, "a drafter can only be assigned while the report is draft or rejected"
            )

        if report.drafter_id == assignee.id:
            return report

        await self.store.compare_and_set(report, report.version, {"drafter_id": assignee.id})
        await self.store.add_audit(
            "report", report.id, "assign_drafter", actor, status, status, {"to_user": str(assignee.id)}
        )
        logger.info("Assigned report %s to drafter %s", report.id, assignee.id)

        await self.notifications.notify(NotificationEvent(
            category=NotificationType.REPORT_ASSIGNED,
            title=f"Report assigned: {report.title}",
            body=f"You are now drafting '{report.title}'.",
            sender_id=actor.id,
            project_id=report.project_id,
            related_type="report",
            related_id=report.id,
            user_ids=[assignee.id],
        ))
        return report

    # ---------- team ----------

    async def list_members(self, project_id: uuid.UUID, actor: User) -> list[tuple[ProjectTeamMember, User]]:
        await self.store.get_project_for(project_id, actor)
        result = await self.db.execute(
            select(ProjectTeamMember, User)
            .join(User, User.id == ProjectTeamMember.user_id)
            .where(
                ProjectTeamMember.project_id == project_id,
                ProjectTeamMember.is_deleted.is_(False),
            )
            .order_by(ProjectTeamMember.created_at)
        )
        return [(member, user) for member, user in result.all()]

    async def add_member(
        self, project_id: uuid.UUID, user_id: uuid.UUID, actor: User, role_in_project: str | None = None
    ) -> ProjectTeamMember:
        project = await self.store.get_project_for(project_id, actor)
        await self._ensure_team_manager(project, actor)
        user = await self.store.get(User, user_id)
        if not user.is_active:
            raise BadRequestError("Cannot add an inactive user to a project team")

        result = await self.db.execute(
            select(ProjectTeamMember).where(
                ProjectTeamMember.project_id == project_id,
                ProjectTeamMember.user_id == user_id,
            )
        )
        member = result.scalar_one_or_none()
        if member is not None and not member.is_deleted:
            return member

        if member is not None:
            # re-adding someone who was removed earlier
            member.is_deleted = False
            member.deleted_at = None
            member.role_in_project = role_in_project or user.role
        else:
            member = ProjectTeamMember(
                project_id=project_id,
                user_id=user_id,
                role_in_project=role_in_project or user.role,
            )
            self.store.add(member)
        await self.store.flush()
        await self.store.add_audit(
            "project", project_id, "team_member_added", actor,
            diff={"user_id": str(user_id), "role_in_project": member.role_in_project},
        )
        logger.info("Added %s to project %s team as %s", user_id, project_id, member.role_in_project)

        await self.notifications.notify(NotificationEvent(
            category=NotificationType.PROJECT_UPDATE,
            title=f"Added to project {project.name}",
            body=f"You have joined the team for '{project.name}' as {member.role_in_project.replace('_', ' ')}.",
            sender_id=actor.id,
            project_id=project_id,
            related_type="project",
            related_id=project_id,
            user_ids=[user_id],
        ))
        return member

    async def remove_member(self, project_id: uuid.UUID, user_id: uuid.UUID, actor: User) -> None:
        project = await self.store.get_project_for(project_id, actor)
        await self._ensure_team_manager(project, actor)

        result = await self.db.execute(
            select(ProjectTeamMember).where(
                ProjectTeamMember.project_id == project_id,
                ProjectTeamMember.user_id == user_id,
                ProjectTeamMember.is_deleted.is_(False),
            )
        )
        member = result.scalar_one_or_none()
        if member is None:
            raise NotFoundError("Team member", str(user_id))

        member.is_deleted = True
        member.deleted_at = datetime.now(timezone.utc)
        await self.store.flush()
        await self.store.add_audit(
            "project", project_id, "team_member_removed", actor, diff={"user_id": str(user_id)}
        )
        logger.info("Removed %s from project %s team", user_id, project_id)
