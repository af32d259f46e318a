"""Workflow engine: validates and applies every status change.

``request_transition`` is the public entry point used by the API. It loads
the entity fresh, checks the caller can see it and hands over to ``apply``,
which the approval coordinator and inspection service also use directly.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.common.enums import (
    ADMIN_ROLES,
    DocumentStatus,
    EntityType,
    NotificationType,
    ProjectStatus,
    ReportStatus,
    ScheduleStatus,
    UserRole,
)
from certflow.common.exceptions import (
    BadRequestError,
    IllegalTransitionError,
    PermissionDeniedError,
    StaleStateError,
    UnauthorizedTransitionError,
)
from certflow.common.logging import get_logger
from certflow.config import settings
from certflow.core.notifications.schemas import NotificationEvent
from certflow.core.notifications.service import NotificationDispatcher
from certflow.core.store.repository import EntityStore
from certflow.core.workflow.schemas import TransitionResult, TransitionRule
from certflow.core.workflow.transitions import (
    TERMINAL_STATES,
    next_actor_roles,
    successors,
    validate_transition,
)
from certflow.db.models.document import Document
from certflow.db.models.project import Project
from certflow.db.models.report import Report
from certflow.db.models.schedule import Schedule
from certflow.db.models.user import User

logger = get_logger("workflow.service")

MODELS: dict[EntityType, type] = {
    EntityType.PROJECT: Project,
    EntityType.REPORT: Report,
    EntityType.DOCUMENT: Document,
    EntityType.SCHEDULE: Schedule,
}

_ENTITY_CATEGORY = {
    EntityType.PROJECT: NotificationType.PROJECT_UPDATE,
    EntityType.REPORT: NotificationType.PROJECT_UPDATE,
    EntityType.DOCUMENT: NotificationType.DOCUMENT_UPDATE,
    EntityType.SCHEDULE: NotificationType.INSPECTION_UPDATE,
}


def state_value(value: Any) -> str:
    return value.value if isinstance(value, enum.Enum) else value


def split_audience(roles: set[str] | list[str]) -> tuple[list[UserRole], list[UserRole]]:
    """Admin roles are notified globally, everyone else through the project."""
    global_roles: list[UserRole] = []
    project_roles: list[UserRole] = []
    for r in sorted(roles):
        role = UserRole(r)
        if role in ADMIN_ROLES:
            global_roles.append(role)
        else:
            project_roles.append(role)
    return global_roles, project_roles


def entity_label(entity_type: EntityType, entity: Any) -> str:
    name = getattr(entity, "name", None) or getattr(entity, "title", None)
    return f"{entity_type.value.capitalize()} '{name}'" if name else entity_type.value.capitalize()


class WorkflowEngine:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = EntityStore(db)
        self.notifications = NotificationDispatcher(db)

    # ---------- queries ----------

    async def load(self, entity_type: EntityType, entity_id: uuid.UUID, actor: User) -> Any:
        entity = await self.store.get_for_update(MODELS[entity_type], entity_id)
        await self.ensure_access(entity_type, entity, actor)
        return entity

    async def ensure_access(self, entity_type: EntityType, entity: Any, actor: User) -> None:
        if entity_type == EntityType.PROJECT:
            await self.store.ensure_project_access(entity, actor)
            return
        if entity.project_id is None:
            # unattached client submission
            if entity.uploaded_by != actor.id and UserRole(actor.role) not in ADMIN_ROLES:
                raise PermissionDeniedError("You do not have access to this document")
            return
        await self.store.get_project_for(entity.project_id, actor)

    async def ensure_project_open(
        self, entity_type: EntityType, project_id: uuid.UUID | None, current: str, target: str
    ) -> None:
        """Work hanging off a completed or cancelled project is frozen."""
        if project_id is None:
            return
        project = await self.store.get(Project, project_id)
        project_status = state_value(project.status)
        if project_status in TERMINAL_STATES[EntityType.PROJECT]:
            raise IllegalTransitionError(
                entity_type.value, current, target,
                f"project '{project.name}' is {project_status}",
            )

    def successors(self, entity_type: EntityType, entity: Any) -> list[str]:
        return successors(
            entity_type, state_value(entity.status), getattr(entity, "rejected_from", None)
        )

    def allowed_transitions(self, entity_type: EntityType, entity: Any, actor: User) -> list[str]:
        """Next states the caller could request right now (role and edge only)."""
        allowed = []
        for target in self.successors(entity_type, entity):
            try:
                validate_transition(
                    entity_type,
                    state_value(entity.status),
                    target,
                    actor.role,
                    {"notes": "-", "file_url": "-", "location": {}},
                    getattr(entity, "rejected_from", None),
                )
            except (IllegalTransitionError, UnauthorizedTransitionError):
                continue
            if entity_type == EntityType.SCHEDULE and target != ScheduleStatus.CANCELLED.value:
                if entity.assigned_to != actor.id:
                    continue
            allowed.append(target)
        return allowed

    # ---------- commands ----------

    async def request_transition(
        self,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        target: str,
        actor: User,
        payload: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        entity = await self.load(entity_type, entity_id, actor)
        return await self.apply(entity_type, entity, target, actor, payload, expected_version)

    async def apply(
        self,
        entity_type: EntityType,
        entity: Any,
        target: str,
        actor: User | None,
        payload: dict[str, Any] | None = None,
        expected_version: int | None = None,
        *,
        system: bool = False,
        via_chain: bool = False,
        notify: bool = True,
        extra_values: dict[str, Any] | None = None,
    ) -> TransitionResult:
        payload = payload or {}
        current = state_value(entity.status)
        target = state_value(target)

        if expected_version is not None and expected_version != entity.version:
            raise StaleStateError(entity_type.value, str(entity.id))
        if entity_type != EntityType.PROJECT and not system:
            await self.ensure_project_open(entity_type, entity.project_id, current, target)

        role = actor.role if actor else "system"
        rule = validate_transition(
            entity_type,
            current,
            target,
            role,
            payload,
            getattr(entity, "rejected_from", None),
            check_role=not system,
        )

        if rule.chain_controlled and not via_chain:
            if await self._coordinator().open_chain(entity_type, entity.id) is not None:
                raise IllegalTransitionError(
                    entity_type.value, current, target,
                    "decision must be recorded through the approval chain",
                )

        values = await self._side_effects(entity_type, entity, rule, actor, payload, system)
        values.update(extra_values or {})
        values["status"] = target

        version = expected_version if expected_version is not None else entity.version
        await self.store.compare_and_set(entity, version, values)

        diff: dict[str, Any] = {"from": current, "to": target}
        notes = payload.get("notes")
        if notes:
            diff["notes"] = notes
        extra = {k: v for k, v in payload.items() if k != "notes"}
        if extra:
            diff["payload"] = extra
        await self.store.add_audit(
            entity_type.value, entity.id, rule.action, actor, current, target, diff
        )

        if entity_type == EntityType.PROJECT and target == ProjectStatus.CANCELLED.value:
            await self._invalidate_children(entity, actor)

        logger.info(
            "%s %s: %s -> %s by %s (%s)",
            entity_type.value, entity.id, current, target,
            actor.id if actor else "system", rule.action,
        )

        chain = None
        if not via_chain:
            chain = await self._coordinator().open_default_chain(entity_type, entity, target, actor)

        if notify:
            audience = None
            if chain is not None:
                audience = {chain.steps[0]["role"]}
            await self._notify_transition(entity_type, entity, rule, actor, notes, audience)

        if (
            entity_type == EntityType.REPORT
            and target == ReportStatus.APPROVED.value
            and settings.AUTO_ADVANCE_ON_REPORTS_APPROVED
        ):
            await self._auto_advance_project(entity.project_id)

        return TransitionResult(
            entity_type=entity_type,
            entity_id=entity.id,
            from_state=current,
            to_state=target,
            action=rule.action,
            version=entity.version,
            chain_id=chain.id if chain is not None else None,
        )

    # ---------- internals ----------

    def _coordinator(self):
        from certflow.core.approvals.service import ApprovalCoordinator

        return ApprovalCoordinator(self.db, engine=self)

    async def _invalidate_children(self, project: Project, actor: User | None) -> None:
        """Cancel open schedules and reports of a cancelled project and close its reviews.

        Nothing is deleted; every child keeps its row and gets its own audit entry.
        """
        coordinator = self._coordinator()
        await coordinator.cancel_open_chains(EntityType.PROJECT, project.id, actor)

        cancelled = 0
        for entity_type, model in ((EntityType.SCHEDULE, Schedule), (EntityType.REPORT, Report)):
            for child in await self.store.list_by(model, project_id=project.id):
                if "cancelled" not in self.successors(entity_type, child):
                    continue
                await coordinator.cancel_open_chains(entity_type, child.id, actor)
                await self.apply(
                    entity_type, child, "cancelled", actor, {"notes": "Project cancelled"},
                    system=True, via_chain=True, notify=False,
                )
                cancelled += 1

        for document in await self.store.list_by(Document, project_id=project.id):
            await coordinator.cancel_open_chains(EntityType.DOCUMENT, document.id, actor)

        logger.info("Project %s cancelled; %d schedule(s)/report(s) invalidated", project.id, cancelled)

    async def _side_effects(
        self,
        entity_type: EntityType,
        entity: Any,
        rule: TransitionRule,
        actor: User | None,
        payload: dict[str, Any],
        system: bool,
    ) -> dict[str, Any]:
        notes = payload.get("notes")
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {}

        if entity_type == EntityType.PROJECT:
            if rule.target == ProjectStatus.REJECTED.value:
                values["rejected_from"] = rule.source
                values["status_notes"] = notes
            elif rule.source == ProjectStatus.REJECTED.value:
                values["rejected_from"] = None
                values["status_notes"] = notes
            elif notes:
                values["status_notes"] = notes

        elif entity_type == EntityType.REPORT:
            if rule.target in (ReportStatus.APPROVED.value, ReportStatus.REJECTED.value):
                values["reviewed_by"] = actor.id if actor else None
                values["reviewed_at"] = now
                # the three review fields are written together; a bare approval stores ""
                values["review_notes"] = notes or ""

        elif entity_type == EntityType.DOCUMENT:
            if rule.source == rule.target == DocumentStatus.UPLOADED.value:
                await self._ensure_review_not_started(entity)
            if rule.target == DocumentStatus.UPLOADED.value:
                file_url = payload["file_url"]
                values["file_url"] = file_url
                if "content_type" in payload:
                    values["content_type"] = payload["content_type"]
                if "size_bytes" in payload:
                    values["size_bytes"] = payload["size_bytes"]
                if entity.file_url is None:
                    values["revision"] = max(entity.revision, 1)
                elif entity.file_url != file_url:
                    values["revision"] = entity.revision + 1
            elif rule.target == DocumentStatus.REJECTED.value:
                values["revision_notes"] = notes

        elif entity_type == EntityType.SCHEDULE:
            if rule.target in (ScheduleStatus.IN_PROGRESS.value, ScheduleStatus.COMPLETED.value):
                if not system and (actor is None or entity.assigned_to != actor.id):
                    raise UnauthorizedTransitionError(
                        f"Only the assigned user may {rule.action} this {state_value(entity.schedule_type)}"
                    )
            if rule.target == ScheduleStatus.IN_PROGRESS.value:
                values["location"] = self._parse_location(payload["location"])
                values["started_at"] = now
                await self._ensure_single_active(entity)
            elif rule.target == ScheduleStatus.COMPLETED.value:
                values["ended_at"] = now

        return values

    @staticmethod
    def _parse_location(raw: Any) -> dict[str, Any]:
        from certflow.core.inspections.schemas import location_adapter

        try:
            location = location_adapter.validate_python(raw)
        except ValidationError as e:
            raise BadRequestError(f"Invalid location capture: {e.errors()[0]['msg']}") from e
        return location.model_dump(mode="json")

    async def _ensure_review_not_started(self, document: Document) -> None:
        chain = await self._coordinator().open_chain(EntityType.DOCUMENT, document.id)
        if chain is not None and chain.current_step > 0:
            raise IllegalTransitionError(
                "document", state_value(document.status), DocumentStatus.UPLOADED.value,
                "a reviewer has already decided on this upload",
            )

    async def _ensure_single_active(self, schedule: Schedule) -> None:
        if schedule.assigned_to is None:
            return
        result = await self.db.execute(
            select(func.count()).select_from(Schedule).where(
                Schedule.assigned_to == schedule.assigned_to,
                Schedule.status == ScheduleStatus.IN_PROGRESS.value,
                Schedule.schedule_type == state_value(schedule.schedule_type),
                Schedule.id != schedule.id,
                Schedule.is_deleted.is_(False),
            )
        )
        if (result.scalar() or 0) > 0:
            raise IllegalTransitionError(
                "schedule", state_value(schedule.status), ScheduleStatus.IN_PROGRESS.value,
                "the assignee already has an activity of this type in progress",
            )

    def _stakeholders(self, entity_type: EntityType, entity: Any) -> list[uuid.UUID]:
        if entity_type == EntityType.PROJECT:
            ids = [entity.client_id, entity.project_lead_id]
        elif entity_type == EntityType.REPORT:
            ids = [entity.drafter_id]
        elif entity_type == EntityType.DOCUMENT:
            ids = [entity.uploaded_by]
        else:
            ids = [entity.assigned_to, entity.created_by]
        return [i for i in ids if i is not None]

    async def _notify_transition(
        self,
        entity_type: EntityType,
        entity: Any,
        rule: TransitionRule,
        actor: User | None,
        notes: str | None,
        audience: set[str] | None = None,
    ) -> None:
        if audience is None:
            # schedules only concern their assignee and creator
            audience = set() if entity_type == EntityType.SCHEDULE else next_actor_roles(
                entity_type, rule.target, getattr(entity, "rejected_from", None)
            )
        global_roles, project_roles = split_audience(audience)

        if rule.target == "rejected":
            category = NotificationType.REVISION_REQUESTED
        elif rule.target in ("approved", ProjectStatus.APPROVED_BY_ADMIN_LEAD.value):
            category = NotificationType.APPROVAL_GRANTED
        elif audience and rule.target in (
            ReportStatus.UNDER_REVIEW.value,
            DocumentStatus.UPLOADED.value,
            ProjectStatus.HEAD_CONSULTANT_REVIEW.value,
        ):
            category = NotificationType.APPROVAL_REQUIRED
        else:
            category = _ENTITY_CATEGORY[entity_type]

        label = entity_label(entity_type, entity)
        body = f"{label} moved from {rule.source} to {rule.target}."
        if notes:
            body += f" Notes: {notes}"

        project_id = entity.id if entity_type == EntityType.PROJECT else entity.project_id
        await self.notifications.notify(NotificationEvent(
            category=category,
            title=f"{label}: {rule.target.replace('_', ' ')}",
            body=body,
            sender_id=actor.id if actor else None,
            project_id=project_id,
            related_type=entity_type.value,
            related_id=entity.id,
            user_ids=self._stakeholders(entity_type, entity),
            roles=global_roles,
            project_roles=project_roles if project_id else [],
            metadata={"from": rule.source, "to": rule.target, "action": rule.action},
        ))

    async def _auto_advance_project(self, project_id: uuid.UUID) -> None:
        project = await self.store.get_for_update(Project, project_id)
        if state_value(project.status) != ProjectStatus.INSPECTION_COMPLETED.value:
            return

        reports = await self.store.list_by(Report, project_id=project_id)
        active = [r for r in reports if state_value(r.status) != ReportStatus.CANCELLED.value]
        if not active or any(state_value(r.status) != ReportStatus.APPROVED.value for r in active):
            return

        logger.info("All reports approved for project %s; advancing to report_submitted", project_id)
        await self.apply(
            EntityType.PROJECT, project, ProjectStatus.REPORT_SUBMITTED.value, None, system=True
        )
