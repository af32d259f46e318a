"""Entity store: the only writer of workflow entities.

Wraps an ``AsyncSession`` with scoped lookups, optimistic compare-and-set
writes and the atomic checklist upsert. Connectivity failures surface as
``StorageUnavailableError``; reads are retried a bounded number of times.
"""

from __future__ import annotations

import uuid
from typing import Any, TypeVar

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.common.enums import ADMIN_ROLES, UserRole
from certflow.common.exceptions import (
    BadRequestError,
    NotFoundError,
    PermissionDeniedError,
    StaleStateError,
    StorageUnavailableError,
)
from certflow.common.logging import get_logger
from certflow.config import settings
from certflow.db.base import BaseModel
from certflow.db.models.audit import AuditLog
from certflow.db.models.checklist import ChecklistResponse
from certflow.db.models.project import Project, ProjectTeamMember
from certflow.db.models.user import User

logger = get_logger("store")

M = TypeVar("M", bound=BaseModel)


def _is_connectivity_error(exc: Exception) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


class EntityStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ---------- low level ----------

    async def _execute(self, stmt: Any, *, retry: bool = False):
        attempts = max(1, settings.STORAGE_RETRY_ATTEMPTS) if retry else 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await self.db.execute(stmt)
            except DBAPIError as e:
                if not _is_connectivity_error(e):
                    raise
                last_error = e
                logger.warning("Storage error (attempt %d/%d): %s", attempt, attempts, e)
        raise StorageUnavailableError(str(last_error))

    async def flush(self) -> None:
        try:
            await self.db.flush()
        except DBAPIError as e:
            if _is_connectivity_error(e):
                raise StorageUnavailableError(str(e)) from e
            raise

    def add(self, entity: BaseModel) -> None:
        self.db.add(entity)

    # ---------- reads ----------

    async def get(self, model: type[M], entity_id: uuid.UUID, *, fresh: bool = False) -> M:
        stmt = select(model).where(model.id == entity_id, model.is_deleted.is_(False))
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._execute(stmt, retry=True)
        entity = result.scalar_one_or_none()
        if entity is None:
            raise NotFoundError(model.__name__, str(entity_id))
        return entity

    async def get_for_update(self, model: type[M], entity_id: uuid.UUID) -> M:
        """Reload the row from the database before a transition is validated."""
        return await self.get(model, entity_id, fresh=True)

    async def list_by(self, model: type[M], *order_by: Any, **filters: Any) -> list[M]:
        stmt = select(model).where(model.is_deleted.is_(False))
        for column, value in filters.items():
            stmt = stmt.where(getattr(model, column) == value)
        if order_by:
            stmt = stmt.order_by(*order_by)
        result = await self._execute(stmt, retry=True)
        return list(result.scalars().all())

    async def users_with_role(self, role: UserRole) -> list[User]:
        result = await self._execute(
            select(User).where(
                User.role == role.value,
                User.is_active.is_(True),
                User.is_deleted.is_(False),
            ),
            retry=True,
        )
        return list(result.scalars().all())

    # ---------- scope ----------

    def visible_projects(self, user: User) -> Select:
        query = select(Project).where(Project.is_deleted.is_(False))
        if UserRole(user.role) in ADMIN_ROLES:
            return query

        member_of = select(ProjectTeamMember.project_id).where(
            ProjectTeamMember.user_id == user.id,
            ProjectTeamMember.is_deleted.is_(False),
        )
        if user.role == UserRole.CLIENT.value:
            return query.where(Project.client_id == user.id)
        if user.role == UserRole.PROJECT_LEAD.value:
            return query.where(or_(Project.project_lead_id == user.id, Project.id.in_(member_of)))
        return query.where(Project.id.in_(member_of))

    async def is_team_member(self, project_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        result = await self._execute(
            select(func.count()).select_from(ProjectTeamMember).where(
                ProjectTeamMember.project_id == project_id,
                ProjectTeamMember.user_id == user_id,
                ProjectTeamMember.is_deleted.is_(False),
            ),
            retry=True,
        )
        return (result.scalar() or 0) > 0

    async def ensure_project_access(self, project: Project, user: User) -> Project:
        if UserRole(user.role) in ADMIN_ROLES:
            return project
        if user.role == UserRole.CLIENT.value:
            if project.client_id == user.id:
                return project
        elif project.project_lead_id == user.id or await self.is_team_member(project.id, user.id):
            return project
        raise PermissionDeniedError("You do not have access to this project")

    async def get_project_for(self, project_id: uuid.UUID, user: User) -> Project:
        project = await self.get(Project, project_id)
        return await self.ensure_project_access(project, user)

    async def require_project(self, project_id: uuid.UUID | None, *, unattached_ok: bool = False) -> Project | None:
        """Foreign-key check for entities that must hang off a project."""
        if project_id is None:
            if unattached_ok:
                return None
            raise BadRequestError("project_id is required")
        return await self.get(Project, project_id)

    # ---------- writes ----------

    async def compare_and_set(
        self, entity: M, expected_version: int, values: dict[str, Any]
    ) -> M:
        """Apply ``values`` only if the row is still at ``expected_version``."""
        model = type(entity)
        stmt = (
            update(model)
            .where(model.id == entity.id, model.version == expected_version)
            .values(**values, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        if result.rowcount != 1:
            logger.info(
                "Stale write rejected: %s %s expected version %d",
                model.__name__, entity.id, expected_version,
            )
            raise StaleStateError(model.__name__, str(entity.id))
        await self.db.refresh(entity)
        return entity

    async def guarded_update(
        self, model: type[M], entity_id: uuid.UUID, guards: dict[str, Any], values: dict[str, Any]
    ) -> bool:
        """UPDATE one row only while every guard column still holds its value."""
        stmt = update(model).where(model.id == entity_id)
        for column, value in guards.items():
            stmt = stmt.where(getattr(model, column) == value)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        result = await self._execute(stmt)
        return result.rowcount == 1

    async def add_audit(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        action: str,
        actor: User | None,
        from_state: str | None = None,
        to_state: str | None = None,
        diff: dict | None = None,
    ) -> AuditLog:
        row = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            from_state=from_state,
            to_state=to_state,
            actor_id=actor.id if actor else None,
            actor_role=actor.role if actor else "system",
            diff=diff or {},
        )
        self.db.add(row)
        await self.flush()
        return row

    async def upsert_checklist_response(
        self,
        schedule_id: uuid.UUID,
        item_id: str,
        responder_id: uuid.UUID,
        response: dict[str, Any],
        status: str,
    ) -> ChecklistResponse:
        dialect = self.db.get_bind().dialect.name
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert

        stmt = insert_fn(ChecklistResponse).values(
            id=uuid.uuid4(),
            schedule_id=schedule_id,
            item_id=item_id,
            responder_id=responder_id,
            response=response,
            status=status,
            is_deleted=False,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["schedule_id", "item_id", "responder_id"],
            set_={
                "response": stmt.excluded.response,
                "status": stmt.excluded.status,
                "updated_at": func.now(),
            },
        )
        await self._execute(stmt)

        result = await self._execute(
            select(ChecklistResponse)
            .where(
                ChecklistResponse.schedule_id == schedule_id,
                ChecklistResponse.item_id == item_id,
                ChecklistResponse.responder_id == responder_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
