"""Field inspections: start/complete with location capture, and checklist answers."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.common.enums import EntityType, ScheduleStatus
from certflow.common.exceptions import (
    IllegalTransitionError,
    UnauthorizedTransitionError,
)
from certflow.common.logging import get_logger
from certflow.config import settings
from certflow.core.inspections.schemas import (
    ChecklistBatchEntry,
    GpsLocation,
    LocationPolicy,
    ManualLocation,
)
from certflow.core.inspections.templates import get_item, validate_response
from certflow.core.workflow.schemas import TransitionResult
from certflow.core.workflow.service import WorkflowEngine, state_value
from certflow.db.models.checklist import ChecklistResponse
from certflow.db.models.schedule import Schedule
from certflow.db.models.user import User

logger = get_logger("inspections.service")


def location_policy() -> LocationPolicy:
    """What a client must use when capturing the inspection location."""
    return LocationPolicy(timeout_seconds=settings.GPS_TIMEOUT_SECONDS)


class InspectionService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.engine = WorkflowEngine(db)
        self.store = self.engine.store

    async def start_inspection(
        self,
        schedule_id: uuid.UUID,
        actor: User,
        location: GpsLocation | ManualLocation,
        expected_version: int | None = None,
    ) -> TransitionResult:
        schedule = await self.engine.load(EntityType.SCHEDULE, schedule_id, actor)
        if schedule.started_at is not None:
            raise IllegalTransitionError(
                "schedule", state_value(schedule.status), ScheduleStatus.IN_PROGRESS.value,
                "inspection has already been started",
            )

        result = await self.engine.apply(
            EntityType.SCHEDULE,
            schedule,
            ScheduleStatus.IN_PROGRESS.value,
            actor,
            {"location": location.model_dump(mode="json")},
            expected_version,
        )
        if isinstance(location, ManualLocation):
            logger.info(
                "Inspection %s started with manual location (reason=%s)",
                schedule.id, location.reason.value if location.reason else "unspecified",
            )
        return result

    async def complete_inspection(
        self, schedule_id: uuid.UUID, actor: User, expected_version: int | None = None
    ) -> TransitionResult:
        schedule = await self.engine.load(EntityType.SCHEDULE, schedule_id, actor)
        return await self.engine.apply(
            EntityType.SCHEDULE, schedule, ScheduleStatus.COMPLETED.value, actor, {}, expected_version
        )

    async def _writable_schedule(self, schedule_id: uuid.UUID, actor: User) -> Schedule:
        schedule = await self.engine.load(EntityType.SCHEDULE, schedule_id, actor)
        if schedule.assigned_to != actor.id:
            raise UnauthorizedTransitionError("Only the assigned inspector may record checklist answers")
        status = state_value(schedule.status)
        if status != ScheduleStatus.IN_PROGRESS.value:
            raise IllegalTransitionError(
                "schedule", status, status, "checklist answers can only be saved while the inspection is in progress"
            )
        return schedule

    async def save_checklist_response(
        self,
        schedule_id: uuid.UUID,
        item_id: str,
        actor: User,
        response: dict,
        status: str = "draft",
    ) -> ChecklistResponse:
        schedule = await self._writable_schedule(schedule_id, actor)
        validate_response(get_item(item_id), response)
        row = await self.store.upsert_checklist_response(
            schedule.id, item_id, actor.id, response, state_value(status)
        )
        logger.info("Saved checklist item %s for inspection %s", item_id, schedule.id)
        return row

    async def save_checklist_responses(
        self, schedule_id: uuid.UUID, actor: User, entries: list[ChecklistBatchEntry]
    ) -> list[ChecklistResponse]:
        """Validate every entry first so a bad item saves nothing."""
        schedule = await self._writable_schedule(schedule_id, actor)
        for entry in entries:
            validate_response(get_item(entry.item_id), entry.response)

        saved = []
        for entry in entries:
            saved.append(await self.store.upsert_checklist_response(
                schedule.id, entry.item_id, actor.id, entry.response, entry.status.value
            ))
        logger.info("Saved %d checklist items for inspection %s", len(saved), schedule.id)
        return saved

    async def list_checklist_responses(self, schedule_id: uuid.UUID, actor: User) -> list[ChecklistResponse]:
        await self.engine.load(EntityType.SCHEDULE, schedule_id, actor)
        result = await self.db.execute(
            select(ChecklistResponse)
            .where(
                ChecklistResponse.schedule_id == schedule_id,
                ChecklistResponse.is_deleted.is_(False),
            )
            .order_by(ChecklistResponse.item_id)
        )
        return list(result.scalars().all())
