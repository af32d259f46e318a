import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.api.deps import get_current_user, get_db, require_role
from certflow.common.enums import EntityType, ScheduleStatus, ScheduleType, UserRole
from certflow.core.assignments.service import AssignmentManager
from certflow.core.inspections.schemas import (
    ChecklistAnswer,
    ChecklistBatch,
    ChecklistResponseOut,
    ChecklistTemplate,
    LocationCapture,
    LocationPolicy,
)
from certflow.core.inspections.service import InspectionService, location_policy
from certflow.core.inspections.templates import list_templates
from certflow.core.store.repository import EntityStore
from certflow.core.workflow.schemas import TransitionRequest, TransitionResult
from certflow.core.workflow.service import WorkflowEngine, state_value
from certflow.db.models.checklist import ChecklistResponse
from certflow.db.models.schedule import Schedule
from certflow.db.models.user import User

router = APIRouter(tags=["Schedules & Inspections"])

_SCHEDULERS = (UserRole.PROJECT_LEAD, UserRole.ADMIN_LEAD, UserRole.ADMIN_TEAM)


# ---------- Schemas ----------


class ScheduleCreateRequest(BaseModel):
    schedule_type: ScheduleType = ScheduleType.INSPECTION
    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = None
    scheduled_date: datetime
    assigned_to: uuid.UUID | None = None


class ScheduleResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    schedule_type: str
    title: str
    description: str | None
    scheduled_date: str
    assigned_to: uuid.UUID | None
    created_by: uuid.UUID
    status: str
    started_at: str | None
    ended_at: str | None
    location: dict | None
    version: int


class AssignRequest(BaseModel):
    user_id: uuid.UUID


class StartInspectionRequest(BaseModel):
    location: LocationCapture
    expected_version: int | None = None


class CompleteInspectionRequest(BaseModel):
    expected_version: int | None = None


def _schedule_to_response(s: Schedule) -> ScheduleResponse:
    return ScheduleResponse(
        id=s.id,
        project_id=s.project_id,
        schedule_type=state_value(s.schedule_type),
        title=s.title,
        description=s.description,
        scheduled_date=s.scheduled_date.isoformat(),
        assigned_to=s.assigned_to,
        created_by=s.created_by,
        status=state_value(s.status),
        started_at=s.started_at.isoformat() if s.started_at else None,
        ended_at=s.ended_at.isoformat() if s.ended_at else None,
        location=s.location,
        version=s.version,
    )


def _checklist_to_response(r: ChecklistResponse) -> ChecklistResponseOut:
    return ChecklistResponseOut(
        id=r.id,
        schedule_id=r.schedule_id,
        item_id=r.item_id,
        responder_id=r.responder_id,
        response=r.response,
        status=state_value(r.status),
        updated_at=r.updated_at,
    )


# ---------- Schedules ----------


@router.post("/projects/{project_id}/schedules", response_model=ScheduleResponse, status_code=201)
async def create_schedule(
    project_id: uuid.UUID,
    body: ScheduleCreateRequest,
    current_user: User = Depends(require_role(*_SCHEDULERS)),
    db: AsyncSession = Depends(get_db),
):
    store = EntityStore(db)
    project = await store.get_project_for(project_id, current_user)
    await WorkflowEngine(db).ensure_project_open(
        EntityType.SCHEDULE, project.id, "new", ScheduleStatus.SCHEDULED.value
    )

    schedule = Schedule(
        project_id=project.id,
        schedule_type=body.schedule_type.value,
        title=body.title,
        description=body.description,
        scheduled_date=body.scheduled_date,
        created_by=current_user.id,
        status=ScheduleStatus.SCHEDULED.value,
    )
    store.add(schedule)
    await store.flush()
    await store.add_audit("schedule", schedule.id, "create", current_user, None, ScheduleStatus.SCHEDULED.value)
    await db.refresh(schedule)

    if body.assigned_to is not None:
        await AssignmentManager(db).assign(schedule.id, body.assigned_to, current_user)
    return _schedule_to_response(schedule)


@router.get("/projects/{project_id}/schedules", response_model=list[ScheduleResponse])
async def list_schedules(
    project_id: uuid.UUID,
    status: ScheduleStatus | None = Query(None),
    schedule_type: ScheduleType | None = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await EntityStore(db).get_project_for(project_id, current_user)
    query = select(Schedule).where(Schedule.project_id == project_id, Schedule.is_deleted.is_(False))
    if status:
        query = query.where(Schedule.status == status.value)
    if schedule_type:
        query = query.where(Schedule.schedule_type == schedule_type.value)
    result = await db.execute(query.order_by(Schedule.scheduled_date))
    return [_schedule_to_response(s) for s in result.scalars().all()]


@router.get("/schedules/assigned", response_model=list[ScheduleResponse])
async def my_schedules(
    status: ScheduleStatus | None = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Schedules assigned to the caller, soonest first."""
    query = select(Schedule).where(
        Schedule.assigned_to == current_user.id, Schedule.is_deleted.is_(False)
    )
    if status:
        query = query.where(Schedule.status == status.value)
    result = await db.execute(query.order_by(Schedule.scheduled_date))
    return [_schedule_to_response(s) for s in result.scalars().all()]


@router.get("/schedules/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    schedule = await WorkflowEngine(db).load(EntityType.SCHEDULE, schedule_id, current_user)
    return _schedule_to_response(schedule)


@router.post("/schedules/{schedule_id}/assign", response_model=ScheduleResponse)
async def assign_schedule(
    schedule_id: uuid.UUID,
    body: AssignRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    schedule = await AssignmentManager(db).assign(schedule_id, body.user_id, current_user)
    return _schedule_to_response(schedule)


@router.post("/schedules/{schedule_id}/transition", response_model=TransitionResult)
async def transition_schedule(
    schedule_id: uuid.UUID,
    body: TransitionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await WorkflowEngine(db).request_transition(
        EntityType.SCHEDULE, schedule_id, body.target_state, current_user,
        body.payload, body.expected_version,
    )


# ---------- Inspections ----------


@router.post("/schedules/{schedule_id}/start", response_model=ScheduleResponse)
async def start_inspection(
    schedule_id: uuid.UUID,
    body: StartInspectionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = InspectionService(db)
    await service.start_inspection(schedule_id, current_user, body.location, body.expected_version)
    schedule = await service.store.get(Schedule, schedule_id)
    return _schedule_to_response(schedule)


@router.post("/schedules/{schedule_id}/complete", response_model=ScheduleResponse)
async def complete_inspection(
    schedule_id: uuid.UUID,
    body: CompleteInspectionRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = InspectionService(db)
    await service.complete_inspection(
        schedule_id, current_user, body.expected_version if body else None
    )
    schedule = await service.store.get(Schedule, schedule_id)
    return _schedule_to_response(schedule)


@router.put("/schedules/{schedule_id}/checklist/{item_id}", response_model=ChecklistResponseOut)
async def save_checklist_item(
    schedule_id: uuid.UUID,
    item_id: str,
    body: ChecklistAnswer,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    row = await InspectionService(db).save_checklist_response(
        schedule_id, item_id, current_user, body.response, body.status.value
    )
    return _checklist_to_response(row)


@router.post("/schedules/{schedule_id}/checklist", response_model=list[ChecklistResponseOut])
async def save_checklist_batch(
    schedule_id: uuid.UUID,
    body: ChecklistBatch,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await InspectionService(db).save_checklist_responses(schedule_id, current_user, body.items)
    return [_checklist_to_response(r) for r in rows]


@router.get("/schedules/{schedule_id}/checklist", response_model=list[ChecklistResponseOut])
async def list_checklist(
    schedule_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await InspectionService(db).list_checklist_responses(schedule_id, current_user)
    return [_checklist_to_response(r) for r in rows]


@router.get("/inspections/location-policy", response_model=LocationPolicy)
async def get_location_policy():
    return location_policy()


@router.get("/checklist/templates", response_model=list[ChecklistTemplate])
async def get_checklist_templates(category: str | None = Query(None)):
    return list_templates(category)
