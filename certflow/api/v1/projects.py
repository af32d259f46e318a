import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.api.deps import get_current_user, get_db, require_role
from certflow.common.enums import ApplicationType, EntityType, ProjectStatus, UserRole
from certflow.common.exceptions import BadRequestError
from certflow.common.pagination import PaginatedResponse, PaginationParams, paginate
from certflow.core.assignments.service import AssignmentManager
from certflow.core.store.repository import EntityStore
from certflow.core.workflow.phases import phase_for
from certflow.core.workflow.schemas import PhaseInfo, TransitionRequest, TransitionResult
from certflow.core.workflow.service import WorkflowEngine, state_value
from certflow.db.models.project import Project, ProjectTeamMember
from certflow.db.models.user import User

router = APIRouter(prefix="/projects", tags=["Projects"])

SORTABLE = ("created_at", "updated_at", "name", "status")


# ---------- Schemas ----------


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=500)
    application_type: ApplicationType = ApplicationType.SLF
    address: str | None = None
    city: str | None = None
    client_id: uuid.UUID | None = None
    project_lead_id: uuid.UUID | None = None


class ProjectResponse(BaseModel):
    id: uuid.UUID
    name: str
    application_type: str
    address: str | None
    city: str | None
    client_id: uuid.UUID
    project_lead_id: uuid.UUID | None
    admin_lead_id: uuid.UUID | None
    status: str
    rejected_from: str | None
    status_notes: str | None
    version: int
    phase: PhaseInfo
    allowed_transitions: list[str] | None = None
    created_at: str


class AllowedTransitionsResponse(BaseModel):
    status: str
    version: int
    allowed: list[str]


class TeamMemberRequest(BaseModel):
    user_id: uuid.UUID
    role_in_project: str | None = None


class TeamMemberResponse(BaseModel):
    user_id: uuid.UUID
    full_name: str
    email: str
    role: str
    role_in_project: str
    specialization: str | None
    joined_at: str


def _project_to_response(project: Project, allowed: list[str] | None = None) -> ProjectResponse:
    status = state_value(project.status)
    return ProjectResponse(
        id=project.id,
        name=project.name,
        application_type=state_value(project.application_type),
        address=project.address,
        city=project.city,
        client_id=project.client_id,
        project_lead_id=project.project_lead_id,
        admin_lead_id=project.admin_lead_id,
        status=status,
        rejected_from=project.rejected_from,
        status_notes=project.status_notes,
        version=project.version,
        phase=phase_for(status),
        allowed_transitions=allowed,
        created_at=project.created_at.isoformat(),
    )


def _member_to_response(member: ProjectTeamMember, user: User) -> TeamMemberResponse:
    return TeamMemberResponse(
        user_id=user.id,
        full_name=user.full_name,
        email=user.email,
        role=user.role,
        role_in_project=member.role_in_project,
        specialization=user.specialization,
        joined_at=member.created_at.isoformat(),
    )


# ---------- Endpoints ----------


@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(
    body: ProjectCreateRequest,
    current_user: User = Depends(require_role(UserRole.CLIENT, UserRole.ADMIN_LEAD, UserRole.ADMIN_TEAM)),
    db: AsyncSession = Depends(get_db),
):
    store = EntityStore(db)
    if current_user.role == UserRole.CLIENT.value:
        client_id = current_user.id
    else:
        if body.client_id is None:
            raise BadRequestError("client_id is required when creating a project for a client")
        client = await store.get(User, body.client_id)
        if client.role != UserRole.CLIENT.value:
            raise BadRequestError("client_id must reference a client account")
        client_id = client.id

    if body.project_lead_id is not None:
        lead = await store.get(User, body.project_lead_id)
        if lead.role != UserRole.PROJECT_LEAD.value:
            raise BadRequestError("project_lead_id must reference a project lead")

    project = Project(
        name=body.name,
        application_type=body.application_type.value,
        address=body.address,
        city=body.city,
        client_id=client_id,
        project_lead_id=body.project_lead_id,
        admin_lead_id=current_user.id if current_user.role == UserRole.ADMIN_LEAD.value else None,
        status=ProjectStatus.DRAFT.value,
    )
    store.add(project)
    await store.flush()
    if body.project_lead_id is not None:
        store.add(ProjectTeamMember(
            project_id=project.id,
            user_id=body.project_lead_id,
            role_in_project=UserRole.PROJECT_LEAD.value,
        ))
    await store.add_audit("project", project.id, "create", current_user, None, ProjectStatus.DRAFT.value)
    await db.refresh(project)
    return _project_to_response(project)


@router.get("", response_model=PaginatedResponse[ProjectResponse])
async def list_projects(
    status: ProjectStatus | None = Query(None),
    application_type: ApplicationType | None = Query(None),
    pagination: PaginationParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    query = EntityStore(db).visible_projects(current_user)
    if status:
        query = query.where(Project.status == status.value)
    if application_type:
        query = query.where(Project.application_type == application_type.value)

    projects, total = await paginate(db, query, pagination, Project, SORTABLE)
    return PaginatedResponse[ProjectResponse].build(
        [_project_to_response(p) for p in projects], total, pagination
    )


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    engine = WorkflowEngine(db)
    project = await engine.load(EntityType.PROJECT, project_id, current_user)
    allowed = engine.allowed_transitions(EntityType.PROJECT, project, current_user)
    return _project_to_response(project, allowed)


@router.post("/{project_id}/transition", response_model=TransitionResult)
async def transition_project(
    project_id: uuid.UUID,
    body: TransitionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await WorkflowEngine(db).request_transition(
        EntityType.PROJECT,
        project_id,
        body.target_state,
        current_user,
        body.payload,
        body.expected_version,
    )


@router.get("/{project_id}/transitions", response_model=AllowedTransitionsResponse)
async def allowed_project_transitions(
    project_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    engine = WorkflowEngine(db)
    project = await engine.load(EntityType.PROJECT, project_id, current_user)
    return AllowedTransitionsResponse(
        status=state_value(project.status),
        version=project.version,
        allowed=engine.allowed_transitions(EntityType.PROJECT, project, current_user),
    )


@router.get("/{project_id}/team", response_model=list[TeamMemberResponse])
async def list_team(
    project_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    members = await AssignmentManager(db).list_members(project_id, current_user)
    return [_member_to_response(m, u) for m, u in members]


@router.post("/{project_id}/team", response_model=TeamMemberResponse, status_code=201)
async def add_team_member(
    project_id: uuid.UUID,
    body: TeamMemberRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    manager = AssignmentManager(db)
    member = await manager.add_member(project_id, body.user_id, current_user, body.role_in_project)
    user = await manager.store.get(User, member.user_id)
    await db.refresh(member)
    return _member_to_response(member, user)


@router.delete("/{project_id}/team/{user_id}", status_code=204)
async def remove_team_member(
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await AssignmentManager(db).remove_member(project_id, user_id, current_user)
