import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.api.deps import get_current_user, get_db, require_role
from certflow.common.enums import EntityType, ReportStatus, UserRole
from certflow.common.exceptions import BadRequestError, IllegalTransitionError, PermissionDeniedError
from certflow.core.approvals.schemas import ApprovalChainOut, DecisionRequest, SubmitForReviewRequest
from certflow.core.approvals.service import ApprovalCoordinator, chain_to_response
from certflow.core.assignments.service import AssignmentManager
from certflow.core.store.repository import EntityStore
from certflow.core.workflow.schemas import TransitionRequest, TransitionResult
from certflow.core.workflow.service import WorkflowEngine, state_value
from certflow.db.models.checklist import ChecklistResponse
from certflow.db.models.report import Report
from certflow.db.models.schedule import Schedule
from certflow.db.models.user import User

router = APIRouter(tags=["Reports"])

_AUTHORS = (UserRole.DRAFTER, UserRole.INSPECTOR, UserRole.PROJECT_LEAD, UserRole.ADMIN_LEAD)
_EDITABLE = (ReportStatus.DRAFT.value, ReportStatus.REJECTED.value)


# ---------- Schemas ----------


class ReportCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    summary: str | None = None
    schedule_id: uuid.UUID | None = None
    selected_findings: list[uuid.UUID] = Field(default_factory=list)


class ReportUpdateRequest(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=500)
    summary: str | None = None
    selected_findings: list[uuid.UUID] | None = None
    file_url: str | None = None
    expected_version: int | None = None


class ReportResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    schedule_id: uuid.UUID | None
    drafter_id: uuid.UUID | None
    title: str
    status: str
    summary: str | None
    selected_findings: list[str]
    file_url: str | None
    reviewed_by: uuid.UUID | None
    reviewed_at: str | None
    review_notes: str | None
    version: int
    created_at: str


class ReportReviewResponse(BaseModel):
    report: ReportResponse
    chain: ApprovalChainOut


class AssignDrafterRequest(BaseModel):
    user_id: uuid.UUID


def _report_to_response(r: Report) -> ReportResponse:
    return ReportResponse(
        id=r.id,
        project_id=r.project_id,
        schedule_id=r.schedule_id,
        drafter_id=r.drafter_id,
        title=r.title,
        status=state_value(r.status),
        summary=r.summary,
        selected_findings=[str(f) for f in r.selected_findings or []],
        file_url=r.file_url,
        reviewed_by=r.reviewed_by,
        reviewed_at=r.reviewed_at.isoformat() if r.reviewed_at else None,
        review_notes=r.review_notes,
        version=r.version,
        created_at=r.created_at.isoformat(),
    )


async def _check_findings(db: AsyncSession, project_id: uuid.UUID, findings: list[uuid.UUID]) -> list[str]:
    """Findings must be checklist answers recorded on this project's inspections."""
    if not findings:
        return []
    result = await db.execute(
        select(ChecklistResponse.id)
        .join(Schedule, Schedule.id == ChecklistResponse.schedule_id)
        .where(
            ChecklistResponse.id.in_(findings),
            Schedule.project_id == project_id,
            ChecklistResponse.is_deleted.is_(False),
        )
    )
    found = set(result.scalars().all())
    missing = [str(f) for f in findings if f not in found]
    if missing:
        raise BadRequestError(f"Unknown findings for this project: {', '.join(missing)}")
    return [str(f) for f in dict.fromkeys(findings)]


# ---------- Endpoints ----------


@router.post("/projects/{project_id}/reports", response_model=ReportResponse, status_code=201)
async def create_report(
    project_id: uuid.UUID,
    body: ReportCreateRequest,
    current_user: User = Depends(require_role(*_AUTHORS)),
    db: AsyncSession = Depends(get_db),
):
    store = EntityStore(db)
    project = await store.get_project_for(project_id, current_user)
    await WorkflowEngine(db).ensure_project_open(
        EntityType.REPORT, project.id, "new", ReportStatus.DRAFT.value
    )

    if body.schedule_id is not None:
        schedule = await store.get(Schedule, body.schedule_id)
        if schedule.project_id != project.id:
            raise BadRequestError("schedule_id belongs to another project")

    report = Report(
        project_id=project.id,
        schedule_id=body.schedule_id,
        drafter_id=current_user.id if current_user.role in (UserRole.DRAFTER.value, UserRole.INSPECTOR.value) else None,
        title=body.title,
        summary=body.summary,
        selected_findings=await _check_findings(db, project.id, body.selected_findings),
        status=ReportStatus.DRAFT.value,
    )
    store.add(report)
    await store.flush()
    await store.add_audit("report", report.id, "create", current_user, None, ReportStatus.DRAFT.value)
    await db.refresh(report)
    return _report_to_response(report)


@router.get("/projects/{project_id}/reports", response_model=list[ReportResponse])
async def list_reports(
    project_id: uuid.UUID,
    status: ReportStatus | None = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await EntityStore(db).get_project_for(project_id, current_user)
    query = select(Report).where(Report.project_id == project_id, Report.is_deleted.is_(False))
    if status:
        query = query.where(Report.status == status.value)
    result = await db.execute(query.order_by(Report.created_at.desc()))
    return [_report_to_response(r) for r in result.scalars().all()]


@router.get("/reports/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    report = await WorkflowEngine(db).load(EntityType.REPORT, report_id, current_user)
    return _report_to_response(report)


@router.patch("/reports/{report_id}", response_model=ReportResponse)
async def update_report(
    report_id: uuid.UUID,
    body: ReportUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    engine = WorkflowEngine(db)
    report = await engine.load(EntityType.REPORT, report_id, current_user)
    status = state_value(report.status)
    if status not in _EDITABLE:
        raise IllegalTransitionError("report", status, status, "only draft or rejected reports can be edited")
    if report.drafter_id is not None and report.drafter_id != current_user.id \
            and current_user.role != UserRole.ADMIN_LEAD.value:
        raise PermissionDeniedError("Only the assigned drafter may edit this report")

    values = body.model_dump(exclude_unset=True, exclude={"expected_version", "selected_findings"})
    if body.selected_findings is not None:
        values["selected_findings"] = await _check_findings(db, report.project_id, body.selected_findings)
    if not values:
        return _report_to_response(report)

    expected = body.expected_version if body.expected_version is not None else report.version
    await engine.store.compare_and_set(report, expected, values)
    await engine.store.add_audit(
        "report", report.id, "update", current_user, status, status, {"fields": sorted(values)}
    )
    return _report_to_response(report)


@router.post("/reports/{report_id}/transition", response_model=TransitionResult)
async def transition_report(
    report_id: uuid.UUID,
    body: TransitionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await WorkflowEngine(db).request_transition(
        EntityType.REPORT, report_id, body.target_state, current_user,
        body.payload, body.expected_version,
    )


@router.post("/reports/{report_id}/submit-for-review", response_model=ReportReviewResponse)
async def submit_report_for_review(
    report_id: uuid.UUID,
    body: SubmitForReviewRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    coordinator = ApprovalCoordinator(db)
    chain = await coordinator.submit_for_review(
        EntityType.REPORT, report_id, body.chain, current_user, body.expected_version
    )
    report = await coordinator.store.get(Report, report_id)
    return ReportReviewResponse(report=_report_to_response(report), chain=chain_to_response(chain))


@router.post("/reports/{report_id}/decision", response_model=ReportReviewResponse)
async def decide_report(
    report_id: uuid.UUID,
    body: DecisionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    coordinator = ApprovalCoordinator(db)
    chain = await coordinator.record_decision(
        EntityType.REPORT, report_id, current_user, body.decision, body.notes, body.expected_version
    )
    report = await coordinator.store.get(Report, report_id)
    return ReportReviewResponse(report=_report_to_response(report), chain=chain_to_response(chain))


@router.post("/reports/{report_id}/assign", response_model=ReportResponse)
async def assign_report(
    report_id: uuid.UUID,
    body: AssignDrafterRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    report = await AssignmentManager(db).assign_report_drafter(report_id, body.user_id, current_user)
    return _report_to_response(report)


@router.get("/reports/{report_id}/approvals", response_model=list[ApprovalChainOut])
async def report_approvals(
    report_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    history = await ApprovalCoordinator(db).chain_history(EntityType.REPORT, report_id, current_user)
    return [chain_to_response(chain, decisions) for chain, decisions in history]
