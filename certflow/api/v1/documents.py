import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.api.deps import get_current_user, get_db, require_role
from certflow.common.enums import EntityType, UserRole
from certflow.core.approvals.schemas import ApprovalChainOut, DecisionRequest, SubmitForReviewRequest
from certflow.core.approvals.service import ApprovalCoordinator, chain_to_response
from certflow.core.documents.schemas import DocumentReupload, DocumentUpload, RequirementStatus
from certflow.core.documents.service import DocumentService
from certflow.core.workflow.service import WorkflowEngine, state_value
from certflow.db.models.document import Document
from certflow.db.models.user import User

router = APIRouter(tags=["Documents"])


# ---------- Schemas ----------


class DocumentResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID | None
    client_submission: bool
    uploaded_by: uuid.UUID
    requirement_id: str | None
    category: str
    name: str
    status: str
    file_url: str | None
    content_type: str | None
    size_bytes: int | None
    revision: int
    revision_notes: str | None
    version: int
    created_at: str
    updated_at: str


class DocumentReviewResponse(BaseModel):
    document: DocumentResponse
    chain: ApprovalChainOut


def _document_to_response(doc: Document) -> DocumentResponse:
    return DocumentResponse(
        id=doc.id,
        project_id=doc.project_id,
        client_submission=doc.client_submission,
        uploaded_by=doc.uploaded_by,
        requirement_id=doc.requirement_id,
        category=doc.category,
        name=doc.name,
        status=state_value(doc.status),
        file_url=doc.file_url,
        content_type=doc.content_type,
        size_bytes=doc.size_bytes,
        revision=doc.revision,
        revision_notes=doc.revision_notes,
        version=doc.version,
        created_at=doc.created_at.isoformat(),
        updated_at=doc.updated_at.isoformat(),
    )


# ---------- Endpoints ----------


@router.post("/projects/{project_id}/documents", response_model=DocumentResponse, status_code=201)
async def upload_document(
    project_id: uuid.UUID,
    body: DocumentUpload,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    document, _ = await DocumentService(db).upload(project_id, current_user, body)
    return _document_to_response(document)


@router.post("/documents", response_model=DocumentResponse, status_code=201)
async def submit_client_document(
    body: DocumentUpload,
    current_user: User = Depends(require_role(UserRole.CLIENT)),
    db: AsyncSession = Depends(get_db),
):
    """Client submission not yet attached to a project."""
    document, _ = await DocumentService(db).upload(None, current_user, body)
    return _document_to_response(document)


@router.get("/projects/{project_id}/documents", response_model=list[DocumentResponse])
async def list_documents(
    project_id: uuid.UUID,
    category: str | None = Query(None),
    status: str | None = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    docs = await DocumentService(db).list_documents(project_id, current_user, category, status)
    return [_document_to_response(d) for d in docs]


@router.get("/projects/{project_id}/documents/requirements", response_model=RequirementStatus)
async def document_requirements(
    project_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await DocumentService(db).requirement_status(project_id, current_user)


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    doc = await WorkflowEngine(db).load(EntityType.DOCUMENT, document_id, current_user)
    return _document_to_response(doc)


@router.post("/documents/{document_id}/reupload", response_model=DocumentResponse)
async def reupload_document(
    document_id: uuid.UUID,
    body: DocumentReupload,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = DocumentService(db)
    await service.reupload(document_id, current_user, body)
    doc = await service.store.get(Document, document_id)
    return _document_to_response(doc)


@router.post("/documents/{document_id}/review", response_model=DocumentReviewResponse)
async def submit_document_for_review(
    document_id: uuid.UUID,
    body: SubmitForReviewRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    coordinator = ApprovalCoordinator(db)
    chain = await coordinator.submit_for_review(
        EntityType.DOCUMENT, document_id, body.chain, current_user, body.expected_version
    )
    doc = await coordinator.store.get(Document, document_id)
    return DocumentReviewResponse(document=_document_to_response(doc), chain=chain_to_response(chain))


@router.post("/documents/{document_id}/decision", response_model=DocumentReviewResponse)
async def decide_document(
    document_id: uuid.UUID,
    body: DecisionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    coordinator = ApprovalCoordinator(db)
    chain = await coordinator.record_decision(
        EntityType.DOCUMENT, document_id, current_user, body.decision, body.notes, body.expected_version
    )
    doc = await coordinator.store.get(Document, document_id)
    return DocumentReviewResponse(document=_document_to_response(doc), chain=chain_to_response(chain))


@router.get("/documents/{document_id}/approvals", response_model=list[ApprovalChainOut])
async def document_approvals(
    document_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    history = await ApprovalCoordinator(db).chain_history(EntityType.DOCUMENT, document_id, current_user)
    return [chain_to_response(chain, decisions) for chain, decisions in history]
