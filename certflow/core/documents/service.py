"""Project documents: upload against the requirement catalog, re-upload, status."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certflow.common.enums import ApplicationType, DocumentStatus, EntityType
from certflow.common.exceptions import ConflictError
from certflow.common.logging import get_logger
from certflow.core.documents.requirements import (
    DocumentRequirement,
    get_requirement,
    requirements_for,
    validate_upload,
)
from certflow.core.documents.schemas import (
    DocumentReupload,
    DocumentUpload,
    RequirementStatus,
    RequirementStatusEntry,
)
from certflow.core.workflow.schemas import TransitionResult
from certflow.core.workflow.service import WorkflowEngine, state_value
from certflow.db.models.document import Document
from certflow.db.models.project import Project
from certflow.db.models.user import User

logger = get_logger("documents.service")

_SETTLED = {DocumentStatus.VERIFIED.value, DocumentStatus.APPROVED.value}


def _upload_payload(data: DocumentUpload | DocumentReupload) -> dict:
    payload = {"file_url": data.file_url}
    if data.content_type:
        payload["content_type"] = data.content_type
    if data.size_bytes is not None:
        payload["size_bytes"] = data.size_bytes
    return payload


class DocumentService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.engine = WorkflowEngine(db)
        self.store = self.engine.store

    async def _existing_for_requirement(self, project_id: uuid.UUID, requirement_id: str) -> Document | None:
        result = await self.db.execute(
            select(Document).where(
                Document.project_id == project_id,
                Document.requirement_id == requirement_id,
                Document.is_deleted.is_(False),
            )
        )
        return result.scalars().first()

    async def upload(
        self,
        project_id: uuid.UUID | None,
        actor: User,
        data: DocumentUpload,
    ) -> tuple[Document, TransitionResult]:
        project: Project | None = None
        if project_id is not None:
            project = await self.store.get_project_for(project_id, actor)
            await self.engine.ensure_project_open(
                EntityType.DOCUMENT, project.id, DocumentStatus.PENDING.value, DocumentStatus.UPLOADED.value
            )
            application_type = project.application_type
        else:
            await self.store.require_project(None, unattached_ok=actor.role == "client")
            application_type = data.application_type or ApplicationType.SLF

        requirement: DocumentRequirement | None = None
        if data.requirement_id:
            requirement = get_requirement(application_type, data.requirement_id)
            validate_upload(requirement, data.filename, data.size_bytes)

            if project is not None:
                existing = await self._existing_for_requirement(project.id, requirement.id)
                if existing is not None:
                    # pending and rejected uploads are replaced on the same row
                    if state_value(existing.status) in _SETTLED:
                        raise ConflictError(
                            f"'{requirement.name}' has already been {state_value(existing.status)} for this project"
                        )
                    result = await self.reupload(existing.id, actor, DocumentReupload(
                        filename=data.filename,
                        file_url=data.file_url,
                        content_type=data.content_type,
                        size_bytes=data.size_bytes,
                    ))
                    return existing, result

        document = Document(
            project_id=project.id if project else None,
            client_submission=project is None,
            uploaded_by=actor.id,
            requirement_id=requirement.id if requirement else None,
            category=data.category or (requirement.category if requirement else "general"),
            name=data.name,
            status=DocumentStatus.PENDING.value,
            revision=0,
            metadata_json={"filename": data.filename},
        )
        self.store.add(document)
        await self.store.flush()
        await self.db.refresh(document)

        result = await self.engine.apply(
            EntityType.DOCUMENT, document, DocumentStatus.UPLOADED.value, actor, _upload_payload(data)
        )
        logger.info("Uploaded document %s (%s) for project %s", document.id, document.name, project_id)
        return document, result

    async def reupload(
        self, document_id: uuid.UUID, actor: User, data: DocumentReupload
    ) -> TransitionResult:
        document = await self.engine.load(EntityType.DOCUMENT, document_id, actor)
        if document.requirement_id:
            application_type = ApplicationType.SLF
            if document.project_id is not None:
                project = await self.store.get(Project, document.project_id)
                application_type = project.application_type
            validate_upload(
                get_requirement(application_type, document.requirement_id), data.filename, data.size_bytes
            )

        meta = dict(document.metadata_json or {})
        meta["filename"] = data.filename
        return await self.engine.apply(
            EntityType.DOCUMENT,
            document,
            DocumentStatus.UPLOADED.value,
            actor,
            _upload_payload(data),
            data.expected_version,
            extra_values={"metadata_json": meta},
        )

    async def list_documents(
        self,
        project_id: uuid.UUID,
        actor: User,
        category: str | None = None,
        status: str | None = None,
    ) -> list[Document]:
        await self.store.get_project_for(project_id, actor)
        query = select(Document).where(
            Document.project_id == project_id, Document.is_deleted.is_(False)
        )
        if category:
            query = query.where(Document.category == category)
        if status:
            query = query.where(Document.status == status)
        result = await self.db.execute(query.order_by(Document.created_at.desc()))
        return list(result.scalars().all())

    async def requirement_status(self, project_id: uuid.UUID, actor: User) -> RequirementStatus:
        project = await self.store.get_project_for(project_id, actor)
        documents = await self.list_documents(project_id, actor)
        latest: dict[str, Document] = {}
        for doc in documents:
            if doc.requirement_id and doc.requirement_id not in latest:
                latest[doc.requirement_id] = doc

        entries = []
        for req in requirements_for(project.application_type):
            doc = latest.get(req.id)
            entries.append(RequirementStatusEntry(
                requirement_id=req.id,
                name=req.name,
                category=req.category,
                required=req.required,
                formats=req.formats,
                max_size_mb=req.max_size_mb,
                document_id=doc.id if doc else None,
                status=state_value(doc.status) if doc else None,
                revision=doc.revision if doc else None,
                uploaded_at=doc.updated_at if doc else None,
            ))

        required = [e for e in entries if e.required]
        approved = [e for e in required if e.status == DocumentStatus.APPROVED.value]
        return RequirementStatus(
            application_type=ApplicationType(project.application_type),
            entries=entries,
            required_total=len(required),
            required_approved=len(approved),
            complete=len(approved) == len(required),
        )
