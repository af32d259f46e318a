import pytest

from certflow.common.enums import EntityType
from certflow.common.exceptions import BadRequestError, ConflictError, IllegalTransitionError
from certflow.core.approvals.service import ApprovalCoordinator
from certflow.core.documents.requirements import get_requirement, validate_upload
from certflow.core.documents.schemas import DocumentReupload, DocumentUpload
from certflow.core.documents.service import DocumentService
from certflow.db.models.document import Document

LAND_CERT = DocumentUpload(
    name="Land certificate",
    filename="SHM-1234.pdf",
    file_url="https://files.example/projects/shm-1234.pdf",
    requirement_id="land_certificate",
    content_type="application/pdf",
    size_bytes=2_400_000,
)


def test_upload_format_and_size_checked():
    requirement = get_requirement("slf", "as_built_drawing")
    validate_upload(requirement, "ground-floor.DWG", 1024)
    with pytest.raises(BadRequestError):
        validate_upload(requirement, "ground-floor.docx", 1024)
    with pytest.raises(BadRequestError):
        validate_upload(requirement, "ground-floor.pdf", 21 * 1024 * 1024)


@pytest.mark.asyncio
async def test_upload_opens_document_chain(db_session, project, client_user):
    document, result = await DocumentService(db_session).upload(project.id, client_user, LAND_CERT)

    assert result.to_state == "uploaded"
    assert result.chain_id is not None
    assert document.revision == 1
    assert document.file_url == LAND_CERT.file_url
    assert document.category == "legal"

    chain = await ApprovalCoordinator(db_session).open_chain(EntityType.DOCUMENT, document.id)
    assert [s["role"] for s in chain.steps] == ["admin_team", "project_lead"]


@pytest.mark.asyncio
async def test_chain_verifies_then_approves(db_session, project, client_user, admin_team, project_lead):
    document, _ = await DocumentService(db_session).upload(project.id, client_user, LAND_CERT)
    coordinator = ApprovalCoordinator(db_session)

    await coordinator.record_decision(EntityType.DOCUMENT, document.id, admin_team, "approved")
    stored = await coordinator.store.get(Document, document.id)
    assert stored.status == "verified"

    chain = await coordinator.record_decision(EntityType.DOCUMENT, document.id, project_lead, "approved")
    assert chain.status == "approved"
    stored = await coordinator.store.get(Document, document.id)
    assert stored.status == "approved"


@pytest.mark.asyncio
async def test_pending_upload_is_replaced_in_place(db_session, project, client_user):
    service = DocumentService(db_session)
    document, first = await service.upload(project.id, client_user, LAND_CERT)

    again, result = await service.upload(
        project.id, client_user, LAND_CERT.model_copy(update={"file_url": "https://files.example/shm-1234-b.pdf"})
    )
    assert again.id == document.id
    assert result.action == "replace"
    assert again.revision == 2
    assert again.file_url == "https://files.example/shm-1234-b.pdf"
    # the review that was waiting keeps going
    assert result.chain_id == first.chain_id

    rows = await service.list_documents(project.id, client_user)
    assert [d.id for d in rows] == [document.id]


@pytest.mark.asyncio
async def test_upload_conflicts_once_verified(db_session, project, client_user, admin_team):
    service = DocumentService(db_session)
    document, _ = await service.upload(project.id, client_user, LAND_CERT)
    await ApprovalCoordinator(db_session).record_decision(EntityType.DOCUMENT, document.id, admin_team, "approved")

    with pytest.raises(ConflictError) as exc:
        await service.upload(project.id, client_user, LAND_CERT)
    assert "already been verified" in exc.value.detail


@pytest.mark.asyncio
async def test_rejected_document_reupload_bumps_revision(db_session, project, client_user, admin_team):
    service = DocumentService(db_session)
    document, _ = await service.upload(project.id, client_user, LAND_CERT)
    await ApprovalCoordinator(db_session).record_decision(
        EntityType.DOCUMENT, document.id, admin_team, "rejected", "Scan is unreadable"
    )
    stored = await service.store.get(Document, document.id)
    assert stored.status == "rejected"
    assert stored.revision_notes == "Scan is unreadable"

    # uploading against the same requirement goes through re-upload
    again, result = await service.upload(
        project.id, client_user, LAND_CERT.model_copy(update={"file_url": "https://files.example/shm-1234-v2.pdf"})
    )
    assert again.id == document.id
    assert result.chain_id is not None
    assert again.revision == 2
    assert again.status == "uploaded"


@pytest.mark.asyncio
async def test_reupload_same_file_keeps_revision(db_session, project, client_user, admin_team):
    service = DocumentService(db_session)
    document, _ = await service.upload(project.id, client_user, LAND_CERT)
    await ApprovalCoordinator(db_session).record_decision(
        EntityType.DOCUMENT, document.id, admin_team, "rejected", "Wrong page order"
    )
    await service.reupload(
        document.id, client_user, DocumentReupload(filename="SHM-1234.pdf", file_url=LAND_CERT.file_url)
    )
    stored = await service.store.get(Document, document.id)
    assert stored.revision == 1


@pytest.mark.asyncio
async def test_reupload_while_pending(db_session, project, client_user):
    service = DocumentService(db_session)
    document, _ = await service.upload(project.id, client_user, LAND_CERT)

    await service.reupload(
        document.id, client_user, DocumentReupload(filename="SHM-1234.pdf", file_url="https://files.example/x.pdf")
    )
    stored = await service.store.get(Document, document.id, fresh=True)
    assert stored.status == "uploaded"
    assert stored.revision == 2
    assert stored.metadata_json["filename"] == "SHM-1234.pdf"


@pytest.mark.asyncio
async def test_no_replace_after_a_review_decision(db_session, project, client_user, admin_lead):
    service = DocumentService(db_session)
    document, _ = await service.upload(project.id, client_user, LAND_CERT)
    coordinator = ApprovalCoordinator(db_session)
    # a custom chain whose first step does not move the document out of "uploaded"
    await coordinator.cancel_open_chains(EntityType.DOCUMENT, document.id, admin_lead)
    await coordinator.submit_for_review(EntityType.DOCUMENT, document.id, ["admin_lead", "project_lead"], admin_lead)
    await coordinator.record_decision(EntityType.DOCUMENT, document.id, admin_lead, "approved")

    with pytest.raises(IllegalTransitionError) as exc:
        await service.reupload(
            document.id, client_user, DocumentReupload(filename="SHM-1234.pdf", file_url="https://files.example/y.pdf")
        )
    assert "already decided" in exc.value.detail


@pytest.mark.asyncio
async def test_requirement_status(db_session, project, client_user, admin_team, project_lead):
    service = DocumentService(db_session)
    document, _ = await service.upload(project.id, client_user, LAND_CERT)
    coordinator = ApprovalCoordinator(db_session)
    await coordinator.record_decision(EntityType.DOCUMENT, document.id, admin_team, "approved")
    await coordinator.record_decision(EntityType.DOCUMENT, document.id, project_lead, "approved")

    status = await service.requirement_status(project.id, client_user)
    entries = {e.requirement_id: e for e in status.entries}
    assert entries["land_certificate"].status == "approved"
    assert entries["id_card"].status is None
    assert status.required_approved == 1
    assert status.required_total == 8
    assert status.complete is False


# ---------- API ----------


@pytest.mark.asyncio
async def test_upload_over_http(client, project, client_user, auth):
    headers = auth(client_user)
    body = LAND_CERT.model_dump(exclude_none=True)

    resp = await client.post(f"/api/v1/projects/{project.id}/documents", headers=headers, json=body)
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "uploaded"
    assert data["revision"] == 1

    document_id = data["id"]
    resp = await client.post(
        f"/api/v1/projects/{project.id}/documents",
        headers=headers,
        json={**body, "file_url": "https://files.example/projects/shm-1234-rescan.pdf"},
    )
    assert resp.status_code == 201
    assert resp.json()["id"] == document_id
    assert resp.json()["revision"] == 2

    resp = await client.post(
        f"/api/v1/documents/{document_id}/reupload",
        headers=headers,
        json={"filename": "SHM-1234.pdf", "file_url": "https://files.example/projects/shm-1234-final.pdf"},
    )
    assert resp.status_code == 200
    assert resp.json()["revision"] == 3

    resp = await client.post(
        f"/api/v1/projects/{project.id}/documents",
        headers=headers,
        json={**body, "requirement_id": "id_card", "filename": "ktp.docx"},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "bad_request"


@pytest.mark.asyncio
async def test_document_decision_over_http(client, project, client_user, admin_team, auth):
    resp = await client.post(
        f"/api/v1/projects/{project.id}/documents",
        headers=auth(client_user),
        json=LAND_CERT.model_dump(exclude_none=True),
    )
    document_id = resp.json()["id"]

    resp = await client.post(
        f"/api/v1/documents/{document_id}/decision",
        headers=auth(admin_team),
        json={"decision": "approved"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["document"]["status"] == "verified"
    assert body["chain"]["awaiting_role"] == "project_lead"

    resp = await client.get(f"/api/v1/documents/{document_id}/approvals", headers=auth(client_user))
    [chain] = resp.json()
    assert chain["decisions"][0]["role"] == "admin_team"


@pytest.mark.asyncio
async def test_unattached_client_submission(client, client_user, auth):
    resp = await client.post(
        "/api/v1/documents",
        headers=auth(client_user),
        json={"name": "KTP", "filename": "ktp.jpg", "file_url": "https://files.example/ktp.jpg", "requirement_id": "id_card"},
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["project_id"] is None
    assert data["client_submission"] is True
