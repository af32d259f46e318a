import pytest

from certflow.common.enums import UserRole


async def _transition(client, project_id, headers, target, **payload):
    return await client.post(
        f"/api/v1/projects/{project_id}/transition",
        headers=headers,
        json={"target_state": target, "payload": payload},
    )


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["service"] == "certflow"


@pytest.mark.asyncio
async def test_create_project(client, client_headers, client_user):
    response = await client.post(
        "/api/v1/projects",
        headers=client_headers,
        json={"name": "Ruko Harapan Indah", "address": "Jl. Harapan 3", "city": "Bekasi"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["client_id"] == str(client_user.id)
    assert data["status"] == "draft"
    assert data["application_type"] == "slf"
    assert data["phase"] == {"number": 1, "name": "Preparation", "progress": 20}


@pytest.mark.asyncio
async def test_admin_must_name_the_client(client, admin_lead_headers):
    response = await client.post("/api/v1/projects", headers=admin_lead_headers, json={"name": "Gudang 7"})
    assert response.status_code == 400
    assert response.json()["code"] == "bad_request"


@pytest.mark.asyncio
async def test_inspector_cannot_create_projects(client, inspector, auth):
    response = await client.post("/api/v1/projects", headers=auth(inspector), json={"name": "Nope"})
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


@pytest.mark.asyncio
async def test_application_to_inspection(client, client_headers, admin_lead_headers, project_lead, project_lead_headers):
    resp = await client.post("/api/v1/projects", headers=client_headers, json={"name": "Klinik Sehat", "application_type": "pbg"})
    project_id = resp.json()["id"]

    resp = await _transition(client, project_id, client_headers, "submitted")
    assert resp.status_code == 200
    assert resp.json()["action"] == "submit"

    resp = await _transition(client, project_id, admin_lead_headers, "project_lead_review")
    assert resp.status_code == 200

    resp = await client.post(
        f"/api/v1/projects/{project_id}/team",
        headers=admin_lead_headers,
        json={"user_id": str(project_lead.id)},
    )
    assert resp.status_code == 201
    assert resp.json()["role_in_project"] == "project_lead"

    resp = await _transition(client, project_id, project_lead_headers, "inspection_scheduled")
    assert resp.status_code == 200
    data = resp.json()
    assert data["from_state"] == "project_lead_review"
    assert data["to_state"] == "inspection_scheduled"
    assert data["version"] == 4

    resp = await client.get(f"/api/v1/projects/{project_id}", headers=client_headers)
    assert resp.json()["status"] == "inspection_scheduled"
    assert resp.json()["phase"]["number"] == 2

    # the admin lead heard about the submission
    resp = await client.get("/api/v1/notifications", headers=admin_lead_headers)
    assert any(n["related_id"] == project_id for n in resp.json()["items"])


@pytest.mark.asyncio
async def test_error_bodies_carry_codes(client, project, client_headers, project_lead_headers):
    resp = await _transition(client, project.id, client_headers, "completed")
    assert resp.status_code == 400
    assert resp.json()["code"] == "illegal_transition"

    resp = await _transition(client, project.id, client_headers, "rejected", notes="no")
    assert resp.status_code == 403
    assert resp.json()["code"] == "unauthorized"

    resp = await _transition(client, project.id, project_lead_headers, "rejected")
    assert resp.status_code == 422
    assert resp.json() == {"detail": "Reject requires notes", "code": "missing_payload"}


@pytest.mark.asyncio
async def test_rejection_loops_back_to_client(client, project, client_headers, project_lead_headers):
    resp = await _transition(client, project.id, project_lead_headers, "rejected", notes="Floor plan is missing")
    assert resp.status_code == 200

    resp = await client.get(f"/api/v1/projects/{project.id}", headers=client_headers)
    data = resp.json()
    assert data["status"] == "rejected"
    assert data["rejected_from"] == "project_lead_review"
    assert data["status_notes"] == "Floor plan is missing"
    assert data["allowed_transitions"] == ["draft"]

    resp = await _transition(client, project.id, client_headers, "draft")
    assert resp.status_code == 200
    resp = await client.get(f"/api/v1/projects/{project.id}/transitions", headers=client_headers)
    assert resp.json()["allowed"] == ["submitted"]


@pytest.mark.asyncio
async def test_allowed_transitions_depend_on_role(client, project, project_lead_headers, admin_lead_headers):
    resp = await client.get(f"/api/v1/projects/{project.id}/transitions", headers=project_lead_headers)
    assert sorted(resp.json()["allowed"]) == ["inspection_scheduled", "rejected"]

    resp = await client.get(f"/api/v1/projects/{project.id}/transitions", headers=admin_lead_headers)
    assert resp.json()["allowed"] == ["cancelled"]


@pytest.mark.asyncio
async def test_projects_are_scoped_to_their_client(client, project, client_headers, user_factory, auth):
    other = await user_factory(UserRole.CLIENT)

    resp = await client.get(f"/api/v1/projects/{project.id}", headers=auth(other))
    assert resp.status_code == 403

    resp = await client.get("/api/v1/projects", headers=auth(other))
    assert resp.json()["total"] == 0

    resp = await client.get("/api/v1/projects", headers=client_headers)
    assert [p["id"] for p in resp.json()["items"]] == [str(project.id)]


@pytest.mark.asyncio
async def test_list_filters_by_status(client, project, admin_lead_headers):
    resp = await client.get("/api/v1/projects", headers=admin_lead_headers, params={"status": "draft"})
    assert resp.json()["total"] == 0

    resp = await client.get("/api/v1/projects", headers=admin_lead_headers, params={"status": "project_lead_review"})
    assert resp.json()["total"] == 1


@pytest.mark.asyncio
async def test_list_pages_and_sorts(client, client_headers):
    for name in ("Gudang Timur", "Apotek Sehat", "Masjid Raya"):
        await client.post("/api/v1/projects", headers=client_headers, json={"name": name})

    resp = await client.get(
        "/api/v1/projects", headers=client_headers, params={"page_size": 2, "sort_by": "name", "sort_order": "asc"}
    )
    data = resp.json()
    assert data["total"] == 3
    assert data["total_pages"] == 2
    assert [p["name"] for p in data["items"]] == ["Apotek Sehat", "Gudang Timur"]

    # columns outside the sortable set fall back to created_at instead of failing
    resp = await client.get(
        "/api/v1/projects", headers=client_headers, params={"page": 2, "page_size": 2, "sort_by": "client_id"}
    )
    assert resp.status_code == 200
    assert len(resp.json()["items"]) == 1
