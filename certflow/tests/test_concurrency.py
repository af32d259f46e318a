import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from certflow.common.enums import EntityType, UserRole
from certflow.common.exceptions import StaleStateError
from certflow.core.store.repository import EntityStore
from certflow.core.workflow.service import WorkflowEngine
from certflow.db.base import Base
from certflow.db.models.approval import ApprovalChain
from certflow.db.models.project import Project
from certflow.db.models.user import User


@pytest.mark.asyncio
async def test_compare_and_set_rejects_stale_version(db_session, project):
    store = EntityStore(db_session)
    await store.compare_and_set(project, 1, {"status_notes": "first writer"})
    assert project.version == 2

    with pytest.raises(StaleStateError):
        await store.compare_and_set(project, 1, {"status_notes": "second writer"})

    stored = await store.get(Project, project.id, fresh=True)
    assert stored.status_notes == "first writer"
    assert stored.version == 2


@pytest.mark.asyncio
async def test_transition_with_outdated_version(db_session, project, project_lead):
    engine = WorkflowEngine(db_session)
    with pytest.raises(StaleStateError):
        await engine.request_transition(
            EntityType.PROJECT, project.id, "inspection_scheduled", project_lead, expected_version=7
        )
    stored = await engine.store.get(Project, project.id, fresh=True)
    assert stored.status == "project_lead_review"


@pytest.mark.asyncio
async def test_guarded_update_lets_one_claim_win(db_session, project, client_user):
    chain = ApprovalChain(
        entity_type="project",
        entity_id=project.id,
        steps=[{"role": "head_consultant", "advance_to": None}],
        current_step=0,
        status="in_progress",
        submitted_by=client_user.id,
    )
    db_session.add(chain)
    await db_session.flush()

    store = EntityStore(db_session)
    guards = {"current_step": 0, "status": "in_progress"}
    assert await store.guarded_update(ApprovalChain, chain.id, guards, {"current_step": 1, "status": "approved"})
    assert not await store.guarded_update(ApprovalChain, chain.id, guards, {"status": "returned"})

    await db_session.refresh(chain)
    assert chain.status == "approved"


@pytest.mark.asyncio
async def test_stale_transition_over_http(client, project, project_lead, auth):
    version = project.version
    resp = await client.post(
        f"/api/v1/projects/{project.id}/transition",
        headers=auth(project_lead),
        json={"target_state": "inspection_scheduled", "expected_version": version},
    )
    assert resp.status_code == 200
    assert resp.json()["version"] == version + 1

    # a second writer still holding the old version loses
    resp = await client.post(
        f"/api/v1/projects/{project.id}/transition",
        headers=auth(project_lead),
        json={"target_state": "cancelled", "expected_version": version},
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "stale_state"


@pytest.fixture
async def file_engine(tmp_path):
    """Separate connections per session, which the shared in-memory database cannot give."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.mark.asyncio
async def test_two_sessions_race_for_one_project(file_engine):
    factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as setup:
        client_user, lead, admin = (
            User(email=f"{role.value}@race.test", full_name=role.value, role=role.value)
            for role in (UserRole.CLIENT, UserRole.PROJECT_LEAD, UserRole.ADMIN_LEAD)
        )
        setup.add_all([client_user, lead, admin])
        await setup.flush()
        project = Project(
            name="Ruko Sentosa",
            application_type="slf",
            client_id=client_user.id,
            project_lead_id=lead.id,
            status="project_lead_review",
        )
        setup.add(project)
        await setup.commit()

    async with factory() as session_a, factory() as session_b:
        engine_a, engine_b = WorkflowEngine(session_a), WorkflowEngine(session_b)
        # both callers read version 1 before either writes
        seen_by_a = await engine_a.load(EntityType.PROJECT, project.id, lead)
        seen_by_b = await engine_b.load(EntityType.PROJECT, project.id, admin)
        assert seen_by_a.version == seen_by_b.version == 1

        await engine_a.apply(EntityType.PROJECT, seen_by_a, "inspection_scheduled", lead)
        await session_a.commit()

        with pytest.raises(StaleStateError):
            await engine_b.apply(EntityType.PROJECT, seen_by_b, "cancelled", admin)
        await session_b.rollback()

    async with factory() as check:
        stored = await EntityStore(check).get(Project, project.id)
        assert stored.status == "inspection_scheduled"
        assert stored.version == 2
