import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import JSON, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from certflow.common.enums import ScheduleType, UserRole
from certflow.common.security import create_access_token
from certflow.db.base import Base
from certflow.db.models import *  # noqa: F401,F403 - ensure all models loaded
from certflow.db.models.project import Project, ProjectTeamMember
from certflow.db.models.schedule import Schedule
from certflow.db.models.user import User

# In-memory SQLite shared by every connection of a test - remap JSONB to JSON
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@event.listens_for(Base.metadata, "before_create")
def _remap_jsonb(target, connection, **kw):
    if connection.dialect.name == "sqlite":
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, JSONB):
                    column.type = JSON()


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # let SQLAlchemy own BEGIN so SAVEPOINTs work under pysqlite
    @event.listens_for(engine.sync_engine, "connect")
    def _no_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client(db_session):
    from certflow.api.deps import get_db
    from certflow.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------- users ----------


async def make_user(db: AsyncSession, role: UserRole, **kwargs) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"{role.value}_{uuid.uuid4().hex[:8]}@test.com",
        full_name=kwargs.pop("full_name", f"Test {role.value.replace('_', ' ').title()}"),
        role=role.value,
        **kwargs,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


def headers_for(user: User) -> dict[str, str]:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client_user(db_session):
    return await make_user(db_session, UserRole.CLIENT)


@pytest.fixture
async def admin_lead(db_session):
    return await make_user(db_session, UserRole.ADMIN_LEAD)


@pytest.fixture
async def admin_team(db_session):
    return await make_user(db_session, UserRole.ADMIN_TEAM)


@pytest.fixture
async def project_lead(db_session):
    return await make_user(db_session, UserRole.PROJECT_LEAD)


@pytest.fixture
async def head_consultant(db_session):
    return await make_user(db_session, UserRole.HEAD_CONSULTANT)


@pytest.fixture
async def inspector(db_session):
    return await make_user(db_session, UserRole.INSPECTOR, specialization="structure")


@pytest.fixture
async def drafter(db_session):
    return await make_user(db_session, UserRole.DRAFTER)


@pytest.fixture
def client_headers(client_user):
    return headers_for(client_user)


@pytest.fixture
def admin_lead_headers(admin_lead):
    return headers_for(admin_lead)


@pytest.fixture
def project_lead_headers(project_lead):
    return headers_for(project_lead)


# ---------- workflow fixtures ----------


@pytest.fixture
async def project(db_session, client_user, project_lead, inspector, drafter):
    """An SLF project awaiting its lead, with lead, inspector and drafter on the team."""
    project = Project(
        name="Warehouse Block C",
        application_type="slf",
        address="Jl. Industri 12",
        city="Bekasi",
        client_id=client_user.id,
        project_lead_id=project_lead.id,
        status="project_lead_review",
    )
    db_session.add(project)
    await db_session.flush()
    for user in (project_lead, inspector, drafter):
        db_session.add(ProjectTeamMember(project_id=project.id, user_id=user.id, role_in_project=user.role))
    await db_session.flush()
    await db_session.refresh(project)
    return project


async def make_schedule(
    db: AsyncSession,
    project: Project,
    created_by: User,
    assigned_to: User | None = None,
    schedule_type: ScheduleType = ScheduleType.INSPECTION,
) -> Schedule:
    schedule = Schedule(
        project_id=project.id,
        schedule_type=schedule_type.value,
        title="Structural inspection",
        scheduled_date=datetime.now(timezone.utc) + timedelta(days=2),
        created_by=created_by.id,
        assigned_to=assigned_to.id if assigned_to else None,
        status="scheduled",
    )
    db.add(schedule)
    await db.flush()
    await db.refresh(schedule)
    return schedule


# ---------- external calls ----------


@pytest.fixture(autouse=True)
def mock_celery_tasks():
    """Keep Celery .delay() calls in-process."""
    with patch("certflow.tasks.notification_tasks.send_notification_email.delay") as delay:
        yield delay


@pytest.fixture(autouse=True)
def mock_integrations():
    with patch(
        "certflow.integrations.sendgrid.EmailClient.send_email",
        return_value={"message_id": "mock-123", "status": "sent"},
    ):
        yield


@pytest.fixture
def user_factory(db_session):
    async def _make(role: UserRole, **kwargs) -> User:
        return await make_user(db_session, role, **kwargs)

    return _make


@pytest.fixture
def auth():
    return headers_for


@pytest.fixture
def schedule_factory(db_session):
    async def _make(project: Project, created_by: User, assigned_to: User | None = None, **kwargs) -> Schedule:
        return await make_schedule(db_session, project, created_by, assigned_to, **kwargs)

    return _make
