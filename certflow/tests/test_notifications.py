import uuid
from unittest.mock import AsyncMock, patch

import pytest

from certflow.api.v1.ws import ConnectionManager
from certflow.common.enums import NotificationType, UserRole
from certflow.config import settings
from certflow.core.notifications.schemas import NotificationEvent
from certflow.core.notifications.service import NotificationDispatcher, wait_for_deliveries
from certflow.db.models.notification import Notification
from certflow.integrations.sendgrid import EmailClient
from certflow.tasks.notification_tasks import wants_email


def _event(**kwargs) -> NotificationEvent:
    return NotificationEvent(
        category=kwargs.pop("category", NotificationType.PROJECT_UPDATE),
        title=kwargs.pop("title", "Project 'Warehouse Block C': submitted"),
        body=kwargs.pop("body", "Project 'Warehouse Block C' moved from draft to submitted."),
        **kwargs,
    )


# ---------- dispatcher ----------


@pytest.mark.asyncio
async def test_recipients_deduplicated_and_sender_skipped(db_session, project, client_user, project_lead, admin_lead):
    created = await NotificationDispatcher(db_session).notify(_event(
        sender_id=client_user.id,
        project_id=project.id,
        user_ids=[client_user.id, project_lead.id, admin_lead.id],
        roles=[UserRole.ADMIN_LEAD],
        project_roles=[UserRole.PROJECT_LEAD, UserRole.CLIENT],
    ))
    assert sorted(str(n.user_id) for n in created) == sorted([str(project_lead.id), str(admin_lead.id)])


@pytest.mark.asyncio
async def test_project_roles_reach_team_members(db_session, project, inspector):
    created = await NotificationDispatcher(db_session).notify(_event(
        project_id=project.id, project_roles=[UserRole.INSPECTOR],
    ))
    assert [n.user_id for n in created] == [inspector.id]


@pytest.mark.asyncio
async def test_write_failure_is_swallowed(db_session, project_lead):
    dispatcher = NotificationDispatcher(db_session)
    with patch.object(dispatcher, "_resolve_recipients", side_effect=RuntimeError("db gone")):
        assert await dispatcher.notify(_event(user_ids=[project_lead.id])) == []


@pytest.mark.asyncio
async def test_email_queued_only_when_enabled(db_session, project_lead, mock_celery_tasks, monkeypatch):
    dispatcher = NotificationDispatcher(db_session)
    await dispatcher.notify(_event(user_ids=[project_lead.id]))
    await db_session.commit()
    await wait_for_deliveries()
    mock_celery_tasks.assert_not_called()

    monkeypatch.setattr(settings, "NOTIFY_BY_EMAIL", True)
    [n] = await dispatcher.notify(_event(user_ids=[project_lead.id], category=NotificationType.APPROVAL_REQUIRED))
    mock_celery_tasks.assert_not_called()

    await db_session.commit()
    await wait_for_deliveries()
    mock_celery_tasks.assert_called_once_with(str(project_lead.id), n.title, n.body, "approval_required")


@pytest.mark.asyncio
async def test_connected_user_gets_a_push_after_commit(db_session, project_lead):
    socket = AsyncMock()
    with patch("certflow.api.v1.ws.manager", ConnectionManager()) as manager:
        manager.active[str(project_lead.id)].append(socket)
        [n] = await NotificationDispatcher(db_session).notify(_event(user_ids=[project_lead.id]))
        socket.send_json.assert_not_called()

        await db_session.commit()
        await wait_for_deliveries()

    message = socket.send_json.call_args.args[0]
    assert message["type"] == "notification"
    assert message["category"] == "project_update"
    assert message["data"]["id"] == str(n.id)


@pytest.mark.asyncio
async def test_rolled_back_notifications_are_never_sent(db_session, project_lead, mock_celery_tasks, monkeypatch):
    monkeypatch.setattr(settings, "NOTIFY_BY_EMAIL", True)
    socket = AsyncMock()
    with patch("certflow.api.v1.ws.manager", ConnectionManager()) as manager:
        manager.active[str(project_lead.id)].append(socket)
        await NotificationDispatcher(db_session).notify(_event(user_ids=[project_lead.id]))

        await db_session.rollback()
        await db_session.commit()
        await wait_for_deliveries()

    socket.send_json.assert_not_called()
    mock_celery_tasks.assert_not_called()


@pytest.mark.asyncio
async def test_dead_socket_is_dropped():
    manager = ConnectionManager()
    socket = AsyncMock()
    socket.send_json.side_effect = RuntimeError("socket closed")
    manager.active["u1"].append(socket)

    assert await manager.send_to_user("u1", {"type": "ping"}) == 0
    assert not manager.is_connected("u1")


# ---------- email ----------


@pytest.mark.parametrize(
    "preferences,category,expected",
    [
        (None, "approval_required", True),
        ({"notifications": {"email_enabled": False}}, "approval_required", False),
        ({"notifications": {"categories": {"approval_required": False}}}, "approval_required", False),
        ({"notifications": {"categories": {"approval_required": False}}}, "project_update", True),
        ({"notifications": {"email_enabled": True}}, None, True),
    ],
)
def test_wants_email(preferences, category, expected):
    assert wants_email(preferences, category) is expected


@pytest.mark.asyncio
async def test_notification_email_is_escaped():
    client = EmailClient(api_key="mock_key")
    result = await client.send_notification("lead@test.com", "Report <draft>", "Needs a look & a sign-off")
    assert result["status"] == "sent"

    to, subject, html_body, text_body = client.send_email.call_args.args
    assert subject == "[CertFlow] Report <draft>"
    assert "Report &lt;draft&gt;" in html_body
    assert "Needs a look &amp; a sign-off" in html_body
    assert text_body.startswith("Report <draft>")


# ---------- API ----------


@pytest.mark.asyncio
async def test_list_and_read(client, db_session, project_lead, project_lead_headers):
    notif = Notification(
        id=uuid.uuid4(),
        user_id=project_lead.id,
        channel="in_app",
        category="approval_required",
        title="Report 'SLF Technical Report' awaits your approval",
        body="Report 'SLF Technical Report' is waiting for a decision from project lead.",
        is_read=False,
    )
    db_session.add(notif)
    await db_session.flush()

    response = await client.get("/api/v1/notifications", headers=project_lead_headers)
    data = response.json()
    assert data["total"] == 1
    assert data["unread_count"] == 1

    response = await client.post(f"/api/v1/notifications/{notif.id}/read", headers=project_lead_headers)
    assert response.status_code == 200
    assert response.json()["is_read"] is True

    response = await client.get(
        "/api/v1/notifications", headers=project_lead_headers, params={"unread_only": True}
    )
    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_cannot_read_someone_elses_notification(client, db_session, project_lead, client_headers):
    notif = Notification(
        user_id=project_lead.id, channel="in_app", category="system", title="Hi", body="Private"
    )
    db_session.add(notif)
    await db_session.flush()

    response = await client.post(f"/api/v1/notifications/{notif.id}/read", headers=client_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_mark_all_read(client, db_session, inspector, auth):
    dispatcher = NotificationDispatcher(db_session)
    for _ in range(3):
        await dispatcher.notify(_event(user_ids=[inspector.id]))

    response = await client.post("/api/v1/notifications/read-all", headers=auth(inspector))
    assert response.json()["updated"] == 3


@pytest.mark.asyncio
async def test_preferences_round_trip(client, client_headers):
    response = await client.get("/api/v1/notifications/preferences", headers=client_headers)
    assert response.json()["email_enabled"] is True

    response = await client.put(
        "/api/v1/notifications/preferences",
        headers=client_headers,
        json={"email_enabled": False, "categories": {"project_update": False}},
    )
    assert response.status_code == 200

    response = await client.get("/api/v1/notifications/preferences", headers=client_headers)
    assert response.json() == {"email_enabled": False, "categories": {"project_update": False}}


@pytest.mark.asyncio
async def test_inbox_scoped_to_project(client, db_session, project, inspector, auth):
    dispatcher = NotificationDispatcher(db_session)
    await dispatcher.notify(_event(user_ids=[inspector.id], project_id=project.id))
    await dispatcher.notify(_event(user_ids=[inspector.id]))

    params = {"project_id": str(project.id)}
    response = await client.get("/api/v1/notifications", headers=auth(inspector), params=params)
    data = response.json()
    assert data["total"] == 1
    assert data["unread_count"] == 1

    response = await client.post("/api/v1/notifications/read-all", headers=auth(inspector), params=params)
    assert response.json()["updated"] == 1

    response = await client.get("/api/v1/notifications", headers=auth(inspector), params={"unread_only": True})
    assert response.json()["total"] == 1
