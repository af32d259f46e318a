"""Notification dispatcher: in-app rows plus best-effort real-time and email delivery."""

from __future__ import annotations

import asyncio
import uuid

from sqlalchemy import event as sa_event
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction

from certflow.common.enums import UserRole
from certflow.common.logging import get_logger
from certflow.config import settings
from certflow.core.notifications.schemas import NotificationEvent
from certflow.db.models.notification import Notification
from certflow.db.models.project import Project, ProjectTeamMember
from certflow.db.models.user import User

logger = get_logger("notifications.service")


class NotificationDispatcher:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _resolve_recipients(self, event: NotificationEvent) -> list[uuid.UUID]:
        recipients: list[uuid.UUID] = list(event.user_ids)

        if event.roles:
            result = await self.db.execute(
                select(User.id).where(
                    User.role.in_([r.value for r in event.roles]),
                    User.is_active.is_(True),
                    User.is_deleted.is_(False),
                )
            )
            recipients.extend(result.scalars().all())

        if event.project_roles and event.project_id:
            project = await self.db.get(Project, event.project_id)
            wanted = {r.value for r in event.project_roles}
            if project is not None:
                if UserRole.CLIENT.value in wanted:
                    recipients.append(project.client_id)
                if UserRole.PROJECT_LEAD.value in wanted and project.project_lead_id:
                    recipients.append(project.project_lead_id)
                if UserRole.ADMIN_LEAD.value in wanted and project.admin_lead_id:
                    recipients.append(project.admin_lead_id)

            result = await self.db.execute(
                select(ProjectTeamMember.user_id)
                .join(User, User.id == ProjectTeamMember.user_id)
                .where(
                    ProjectTeamMember.project_id == event.project_id,
                    ProjectTeamMember.is_deleted.is_(False),
                    User.role.in_(wanted),
                    User.is_active.is_(True),
                )
            )
            recipients.extend(result.scalars().all())

        seen: set[uuid.UUID] = set()
        unique: list[uuid.UUID] = []
        for user_id in recipients:
            if user_id is None or user_id == event.sender_id or user_id in seen:
                continue
            seen.add(user_id)
            unique.append(user_id)
        return unique

    async def notify(self, event: NotificationEvent) -> list[Notification]:
        """Write one notification per recipient. Never raises."""
        created: list[Notification] = []
        try:
            async with self.db.begin_nested():
                for user_id in await self._resolve_recipients(event):
                    notification = Notification(
                        user_id=user_id,
                        sender_id=event.sender_id,
                        project_id=event.project_id,
                        category=event.category.value,
                        title=event.title,
                        body=event.body,
                        related_type=event.related_type,
                        related_id=event.related_id,
                        metadata_=event.metadata,
                    )
                    self.db.add(notification)
                    created.append(notification)
                await self.db.flush()
        except Exception as e:
            logger.error("Failed to write notifications for '%s': %s", event.title, e)
            return []

        if created:
            logger.info(
                "Created %d notification(s): category=%s title='%s'",
                len(created), event.category.value, event.title,
            )
            _deliver_after_commit(self.db, created)
        return created


# ---------- delivery ----------
#
# Pushes and emails leave the process only once the transaction that wrote
# the rows commits; a rollback drops them together with the rows.

_PENDING = "certflow.pending_deliveries"
_in_flight: set[asyncio.Task] = set()


def _deliver_after_commit(db: AsyncSession, notifications: list[Notification]) -> None:
    session = db.sync_session
    pending = session.info.get(_PENDING)
    if pending is None:
        pending = session.info[_PENDING] = []
        sa_event.listen(session, "after_commit", _on_commit)
        sa_event.listen(session, "after_transaction_end", _on_transaction_end)
    pending.extend(
        {
            "user_id": str(n.user_id),
            "category": n.category,
            "id": str(n.id),
            "title": n.title,
            "body": n.body,
            "related_type": n.related_type,
            "related_id": str(n.related_id) if n.related_id else None,
        }
        for n in notifications
    )


def _on_commit(session: Session) -> None:
    if session.in_nested_transaction():
        return
    pending = session.info.get(_PENDING)
    if not pending:
        return
    batch = list(pending)
    pending.clear()
    try:
        task = asyncio.get_running_loop().create_task(deliver(batch))
    except RuntimeError:
        logger.warning("No event loop; %d notification(s) not pushed", len(batch))
        return
    _in_flight.add(task)
    task.add_done_callback(_in_flight.discard)


def _on_transaction_end(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is None:
        session.info.get(_PENDING, []).clear()


async def deliver(batch: list[dict]) -> None:
    """WebSocket push plus optional email for already-committed notifications."""
    try:
        from certflow.api.v1.ws import notify_user

        for item in batch:
            await notify_user(item["user_id"], item["category"], {
                k: v for k, v in item.items() if k not in ("user_id", "category")
            })
    except Exception as e:
        logger.debug("WebSocket notification skipped: %s", e)

    if not settings.NOTIFY_BY_EMAIL:
        return
    try:
        from certflow.tasks.notification_tasks import send_notification_email

        for item in batch:
            send_notification_email.delay(item["user_id"], item["title"], item["body"], item["category"])
    except Exception as e:
        logger.warning("Email notification not queued: %s", e)


async def wait_for_deliveries() -> None:
    if _in_flight:
        await asyncio.gather(*_in_flight, return_exceptions=True)
