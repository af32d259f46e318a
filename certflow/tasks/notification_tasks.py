import asyncio
import uuid

from certflow.common.logging import get_logger
from certflow.tasks.celery_app import app

logger = get_logger("tasks.notification")


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def wants_email(preferences: dict | None, category: str | None) -> bool:
    """Email is on by default; users can mute it globally or per category."""
    prefs = (preferences or {}).get("notifications") or {}
    if not prefs.get("email_enabled", True):
        return False
    if category is None:
        return True
    return prefs.get("categories", {}).get(category, True)


@app.task(
    name="certflow.tasks.notification_tasks.send_notification_email",
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    max_retries=3,
)
def send_notification_email(user_id: str, title: str, body: str, category: str | None = None):
    logger.info("Emailing notification '%s' to user %s", title, user_id)

    async def _send():
        from certflow.db.models.user import User
        from certflow.db.session import async_session_factory
        from certflow.integrations.sendgrid import EmailClient

        async with async_session_factory() as db:
            user = await db.get(User, uuid.UUID(user_id))

        if user is None or not user.is_active or user.is_deleted:
            logger.info("Skipping email: user %s missing or inactive", user_id)
            return {"status": "skipped", "reason": "inactive"}
        if not wants_email(user.preferences, category):
            logger.info("Skipping email: user %s opted out of %s", user_id, category or "email")
            return {"status": "skipped", "reason": "opted_out"}

        result = await EmailClient().send_notification(user.email, title, body)
        if result["status"] != "sent":
            logger.warning("Notification email to user %s failed: %s", user_id, result.get("error"))
        return result

    return _run_async(_send())
