"""SendGrid email client for notification delivery.

Talks to the SendGrid v3 API when ``SENDGRID_API_KEY`` is real; keys that
start with ``mock_`` switch to log-only mode so development and tests never
leave the process.
"""

from __future__ import annotations

import html
import uuid
from datetime import datetime, timezone
from typing import Any

import httpx

from certflow.config import settings
from certflow.integrations.base import BaseIntegration


class EmailClient(BaseIntegration):
    SENDGRID_URL = "https://api.sendgrid.com/v3"

    def __init__(self, api_key: str | None = None, from_email: str | None = None) -> None:
        super().__init__("sendgrid")
        self.api_key = api_key or settings.SENDGRID_API_KEY
        self.from_email = from_email or settings.FROM_EMAIL

    @property
    def is_mock(self) -> bool:
        return self.api_key.startswith("mock_")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def health_check(self) -> bool:
        if self.is_mock:
            return True
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.get(f"{self.SENDGRID_URL}/scopes", headers=self._headers())
                return resp.status_code == 200
        except httpx.HTTPError as e:
            self.logger.error("SendGrid health check failed: %s", e)
            return False

    async def send_email(
        self, to: str, subject: str, html_body: str, text_body: str | None = None,
    ) -> dict[str, Any]:
        """Send one message. Never raises; the result carries ``status``."""
        message_id = str(uuid.uuid4())
        sent_at = datetime.now(timezone.utc).isoformat()

        if self.is_mock:
            self.logger.info("Mock email | to=%s | subject='%s'", to, subject)
            return {"status": "sent", "message_id": message_id, "to": to, "subject": subject, "timestamp": sent_at}

        content = []
        if text_body:
            content.append({"type": "text/plain", "value": text_body})
        content.append({"type": "text/html", "value": html_body})
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email, "name": "CertFlow"},
            "subject": subject,
            "content": content,
        }
        try:
            async with httpx.AsyncClient(timeout=30) as client:
                resp = await client.post(f"{self.SENDGRID_URL}/mail/send", headers=self._headers(), json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.error("SendGrid email to %s failed: %s", to, e)
            return {"status": "failed", "error": str(e), "to": to}

        sg_id = resp.headers.get("X-Message-Id", message_id)
        self.logger.info("Email sent via SendGrid: %s", sg_id)
        return {"status": "sent", "message_id": sg_id, "to": to, "subject": subject, "timestamp": sent_at}

    async def send_notification(self, to: str, title: str, body: str) -> dict[str, Any]:
        """Wrap an in-app notification in the standard CertFlow email layout."""
        link = f"{settings.APP_URL}/notifications"
        html_body = (
            f"<h2>{html.escape(title)}</h2>"
            f"<p>{html.escape(body)}</p>"
            f'<p><a href="{link}">Open CertFlow</a></p>'
        )
        text_body = f"{title}\n\n{body}\n\n{link}"
        return await self.send_email(to, f"[CertFlow] {title}", html_body, text_body)
