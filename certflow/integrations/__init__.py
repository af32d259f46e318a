"""Outbound integrations.

Each client implements ``BaseIntegration`` and runs in mock mode (log only)
until real credentials are configured.
"""

from certflow.integrations.base import BaseIntegration
from certflow.integrations.sendgrid import EmailClient

__all__ = [
    "BaseIntegration",
    "EmailClient",
]
