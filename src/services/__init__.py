"""External integrations for the drift monitor."""

from services.database import create_session_factory
from services.email_relay import EmailRelayTransport
from services.webhooks import SlackWebhookTransport, TeamsWebhookTransport

__all__ = [
    "create_session_factory",
    "EmailRelayTransport",
    "SlackWebhookTransport",
    "TeamsWebhookTransport",
]
