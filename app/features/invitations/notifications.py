"""
Out-of-band delivery of invitations.

Rendering and sending the actual email is someone else's job; a notifier
hands the invitation to that channel and raises NotificationError when the
channel refuses it.
"""
from typing import Optional
import httpx

from app.core import config
from app.features.invitations.models import Invitation
from app.utils import get_logger


log = get_logger(__name__)


class NotificationError(Exception):
    """The delivery channel did not accept the invitation."""


class InvitationNotifier:
    """Base notifier. Subclasses deliver the invitation somewhere."""

    async def send(self, invitation: Invitation) -> None:
        raise NotImplementedError


class LogNotifier(InvitationNotifier):
    """Writes the invitation to the log. Default when no webhook is configured."""

    async def send(self, invitation: Invitation) -> None:
        log.info(
            f"Invitation {invitation.id} for {invitation.email} to org {invitation.organization_id} "
            f"(expires {invitation.expiry_at.isoformat()})"
        )


class WebhookNotifier(InvitationNotifier):
    """POSTs the invitation as JSON to a webhook that sends the email."""

    def __init__(self, url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def send(self, invitation: Invitation) -> None:
        payload = {
            "event": "invitation.created",
            "invitation_id": invitation.id,
            "email": invitation.email,
            "organization_id": invitation.organization_id,
            "role_id": invitation.role_id,
            "invited_by_id": invitation.invited_by_id,
            "expiry_at": invitation.expiry_at.isoformat(),
        }

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            log.warning(f"Webhook delivery of invitation {invitation.id} failed: {e}")
            raise NotificationError(str(e)) from e

        log.info(f"Delivered invitation {invitation.id} to webhook ({response.status_code})")


def get_notifier() -> InvitationNotifier:
    """
    FastAPI dependency returning the configured notifier.

    Tests override it with app.dependency_overrides.
    """
    if config.INVITATION_WEBHOOK_URL:
        return WebhookNotifier(config.INVITATION_WEBHOOK_URL)
    return LogNotifier()
