from __future__ import annotations

from dataclasses import dataclass
from html import escape
import logging
import time

import httpx

from venuedesk.core.config import Settings
from venuedesk.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

EMAIL_INTEGRATION = "email.resend"
EMAIL_FAILED_COUNTER = "email_send_failed"


@dataclass(frozen=True)
class EmailDeliveryResult:
    # Summarize delivery attempts; callers log it and move on.
    sent: bool
    status_code: int | None
    message: str


def build_invite_link(settings: Settings, token: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/set-password?token={token}"


def render_invitation_email(
    *,
    first_name: str,
    inviter_name: str,
    venue_names: str,
    invite_link: str,
    ttl_days: int,
) -> str:
    return (
        "<!DOCTYPE html><html><body>"
        f"<p>Hi {escape(first_name)},</p>"
        f"<p><strong>{escape(inviter_name)}</strong> has invited you to join their team as a venue manager.</p>"
        f"<p>Your venue access: {escape(venue_names or 'Selected venues')}</p>"
        f'<p><a href="{escape(invite_link, quote=True)}">Accept Invitation</a></p>'
        f"<p>This invitation expires in <strong>{ttl_days} days</strong>.</p>"
        "</body></html>"
    )


def render_reminder_email(*, first_name: str | None, invite_link: str, ttl_days: int) -> str:
    greeting = f"Hi {escape(first_name)}," if first_name else "Hi,"
    return (
        "<!DOCTYPE html><html><body>"
        f"<p>{greeting}</p>"
        "<p>This is a reminder that you have a pending invitation to manage venues.</p>"
        f'<p><a href="{escape(invite_link, quote=True)}">Accept Invitation</a></p>'
        f"<p>The link is valid for another <strong>{ttl_days} days</strong>.</p>"
        "</body></html>"
    )


class EmailSender:
    """Best-effort transactional email through the provider HTTP API.

    Never raises for delivery problems; the caller's primary write has already
    succeeded and only gets an :class:`EmailDeliveryResult` back.
    """

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._settings.resend_api_key)

    async def send(self, *, to: str, subject: str, html: str) -> EmailDeliveryResult:
        settings = self._settings
        if not self.enabled:
            logger.warning("email_send_skipped reason=no_api_key to=%s", to)
            return EmailDeliveryResult(sent=False, status_code=None, message="Email provider is not configured")

        payload = {"from": settings.email_from, "to": [to], "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {settings.resend_api_key}"}
        timeout = settings.email_timeout_ms / 1000.0
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(settings.email_api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            record_external_call(
                integration=EMAIL_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            increment_counter(EMAIL_FAILED_COUNTER)
            logger.warning("email_send_failed to=%s subject=%s", to, subject, exc_info=exc)
            return EmailDeliveryResult(sent=False, status_code=None, message=str(exc))

        latency_ms = (time.monotonic() - start) * 1000.0
        if response.status_code >= 400:
            record_external_call(integration=EMAIL_INTEGRATION, latency_ms=latency_ms, success=False)
            increment_counter(EMAIL_FAILED_COUNTER)
            logger.warning("email_send_rejected to=%s status=%s", to, response.status_code)
            return EmailDeliveryResult(
                sent=False,
                status_code=response.status_code,
                message=f"Email provider returned {response.status_code}",
            )
        record_external_call(integration=EMAIL_INTEGRATION, latency_ms=latency_ms, success=True)
        logger.info("email_sent to=%s subject=%s", to, subject)
        return EmailDeliveryResult(sent=True, status_code=response.status_code, message="Email sent")

    async def send_invitation(
        self,
        *,
        to: str,
        first_name: str,
        inviter_name: str,
        venue_names: str,
        invite_link: str,
    ) -> EmailDeliveryResult:
        html = render_invitation_email(
            first_name=first_name,
            inviter_name=inviter_name,
            venue_names=venue_names,
            invite_link=invite_link,
            ttl_days=self._settings.invitation_ttl_days,
        )
        return await self.send(to=to, subject="You've been invited to join VenueDesk", html=html)

    async def send_reminder(
        self,
        *,
        to: str,
        first_name: str | None,
        invite_link: str,
    ) -> EmailDeliveryResult:
        html = render_reminder_email(
            first_name=first_name,
            invite_link=invite_link,
            ttl_days=self._settings.invitation_ttl_days,
        )
        return await self.send(to=to, subject="Reminder: your VenueDesk invitation", html=html)
