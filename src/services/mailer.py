"""Outbound email delivery.

``EmailService`` is the single entry point.  The transport is selected by
``settings.email_provider``:

* ``smtp`` -- stdlib ``smtplib`` with STARTTLS, run in a worker thread so
  the event loop is never blocked.
* ``http`` -- a JSON email API (``POST {email_api_url}`` with a bearer
  key) via ``httpx``.
* ``mock`` -- logs the message and keeps it in an in-process outbox.

Transient transport errors are retried with exponential backoff.  When
every attempt fails, or a transport raises anything else,
:class:`EmailDeliveryError` is raised; delivery errors are never
swallowed here, callers decide how to isolate them.
"""

from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any, Final
from uuid import uuid4

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from src.models.enums import EmailProvider
from src.services.errors import EmailDeliveryError

logger = structlog.get_logger(__name__)

_SMTP_TIMEOUT_SECONDS: Final[float] = 15.0
_HTTP_TIMEOUT_SECONDS: Final[float] = 10.0

# smtplib.SMTPException is an OSError subclass
_TRANSIENT_ERRORS: Final[tuple[type[BaseException], ...]] = (OSError, httpx.HTTPError)


@dataclass(frozen=True, slots=True)
class EmailResult:
    success: bool
    message_id: str
    provider: str


@dataclass(frozen=True, slots=True)
class OutboxMessage:
    to: str
    subject: str
    html: str
    message_id: str


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------


class _EmailTransport:
    """Base class for email transports."""

    name: str = ""

    async def send(self, to: str, subject: str, html: str) -> str:
        """Deliver one message and return the provider's message id."""
        raise NotImplementedError

    async def verify(self) -> bool:
        return True


class _SMTPTransport(_EmailTransport):
    """SMTP submission with STARTTLS (port 587 by default)."""

    name = EmailProvider.SMTP

    def __init__(self, host: str, port: int, user: str, password: str, from_name: str) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._from_name = from_name

    def _build(self, to: str, subject: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self._from_name, self._user))
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain=self._host)
        msg.set_content("This message requires an HTML-capable email client.")
        msg.add_alternative(html, subtype="html")
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=_SMTP_TIMEOUT_SECONDS) as smtp:
            smtp.starttls()
            if self._user:
                smtp.login(self._user, self._password)
            smtp.send_message(msg)

    def _verify_sync(self) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=_SMTP_TIMEOUT_SECONDS) as smtp:
            smtp.starttls()
            if self._user:
                smtp.login(self._user, self._password)
            smtp.noop()

    async def send(self, to: str, subject: str, html: str) -> str:
        msg = self._build(to, subject, html)
        await asyncio.to_thread(self._send_sync, msg)
        return str(msg["Message-ID"])

    async def verify(self) -> bool:
        try:
            await asyncio.to_thread(self._verify_sync)
        except (OSError, smtplib.SMTPException) as exc:
            logger.error("mailer.smtp_verify_failed", host=self._host, port=self._port, error=str(exc))
            return False
        return True


def _message_id_from(response: httpx.Response) -> str:
    """Provider message id from a JSON body; a generated id otherwise."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        found = body.get("id") or body.get("message_id")
        if found:
            return str(found)
    return uuid4().hex


class _HTTPTransport(_EmailTransport):
    """Generic JSON email API."""

    name = EmailProvider.HTTP

    def __init__(self, api_url: str, api_key: str, from_name: str, from_address: str) -> None:
        self._api_url = api_url
        self._api_key = api_key
        self._from_name = from_name
        self._from_address = from_address

    async def send(self, to: str, subject: str, html: str) -> str:
        payload = {
            "from": {"name": self._from_name, "email": self._from_address},
            "to": [to],
            "subject": subject,
            "html": html,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT_SECONDS) as client:
            response = await client.post(self._api_url, json=payload, headers=headers)
            response.raise_for_status()
        return _message_id_from(response)

    async def verify(self) -> bool:
        if not self._api_url or not self._api_key:
            logger.error("mailer.http_not_configured")
            return False
        return True


class _MockTransport(_EmailTransport):
    """Logs instead of sending; keeps every message for inspection."""

    name = EmailProvider.MOCK

    def __init__(self) -> None:
        self.outbox: list[OutboxMessage] = []

    async def send(self, to: str, subject: str, html: str) -> str:
        message_id = f"mock_{uuid4().hex[:12]}"
        self.outbox.append(OutboxMessage(to=to, subject=subject, html=html, message_id=message_id))
        logger.info("mock_email.sent", to=to, subject=subject, length=len(html))
        return message_id


def _build_transport(settings: Any) -> _EmailTransport:
    provider = settings.email_provider
    if provider == EmailProvider.SMTP:
        return _SMTPTransport(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_pass,
            settings.email_from_name,
        )
    if provider == EmailProvider.HTTP:
        return _HTTPTransport(
            settings.email_api_url,
            settings.email_api_key,
            settings.email_from_name,
            settings.smtp_user,
        )
    if provider == EmailProvider.MOCK:
        return _MockTransport()
    raise ValueError(f"Unknown email provider {provider!r}. Supported: {', '.join(EmailProvider)}.")


# ---------------------------------------------------------------------------
# EmailService
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class EmailService:
    """Sends HTML email through the configured transport with retries.

    Parameters
    ----------
    transport:
        The transport to deliver through.
    max_attempts:
        Total attempts per message, including the first.
    wait:
        tenacity wait strategy between attempts.
    """

    transport: _EmailTransport
    max_attempts: int = 3
    wait: wait_base = field(default_factory=lambda: wait_exponential(multiplier=0.5, min=0.5, max=4))

    @classmethod
    def from_settings(cls, settings: Any) -> EmailService:
        service = cls(transport=_build_transport(settings), max_attempts=settings.email_max_attempts)
        logger.info("mailer.initialised", provider=service.provider, max_attempts=service.max_attempts)
        return service

    @classmethod
    def mock(cls) -> EmailService:
        return cls(transport=_MockTransport(), max_attempts=1)

    @property
    def provider(self) -> str:
        return str(self.transport.name)

    @property
    def outbox(self) -> list[OutboxMessage]:
        """Messages captured by the mock transport (empty for real transports)."""
        return getattr(self.transport, "outbox", [])

    async def send_email(self, to: str, subject: str, html: str) -> EmailResult:
        """Send one message; raise :class:`EmailDeliveryError` once retries run out."""
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_TRANSIENT_ERRORS),
                stop=stop_after_attempt(self.max_attempts),
                wait=self.wait,
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "mailer.retrying",
                            to=to,
                            attempt=attempt.retry_state.attempt_number,
                        )
                    message_id = await self.transport.send(to, subject, html)
        except (*_TRANSIENT_ERRORS, RetryError) as exc:
            logger.error("mailer.send_failed", to=to, subject=subject, provider=self.provider, error=str(exc))
            raise EmailDeliveryError(f"Failed to send email to {to}: {exc}") from exc
        except Exception as exc:
            # Not retried; the message may or may not have gone out
            logger.error(
                "mailer.send_error",
                to=to,
                subject=subject,
                provider=self.provider,
                error=str(exc),
                exc_info=True,
            )
            raise EmailDeliveryError(f"Failed to send email to {to}: {exc}") from exc

        logger.info("mailer.sent", to=to, subject=subject, provider=self.provider, message_id=message_id)
        return EmailResult(success=True, message_id=message_id, provider=self.provider)

    async def verify(self) -> bool:
        """Check that the transport is usable; logged, never raised."""
        ok = await self.transport.verify()
        if ok:
            logger.info("mailer.config_valid", provider=self.provider)
        else:
            logger.warning("mailer.config_invalid", provider=self.provider)
        return ok
