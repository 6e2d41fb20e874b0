"""Alarm notification delivery.

Responsibilities:
- Deliver an already rendered (subject, body) to a destination
- Report failures to the caller by raising

Does NOT know about alarms or networks.
"""
from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

import httpx

from config import Settings

logger = logging.getLogger("netmon.notifier")


class NotifierError(Exception):
    """Delivery failed."""


class Notifier:
    """Base notifier: subclasses implement notify()."""

    async def notify(self, destination: str, subject: str, body: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class LogNotifier(Notifier):
    """Writes the message to the log instead of delivering it."""

    async def notify(self, destination: str, subject: str, body: str) -> None:
        logger.warning("NOTIFY to=%s subject=%s\n%s", destination or "-", subject, body)


class SmtpNotifier(Notifier):

    def __init__(
        self,
        host: str,
        port: int,
        *,
        from_address: str,
        from_name: str = "",
        username: str = "",
        password: str = "",
        starttls: bool = True,
        timeout: float = 15.0,
    ):
        self.host = host
        self.port = port
        self.from_address = from_address
        self.from_name = from_name
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def build_message(self, destination: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = destination
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def _send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)

    async def notify(self, destination: str, subject: str, body: str) -> None:
        msg = self.build_message(destination, subject, body)
        try:
            await asyncio.to_thread(self._send, msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotifierError(f"SMTP delivery to {destination} failed: {exc}") from exc
        logger.info("Alert email sent to %s", destination)


class WebhookNotifier(Notifier):
    """POSTs {destination, subject, body} as JSON, retrying 5xx / connection errors."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 15.0,
        attempts: int = 3,
        backoff: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.attempts = attempts
        self.backoff = backoff
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def notify(self, destination: str, subject: str, body: str) -> None:
        payload = {"destination": destination, "subject": subject, "body": body}
        last_exc: Exception | None = None

        for attempt in range(self.attempts):
            try:
                resp = await self._client.post(self.url, json=payload)
                resp.raise_for_status()
                logger.info("Alert webhook delivered: %s", subject)
                return
            except httpx.HTTPStatusError as exc:
                last_exc = exc
                if exc.response.status_code < 500 or attempt == self.attempts - 1:
                    break
                delay = self.backoff * 2 ** attempt
                logger.warning(
                    "Webhook HTTP %d, retry %d/%d in %.1fs",
                    exc.response.status_code, attempt + 1, self.attempts, delay,
                )
                await asyncio.sleep(delay)
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                last_exc = exc
                if attempt == self.attempts - 1:
                    break
                delay = self.backoff * 2 ** attempt
                logger.warning(
                    "Webhook connection error: %s, retry %d/%d in %.1fs",
                    exc, attempt + 1, self.attempts, delay,
                )
                await asyncio.sleep(delay)

        raise NotifierError(f"Webhook delivery failed: {last_exc}") from last_exc

    async def close(self) -> None:
        await self._client.aclose()


def build_notifier(settings: Settings) -> Notifier:
    backend = settings.NOTIFIER_BACKEND.lower()
    if backend == "smtp":
        return SmtpNotifier(
            settings.SMTP_HOST,
            settings.SMTP_PORT,
            from_address=settings.SMTP_FROM_ADDRESS,
            from_name=settings.SMTP_FROM_NAME,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            starttls=settings.SMTP_STARTTLS,
            timeout=settings.NOTIFIER_TIMEOUT,
        )
    if backend == "webhook":
        if not settings.WEBHOOK_URL:
            raise ValueError("NOTIFIER_BACKEND=webhook requires WEBHOOK_URL")
        return WebhookNotifier(settings.WEBHOOK_URL, timeout=settings.NOTIFIER_TIMEOUT)
    if backend != "log":
        raise ValueError(f"Unknown NOTIFIER_BACKEND: {settings.NOTIFIER_BACKEND}")
    return LogNotifier()
