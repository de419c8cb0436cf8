"""Outbound mail capability (BYOK SMTP)."""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Protocol

from ..schemas.form import SmtpConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Envelope:
    from_address: str
    to: list[str]
    subject: str
    text: str
    html: str
    headers: dict[str, str] = field(default_factory=dict)

    def to_message(self) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = self.subject
        msg["From"] = self.from_address
        msg["To"] = ", ".join(self.to)
        for name, value in self.headers.items():
            msg[name] = value
        msg.set_content(self.text)
        msg.add_alternative(self.html, subtype="html")
        return msg


class MailSender(Protocol):
    async def send(self, envelope: Envelope, smtp: SmtpConfig) -> None: ...


class SmtpSender:
    """Send envelopes through the form owner's SMTP account.

    ``secure`` selects implicit TLS (port 465 style); otherwise the
    connection is upgraded with STARTTLS when the server offers it.
    """

    def __init__(self, timeout_seconds: float = 15) -> None:
        self.timeout_seconds = timeout_seconds

    async def send(self, envelope: Envelope, smtp: SmtpConfig) -> None:
        await asyncio.to_thread(self._send_sync, envelope, smtp)

    def _send_sync(self, envelope: Envelope, smtp: SmtpConfig) -> None:
        msg = envelope.to_message()
        context = ssl.create_default_context()
        if smtp.secure:
            with smtplib.SMTP_SSL(smtp.host, smtp.port, context=context, timeout=self.timeout_seconds) as server:
                self._login(server, smtp)
                server.send_message(msg)
        else:
            with smtplib.SMTP(smtp.host, smtp.port, timeout=self.timeout_seconds) as server:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls(context=context)
                    server.ehlo()
                self._login(server, smtp)
                server.send_message(msg)
        logger.info("Email sent via SMTP host=%s port=%s to=%s", smtp.host, smtp.port, ", ".join(envelope.to))

    @staticmethod
    def _login(server: smtplib.SMTP, smtp: SmtpConfig) -> None:
        if smtp.auth.user and smtp.auth.password:
            server.login(smtp.auth.user, smtp.auth.password)
