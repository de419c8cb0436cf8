"""Notification service - email accepted submissions to the form owner."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..schemas.form import FormSchema, SmtpConfig
from ..schemas.submission import INTERNAL_KEYS, StoredResponse
from ..security.sanitize import escape_html
from .mailer import Envelope, MailSender

logger = logging.getLogger(__name__)

_WORD_START_RE = re.compile(r"\b\w")


class NotifyStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class NotificationResult:
    status: NotifyStatus
    recipients: list[str] = field(default_factory=list)
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not NotifyStatus.FAILED


def humanize_key(key: str) -> str:
    """``first_name`` -> ``First Name``."""
    return _WORD_START_RE.sub(lambda m: m.group(0).upper(), key.replace("_", " "))


def display_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join("" if v is None else str(v) for v in value)
    return "" if value is None else str(value)


def labelled_values(
    schema: FormSchema, data: dict[str, Any], skip: Iterable[str] = INTERNAL_KEYS
) -> list[tuple[str, str]]:
    skipped = set(skip)
    rows = []
    for key, value in data.items():
        if key in skipped:
            continue
        spec = schema.field(key)
        label = spec.label if spec and spec.label else humanize_key(key)
        rows.append((label, display_value(value)))
    return rows


def build_subject(schema: FormSchema) -> str:
    return f"New submission: {schema.title}"


def build_text_body(schema: FormSchema, response: StoredResponse) -> str:
    lines = [
        f"New form submission: {schema.title}",
        f"Submitted: {response.timestamp}",
        "",
    ]
    lines.extend(f"{label}: {value}" for label, value in labelled_values(schema, response.data))
    return "\n".join(lines) + "\n"


def build_html_body(schema: FormSchema, response: StoredResponse) -> str:
    cell = "padding: 8px; border: 1px solid #ddd;"
    rows = "".join(
        "<tr>"
        f'<td style="{cell} font-weight: bold;">{escape_html(label)}</td>'
        f'<td style="{cell}">{escape_html(value)}</td>'
        "</tr>"
        for label, value in labelled_values(schema, response.data)
    )
    return (
        f"<h2>New form submission: {escape_html(schema.title)}</h2>"
        f"<p><strong>Submitted:</strong> {escape_html(response.timestamp)}</p>"
        f'<table style="border-collapse: collapse; width: 100%;">{rows}</table>'
    )


class Notifier:
    """Formats a stored response and hands it to an injected mail sender."""

    def __init__(
        self,
        sender: MailSender,
        default_smtp: SmtpConfig | None = None,
        timeout_seconds: float = 15,
    ) -> None:
        self.sender = sender
        self.default_smtp = default_smtp
        self.timeout_seconds = timeout_seconds

    def resolve_smtp(self, schema: FormSchema) -> SmtpConfig | None:
        email = schema.submit.email
        if email is None:
            return None
        return email.smtp or self.default_smtp

    def build_envelope(self, schema: FormSchema, response: StoredResponse, smtp: SmtpConfig) -> Envelope:
        return Envelope(
            from_address=smtp.sender,
            to=list(schema.submit.email.to),
            subject=build_subject(schema),
            text=build_text_body(schema, response),
            html=build_html_body(schema, response),
        )

    async def notify(self, schema: FormSchema, response: StoredResponse) -> NotificationResult:
        email = schema.submit.email
        if email is None:
            return NotificationResult(NotifyStatus.SKIPPED, detail="No recipients configured")

        smtp = self.resolve_smtp(schema)
        if smtp is None:
            logger.warning(
                "No SMTP config found for form %s. Email notification skipped.", schema.form_id
            )
            return NotificationResult(
                NotifyStatus.SKIPPED, list(email.to), detail="No SMTP config found"
            )

        envelope = self.build_envelope(schema, response, smtp)
        try:
            await asyncio.wait_for(self.sender.send(envelope, smtp), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("Email notification to %s timed out", ", ".join(email.to))
            return NotificationResult(
                NotifyStatus.FAILED,
                list(email.to),
                detail=f"Email notification timed out after {self.timeout_seconds:g}s",
            )
        except Exception as exc:
            logger.exception("Failed to send email notification to %s", ", ".join(email.to))
            return NotificationResult(
                NotifyStatus.FAILED, list(email.to), detail=f"Email notification failed: {exc}"
            )

        logger.info("Email notification sent to %s", ", ".join(email.to))
        return NotificationResult(NotifyStatus.SENT, list(email.to))
