"""Submission pipeline - guard, validate, persist, notify.

Stages run in a fixed order:

  honeypot -> csrf -> rate limit -> validate -> persist -> notify

Any stage before persistence may reject the submission. Once a response is
stored it is never retracted: a failed notification only adds a warning.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from ..errors import FormgateError, NotifyFailed, StorageUnavailable, ValidationFailed
from ..schemas.form import FormSchema
from ..schemas.submission import (
    INTERNAL_KEYS,
    RawSubmission,
    StoredResponse,
    SubmissionMetadata,
    SubmissionResult,
    utc_timestamp,
)
from ..security.guard import AbuseGuard
from ..security.rate_limit import RateWindowStore, SlidingWindowRateLimiter
from .form_svc import FormRegistry
from .mailer import MailSender, SmtpSender
from .notify_svc import Notifier, NotifyStatus
from .storage_svc import ResponseStore, StorageResult, form_key_for
from .validation_svc import error_messages, validate

logger = logging.getLogger(__name__)


def normalize_submission(raw: Mapping[str, Any] | None) -> RawSubmission:
    """Coerce decoded request values to ``str`` or ``list[str]``."""
    data: RawSubmission = {}
    for key, value in (raw or {}).items():
        if isinstance(value, (list, tuple)):
            data[str(key)] = ["" if v is None else str(v) for v in value]
        elif value is None:
            data[str(key)] = ""
        else:
            data[str(key)] = str(value)
    return data


class SubmissionPipeline:
    def __init__(self, guard: AbuseGuard, store: ResponseStore, notifier: Notifier) -> None:
        self.guard = guard
        self.store = store
        self.notifier = notifier

    @property
    def internal_keys(self) -> set[str]:
        return {*INTERNAL_KEYS, self.guard.honeypot_field, self.guard.csrf_field}

    def clean_data(self, raw: RawSubmission) -> RawSubmission:
        internal = self.internal_keys
        return {k: v for k, v in raw.items() if k not in internal}

    def build_response(
        self, schema: FormSchema, raw: RawSubmission, meta: SubmissionMetadata
    ) -> StoredResponse:
        return StoredResponse(
            timestamp=utc_timestamp(),
            form_id=schema.form_id,
            form_title=schema.title,
            data=self.clean_data(raw),
            metadata=meta,
        )

    async def persist(self, schema: FormSchema, response: StoredResponse) -> StorageResult:
        storage = schema.submit.storage
        fmt = schema.submit.storage_format
        try:
            return await asyncio.to_thread(self.store.append, form_key_for(storage), response, fmt)
        except FormgateError:
            raise
        except Exception as exc:
            logger.exception("Unexpected storage failure for form %s", schema.form_id)
            raise StorageUnavailable(f"Could not store response: {exc}") from exc

    async def submit(
        self,
        schema: FormSchema,
        raw: Mapping[str, Any] | None,
        meta: SubmissionMetadata | None = None,
        now: float | None = None,
    ) -> SubmissionResult:
        meta = meta or SubmissionMetadata()
        data = normalize_submission(raw)
        identifier = meta.ip or "unknown"

        try:
            await self.guard.screen(schema.form_id, identifier, data, now)

            errors = validate(data, schema)
            if errors:
                raise ValidationFailed("Validation failed", errors=error_messages(errors))

            response = self.build_response(schema, data, meta)
            if schema.submit.storage:
                stored = await self.persist(schema, response)
                logger.info(
                    "Stored response for %s in %s (%d total)",
                    schema.form_id, stored.path.name, stored.count,
                )
        except FormgateError as exc:
            log = logger.error if exc.status_code >= 500 else logger.info
            log("Submission to %s rejected (%s): %s", schema.form_id, exc.kind, "; ".join(exc.errors))
            return SubmissionResult(
                accepted=False,
                kind=exc.kind,
                status_code=exc.status_code,
                errors=exc.errors,
                retry_after=getattr(exc, "retry_after", None),
            )

        warnings: list[str] = []
        notification = None
        if schema.submit.email is not None:
            outcome = await self.notifier.notify(schema, response)
            notification = outcome.status.value
            if outcome.status is NotifyStatus.FAILED:
                warnings.append(NotifyFailed(outcome.detail).message)

        return SubmissionResult(
            accepted=True,
            warnings=warnings,
            response=response,
            notification=notification,
        )


class SubmissionService:
    """Pipeline entry point keyed by form id."""

    def __init__(self, registry: FormRegistry, pipeline: SubmissionPipeline) -> None:
        self.registry = registry
        self.pipeline = pipeline

    async def submit(
        self,
        form_id: str,
        raw: Mapping[str, Any] | None,
        meta: SubmissionMetadata | None = None,
    ) -> SubmissionResult:
        try:
            schema = self.registry.get(form_id)
        except FormgateError as exc:
            logger.warning("Submission to %s refused: %s", form_id, exc.message)
            return SubmissionResult(
                accepted=False, kind=exc.kind, status_code=exc.status_code, errors=exc.errors
            )
        return await self.pipeline.submit(schema, raw, meta)


def build_submission_service(settings_obj, sender: MailSender | None = None) -> SubmissionService:
    """Wire the pipeline from a ``FormgateSettings``-like object."""
    limiter = SlidingWindowRateLimiter(
        max_requests=settings_obj.rate_limit_max_requests,
        window_seconds=settings_obj.rate_limit_window_seconds,
        store=RateWindowStore(settings_obj.rate_limit_max_identifiers),
    )
    guard = AbuseGuard(
        limiter,
        honeypot_field=settings_obj.honeypot_field,
        csrf_field=settings_obj.csrf_field,
        csrf_secret=settings_obj.csrf_secret.strip(),
        csrf_max_age_seconds=settings_obj.csrf_max_age_seconds,
    )
    notifier = Notifier(
        sender or SmtpSender(settings_obj.smtp_timeout_seconds),
        default_smtp=settings_obj.default_smtp,
        timeout_seconds=settings_obj.smtp_timeout_seconds,
    )
    pipeline = SubmissionPipeline(guard, ResponseStore(settings_obj.storage_path), notifier)
    return SubmissionService(FormRegistry(settings_obj.forms_path), pipeline)
