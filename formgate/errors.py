"""Typed failures for the submission pipeline.

Every stage raises one of these; the pipeline converts them into a
``SubmissionResult`` and the HTTP layer maps ``status_code`` onto the
response.
"""

from __future__ import annotations


class FormgateError(Exception):
    """Base class for all pipeline and configuration failures."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str = "", *, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = list(errors or ([message] if message else []))


class SpamRejected(FormgateError):
    """Honeypot field was filled in."""

    kind = "spam_rejected"
    status_code = 400


class CsrfRejected(FormgateError):
    """CSRF token missing, forged or expired."""

    kind = "csrf_rejected"
    status_code = 403


class RateLimited(FormgateError):
    kind = "rate_limited"
    status_code = 429

    def __init__(self, message: str = "", *, retry_after: int = 1) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ValidationFailed(FormgateError):
    """One or more fields failed validation; ``errors`` has all of them."""

    kind = "validation_failed"
    status_code = 422


class StorageUnavailable(FormgateError):
    """Response artifact could not be read or written."""

    kind = "storage_unavailable"
    status_code = 503


class NotifyFailed(FormgateError):
    """Mail transport errored or timed out. Never fatal to a submission."""

    kind = "notify_failed"
    status_code = 200


class UnsupportedStorageFormat(FormgateError):
    kind = "unsupported_storage_format"
    status_code = 500


class InvalidFormSchema(FormgateError):
    kind = "invalid_form_schema"
    status_code = 500


class FormNotFound(FormgateError):
    kind = "form_not_found"
    status_code = 404


class NoResponses(FormgateError):
    kind = "no_responses"
    status_code = 404
