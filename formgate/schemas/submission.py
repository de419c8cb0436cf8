"""Submission and stored-response schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

FieldValue = Union[str, list[str]]
RawSubmission = dict[str, FieldValue]

INTERNAL_KEYS = ("_gotcha", "_csrf")


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SubmissionMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ip: str | None = None
    user_agent: str | None = Field(default=None, alias="userAgent")


class StoredResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    timestamp: str
    form_id: str | None = Field(default=None, alias="formId")
    form_title: str | None = Field(default=None, alias="formTitle")
    data: dict[str, Any] = {}
    metadata: SubmissionMetadata | None = None

    def to_record(self) -> dict:
        """JSON-ready dict with the camelCase keys of the storage artifact."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SubmissionResult(BaseModel):
    accepted: bool
    kind: str = "accepted"
    status_code: int = 200
    errors: list[str] = []
    warnings: list[str] = []
    retry_after: int | None = None
    notification: str | None = None
    response: StoredResponse | None = None

    def to_payload(self) -> dict:
        payload: dict = {"accepted": self.accepted}
        if self.errors:
            payload["errors"] = list(self.errors)
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        if self.response is not None:
            payload["responseId"] = self.response.timestamp
        return payload
