"""FastAPI dependencies for the submission service."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Request

from .config import settings
from .services.pipeline_svc import SubmissionService, build_submission_service


@lru_cache(maxsize=1)
def get_submission_service() -> SubmissionService:
    """Process-wide service; rate windows and schema cache live as long as it does."""
    return build_submission_service(settings)


def client_ip(request: Request) -> str | None:
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        if forwarded.strip():
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
