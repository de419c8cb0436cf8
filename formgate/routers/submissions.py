"""Public submission routes (no auth)."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..deps import client_ip, get_submission_service
from ..errors import FormgateError
from ..schemas.submission import RawSubmission, SubmissionMetadata
from ..security.csrf import issue_csrf_token
from ..services.pipeline_svc import SubmissionService

router = APIRouter(tags=["submissions"])


async def _read_body(request: Request) -> RawSubmission | None:
    """Decode a JSON, urlencoded or multipart body; repeated keys become lists."""
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        return body if isinstance(body, dict) else None

    form = await request.form()
    data: RawSubmission = {}
    for key in dict.fromkeys(form.keys()):
        values = [v if isinstance(v, str) else getattr(v, "filename", "") or "" for v in form.getlist(key)]
        if key.endswith("[]"):
            data[key[:-2]] = values
        elif len(values) == 1:
            data[key] = values[0]
        else:
            data[key] = values
    return data


@router.post("/f/{form_id}/submit")
async def submit_form(
    request: Request,
    form_id: str,
    service: SubmissionService = Depends(get_submission_service),
):
    raw = await _read_body(request)
    if raw is None:
        return JSONResponse(
            {"accepted": False, "errors": ["Request body must be a JSON object or form data"]},
            status_code=400,
        )

    meta = SubmissionMetadata(ip=client_ip(request), user_agent=request.headers.get("user-agent"))
    result = await service.submit(form_id, raw, meta)

    headers = {}
    if result.retry_after:
        headers["Retry-After"] = str(result.retry_after)
    return JSONResponse(result.to_payload(), status_code=result.status_code, headers=headers)


@router.get("/f/{form_id}/csrf")
async def form_csrf_token(
    form_id: str,
    service: SubmissionService = Depends(get_submission_service),
):
    guard = service.pipeline.guard
    if not guard.csrf_enabled:
        return JSONResponse({"detail": "CSRF tokens are disabled"}, status_code=404)
    try:
        schema = service.registry.get(form_id)
    except FormgateError as exc:
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)
    return {
        "field": guard.csrf_field,
        "token": issue_csrf_token(guard.csrf_secret, schema.form_id),
    }
