"""Form listing route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..deps import get_submission_service
from ..services.pipeline_svc import SubmissionService

router = APIRouter(tags=["forms"])


@router.get("/forms")
async def form_list(service: SubmissionService = Depends(get_submission_service)):
    return {"forms": service.registry.list_form_ids()}
