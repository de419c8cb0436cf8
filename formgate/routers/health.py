"""Health and readiness checks."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..deps import get_submission_service
from ..services.pipeline_svc import SubmissionService

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "formgate"}


@router.get("/ready")
async def readiness_check(service: SubmissionService = Depends(get_submission_service)):
    storage_dir = service.pipeline.store.root_dir
    if storage_dir.exists() and not storage_dir.is_dir():
        return JSONResponse(
            {"status": "unavailable", "service": "formgate", "detail": "storage path is not a directory"},
            status_code=503,
        )
    return {"status": "ready", "service": "formgate"}
