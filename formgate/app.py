"""FastAPI application for Formgate."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if not settings.csrf_enabled:
        logger.warning("FORMGATE_CSRF_SECRET is not set; CSRF tokens are not checked")
    if settings.default_smtp is None:
        logger.info("No global SMTP account configured; only forms with their own smtp block send email")
    yield


app = FastAPI(title=settings.app_title, lifespan=lifespan)

# Import and register routers
from .routers import forms, health, submissions  # noqa: E402

app.include_router(submissions.router)
app.include_router(forms.router)
app.include_router(health.router)
