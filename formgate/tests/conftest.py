"""Shared fixtures for Formgate tests."""

from __future__ import annotations

import asyncio
import copy
import json
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from formgate.config import FormgateSettings
from formgate.deps import get_submission_service
from formgate.schemas.form import FormSchema
from formgate.services.form_svc import parse_form_schema
from formgate.services.pipeline_svc import build_submission_service

SMTP_BLOCK = {
    "host": "smtp.example.com",
    "port": 465,
    "auth": {"user": "forms@example.com", "pass": "secret"},
}

CONTACT_FORM = {
    "title": "Contact Us",
    "fields": [
        {"name": "name", "type": "text", "label": "Your Name", "required": True, "maxLength": 50},
        {"name": "email", "type": "email", "label": "Email", "required": True},
        {"name": "interests", "type": "checkbox", "label": "Interests", "options": ["News", "Events", "Jobs"]},
        {"name": "message", "type": "textarea"},
    ],
    "submit": {"storage": "responses/contact.json", "email": {"to": "owner@example.com", "smtp": SMTP_BLOCK}},
}


class RecordingSender:
    """Mail capability double: records envelopes, or fails/stalls on demand."""

    def __init__(self, error: Exception | None = None, delay: float = 0.0) -> None:
        self.error = error
        self.delay = delay
        self.sent = []

    async def send(self, envelope, smtp) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append((envelope, smtp))


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def forms_dir(tmp_path: Path) -> Path:
    path = tmp_path / "forms"
    path.mkdir()
    return path


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    return tmp_path / "responses"


@pytest.fixture
def write_form(forms_dir: Path):
    """Factory fixture: write a schema to forms_dir and return its form id."""
    def _write(form_id: str, schema: dict) -> str:
        (forms_dir / f"{form_id}.json").write_text(json.dumps(schema), encoding="utf-8")
        return form_id
    return _write


@pytest.fixture
def contact_form() -> dict:
    return copy.deepcopy(CONTACT_FORM)


@pytest.fixture
def contact_schema(contact_form: dict) -> FormSchema:
    return parse_form_schema(contact_form, "contact")


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def test_settings(forms_dir: Path, storage_dir: Path) -> FormgateSettings:
    return FormgateSettings(
        forms_dir=str(forms_dir),
        storage_dir=str(storage_dir),
        rate_limit_max_requests=10,
        rate_limit_window_seconds=60,
        csrf_secret="",
        smtp_host=None,
        smtp_user=None,
        smtp_timeout_seconds=1,
    )


@pytest.fixture
def service(test_settings: FormgateSettings, sender: RecordingSender):
    return build_submission_service(test_settings, sender=sender)


@pytest_asyncio.fixture
async def client(service):
    """HTTPX async test client against the Formgate app."""
    from formgate.app import app

    app.dependency_overrides[get_submission_service] = lambda: service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
