"""HTTP surface of the submission server."""

from __future__ import annotations

import json

import pytest

from formgate.deps import get_submission_service
from formgate.services.pipeline_svc import build_submission_service

EMAIL_ONLY = {
    "fields": [{"name": "email", "type": "email", "required": True}],
    "submit": {"storage": "r.json"},
}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_ready(client, storage_dir):
    assert (await client.get("/ready")).status_code == 200
    storage_dir.write_text("oops", encoding="utf-8")
    assert (await client.get("/ready")).status_code == 503


@pytest.mark.asyncio
async def test_list_forms(client, write_form):
    write_form("signup", EMAIL_ONLY)
    write_form("contact", {"fields": []})
    response = await client.get("/forms")
    assert response.json() == {"forms": ["contact", "signup"]}


@pytest.mark.asyncio
async def test_submit_json(client, write_form, storage_dir):
    write_form("signup", EMAIL_ONLY)
    response = await client.post("/f/signup/submit", json={"email": "a@b.com"})
    assert response.status_code == 200
    body = response.json()
    assert body["accepted"] is True
    assert "responseId" in body
    records = json.loads((storage_dir / "r.json").read_text(encoding="utf-8"))
    assert records[0]["metadata"]["ip"] == "127.0.0.1"


@pytest.mark.asyncio
async def test_submit_urlencoded_with_checkbox_list(client, write_form, storage_dir, contact_form):
    write_form("contact", contact_form)
    response = await client.post(
        "/f/contact/submit",
        content="name=Ada&email=ada%40example.com&interests=News&interests=Jobs&_gotcha=",
        headers={"content-type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 200
    records = json.loads((storage_dir / "contact.json").read_text(encoding="utf-8"))
    assert records[0]["data"] == {"name": "Ada", "email": "ada@example.com", "interests": ["News", "Jobs"]}


@pytest.mark.asyncio
async def test_bracketed_keys_become_lists(client, write_form, storage_dir, contact_form):
    write_form("contact", contact_form)
    response = await client.post(
        "/f/contact/submit",
        data={"name": "Ada", "email": "ada@example.com", "interests[]": "Events"},
    )
    assert response.status_code == 200
    records = json.loads((storage_dir / "contact.json").read_text(encoding="utf-8"))
    assert records[0]["data"]["interests"] == ["Events"]


@pytest.mark.asyncio
async def test_validation_errors_are_422(client, write_form, storage_dir):
    write_form("signup", EMAIL_ONLY)
    response = await client.post("/f/signup/submit", json={"email": "nope"})
    assert response.status_code == 422
    assert response.json() == {"accepted": False, "errors": ["email must be a valid email"]}
    assert not (storage_dir / "r.json").exists()


@pytest.mark.asyncio
async def test_honeypot_is_400(client, write_form):
    write_form("signup", EMAIL_ONLY)
    response = await client.post("/f/signup/submit", json={"email": "a@b.com", "_gotcha": "x"})
    assert response.status_code == 400
    assert response.json()["errors"] == ["Spam detected"]


@pytest.mark.asyncio
async def test_unknown_form_is_404(client):
    response = await client.post("/f/missing/submit", json={})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_non_object_body_is_400(client, write_form):
    write_form("signup", EMAIL_ONLY)
    response = await client.post("/f/signup/submit", json=["a@b.com"])
    assert response.status_code == 400
    malformed = await client.post(
        "/f/signup/submit", content="{oops", headers={"content-type": "application/json"}
    )
    assert malformed.status_code == 400


@pytest.mark.asyncio
async def test_rate_limit_sets_retry_after(client, test_settings, write_form):
    from formgate.app import app

    limited = build_submission_service(test_settings.model_copy(update={"rate_limit_max_requests": 1}))
    app.dependency_overrides[get_submission_service] = lambda: limited
    write_form("signup", EMAIL_ONLY)

    assert (await client.post("/f/signup/submit", json={"email": "a@b.com"})).status_code == 200
    response = await client.post("/f/signup/submit", json={"email": "a@b.com"})
    assert response.status_code == 429
    assert int(response.headers["retry-after"]) >= 1
    assert response.json()["accepted"] is False


@pytest.mark.asyncio
async def test_csrf_endpoint_disabled_by_default(client, write_form):
    write_form("signup", EMAIL_ONLY)
    assert (await client.get("/f/signup/csrf")).status_code == 404


@pytest.mark.asyncio
async def test_csrf_round_trip(client, test_settings, write_form):
    from formgate.app import app

    protected = build_submission_service(test_settings.model_copy(update={"csrf_secret": "s3cret"}))
    app.dependency_overrides[get_submission_service] = lambda: protected
    write_form("signup", EMAIL_ONLY)

    assert (await client.post("/f/signup/submit", json={"email": "a@b.com"})).status_code == 403
    assert (await client.get("/f/missing/csrf")).status_code == 404

    issued = (await client.get("/f/signup/csrf")).json()
    assert issued["field"] == "_csrf"
    response = await client.post("/f/signup/submit", json={"email": "a@b.com", "_csrf": issued["token"]})
    assert response.status_code == 200
