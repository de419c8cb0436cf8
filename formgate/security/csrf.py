"""Server-held CSRF tokens for public form submissions.

Tokens are ``<body>.<sig>`` where body is base64url JSON ``{"form", "iat",
"nonce"}`` and sig is an HMAC-SHA256 over body with the configured secret.
A token is bound to one form id and expires after ``max_age`` seconds.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(secret: str, body: str) -> str:
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def issue_csrf_token(secret: str, form_id: str, now: float | None = None) -> str:
    if not secret:
        raise RuntimeError("csrf_secret is required to issue CSRF tokens")
    payload = {
        "form": form_id,
        "iat": int(now if now is not None else time.time()),
        "nonce": secrets.token_urlsafe(16),
    }
    body = _b64url_encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{body}.{_sign(secret, body)}"


def verify_csrf_token(
    secret: str,
    form_id: str,
    token: str | None,
    max_age_seconds: int = 3600,
    now: float | None = None,
) -> bool:
    if not secret or not token:
        return False

    try:
        body, provided_sig = token.strip().split(".", 1)
    except ValueError:
        return False

    if not hmac.compare_digest(provided_sig, _sign(secret, body)):
        return False

    try:
        payload = json.loads(_b64url_decode(body))
    except (ValueError, UnicodeDecodeError):
        return False

    if not isinstance(payload, dict) or payload.get("form") != form_id:
        return False

    issued = payload.get("iat")
    if not isinstance(issued, int):
        return False
    current = int(now if now is not None else time.time())
    return 0 <= current - issued <= max_age_seconds
