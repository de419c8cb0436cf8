"""Input sanitization and format checks shared across the pipeline."""

from __future__ import annotations

import re

from pydantic import AnyUrl, TypeAdapter, ValidationError

_HTML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}
_HTML_ESCAPE_RE = re.compile(r"[&<>\"'/]")

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]")
_DOT_RUN_RE = re.compile(r"\.\.+")
MAX_FILENAME_LENGTH = 255

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_url_adapter = TypeAdapter(AnyUrl)


def escape_html(value: object) -> str:
    """Entity-escape ``& < > " ' /`` in the text form of *value*."""
    if value is None:
        return ""
    return _HTML_ESCAPE_RE.sub(lambda m: _HTML_ESCAPES[m.group(0)], str(value))


def sanitize_filename(filename: str) -> str:
    """Reduce *filename* to ``[A-Za-z0-9_.-]`` with no ``..`` runs.

    Idempotent: ``sanitize_filename(sanitize_filename(x)) == sanitize_filename(x)``.
    """
    cleaned = _UNSAFE_FILENAME_RE.sub("_", filename or "")
    cleaned = _DOT_RUN_RE.sub(".", cleaned)
    return cleaned[:MAX_FILENAME_LENGTH]


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.fullmatch(value or ""))


def is_valid_url(value: str) -> bool:
    """True when *value* parses as an absolute URL."""
    if not value or value != value.strip():
        return False
    try:
        _url_adapter.validate_python(value)
    except ValidationError:
        return False
    return True
