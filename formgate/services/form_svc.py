"""Form service - load, check and cache form schemas."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..errors import FormNotFound, InvalidFormSchema, UnsupportedStorageFormat
from ..schemas.form import FormSchema
from ..security.sanitize import sanitize_filename

logger = logging.getLogger(__name__)


def _format_errors(exc: ValidationError) -> list[str]:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        errors.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return errors


def parse_form_schema(raw: Any, form_id: str | None = None) -> FormSchema:
    """Build a ``FormSchema`` from decoded JSON, rejecting bad configuration early."""
    if not isinstance(raw, dict):
        raise InvalidFormSchema("Form schema must be a JSON object")
    if form_id:
        raw = {**raw, "id": form_id}

    try:
        schema = FormSchema.model_validate(raw)
    except ValidationError as exc:
        errors = _format_errors(exc)
        raise InvalidFormSchema("Invalid form schema: " + "; ".join(errors), errors=errors) from exc

    storage = schema.submit.storage
    if storage and schema.submit.storage_format is None:
        raise UnsupportedStorageFormat(f"Unsupported storage format for {storage}. Use .json or .csv")
    return schema


def load_form_schema(path: str | Path, form_id: str | None = None) -> FormSchema:
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise FormNotFound(f"Form not found: {form_id or path.stem}") from exc
    except json.JSONDecodeError as exc:
        raise InvalidFormSchema(f"{path.name} is not valid JSON: {exc.msg}") from exc
    return parse_form_schema(raw, form_id or path.stem)


class FormRegistry:
    """Schemas from ``<forms_dir>/<form_id>.json``, cached for the process lifetime."""

    def __init__(self, forms_dir: str | Path) -> None:
        self.forms_dir = Path(forms_dir)
        self._cache: dict[str, FormSchema] = {}

    def get(self, form_id: str) -> FormSchema:
        key = sanitize_filename(form_id).strip(".")
        if not key:
            raise FormNotFound(f"Form not found: {form_id}")
        schema = self._cache.get(key)
        if schema is None:
            schema = load_form_schema(self.forms_dir / f"{key}.json", key)
            self._cache[key] = schema
            logger.info("Loaded form schema %s (%d fields)", key, len(schema.fields))
        return schema

    def register(self, schema: FormSchema) -> None:
        if not schema.id:
            raise InvalidFormSchema("Registered schemas need an id")
        self._cache[sanitize_filename(schema.id)] = schema

    def list_form_ids(self) -> list[str]:
        ids = set(self._cache)
        if self.forms_dir.is_dir():
            ids.update(p.stem for p in self.forms_dir.glob("*.json"))
        return sorted(ids)

    def clear(self) -> None:
        self._cache.clear()
