"""Validation service - check a submission against its form's field specs.

``validate`` is total: it never raises, walks fields in schema order and
collects every problem so callers can present them all at once.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..schemas.form import FieldSpec, FieldType, FormSchema
from ..security.sanitize import is_valid_email, is_valid_url


@dataclass(frozen=True)
class ValidationError:
    kind: str
    field: str
    message: str

    def __str__(self) -> str:
        return self.message


Rule = Callable[[FieldSpec, str], list[ValidationError]]

_DATE_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
_INT_RE = re.compile(r"^-?[0-9]+$")
_NUMBER_RE = re.compile(r"^[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?$")
_PHONE_RE = re.compile(r"^\+?[0-9\s().-]+$")
_MIN_PHONE_DIGITS = 7


def _error(field: FieldSpec, kind: str, message: str) -> ValidationError:
    return ValidationError(kind=kind, field=field.name, message=f"{field.display_label} {message}")


def _fmt(number: int | float) -> str:
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return str(number)


def _parse_number(value: str) -> float | None:
    text = value.strip()
    if not _NUMBER_RE.match(text):
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _check_email(field: FieldSpec, value: str) -> list[ValidationError]:
    if is_valid_email(value):
        return []
    return [_error(field, "email", "must be a valid email")]


def _check_url(field: FieldSpec, value: str) -> list[ValidationError]:
    if is_valid_url(value):
        return []
    return [_error(field, "url", "must be a valid URL")]


def _check_number(field: FieldSpec, value: str) -> list[ValidationError]:
    number = _parse_number(value)
    if number is None:
        return [_error(field, "number", "must be a number")]
    errors = []
    if field.min is not None and number < field.min:
        errors.append(_error(field, "min", f"must be at least {_fmt(field.min)}"))
    if field.max is not None and number > field.max:
        errors.append(_error(field, "max", f"must be at most {_fmt(field.max)}"))
    return errors


def _check_scale(field: FieldSpec, value: str) -> list[ValidationError]:
    low = field.min if field.min is not None else 1
    high = field.max if field.max is not None else 5
    if _INT_RE.match(value.strip()) and low <= int(value.strip()) <= high:
        return []
    return [_error(field, "scale", f"must be between {_fmt(low)} and {_fmt(high)}")]


def _check_option(field: FieldSpec, value: str) -> list[ValidationError]:
    if value in field.options:
        return []
    return [_error(field, "option", "must be one of the listed options")]


def _check_date(field: FieldSpec, value: str) -> list[ValidationError]:
    if _DATE_RE.match(value):
        try:
            datetime.strptime(value, "%Y-%m-%d")
            return []
        except ValueError:
            pass
    return [_error(field, "date", "must be a valid date")]


def _check_phone(field: FieldSpec, value: str) -> list[ValidationError]:
    digits = sum(ch.isdigit() for ch in value)
    if _PHONE_RE.match(value.strip()) and digits >= _MIN_PHONE_DIGITS:
        return []
    return [_error(field, "phone", "must be a valid phone number")]


def _free_text(field: FieldSpec, value: str) -> list[ValidationError]:
    return []


RULES: dict[FieldType, Rule] = {
    FieldType.TEXT: _free_text,
    FieldType.TEXTAREA: _free_text,
    FieldType.EMAIL: _check_email,
    FieldType.URL: _check_url,
    FieldType.NUMBER: _check_number,
    FieldType.SCALE: _check_scale,
    FieldType.SELECT: _check_option,
    FieldType.RADIO: _check_option,
    FieldType.CHECKBOX: _check_option,
    FieldType.DATE: _check_date,
    FieldType.PHONE: _check_phone,
}


def field_values(value: object) -> list[str]:
    """Normalize a submitted value to its non-empty text items."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [v for v in value if v is not None]
    else:
        items = [value]
    return [str(v) for v in items if str(v) != ""]


def validate_field(field: FieldSpec, value: object) -> list[ValidationError]:
    values = field_values(value)
    if not values:
        if field.required:
            return [_error(field, "required", "is required")]
        return []

    rule = RULES[field.field_type]
    errors: list[ValidationError] = []
    for item in values:
        errors.extend(rule(field, item))
        if field.max_length is not None and len(item) > field.max_length:
            errors.append(
                _error(field, "max_length", f"exceeds maximum length of {field.max_length}")
            )

    unique: list[ValidationError] = []
    for error in errors:
        if error not in unique:
            unique.append(error)
    return unique


def validate(data: Mapping[str, object] | None, schema: FormSchema) -> list[ValidationError]:
    data = data if isinstance(data, Mapping) else {}
    errors: list[ValidationError] = []
    for field in schema.fields:
        errors.extend(validate_field(field, data.get(field.name)))
    return errors


def error_messages(errors: list[ValidationError]) -> list[str]:
    return [e.message for e in errors]
