"""Form schema models (the JSON form definition)."""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..security.sanitize import is_valid_email


class FieldType(str, Enum):
    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    TEXTAREA = "textarea"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    SCALE = "scale"
    DATE = "date"
    NUMBER = "number"

    @classmethod
    def resolve(cls, raw: str | None) -> FieldType:
        """Map a schema type string onto a variant; unknown types are free text."""
        key = (raw or "").strip().lower()
        key = _FIELD_TYPE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return cls.TEXT

    @property
    def has_options(self) -> bool:
        return self in (FieldType.SELECT, FieldType.RADIO, FieldType.CHECKBOX)

    @property
    def multi_valued(self) -> bool:
        return self is FieldType.CHECKBOX


_FIELD_TYPE_ALIASES = {"dropdown": "select", "rating": "scale"}

STORAGE_FORMATS = ("json", "csv")


class FieldSpec(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str
    type: str = "text"
    label: str | None = None
    required: bool = False
    min: int | float | None = None
    max: int | float | None = None
    max_length: int | None = Field(default=None, alias="maxLength", ge=0)
    options: list[str] = []
    placeholder: str | None = None

    @property
    def field_type(self) -> FieldType:
        return FieldType.resolve(self.type)

    @property
    def display_label(self) -> str:
        return self.label or self.name

    @model_validator(mode="after")
    def _options_for_choice_fields(self) -> FieldSpec:
        if self.field_type.has_options and not self.options:
            raise ValueError(f"field '{self.name}' of type {self.type} requires options")
        return self


class SmtpAuth(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user: str
    password: str = Field(default="", alias="pass")


class SmtpConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    host: str
    port: int = 465
    secure: bool = True
    auth: SmtpAuth
    from_address: str | None = Field(default=None, alias="from")

    @property
    def sender(self) -> str:
        return self.from_address or self.auth.user


class EmailConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    to: list[str]
    smtp: SmtpConfig | None = None

    @field_validator("to", mode="before")
    @classmethod
    def _split_recipients(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple)):
            return [str(v).strip() for v in value if str(v).strip()]
        return value

    @field_validator("to")
    @classmethod
    def _valid_recipients(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one recipient is required")
        for address in value:
            if not is_valid_email(address):
                raise ValueError(f"invalid recipient email: {address}")
        return value


class SubmitConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    storage: str | None = None
    email: EmailConfig | None = None
    action: str | None = None
    method: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def _bare_address(cls, value: Any) -> Any:
        # "owner@example.com" or ["a@x.com", "b@x.com"] -> {"to": ...}
        if isinstance(value, (str, list)):
            return {"to": value}
        return value

    @property
    def storage_format(self) -> str | None:
        """``json``/``csv`` from the storage extension, None if unrecognized."""
        if not self.storage:
            return None
        suffix = PurePosixPath(self.storage.replace("\\", "/")).suffix.lower().lstrip(".")
        return suffix if suffix in STORAGE_FORMATS else None


class FormSchema(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str | None = None
    title: str = "Untitled form"
    description: str | None = None
    fields: list[FieldSpec] = []
    submit: SubmitConfig = Field(default_factory=SubmitConfig)

    @model_validator(mode="before")
    @classmethod
    def _default_field_names(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("fields"), list):
            return data
        fields = []
        for index, raw in enumerate(data["fields"]):
            if isinstance(raw, dict) and not raw.get("name"):
                raw = {**raw, "name": f"field_{index}"}
            fields.append(raw)
        return {**data, "fields": fields}

    @model_validator(mode="after")
    def _unique_field_names(self) -> FormSchema:
        seen: set[str] = set()
        for field in self.fields:
            if field.name in seen:
                raise ValueError(f"duplicate field name: {field.name}")
            seen.add(field.name)
        return self

    @property
    def form_id(self) -> str:
        return self.id or self.title

    def field(self, name: str) -> FieldSpec | None:
        for field in self.fields:
            if field.name == name:
                return field
        return None
