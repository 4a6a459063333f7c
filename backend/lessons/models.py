"""Lesson part records and the input models used to create/update them."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.functional_validators import field_validator

from lessons.config import get_title_max_length


@dataclass
class Part:
    id: str
    lesson_id: str
    title: str
    position: int
    body_md: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def normalize_title(value: object) -> str:
    if value is None or not isinstance(value, str):
        raise ValueError("invalid_title")
    trimmed = value.strip()
    if not trimmed or len(trimmed) > get_title_max_length():
        raise ValueError("invalid_title")
    return trimmed


def _validation_code(exc: ValidationError) -> str:
    """Collapse a pydantic report into the short code of its first error."""
    err = exc.errors()[0]
    original = (err.get("ctx") or {}).get("error")
    if isinstance(original, ValueError):
        return str(original)
    if err.get("type") == "extra_forbidden":
        return "unknown_field"
    field = err["loc"][0] if err.get("loc") else "payload"
    return f"invalid_{field}"


def _reject_fields(data: Mapping[str, Any], codes: Mapping[str, str]) -> None:
    for name, code in codes.items():
        if name in data:
            raise ValueError(code)


class PartCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lesson_id: str = Field(..., min_length=1)
    title: str
    body_md: Optional[str] = None

    @field_validator("lesson_id")
    @classmethod
    def _strip_lesson(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("invalid_lesson_id")
        return v

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        return normalize_title(v)

    @classmethod
    def parse(cls, data: "PartCreate | Mapping[str, Any]") -> "PartCreate":
        """Validate a mapping; positions are assigned by the store, never by callers."""
        if isinstance(data, cls):
            return data
        _reject_fields(data, {"position": "position_not_allowed", "id": "id_not_allowed"})
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise ValueError(_validation_code(exc)) from exc


class PartUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    body_md: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _title(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("invalid_title")
        return normalize_title(v)

    @classmethod
    def parse(cls, data: "PartUpdate | Mapping[str, Any]") -> "PartUpdate":
        if isinstance(data, cls):
            return data
        _reject_fields(
            data,
            {
                "position": "position_read_only",
                "lesson_id": "lesson_id_read_only",
                "id": "id_read_only",
            },
        )
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise ValueError(_validation_code(exc)) from exc

    def changes(self) -> dict:
        """Only the fields the caller actually sent."""
        return self.model_dump(exclude_unset=True)


__all__ = ["Part", "PartCreate", "PartUpdate", "normalize_title"]
