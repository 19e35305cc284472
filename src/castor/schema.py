"""Schema validation for structured completions.

Schemas are Pydantic ``BaseModel`` subclasses or any type that
``pydantic.TypeAdapter`` accepts (``dict[str, int]``, ``list[Model]``, ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cache
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

ResponseSchema = type[BaseModel] | Any


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of validating raw content against a schema."""

    ok: bool
    value: Any = None
    #: Field-level errors with ``loc``, ``msg`` and ``type`` keys.
    errors: list[dict[str, Any]] = field(default_factory=list)
    message: str = ""


@cache
def _cached_adapter(schema: Any) -> TypeAdapter[Any]:
    return TypeAdapter(schema)


def _adapter_for(schema: Any) -> TypeAdapter[Any]:
    try:
        return _cached_adapter(schema)
    except TypeError:  # unhashable schema object
        return TypeAdapter(schema)


def _is_model(schema: Any) -> bool:
    return isinstance(schema, type) and issubclass(schema, BaseModel)


def _error_details(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in exc.errors(include_url=False)
    ]


def validate(schema: ResponseSchema, value: Any) -> ValidationOutcome:
    """Validate *value* against *schema* without raising."""
    try:
        if _is_model(schema):
            parsed = schema.model_validate(value)
        else:
            parsed = _adapter_for(schema).validate_python(value)
    except ValidationError as exc:
        return ValidationOutcome(ok=False, errors=_error_details(exc), message=str(exc))
    return ValidationOutcome(ok=True, value=parsed)


def schema_json(schema: ResponseSchema) -> dict[str, Any]:
    """Return the JSON Schema for *schema*."""
    if _is_model(schema):
        return schema.model_json_schema()
    return _adapter_for(schema).json_schema()
