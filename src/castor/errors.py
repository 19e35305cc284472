"""Exception hierarchy for Castor.

Only configuration-class failures are raised. Transient and non-transient
provider conditions are absorbed by the router and surface as ``None``.
"""

from __future__ import annotations

from typing import Any


class CastorError(Exception):
    """Base exception for all Castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation or resolution failed."""


class StructuredResponseError(CastorError):
    """A structured LLM response could not be obtained, even after self-correction."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        task_label: str | None = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.task_label = task_label
        self.errors = errors or []
