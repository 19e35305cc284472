"""Schema-validated completions with one bounded self-correction round-trip."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from castor import schema as schema_validation
from castor.errors import StructuredResponseError
from castor.types import CompletionOptions, OutputFormat

if TYPE_CHECKING:
    from castor.router import LLMRouter
    from castor.schema import ResponseSchema

T = TypeVar("T")

log = logging.getLogger(__name__)

FIX_SUFFIX = "-fix"


def build_correction_prompt(
    original: Any, schema: ResponseSchema, errors: list[dict[str, Any]]
) -> str:
    """Ask the model to repair *original* so it matches *schema*."""
    return (
        "The previous JSON response had validation errors. Please fix the following "
        "JSON to strictly match the provided schema.\n"
        "---\n"
        "ORIGINAL JSON:\n"
        f"{json.dumps(original, default=str)}\n"
        "---\n"
        "SCHEMA:\n"
        f"{json.dumps(schema_validation.schema_json(schema), indent=2)}\n"
        "---\n"
        "VALIDATION ERRORS:\n"
        f"{json.dumps(errors, default=str)}\n"
        "---\n"
        "Return ONLY the corrected, valid JSON object."
    )


class StructuredResponseInvoker:
    """LLM call -> validate -> at most one correction call -> validate."""

    def __init__(self, router: LLMRouter) -> None:
        self._router = router

    async def get_structured_response(
        self,
        resource_name: str,
        prompt: str,
        schema: type[T] | ResponseSchema,
        task_label: str,
    ) -> T:
        """Return a value validated against *schema*.

        Raises:
            StructuredResponseError: The model returned no JSON object, or both
                the original and the corrected response failed validation.
        """
        response = await self._complete_json_object(resource_name, prompt, task_label)
        outcome = schema_validation.validate(schema, response)
        if outcome.ok:
            return outcome.value

        log.warning(
            "Validation failed for '%s' - attempting self-correction: %s",
            task_label,
            outcome.errors,
        )
        correction_prompt = build_correction_prompt(response, schema, outcome.errors)
        corrected = await self._complete_json_object(
            f"{resource_name}{FIX_SUFFIX}", correction_prompt, task_label
        )
        retry_outcome = schema_validation.validate(schema, corrected)
        if retry_outcome.ok:
            return retry_outcome.value

        raise StructuredResponseError(
            f"Failed to get schema valid LLM JSON response even after retry for "
            f"{task_label}: {retry_outcome.message}",
            hint="Tighten the prompt or relax the schema.",
            task_label=task_label,
            errors=retry_outcome.errors,
        )

    async def _complete_json_object(
        self, resource_name: str, prompt: str, task_label: str
    ) -> dict[str, Any]:
        response = await self._router.execute_completion(
            resource_name,
            prompt,
            CompletionOptions(output_format=OutputFormat.JSON),
        )
        if not isinstance(response, dict):
            raise StructuredResponseError(
                f"LLM returned non-object JSON for {resource_name}: "
                f"{type(response).__name__}",
                task_label=task_label,
            )
        return response
