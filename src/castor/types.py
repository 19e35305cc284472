"""Shared value types for the invocation layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import math
from typing import TYPE_CHECKING, Any, Protocol

from castor.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from castor.schema import ResponseSchema

#: Rough characters-per-token ratio used when a provider does not report usage.
CHARS_PER_TOKEN_ESTIMATE = 2.8


class ModelQuality(str, Enum):
    """Preference tier of a completion model."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class LLMPurpose(str, Enum):
    """What a single invocation is for."""

    EMBEDDINGS = "embeddings"
    COMPLETIONS = "completions"


class OutputFormat(str, Enum):
    """Desired shape of completion content."""

    TEXT = "text"
    JSON = "json"


class ResponseStatus(str, Enum):
    """Outcome of one provider attempt."""

    UNKNOWN = "unknown"
    COMPLETED = "completed"
    OVERLOADED = "overloaded"
    EXCEEDED = "exceeded"
    INVALID = "invalid"
    ERRORED = "errored"


@dataclass(frozen=True)
class ModelMetadata:
    """Static limits for one model a provider exposes."""

    urn: str
    purpose: LLMPurpose
    max_total_tokens: int
    dimensions: int | None = None
    max_completion_tokens: int | None = None


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting reported with a response.

    Negative values are provider sentinels for "unknown".
    """

    prompt_tokens: int = -1
    completion_tokens: int = -1
    max_total_tokens: int = -1


def normalize_token_usage(
    usage: TokenUsage | None,
    model_metadata: ModelMetadata | None,
    prompt: str,
) -> TokenUsage:
    """Replace unknown (negative) token counts with usable estimates."""
    usage = usage or TokenUsage()
    prompt_tokens = usage.prompt_tokens
    if prompt_tokens < 0:
        prompt_tokens = math.floor(len(prompt) / CHARS_PER_TOKEN_ESTIMATE) + 1
    completion_tokens = max(usage.completion_tokens, 0)
    max_total_tokens = usage.max_total_tokens
    if max_total_tokens < 0:
        max_total_tokens = model_metadata.max_total_tokens if model_metadata else 0
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        max_total_tokens=max(max_total_tokens, 0),
    )


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call completion options."""

    output_format: OutputFormat = OutputFormat.TEXT
    #: Pydantic model class (or any ``TypeAdapter``-compatible type).
    json_schema: ResponseSchema | None = None

    def __post_init__(self) -> None:
        """Reject schema-with-text combinations early."""
        if self.json_schema is not None and self.output_format is not OutputFormat.JSON:
            raise ConfigurationError(
                "json_schema requires output_format=JSON",
                hint="Pass CompletionOptions(output_format=OutputFormat.JSON, json_schema=...).",
            )


class InvocationContext:
    """Request-scoped record threaded through one logical call.

    ``resource`` is fixed at construction. Everything else may be updated as
    the call progresses (current tier, diagnostic notes).
    """

    __slots__ = ("_resource", "purpose", "model_quality", "output_format", "notes")

    def __init__(
        self,
        resource: str,
        purpose: LLMPurpose,
        *,
        model_quality: ModelQuality | None = None,
        output_format: OutputFormat | None = None,
    ) -> None:
        self._resource = resource
        self.purpose = purpose
        self.model_quality = model_quality
        self.output_format = output_format
        self.notes: dict[str, Any] = {}

    @property
    def resource(self) -> str:
        return self._resource

    def snapshot(self) -> dict[str, Any]:
        """Return an independent, log-friendly copy of the current state."""
        snap: dict[str, Any] = {
            "resource": self._resource,
            "purpose": self.purpose.value,
        }
        if self.model_quality is not None:
            snap["model_quality"] = self.model_quality.value
        if self.output_format is not None:
            snap["output_format"] = self.output_format.value
        snap.update(self.notes)
        return snap

    def __repr__(self) -> str:
        return f"InvocationContext({self.snapshot()!r})"


@dataclass(frozen=True)
class InvocationResponse:
    """What a provider function returns for one attempt."""

    status: ResponseStatus
    request: str
    model_key: str
    context: Mapping[str, Any] = field(default_factory=dict)
    generated: Any = None
    token_usage: TokenUsage | None = None
    error: BaseException | str | None = None


class LLMFunction(Protocol):
    """Async provider entry point for one model."""

    async def __call__(
        self,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None = None,
    ) -> InvocationResponse: ...


@dataclass(frozen=True)
class Candidate:
    """One ranked, invocable model tier."""

    invoke: LLMFunction
    quality: ModelQuality
    label: str
