"""Provider protocol and an optional base class for implementers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from castor.providers._errors import (
    classify_provider_error,
    parse_token_usage_from_error,
    walk_exception_chain,
)
from castor.types import (
    InvocationResponse,
    LLMPurpose,
    ModelQuality,
    OutputFormat,
    ResponseStatus,
    TokenUsage,
)

if TYPE_CHECKING:
    from castor.providers._errors import TokenLimitPattern
    from castor.types import CompletionOptions, InvocationContext, ModelMetadata

log = logging.getLogger(__name__)


@runtime_checkable
class LLMProvider(Protocol):
    """Minimal provider protocol consumed by the router."""

    @property
    def model_family(self) -> str:
        """Human-readable family name, e.g. ``"openai"``."""
        ...

    def get_models_metadata(self) -> dict[str, ModelMetadata]:
        """Return metadata keyed by model key."""
        ...

    def get_model_names(self) -> tuple[str, ...]:
        """Return ``(embeddings, primary[, secondary])`` model identifiers."""
        ...

    def get_embedding_dimensions(self) -> int | None:
        """Return the embedding vector size, when known."""
        ...

    def get_available_completion_qualities(self) -> list[ModelQuality]:
        """Return the completion tiers this provider can serve."""
        ...

    async def generate_embeddings(
        self,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None = None,
    ) -> InvocationResponse:
        """Embed *request*."""
        ...

    async def execute_completion_primary(
        self,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None = None,
    ) -> InvocationResponse:
        """Complete *request* with the primary model."""
        ...

    async def execute_completion_secondary(
        self,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None = None,
    ) -> InvocationResponse:
        """Complete *request* with the secondary model."""
        ...

    async def close(self) -> None:
        """Release provider resources."""
        ...


@dataclass(frozen=True)
class RawCompletion:
    """What a concrete provider's transport call hands back."""

    content: Any
    token_usage: TokenUsage = TokenUsage()
    #: True when the model stopped early (length limit, empty content).
    incomplete: bool = False


@dataclass(frozen=True)
class ModelKeys:
    """Model keys a provider maps to each role."""

    embeddings: str
    primary_completion: str
    secondary_completion: str | None = None


class BaseLLMProvider(ABC):
    """Shared response shaping for concrete providers.

    Subclasses implement ``_invoke`` only. Raised exceptions are mapped to a
    status via ``classify_provider_error`` so the router never sees them.
    Set ``_error_patterns`` to the vendor's context-length message shapes so
    EXCEEDED responses carry the token counts the vendor reported.
    """

    _error_patterns: tuple[TokenLimitPattern, ...] = ()

    def __init__(
        self,
        model_keys: ModelKeys,
        models_metadata: dict[str, ModelMetadata],
    ) -> None:
        self._model_keys = model_keys
        self._models_metadata = dict(models_metadata)

    @property
    @abstractmethod
    def model_family(self) -> str:
        """Human-readable family name."""

    @abstractmethod
    async def _invoke(
        self,
        purpose: LLMPurpose,
        model_key: str,
        prompt: str,
        options: CompletionOptions | None,
    ) -> RawCompletion:
        """Call the vendor API for one attempt."""

    def _is_token_limit_error(self, exc: BaseException) -> bool:  # noqa: ARG002
        """Hook for vendor-specific context-length detection."""
        return False

    def get_models_metadata(self) -> dict[str, ModelMetadata]:
        return dict(self._models_metadata)

    def get_model_names(self) -> tuple[str, ...]:
        keys = [self._model_keys.embeddings, self._model_keys.primary_completion]
        if self._model_keys.secondary_completion:
            keys.append(self._model_keys.secondary_completion)
        return tuple(
            self._models_metadata[k].urn if k in self._models_metadata else k
            for k in keys
        )

    def get_embedding_dimensions(self) -> int | None:
        meta = self._models_metadata.get(self._model_keys.embeddings)
        return meta.dimensions if meta else None

    def get_available_completion_qualities(self) -> list[ModelQuality]:
        qualities = [ModelQuality.PRIMARY]
        if self._model_keys.secondary_completion:
            qualities.append(ModelQuality.SECONDARY)
        return qualities

    async def generate_embeddings(
        self,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None = None,
    ) -> InvocationResponse:
        return await self._execute(
            LLMPurpose.EMBEDDINGS, self._model_keys.embeddings, request, context, options
        )

    async def execute_completion_primary(
        self,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None = None,
    ) -> InvocationResponse:
        return await self._execute(
            LLMPurpose.COMPLETIONS,
            self._model_keys.primary_completion,
            request,
            context,
            options,
        )

    async def execute_completion_secondary(
        self,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None = None,
    ) -> InvocationResponse:
        key = self._model_keys.secondary_completion
        if key is None:
            return InvocationResponse(
                status=ResponseStatus.ERRORED,
                request=request,
                model_key="",
                context=context.snapshot(),
                error="Provider has no secondary completion model",
            )
        return await self._execute(LLMPurpose.COMPLETIONS, key, request, context, options)

    async def close(self) -> None:
        return None

    async def _execute(
        self,
        purpose: LLMPurpose,
        model_key: str,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None,
    ) -> InvocationResponse:
        try:
            raw = await self._invoke(purpose, model_key, request, options)
        except Exception as exc:
            if self._is_token_limit_error(exc):
                status = ResponseStatus.EXCEEDED
            else:
                status = classify_provider_error(exc)
            log.debug("Provider %s call failed as %s: %s", model_key, status.value, exc)
            return InvocationResponse(
                status=status,
                request=request,
                model_key=model_key,
                context=context.snapshot(),
                token_usage=self._usage_for_exceeded(model_key, exc)
                if status is ResponseStatus.EXCEEDED
                else None,
                error=exc,
            )

        if raw.incomplete:
            return InvocationResponse(
                status=ResponseStatus.EXCEEDED,
                request=request,
                model_key=model_key,
                context=context.snapshot(),
                token_usage=raw.token_usage,
            )

        content = raw.content
        wants_json = (
            purpose is LLMPurpose.COMPLETIONS
            and options is not None
            and options.output_format is OutputFormat.JSON
        )
        if wants_json and isinstance(content, str):
            try:
                content = json.loads(content)
            except json.JSONDecodeError as exc:
                context.notes["json_parse_error"] = str(exc)
                return InvocationResponse(
                    status=ResponseStatus.INVALID,
                    request=request,
                    model_key=model_key,
                    context=context.snapshot(),
                    token_usage=raw.token_usage,
                    error=exc,
                )

        return InvocationResponse(
            status=ResponseStatus.COMPLETED,
            request=request,
            model_key=model_key,
            context=context.snapshot(),
            generated=content,
            token_usage=raw.token_usage,
        )

    def _usage_for_exceeded(self, model_key: str, exc: BaseException) -> TokenUsage:
        meta = self._models_metadata.get(model_key)
        max_total = meta.max_total_tokens if meta else -1
        for e in walk_exception_chain(exc):
            usage = parse_token_usage_from_error(
                str(e), self._error_patterns, max_total_tokens=max_total
            )
            if usage is not None:
                return usage
        return TokenUsage(max_total_tokens=max_total)
