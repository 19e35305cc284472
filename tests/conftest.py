"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration and the scripted
provider double shared by router and structured-response tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from typing import Any

import pytest

from castor.retry import RetryPolicy
from castor.types import (
    CompletionOptions,
    InvocationContext,
    InvocationResponse,
    LLMPurpose,
    ModelMetadata,
    ModelQuality,
    ResponseStatus,
    TokenUsage,
)

# =============================================================================
# Test Doubles
# =============================================================================

#: A script step: a bare status, ``(status, generated)``, a full response,
#: or an exception to raise.
Step = ResponseStatus | tuple[ResponseStatus, Any] | InvocationResponse | BaseException

EMBEDDINGS_KEY = "fake-embeddings"
PRIMARY_KEY = "fake-primary"
SECONDARY_KEY = "fake-secondary"


@dataclass
class ScriptedProvider:
    """Provider test double that plays back one script per model.

    The last step of a script repeats once the script runs out, so
    ``[ResponseStatus.OVERLOADED]`` means "always overloaded".
    """

    embeddings: list[Step] = field(
        default_factory=lambda: [(ResponseStatus.COMPLETED, [0.1, 0.2, 0.3])]
    )
    primary: list[Step] = field(
        default_factory=lambda: [(ResponseStatus.COMPLETED, "primary answer")]
    )
    secondary: list[Step] | None = field(
        default_factory=lambda: [(ResponseStatus.COMPLETED, "secondary answer")]
    )
    usage: TokenUsage = field(
        default_factory=lambda: TokenUsage(
            prompt_tokens=9000, completion_tokens=10, max_total_tokens=8192
        )
    )
    #: ``(model_key, prompt)`` for every invocation, in order.
    calls: list[tuple[str, str]] = field(default_factory=list)
    #: Context snapshots seen by each invocation, in order.
    contexts: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False

    @property
    def model_family(self) -> str:
        return "fake"

    def get_models_metadata(self) -> dict[str, ModelMetadata]:
        return {
            EMBEDDINGS_KEY: ModelMetadata(
                urn="fake/embed",
                purpose=LLMPurpose.EMBEDDINGS,
                max_total_tokens=8191,
                dimensions=3,
            ),
            PRIMARY_KEY: ModelMetadata(
                urn="fake/primary",
                purpose=LLMPurpose.COMPLETIONS,
                max_total_tokens=8192,
                max_completion_tokens=4096,
            ),
            SECONDARY_KEY: ModelMetadata(
                urn="fake/secondary",
                purpose=LLMPurpose.COMPLETIONS,
                max_total_tokens=8192,
                max_completion_tokens=4096,
            ),
        }

    def get_model_names(self) -> tuple[str, ...]:
        names = ("fake/embed", "fake/primary")
        if self.secondary is not None:
            names += ("fake/secondary",)
        return names

    def get_embedding_dimensions(self) -> int | None:
        return 3

    def get_available_completion_qualities(self) -> list[ModelQuality]:
        if self.secondary is None:
            return [ModelQuality.PRIMARY]
        return [ModelQuality.PRIMARY, ModelQuality.SECONDARY]

    def calls_to(self, model_key: str) -> int:
        return sum(1 for key, _ in self.calls if key == model_key)

    async def generate_embeddings(
        self,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None = None,
    ) -> InvocationResponse:
        del options
        return self._play(self.embeddings, EMBEDDINGS_KEY, request, context)

    async def execute_completion_primary(
        self,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None = None,
    ) -> InvocationResponse:
        del options
        return self._play(self.primary, PRIMARY_KEY, request, context)

    async def execute_completion_secondary(
        self,
        request: str,
        context: InvocationContext,
        options: CompletionOptions | None = None,
    ) -> InvocationResponse:
        del options
        assert self.secondary is not None, "secondary tier was never advertised"
        return self._play(self.secondary, SECONDARY_KEY, request, context)

    async def close(self) -> None:
        self.closed = True

    def _play(
        self,
        script: list[Step],
        model_key: str,
        request: str,
        context: InvocationContext,
    ) -> InvocationResponse:
        self.calls.append((model_key, request))
        self.contexts.append(context.snapshot())
        step = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, InvocationResponse):
            return step
        status, generated = step if isinstance(step, tuple) else (step, None)
        return InvocationResponse(
            status=status,
            request=request,
            model_key=model_key,
            context=context.snapshot(),
            generated=generated,
            token_usage=self.usage if status is ResponseStatus.EXCEEDED else None,
            error="scripted failure" if status is ResponseStatus.ERRORED else None,
        )


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts per tier with no sleeping between them."""
    return RetryPolicy(
        max_attempts=3, min_retry_delay_ms=0, max_retry_additional_delay_ms=0
    )


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def isolate_castor_env(monkeypatch):
    """Clear CASTOR_* variables so config defaults are deterministic.

    This also drops values a project .env injected when ``castor.config``
    was imported.
    """
    for key in list(os.environ.keys()):
        if key.startswith("CASTOR_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
