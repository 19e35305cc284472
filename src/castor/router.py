"""Route one logical LLM request across ranked model tiers.

Each public call runs a small state machine: invoke the current candidate
through the retry controller, then either return, give up, crop the prompt
and retry the same tier, or switch to the next tier. The branching lives in
``decide()`` so it can be tested on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from castor import schema
from castor._logging import log_error_with_context, log_with_context
from castor.candidates import build_candidates, describe_candidates, select_candidates
from castor.config import resolve_retry_policy
from castor.prompt_adapter import TokenBudgetPromptAdapter
from castor.retry import classify_status, retry_async
from castor.stats import InvocationStats
from castor.types import (
    Candidate,
    CompletionOptions,
    InvocationContext,
    LLMPurpose,
    ModelQuality,
    OutputFormat,
    ResponseStatus,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from castor.config import Config, RetrySettings
    from castor.prompt_adapter import PromptAdapter
    from castor.providers.base import LLMProvider
    from castor.retry import RetryPolicy
    from castor.types import InvocationResponse

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NextAction:
    """What the router does after an unsuccessful attempt."""

    terminate: bool = False
    crop_prompt: bool = False
    switch_to_next: bool = False


def decide(status: ResponseStatus | None, index: int, total: int) -> NextAction:
    """Pick the next step after a non-COMPLETED, non-ERRORED outcome.

    ``status`` is ``None`` when retries were exhausted or nothing came back.
    Unusable tiers (no response, OVERLOADED, INVALID) switch when possible.
    EXCEEDED also prefers a switch, and crops only on the last tier.
    """
    can_switch = index + 1 < total
    if status is None or status in (ResponseStatus.OVERLOADED, ResponseStatus.INVALID):
        return NextAction(terminate=not can_switch, switch_to_next=can_switch)
    if status is ResponseStatus.EXCEEDED:
        return NextAction(crop_prompt=not can_switch, switch_to_next=can_switch)
    return NextAction(terminate=True)


def _is_number_list(value: Any) -> bool:
    return isinstance(value, list) and all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in value
    )


class LLMRouter:
    """Resilient embeddings and completions over one provider.

    Args:
        provider: Object satisfying ``castor.providers.LLMProvider``.
        stats: Shared statistics tracker; a private one is created if omitted.
        prompt_adapter: Crops prompts after EXCEEDED on the last tier.
        retry_policy: Explicit policy. When omitted, ``retry_settings`` are
            merged onto ``config`` defaults.
        retry_settings: Provider-specific retry overrides.
        config: Global defaults (read from ``CASTOR_*`` env vars if omitted).
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        stats: InvocationStats | None = None,
        prompt_adapter: PromptAdapter | None = None,
        retry_policy: RetryPolicy | None = None,
        retry_settings: RetrySettings | None = None,
        config: Config | None = None,
    ) -> None:
        self._provider = provider
        self._models_metadata = provider.get_models_metadata()
        self._completion_candidates = build_candidates(provider)
        self._embeddings_candidates = (
            Candidate(
                invoke=provider.generate_embeddings,
                quality=ModelQuality.PRIMARY,
                label="Embeddings model",
            ),
        )
        self._retry_policy = retry_policy or resolve_retry_policy(retry_settings, config)
        self._stats = stats if stats is not None else InvocationStats()
        self._prompt_adapter = prompt_adapter or TokenBudgetPromptAdapter()
        log.info("Router LLMs to be used: %s", self.describe_models())

    # --- Introspection ---

    @property
    def stats(self) -> InvocationStats:
        return self._stats

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def model_family(self) -> str:
        return self._provider.model_family

    @property
    def completion_candidates(self) -> tuple[Candidate, ...]:
        return self._completion_candidates

    @property
    def embedding_dimensions(self) -> int | None:
        return self._provider.get_embedding_dimensions()

    def describe_models(self) -> str:
        """Return e.g. ``"openai (embeddings: x, completions - primary: y)"``."""
        names = self._provider.get_model_names()
        embeddings = names[0] if names else "?"
        completions = describe_candidates(self._completion_candidates, names)
        return f"{self.model_family} (embeddings: {embeddings}, completions - {completions})"

    def display_status_summary(self) -> None:
        """Print the legend of event symbols that will be recorded."""
        print("LLM invocation event types that will be recorded:")  # noqa: T201
        print(self._stats.format_table(include_counts=False))  # noqa: T201

    def display_status_details(self) -> None:
        """Print the accumulated invocation statistics."""
        print(self._stats.format_table())  # noqa: T201

    async def close(self) -> None:
        """Release provider resources."""
        await self._provider.close()

    # --- Public operations ---

    async def generate_embeddings(
        self, resource_name: str, content: str
    ) -> list[float] | None:
        """Return the embedding vector for *content*, or ``None`` on failure."""
        context = InvocationContext(resource_name, LLMPurpose.EMBEDDINGS)
        generated = await self._invoke_with_fallbacks(
            content, context, self._embeddings_candidates, None
        )
        if generated is None:
            return None
        if not _is_number_list(generated):
            log_error_with_context(
                "LLM response for embeddings was not an array of numbers", context
            )
            return None
        return generated

    async def execute_completion(
        self,
        resource_name: str,
        prompt: str,
        options: CompletionOptions | None = None,
        model_quality_override: ModelQuality | None = None,
    ) -> Any | None:
        """Return the model's answer to *prompt*, or ``None`` on failure.

        With ``OutputFormat.JSON`` and a ``json_schema`` the parsed content is
        validated and the validated value is returned.

        Raises:
            ConfigurationError: ``model_quality_override`` names a tier the
                provider does not serve.
        """
        options = options or CompletionOptions()
        candidates = select_candidates(
            self._completion_candidates, model_quality_override
        )
        context = InvocationContext(
            resource_name,
            LLMPurpose.COMPLETIONS,
            model_quality=candidates[0].quality,
            output_format=options.output_format,
        )
        generated = await self._invoke_with_fallbacks(
            prompt, context, candidates, options
        )
        if generated is None:
            return None
        if not isinstance(generated, (str, dict, list)):
            log_error_with_context(
                "LLM response for completion was not an object or string", context
            )
            return None

        if options.output_format is OutputFormat.JSON and options.json_schema is not None:
            outcome = schema.validate(options.json_schema, generated)
            if not outcome.ok:
                context.notes["validation_errors"] = outcome.errors
                log_with_context(
                    f"LLM JSON response failed schema validation for resource "
                    f"'{resource_name}'",
                    context,
                )
                return None
            return outcome.value
        return generated

    # --- State machine ---

    async def _invoke_with_fallbacks(
        self,
        prompt: str,
        context: InvocationContext,
        candidates: Sequence[Candidate],
        options: CompletionOptions | None,
    ) -> Any | None:
        try:
            result = await self._iterate_candidates(prompt, context, candidates, options)
        except Exception as exc:
            log.error(
                "Unable to process resource '%s' with an LLM due to a "
                "non-recoverable error",
                context.resource,
            )
            log_error_with_context(exc, context)
            self._stats.record_failure()
            return None

        if result is None:
            log.warning(
                "Given up on fulfilling the prompt with an LLM for resource '%s'",
                context.resource,
            )
            self._stats.record_failure()
        return result

    async def _iterate_candidates(
        self,
        initial_prompt: str,
        context: InvocationContext,
        candidates: Sequence[Candidate],
        options: CompletionOptions | None,
    ) -> Any | None:
        prompt = initial_prompt
        index = 0
        total = len(candidates)

        # index is not advanced after a crop, so the shorter prompt is retried
        # against the same tier
        while index < total:
            response = await retry_async(
                candidates[index].invoke,
                prompt,
                context,
                options,
                policy=self._retry_policy,
                classify=classify_status,
                on_retry=self._record_retry,
            )
            status = response.status if response is not None else None

            if response is not None and status is ResponseStatus.COMPLETED:
                if response.generated is None:
                    log_with_context(
                        "LLM reported a completed response without content", context
                    )
                    return None
                self._stats.record_success()
                return response.generated
            if response is not None and status is ResponseStatus.ERRORED:
                log_error_with_context(response.error, context)
                return None

            self._log_unsuccessful_outcome(response, context)
            action = decide(status, index, total)
            if action.terminate:
                break

            if action.crop_prompt and response is not None:
                cropped = self._crop_prompt(prompt, response)
                if not cropped.strip():
                    log_with_context(
                        f"Prompt became empty after cropping for resource "
                        f"'{context.resource}', terminating attempts",
                        context,
                    )
                    break
                if len(cropped) >= len(prompt):
                    log_with_context(
                        "Prompt adapter did not shorten the prompt, terminating attempts",
                        context,
                    )
                    break
                prompt = cropped
                continue

            if action.switch_to_next:
                context.model_quality = candidates[index + 1].quality
                self._stats.record_switch()
                index += 1

        return None

    def _crop_prompt(self, prompt: str, response: InvocationResponse) -> str:
        self._stats.record_crop()
        return self._prompt_adapter.adapt(prompt, response, self._models_metadata)

    def _record_retry(self, attempt: int, tag: ResponseStatus) -> None:
        del attempt
        if tag is ResponseStatus.INVALID:
            self._stats.record_invalid_retry()
        else:
            self._stats.record_overload_retry()

    def _log_unsuccessful_outcome(
        self, response: InvocationResponse | None, context: InvocationContext
    ) -> None:
        if response is None or response.status is ResponseStatus.OVERLOADED:
            log_with_context(
                "LLM could not process the prompt with the current model because it "
                "is overloaded, timing out or returning invalid content, even after retries",
                context,
            )
        elif response.status is ResponseStatus.INVALID:
            log_with_context(
                "LLM kept returning an invalid response with the current model", context
            )
        elif response.status is ResponseStatus.EXCEEDED:
            usage = response.token_usage
            log_with_context(
                f"LLM prompt tokens used {usage.prompt_tokens if usage else 0} plus "
                f"completion tokens used {usage.completion_tokens if usage else 0} "
                f"exceeded the model's total token limit of "
                f"{usage.max_total_tokens if usage else 0} or its completion token limit",
                context,
            )
        else:
            log_with_context(
                f"LLM returned an unexpected response status "
                f"'{response.status.value}' for resource '{context.resource}'",
                context,
            )
