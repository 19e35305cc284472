"""Shrink prompts that overflowed a model's token budget."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from castor.types import normalize_token_usage

if TYPE_CHECKING:
    from collections.abc import Mapping

    from castor.types import InvocationResponse, ModelMetadata

log = logging.getLogger(__name__)

#: Slack below the completion limit that still counts as "hit the limit".
COMPLETION_MAX_TOKENS_LIMIT_BUFFER = 5
#: Upper bound on the kept fraction when the completion hit its limit.
COMPLETION_TOKENS_REDUCE_MIN_RATIO = 0.75
#: Upper bound on the kept fraction when the prompt overflowed the context.
PROMPT_TOKENS_REDUCE_MIN_RATIO = 0.85


@runtime_checkable
class PromptAdapter(Protocol):
    """Produces a strictly shorter prompt after an EXCEEDED response."""

    def adapt(
        self,
        prompt: str,
        response: InvocationResponse,
        models_metadata: Mapping[str, ModelMetadata],
    ) -> str: ...


class TokenBudgetPromptAdapter:
    """Crop the tail of a prompt in proportion to the reported overflow.

    Two cases:
    - the completion ran into the model's completion-token limit: keep at most
      75% of the prompt so the answer has room;
    - the prompt plus completion overflowed the total budget: keep
      ``max_total / used`` of the prompt, at most 85%.
    """

    def adapt(
        self,
        prompt: str,
        response: InvocationResponse,
        models_metadata: Mapping[str, ModelMetadata],
    ) -> str:
        metadata = models_metadata.get(response.model_key)
        usage = normalize_token_usage(response.token_usage, metadata, prompt)
        max_completion = metadata.max_completion_tokens if metadata else None

        if (
            max_completion
            and usage.completion_tokens
            >= max_completion - COMPLETION_MAX_TOKENS_LIMIT_BUFFER
        ):
            ratio = min(
                max_completion / (usage.completion_tokens + 1),
                COMPLETION_TOKENS_REDUCE_MIN_RATIO,
            )
        else:
            used = usage.prompt_tokens + usage.completion_tokens + 1
            ratio = min(usage.max_total_tokens / used, PROMPT_TOKENS_REDUCE_MIN_RATIO)

        new_length = min(math.floor(len(prompt) * ratio), max(len(prompt) - 1, 0))
        log.debug(
            "Cropping prompt for %s from %d to %d chars (ratio %.3f)",
            response.model_key,
            len(prompt),
            new_length,
            ratio,
        )
        return prompt[:new_length]
