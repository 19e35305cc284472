"""Mock provider for development and tests without API calls."""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING

from castor.providers.base import BaseLLMProvider, ModelKeys, RawCompletion
from castor.types import LLMPurpose, ModelMetadata, OutputFormat, TokenUsage

if TYPE_CHECKING:
    from castor.types import CompletionOptions

_EMBEDDINGS_KEY = "mock-embeddings"
_PRIMARY_KEY = "mock-completions-primary"
_SECONDARY_KEY = "mock-completions-secondary"


class MockProvider(BaseLLMProvider):
    """Deterministic provider that echoes prompts.

    Embeddings are derived from a SHA-256 digest of the content, so equal
    inputs always map to equal vectors.
    """

    def __init__(self, *, dimensions: int = 8, with_secondary: bool = True) -> None:
        metadata = {
            _EMBEDDINGS_KEY: ModelMetadata(
                urn="mock/embeddings",
                purpose=LLMPurpose.EMBEDDINGS,
                max_total_tokens=8191,
                dimensions=dimensions,
            ),
            _PRIMARY_KEY: ModelMetadata(
                urn="mock/primary",
                purpose=LLMPurpose.COMPLETIONS,
                max_total_tokens=128_000,
                max_completion_tokens=4096,
            ),
        }
        if with_secondary:
            metadata[_SECONDARY_KEY] = ModelMetadata(
                urn="mock/secondary",
                purpose=LLMPurpose.COMPLETIONS,
                max_total_tokens=32_000,
                max_completion_tokens=4096,
            )
        super().__init__(
            ModelKeys(
                embeddings=_EMBEDDINGS_KEY,
                primary_completion=_PRIMARY_KEY,
                secondary_completion=_SECONDARY_KEY if with_secondary else None,
            ),
            metadata,
        )
        self._dimensions = dimensions
        self.closed = False

    @property
    def model_family(self) -> str:
        return "mock"

    async def _invoke(
        self,
        purpose: LLMPurpose,
        model_key: str,
        prompt: str,
        options: CompletionOptions | None,
    ) -> RawCompletion:
        prompt_tokens = len(prompt.split())
        if purpose is LLMPurpose.EMBEDDINGS:
            digest = hashlib.sha256(prompt.encode("utf-8")).digest()
            vector = [
                digest[i % len(digest)] / 255.0 for i in range(self._dimensions)
            ]
            return RawCompletion(
                content=vector, token_usage=TokenUsage(prompt_tokens=prompt_tokens)
            )

        text = prompt[:100]
        if options is not None and options.output_format is OutputFormat.JSON:
            content = json.dumps({"model": model_key, "echo": text})
        else:
            content = f"echo: {text}"
        return RawCompletion(
            content=content,
            token_usage=TokenUsage(
                prompt_tokens=prompt_tokens, completion_tokens=len(content.split())
            ),
        )

    async def close(self) -> None:
        self.closed = True
