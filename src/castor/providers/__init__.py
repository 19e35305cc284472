"""Provider contract, implementer helpers and the mock provider."""

from ._errors import (
    BEDROCK_TOKEN_LIMIT_PATTERNS,
    OPENAI_TOKEN_LIMIT_PATTERNS,
    TokenLimitPattern,
)
from .base import BaseLLMProvider, LLMProvider, ModelKeys, RawCompletion
from .mock import MockProvider

__all__ = [
    "BEDROCK_TOKEN_LIMIT_PATTERNS",
    "OPENAI_TOKEN_LIMIT_PATTERNS",
    "BaseLLMProvider",
    "LLMProvider",
    "MockProvider",
    "ModelKeys",
    "RawCompletion",
    "TokenLimitPattern",
]
