"""Castor: resilient embeddings and completions over unreliable LLM providers.

Public API:
    - LLMRouter: retry, tier fallback and prompt cropping for one provider
    - StructuredResponseInvoker: schema-validated completions with self-correction
    - Config / RetrySettings / RetryPolicy: retry configuration
    - InvocationStats: process-wide outcome counters
"""

from __future__ import annotations

import logging

from castor.config import Config, RetrySettings, resolve_retry_policy
from castor.errors import CastorError, ConfigurationError, StructuredResponseError
from castor.prompt_adapter import PromptAdapter, TokenBudgetPromptAdapter
from castor.retry import RetryPolicy
from castor.router import LLMRouter, NextAction, decide
from castor.stats import InvocationStats
from castor.structured import StructuredResponseInvoker
from castor.types import (
    Candidate,
    CompletionOptions,
    InvocationContext,
    InvocationResponse,
    LLMPurpose,
    ModelMetadata,
    ModelQuality,
    OutputFormat,
    ResponseStatus,
    TokenUsage,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "Candidate",
    "CastorError",
    "CompletionOptions",
    "Config",
    "ConfigurationError",
    "InvocationContext",
    "InvocationResponse",
    "InvocationStats",
    "LLMPurpose",
    "LLMRouter",
    "ModelMetadata",
    "ModelQuality",
    "NextAction",
    "OutputFormat",
    "PromptAdapter",
    "ResponseStatus",
    "RetryPolicy",
    "RetrySettings",
    "StructuredResponseError",
    "StructuredResponseInvoker",
    "TokenBudgetPromptAdapter",
    "TokenUsage",
    "decide",
    "resolve_retry_policy",
]
