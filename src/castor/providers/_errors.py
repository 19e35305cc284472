"""Map provider SDK exceptions onto response statuses.

Providers report outcomes as statuses so the router never depends on
vendor exception types.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import math
import re
from typing import Literal

import httpx

from castor.types import ResponseStatus, TokenUsage

OVERLOAD_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

_TOKEN_LIMIT_RE = re.compile(
    r"context[_ ]length|maximum context|too many (?:input )?tokens|max(?:imum)? input tokens",
    re.IGNORECASE,
)
_QUOTA_CODES = frozenset({"insufficient_quota", "billing_hard_limit_reached"})


@dataclass(frozen=True)
class TokenLimitPattern:
    """A vendor error message shape that reports the overflowing sizes.

    Capture groups are read in order: limit, prompt, completion when
    ``is_max_first`` is set, otherwise prompt, limit, completion.
    """

    pattern: re.Pattern[str]
    units: Literal["tokens", "chars"] = "tokens"
    is_max_first: bool = False


OPENAI_TOKEN_LIMIT_PATTERNS: tuple[TokenLimitPattern, ...] = (
    # "maximum context length is 8191 tokens, however you requested 10346 tokens
    # (10346 in your prompt; 5 for the completion)"
    TokenLimitPattern(
        re.compile(r"max.*?(\d+) tokens.*?\(.*?(\d+).*?prompt.*?(\d+).*?completion"),
        is_max_first=True,
    ),
    # "maximum context length is 8192 tokens. However, your messages resulted in 8545 tokens."
    TokenLimitPattern(re.compile(r"max.*?(\d+) tokens.*?(\d+) "), is_max_first=True),
)

BEDROCK_TOKEN_LIMIT_PATTERNS: tuple[TokenLimitPattern, ...] = (
    # "Too many input tokens. Max input tokens: 8192, request input token count: 9279"
    TokenLimitPattern(
        re.compile(r"ax input tokens.*?(\d+).*?request input token count.*?(\d+)"),
        is_max_first=True,
    ),
    # "Malformed input request: expected maxLength: 50000, actual: 52611"
    TokenLimitPattern(
        re.compile(r"maxLength.*?(\d+).*?actual.*?(\d+)"), units="chars", is_max_first=True
    ),
    # "This model's maximum context length is 8192 tokens."
    TokenLimitPattern(re.compile(r"maximum context length is ?(\d+) tokens"), is_max_first=True),
)


def walk_exception_chain(exc: BaseException) -> list[BaseException]:
    """Return *exc* and its ``__cause__``/``__context__`` chain, cycle-safe."""
    seen: set[int] = set()
    chain: list[BaseException] = []
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        chain.append(cur)
        if isinstance(cur.__cause__, BaseException):
            stack.append(cur.__cause__)
        if isinstance(cur.__context__, BaseException):
            stack.append(cur.__context__)
    return chain


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def _error_code(exc: BaseException) -> str | None:
    for e in walk_exception_chain(exc):
        code = getattr(e, "code", None)
        if isinstance(code, str):
            return code
    return None


def is_token_limit_message(message: str) -> bool:
    """Return True when an error message reads like a context-length overflow."""
    return bool(_TOKEN_LIMIT_RE.search(message))


def _usage_from_chars(used: int, limit: int, max_total_tokens: int) -> TokenUsage:
    if limit <= 0 or max_total_tokens < 0:
        return TokenUsage(max_total_tokens=max_total_tokens, completion_tokens=0)
    # scale the char overflow onto the model's token budget, always over it
    derived = math.ceil(used / limit * max_total_tokens)
    return TokenUsage(
        prompt_tokens=max(derived, max_total_tokens + 1),
        completion_tokens=0,
        max_total_tokens=max_total_tokens,
    )


def parse_token_usage_from_error(
    message: str,
    patterns: tuple[TokenLimitPattern, ...],
    *,
    max_total_tokens: int = -1,
) -> TokenUsage | None:
    """Read token usage out of a context-length error message.

    Returns ``None`` when no pattern matches. *max_total_tokens* is the
    model's known budget, used when the message does not state it.
    """
    for spec in patterns:
        match = spec.pattern.search(message)
        if match is None:
            continue
        values = [int(g) for g in match.groups() if g is not None]
        if not values:
            continue

        if spec.units == "chars":
            if len(values) < 2:
                return TokenUsage(max_total_tokens=max_total_tokens, completion_tokens=0)
            limit, used = values[0], values[1]
            if not spec.is_max_first:
                limit, used = used, limit
            return _usage_from_chars(used, limit, max_total_tokens)

        completion = values[2] if len(values) > 2 else 0
        if spec.is_max_first:
            return TokenUsage(
                prompt_tokens=values[1] if len(values) > 1 else -1,
                completion_tokens=completion,
                max_total_tokens=values[0],
            )
        return TokenUsage(
            prompt_tokens=values[0],
            completion_tokens=completion,
            max_total_tokens=values[1] if len(values) > 1 else max_total_tokens,
        )
    return None


def classify_provider_error(exc: BaseException) -> ResponseStatus:
    """Classify a provider exception.

    Contract:
    - Timeouts and transport failures are OVERLOADED (transient).
    - Quota exhaustion is ERRORED even when served as HTTP 429.
    - Context-length overflows (message or HTTP 413) are EXCEEDED.
    - Retryable HTTP status codes are OVERLOADED.
    - Everything else is ERRORED (retrying is futile).
    """
    if isinstance(exc, asyncio.CancelledError):
        return ResponseStatus.ERRORED

    if _error_code(exc) in _QUOTA_CODES:
        return ResponseStatus.ERRORED

    if _error_code(exc) == "context_length_exceeded" or any(
        is_token_limit_message(str(e)) for e in walk_exception_chain(exc)
    ):
        return ResponseStatus.EXCEEDED

    status_code = extract_status_code(exc)
    if status_code == 413:
        return ResponseStatus.EXCEEDED
    if status_code in OVERLOAD_STATUS_CODES:
        return ResponseStatus.OVERLOADED

    for e in walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, httpx.TimeoutException, httpx.TransportError)):
            return ResponseStatus.OVERLOADED

    return ResponseStatus.ERRORED
