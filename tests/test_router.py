"""Router boundary tests.

Exercise the full retry -> switch -> crop state machine through the public
operations with a scripted provider.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel
import pytest

from castor.errors import ConfigurationError
from castor.retry import RetryPolicy
from castor.router import LLMRouter
from castor.types import (
    CompletionOptions,
    ModelQuality,
    OutputFormat,
    ResponseStatus,
)
from tests.conftest import (
    EMBEDDINGS_KEY,
    PRIMARY_KEY,
    SECONDARY_KEY,
    ScriptedProvider,
)

pytestmark = pytest.mark.unit

OVERLOADED = ResponseStatus.OVERLOADED
EXCEEDED = ResponseStatus.EXCEEDED
ERRORED = ResponseStatus.ERRORED
INVALID = ResponseStatus.INVALID
COMPLETED = ResponseStatus.COMPLETED


class Person(BaseModel):
    name: str
    age: int


def _router(provider: ScriptedProvider, policy: RetryPolicy) -> LLMRouter:
    return LLMRouter(provider, retry_policy=policy)


# =============================================================================
# Completions: happy path and tier fallback
# =============================================================================


@pytest.mark.asyncio
async def test_first_candidate_success_uses_one_invocation(fast_retry) -> None:
    provider = ScriptedProvider(primary=[(COMPLETED, "hello")])
    router = _router(provider, fast_retry)

    result = await router.execute_completion("doc.py", "Summarize")

    assert result == "hello"
    assert provider.calls == [(PRIMARY_KEY, "Summarize")]
    assert router.stats.counts()["success"] == 1
    assert router.stats.counts()["failure"] == 0


@pytest.mark.asyncio
async def test_overloaded_primary_retries_then_switches_once(fast_retry) -> None:
    provider = ScriptedProvider(
        primary=[OVERLOADED], secondary=[(COMPLETED, "from secondary")]
    )
    router = _router(provider, fast_retry)

    result = await router.execute_completion("doc.py", "Summarize")

    assert result == "from secondary"
    assert provider.calls_to(PRIMARY_KEY) == fast_retry.max_attempts
    assert provider.calls_to(SECONDARY_KEY) == 1
    counts = router.stats.counts()
    assert counts["switch"] == 1
    assert counts["retry_overload"] == fast_retry.max_attempts
    assert counts["success"] == 1
    assert counts["failure"] == 0


@pytest.mark.asyncio
async def test_switch_updates_context_model_quality(fast_retry) -> None:
    provider = ScriptedProvider(primary=[OVERLOADED])
    router = _router(provider, fast_retry)

    await router.execute_completion("doc.py", "Summarize")

    qualities = [ctx["model_quality"] for ctx in provider.contexts]
    assert qualities[0] == ModelQuality.PRIMARY.value
    assert qualities[-1] == ModelQuality.SECONDARY.value
    assert {ctx["resource"] for ctx in provider.contexts} == {"doc.py"}


@pytest.mark.asyncio
async def test_invalid_responses_are_retried_and_counted_separately(fast_retry) -> None:
    provider = ScriptedProvider(primary=[INVALID])
    router = _router(provider, fast_retry)

    result = await router.execute_completion("doc.py", "Summarize")

    assert result == "secondary answer"
    counts = router.stats.counts()
    assert counts["retry_invalid"] == fast_retry.max_attempts
    assert counts["retry_overload"] == 0
    assert counts["switch"] == 1


@pytest.mark.asyncio
async def test_transient_failure_recovers_within_same_tier(fast_retry) -> None:
    provider = ScriptedProvider(primary=[OVERLOADED, (COMPLETED, "second try")])
    router = _router(provider, fast_retry)

    result = await router.execute_completion("doc.py", "Summarize")

    assert result == "second try"
    assert provider.calls_to(PRIMARY_KEY) == 2
    assert provider.calls_to(SECONDARY_KEY) == 0
    assert router.stats.counts()["switch"] == 0


@pytest.mark.asyncio
async def test_all_tiers_overloaded_returns_none(fast_retry) -> None:
    provider = ScriptedProvider(primary=[OVERLOADED], secondary=[OVERLOADED])
    router = _router(provider, fast_retry)

    assert await router.execute_completion("doc.py", "Summarize") is None
    assert provider.calls_to(PRIMARY_KEY) == fast_retry.max_attempts
    assert provider.calls_to(SECONDARY_KEY) == fast_retry.max_attempts
    counts = router.stats.counts()
    assert counts["failure"] == 1
    assert counts["switch"] == 1


@pytest.mark.asyncio
async def test_exhausted_last_tier_gives_up_without_cropping(fast_retry) -> None:
    provider = ScriptedProvider(primary=[INVALID], secondary=None)
    router = _router(provider, fast_retry)

    assert await router.execute_completion("doc.py", "Summarize") is None
    assert provider.calls == [(PRIMARY_KEY, "Summarize")] * fast_retry.max_attempts
    counts = router.stats.counts()
    assert counts["crop"] == 0
    assert counts["switch"] == 0
    assert counts["failure"] == 1


@pytest.mark.asyncio
async def test_retry_limit_bounds_attempts_with_real_delay() -> None:
    policy = RetryPolicy(
        max_attempts=3, min_retry_delay_ms=10, max_retry_additional_delay_ms=0
    )
    provider = ScriptedProvider(primary=[OVERLOADED], secondary=None)
    router = _router(provider, policy)

    assert await router.execute_completion("doc.py", "Summarize") is None
    assert len(provider.calls) == 3


# =============================================================================
# Completions: hard errors and unexpected statuses
# =============================================================================


@pytest.mark.asyncio
async def test_errored_short_circuits_without_switching(fast_retry, caplog) -> None:
    provider = ScriptedProvider(primary=[ERRORED], secondary=[(COMPLETED, "unused")])
    router = _router(provider, fast_retry)

    with caplog.at_level(logging.ERROR, logger="castor"):
        result = await router.execute_completion("doc.py", "Summarize")

    assert result is None
    assert provider.calls == [(PRIMARY_KEY, "Summarize")]
    counts = router.stats.counts()
    assert counts["failure"] == 1
    assert counts["switch"] == 0
    assert "scripted failure" in caplog.text


@pytest.mark.asyncio
async def test_unknown_status_terminates(fast_retry) -> None:
    provider = ScriptedProvider(primary=[ResponseStatus.UNKNOWN])
    router = _router(provider, fast_retry)

    assert await router.execute_completion("doc.py", "Summarize") is None
    assert provider.calls_to(SECONDARY_KEY) == 0
    assert router.stats.counts()["failure"] == 1


@pytest.mark.asyncio
async def test_provider_exception_is_logged_and_yields_none(fast_retry, caplog) -> None:
    provider = ScriptedProvider(primary=[RuntimeError("socket closed")])
    router = _router(provider, fast_retry)

    with caplog.at_level(logging.ERROR, logger="castor"):
        result = await router.execute_completion("doc.py", "Summarize")

    assert result is None
    assert router.stats.counts()["failure"] == 1
    assert "socket closed" in caplog.text


@pytest.mark.asyncio
async def test_completed_without_content_counts_as_failure(fast_retry) -> None:
    provider = ScriptedProvider(primary=[(COMPLETED, None)])
    router = _router(provider, fast_retry)

    assert await router.execute_completion("doc.py", "Summarize") is None
    counts = router.stats.counts()
    assert counts["success"] == 0
    assert counts["failure"] == 1


# =============================================================================
# Completions: token overflow
# =============================================================================


@pytest.mark.asyncio
async def test_exceeded_prefers_switching_over_cropping(fast_retry) -> None:
    provider = ScriptedProvider(primary=[EXCEEDED], secondary=[(COMPLETED, "roomy")])
    router = _router(provider, fast_retry)

    result = await router.execute_completion("doc.py", "x" * 100)

    assert result == "roomy"
    assert provider.calls == [(PRIMARY_KEY, "x" * 100), (SECONDARY_KEY, "x" * 100)]
    assert router.stats.counts()["crop"] == 0


@pytest.mark.asyncio
async def test_exceeded_on_last_tier_crops_and_retries_same_tier(fast_retry) -> None:
    provider = ScriptedProvider(primary=[EXCEEDED, (COMPLETED, "fits now")], secondary=None)
    router = _router(provider, fast_retry)

    result = await router.execute_completion("doc.py", "x" * 100)

    assert result == "fits now"
    assert [key for key, _ in provider.calls] == [PRIMARY_KEY, PRIMARY_KEY]
    assert len(provider.calls[1][1]) < 100
    assert router.stats.counts()["crop"] == 1


@pytest.mark.asyncio
async def test_always_exceeded_crops_until_empty_then_gives_up(fast_retry) -> None:
    provider = ScriptedProvider(primary=[EXCEEDED], secondary=None)
    router = _router(provider, fast_retry)

    result = await router.execute_completion("doc.py", "x" * 100)

    assert result is None
    lengths = [len(prompt) for _, prompt in provider.calls]
    assert lengths[0] == 100
    assert all(a > b for a, b in zip(lengths, lengths[1:], strict=False))
    counts = router.stats.counts()
    assert counts["crop"] == len(provider.calls)
    assert counts["failure"] == 1


@pytest.mark.asyncio
async def test_adapter_that_does_not_shorten_terminates(fast_retry) -> None:
    class StubbornAdapter:
        def adapt(self, prompt, response, models_metadata):
            return prompt

    provider = ScriptedProvider(primary=[EXCEEDED], secondary=None)
    router = LLMRouter(provider, retry_policy=fast_retry, prompt_adapter=StubbornAdapter())

    assert await router.execute_completion("doc.py", "abc") is None
    assert len(provider.calls) == 1


# =============================================================================
# Completions: tier override and structured output
# =============================================================================


@pytest.mark.asyncio
async def test_quality_override_restricts_to_one_tier(fast_retry) -> None:
    provider = ScriptedProvider(primary=[OVERLOADED])
    router = _router(provider, fast_retry)

    result = await router.execute_completion(
        "doc.py", "Summarize", model_quality_override=ModelQuality.SECONDARY
    )

    assert result == "secondary answer"
    assert provider.calls_to(PRIMARY_KEY) == 0
    assert provider.contexts[0]["model_quality"] == ModelQuality.SECONDARY.value


@pytest.mark.asyncio
async def test_quality_override_for_missing_tier_raises(fast_retry) -> None:
    router = _router(ScriptedProvider(secondary=None), fast_retry)

    with pytest.raises(ConfigurationError):
        await router.execute_completion(
            "doc.py", "Summarize", model_quality_override=ModelQuality.SECONDARY
        )


@pytest.mark.asyncio
async def test_json_schema_validation_returns_model(fast_retry) -> None:
    provider = ScriptedProvider(primary=[(COMPLETED, {"name": "A", "age": 30})])
    router = _router(provider, fast_retry)

    result = await router.execute_completion(
        "doc.py",
        "Describe",
        CompletionOptions(output_format=OutputFormat.JSON, json_schema=Person),
    )

    assert result == Person(name="A", age=30)
    assert provider.contexts[0]["output_format"] == "json"


@pytest.mark.asyncio
async def test_json_schema_mismatch_yields_none(fast_retry, caplog) -> None:
    provider = ScriptedProvider(primary=[(COMPLETED, {"name": "A", "age": "thirty"})])
    router = _router(provider, fast_retry)

    with caplog.at_level(logging.WARNING, logger="castor"):
        result = await router.execute_completion(
            "doc.py",
            "Describe",
            CompletionOptions(output_format=OutputFormat.JSON, json_schema=Person),
        )

    assert result is None
    assert "schema validation" in caplog.text


@pytest.mark.asyncio
async def test_json_without_schema_returns_raw_content(fast_retry) -> None:
    provider = ScriptedProvider(primary=[(COMPLETED, [{"a": 1}])])
    router = _router(provider, fast_retry)

    result = await router.execute_completion(
        "doc.py", "List", CompletionOptions(output_format=OutputFormat.JSON)
    )

    assert result == [{"a": 1}]


@pytest.mark.asyncio
async def test_non_text_completion_content_yields_none(fast_retry) -> None:
    provider = ScriptedProvider(primary=[(COMPLETED, 42)])
    router = _router(provider, fast_retry)

    assert await router.execute_completion("doc.py", "Count") is None


# =============================================================================
# Embeddings
# =============================================================================


@pytest.mark.asyncio
async def test_generate_embeddings_returns_vector(fast_retry) -> None:
    provider = ScriptedProvider(embeddings=[(COMPLETED, [0.5, 1, -2.0])])
    router = _router(provider, fast_retry)

    assert await router.generate_embeddings("doc.py", "content") == [0.5, 1, -2.0]
    assert provider.calls == [(EMBEDDINGS_KEY, "content")]
    assert provider.contexts[0]["purpose"] == "embeddings"


@pytest.mark.asyncio
async def test_generate_embeddings_rejects_non_numeric_payload(fast_retry) -> None:
    provider = ScriptedProvider(embeddings=[(COMPLETED, ["a", "b"])])
    router = _router(provider, fast_retry)

    assert await router.generate_embeddings("doc.py", "content") is None


@pytest.mark.asyncio
async def test_generate_embeddings_gives_up_after_retries(fast_retry) -> None:
    provider = ScriptedProvider(embeddings=[OVERLOADED])
    router = _router(provider, fast_retry)

    assert await router.generate_embeddings("doc.py", "content") is None
    assert provider.calls_to(EMBEDDINGS_KEY) == fast_retry.max_attempts
    assert router.stats.counts()["switch"] == 0
    assert router.stats.counts()["failure"] == 1


# =============================================================================
# Construction, introspection and concurrency
# =============================================================================


def test_router_builds_ranked_candidates(fast_retry) -> None:
    router = _router(ScriptedProvider(), fast_retry)

    assert [c.quality for c in router.completion_candidates] == [
        ModelQuality.PRIMARY,
        ModelQuality.SECONDARY,
    ]
    assert router.describe_models() == (
        "fake (embeddings: fake/embed, completions - "
        "primary: fake/primary, secondary: fake/secondary)"
    )
    assert router.embedding_dimensions == 3


def test_router_resolves_retry_policy_from_settings() -> None:
    from castor.config import Config, RetrySettings

    router = LLMRouter(
        ScriptedProvider(),
        retry_settings=RetrySettings(max_attempts=7),
        config=Config(min_retry_delay_ms=5),
    )

    assert router.retry_policy.max_attempts == 7
    assert router.retry_policy.min_retry_delay_ms == 5


@pytest.mark.asyncio
async def test_close_releases_provider(fast_retry) -> None:
    provider = ScriptedProvider()
    router = _router(provider, fast_retry)

    await router.close()

    assert provider.closed is True


@pytest.mark.asyncio
async def test_concurrent_calls_share_stats_without_losing_counts(fast_retry) -> None:
    provider = ScriptedProvider(primary=[(COMPLETED, "ok")])
    router = _router(provider, fast_retry)

    results = await asyncio.gather(
        *(router.execute_completion(f"file-{i}", "prompt") for i in range(50))
    )

    assert results == ["ok"] * 50
    assert router.stats.counts()["success"] == 50
    assert {ctx["resource"] for ctx in provider.contexts} == {
        f"file-{i}" for i in range(50)
    }


def test_display_status_details_prints_counts(fast_retry, capsys) -> None:
    router = _router(ScriptedProvider(), fast_retry)
    router.stats.record_success()

    router.display_status_details()
    router.display_status_summary()

    out = capsys.readouterr().out
    assert "LLM invocation succeeded" in out
    assert "event types that will be recorded" in out
