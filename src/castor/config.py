"""Configuration: global retry defaults and per-provider overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
import os

from dotenv import load_dotenv

from castor.errors import ConfigurationError
from castor.retry import RetryPolicy

load_dotenv()

ENV_PREFIX = "CASTOR_"

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MIN_RETRY_DELAY_MS = 20 * 1000
DEFAULT_MAX_RETRY_ADDITIONAL_DELAY_MS = 30 * 1000
DEFAULT_REQUEST_TIMEOUT_MS = 7 * 60 * 1000


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(f"{ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigurationError(
            f"{ENV_PREFIX}{name} must be an integer, got {raw!r}",
            hint=f"Unset {ENV_PREFIX}{name} or give it a whole number of milliseconds/attempts.",
        ) from None


@dataclass(frozen=True)
class RetrySettings:
    """Provider-specific retry overrides. ``None`` means use the global default."""

    max_attempts: int | None = None
    min_retry_delay_ms: int | None = None
    max_retry_additional_delay_ms: int | None = None
    request_timeout_ms: int | None = None


@dataclass(frozen=True)
class Config:
    """Immutable global defaults for routed LLM invocations.

    Fields fall back to ``CASTOR_*`` environment variables (a ``.env`` file is
    honored) and then to built-in defaults.

    Example:
        config = Config(max_attempts=5)
        policy = resolve_retry_policy(RetrySettings(min_retry_delay_ms=500), config)
    """

    max_attempts: int = field(
        default_factory=lambda: _env_int("MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
    )
    min_retry_delay_ms: int = field(
        default_factory=lambda: _env_int(
            "MIN_RETRY_DELAY_MS", DEFAULT_MIN_RETRY_DELAY_MS
        )
    )
    max_retry_additional_delay_ms: int = field(
        default_factory=lambda: _env_int(
            "MAX_RETRY_ADDITIONAL_DELAY_MS", DEFAULT_MAX_RETRY_ADDITIONAL_DELAY_MS
        )
    )
    request_timeout_ms: int = field(
        default_factory=lambda: _env_int(
            "REQUEST_TIMEOUT_MS", DEFAULT_REQUEST_TIMEOUT_MS
        )
    )

    def __post_init__(self) -> None:
        """Validate numeric fields."""
        if self.max_attempts < 1:
            raise ConfigurationError(
                f"max_attempts must be ≥ 1, got {self.max_attempts}",
                hint="This is the number of tries per model tier, including the first.",
            )
        for name in (
            "min_retry_delay_ms",
            "max_retry_additional_delay_ms",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ConfigurationError(
                    f"{name} must be ≥ 0, got {value}",
                    hint="Retry delays are expressed in milliseconds.",
                )
        if self.request_timeout_ms <= 0:
            raise ConfigurationError(
                f"request_timeout_ms must be > 0, got {self.request_timeout_ms}",
                hint="This bounds how long a single provider attempt may take.",
            )


def resolve_retry_policy(
    overrides: RetrySettings | None = None, config: Config | None = None
) -> RetryPolicy:
    """Merge provider overrides onto global defaults."""
    config = config or Config()
    overrides = overrides or RetrySettings()

    def pick(name: str) -> int:
        value = getattr(overrides, name)
        return getattr(config, name) if value is None else value

    return RetryPolicy(
        max_attempts=pick("max_attempts"),
        min_retry_delay_ms=pick("min_retry_delay_ms"),
        max_retry_additional_delay_ms=pick("max_retry_additional_delay_ms"),
        request_timeout_ms=pick("request_timeout_ms"),
    )
