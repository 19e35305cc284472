"""Ranked completion candidates derived from provider capabilities."""

from __future__ import annotations

from typing import TYPE_CHECKING

from castor.errors import ConfigurationError
from castor.types import Candidate, ModelQuality

if TYPE_CHECKING:
    from collections.abc import Sequence

    from castor.providers.base import LLMProvider


def build_candidates(provider: LLMProvider) -> tuple[Candidate, ...]:
    """Return completion candidates in preference order.

    PRIMARY always comes first; SECONDARY is appended only when the provider
    reports it available.
    """
    available = provider.get_available_completion_qualities()
    candidates: list[Candidate] = []
    if ModelQuality.PRIMARY in available:
        candidates.append(
            Candidate(
                invoke=provider.execute_completion_primary,
                quality=ModelQuality.PRIMARY,
                label="Primary completion model",
            )
        )
    if ModelQuality.SECONDARY in available:
        candidates.append(
            Candidate(
                invoke=provider.execute_completion_secondary,
                quality=ModelQuality.SECONDARY,
                label="Secondary completion model (fallback)",
            )
        )
    if not candidates:
        raise ConfigurationError(
            "At least one completion candidate must be available",
            hint="The provider reported no completion model qualities.",
        )
    return tuple(candidates)


def select_candidates(
    candidates: Sequence[Candidate], quality_override: ModelQuality | None = None
) -> tuple[Candidate, ...]:
    """Restrict *candidates* to one tier when an override is given."""
    if quality_override is None:
        selected = tuple(candidates)
    else:
        selected = tuple(c for c in candidates if c.quality is quality_override)
    if not selected:
        raise ConfigurationError(
            f"No completion candidates found for model quality: "
            f"{quality_override.value if quality_override else None}",
            hint="Only request a tier the provider reports as available.",
        )
    return selected


def describe_candidates(
    candidates: Sequence[Candidate], model_names: Sequence[str]
) -> str:
    """Render ``"primary: <model>, secondary: <model>"`` for logging."""
    by_quality = {
        ModelQuality.PRIMARY: model_names[1] if len(model_names) > 1 else "?",
        ModelQuality.SECONDARY: model_names[2] if len(model_names) > 2 else "?",
    }
    return ", ".join(f"{c.quality.value}: {by_quality[c.quality]}" for c in candidates)
