"""Abstract base class for all Generation Providers.

A provider performs exactly one model call per :meth:`generate` invocation
and returns the chosen continuation tokens plus one candidate distribution
per position. It never streams. Failures are classified into
:class:`~token_wheel.exceptions.SafetyBlockedError` and
:class:`~token_wheel.exceptions.ProviderFailureError`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import numpy as np

from token_wheel.generation.types import ProviderResponse, SamplingParams


def normalize_logprobs(candidates: Iterable[tuple[str, float]]) -> dict[str, float]:
    """Convert candidate log-probabilities into a normalized distribution.

    Applies ``p = exp(logp)`` and renormalizes over the returned candidate
    set only; the tail beyond the returned top-K is not represented. When a
    token appears more than once the highest log-probability wins.

    Args:
        candidates: ``(token, log_probability)`` pairs.

    Returns:
        Mapping of token to probability, summing to 1.0. Empty if
        *candidates* is empty.
    """
    best: dict[str, float] = {}
    for token, logp in candidates:
        if token not in best or logp > best[token]:
            best[token] = logp
    if not best:
        return {}

    logps = np.fromiter(best.values(), dtype=np.float64, count=len(best))
    # Shift by the max before exponentiating; the shift cancels on normalize.
    weights = np.exp(logps - logps.max())
    probs = weights / weights.sum()
    return {token: float(p) for token, p in zip(best, probs)}


class GenerationProvider(ABC):
    """Abstract base for all Generation Providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider identifier (e.g., ``'gemini'``)."""

    @abstractmethod
    async def generate(self, prompt: str, params: SamplingParams) -> ProviderResponse:
        """Perform one model call continuing *prompt*.

        Args:
            prompt: Text to continue.
            params: Sampling parameters for this call.

        Returns:
            The chosen tokens with one normalized distribution per position.

        Raises:
            SafetyBlockedError: If the provider refused on safety grounds.
            ProviderFailureError: On transport, format or timeout failures.
        """

    async def close(self) -> None:
        """Release resources (HTTP clients, connections). Default: no-op."""

    def health_check(self) -> dict[str, Any]:
        """Return a status dictionary for this provider.

        Returns:
            Dictionary with at least a ``'provider'`` key.
        """
        return {"provider": self.name}
