"""Data types for the generation subsystem."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from token_wheel.config import TokenWheelConfig


@dataclass(frozen=True, slots=True)
class SamplingParams:
    """Sampling parameters sent with every provider call.

    Attributes:
        max_tokens: Maximum continuation tokens to generate.
        temperature: Sampling temperature.
        top_p: Nucleus sampling threshold.
        top_k: Top-k sampling cutoff.
        num_candidates: Candidate log-probabilities requested per position.
        system_instruction: Optional system instruction (``None`` = provider default).
    """

    max_tokens: int = 50
    temperature: float = 0.9
    top_p: float = 0.95
    top_k: int = 40
    num_candidates: int = 8
    system_instruction: str | None = None

    @classmethod
    def from_config(cls, config: TokenWheelConfig) -> SamplingParams:
        """Build sampling parameters from a resolved config."""
        return cls(
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            top_p=config.top_p,
            top_k=config.top_k,
            num_candidates=config.num_candidates,
            system_instruction=config.system_instruction or None,
        )


@dataclass(frozen=True, slots=True)
class ProviderResponse:
    """Raw successful result of one provider call.

    Attributes:
        text: Full continuation text as reported by the provider.
        tokens: The model's chosen continuation, one string per token.
        distributions: One normalized ``token -> probability`` map per
            position, aligned with *tokens*.
    """

    text: str
    tokens: tuple[str, ...]
    distributions: tuple[Mapping[str, float], ...]

    def __post_init__(self) -> None:
        if len(self.tokens) != len(self.distributions):
            raise ValueError(
                f"tokens/distributions length mismatch: "
                f"{len(self.tokens)} != {len(self.distributions)}"
            )


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Immutable snapshot of one generation, as held by the session.

    Attributes:
        id: Identifier minted by the owning session; distinguishes
            generations for display only, never used for ordering.
        tokens: The model's chosen continuation.
        distributions: Candidate distribution per position. ``distributions[i]``
            contains ``tokens[i]`` with positive probability.
        text: Full continuation text as reported by the provider.
    """

    id: int
    tokens: tuple[str, ...]
    distributions: tuple[Mapping[str, float], ...]
    text: str = ""

    @classmethod
    def from_response(cls, generation_id: int, response: ProviderResponse) -> GenerationResult:
        """Wrap a provider response, freezing each distribution."""
        return cls(
            id=generation_id,
            tokens=tuple(response.tokens),
            distributions=tuple(MappingProxyType(dict(d)) for d in response.distributions),
            text=response.text,
        )

    def __len__(self) -> int:
        return len(self.tokens)

    def chosen(self, position: int) -> str:
        """Return the model's chosen token at *position*."""
        return self.tokens[position]

    def distribution(self, position: int) -> Mapping[str, float]:
        """Return the candidate distribution at *position*."""
        return self.distributions[position]

    def probability(self, position: int, token: str) -> float | None:
        """Probability of *token* at *position*, or ``None`` if not a candidate."""
        return self.distributions[position].get(token)

    def ranked(self, position: int) -> list[tuple[str, float]]:
        """Candidates at *position* sorted by descending probability."""
        return sorted(
            self.distributions[position].items(),
            key=lambda item: item[1],
            reverse=True,
        )
