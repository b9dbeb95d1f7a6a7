"""Scripted Generation Provider for tests, demos and offline use.

Serves canned continuations keyed by the exact prompt. Entries may also be
exceptions, which are raised instead, so safety blocks and transport
failures can be rehearsed without network access. Every call is recorded
in :attr:`ScriptedProvider.calls`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any, Union

from token_wheel.exceptions import ProviderFailureError
from token_wheel.generation.base import GenerationProvider
from token_wheel.generation.registry import register_provider
from token_wheel.generation.types import ProviderResponse, SamplingParams

ScriptEntry = Union[
    ProviderResponse,
    BaseException,
    tuple[Sequence[str], Sequence[Mapping[str, float]]],
]


def _to_response(entry: ScriptEntry) -> ProviderResponse:
    if isinstance(entry, ProviderResponse):
        return entry
    tokens, distributions = entry  # type: ignore[misc]
    normalized = []
    for dist in distributions:
        total = sum(dist.values())
        normalized.append({t: p / total for t, p in dist.items()} if total > 0 else dict(dist))
    return ProviderResponse(
        text="".join(tokens),
        tokens=tuple(tokens),
        distributions=tuple(normalized),
    )


@register_provider("scripted")
class ScriptedProvider(GenerationProvider):
    """Provider that replays scripted responses.

    Args:
        script: Mapping of prompt to a ``ProviderResponse``, a
            ``(tokens, distributions)`` pair, or an exception to raise.
        default: Response for prompts missing from *script*. ``None`` makes
            unknown prompts fail with ``ProviderFailureError``.
        latency_s: Artificial delay before answering, either one value for
            every prompt or a per-prompt mapping (missing prompts: no delay).
    """

    def __init__(
        self,
        script: Mapping[str, ScriptEntry] | None = None,
        *,
        default: ScriptEntry | None = None,
        latency_s: float | Mapping[str, float] = 0.0,
    ) -> None:
        self._script: dict[str, ScriptEntry] = dict(script or {})
        self._default = default
        self._latency_s = latency_s
        self.calls: list[tuple[str, SamplingParams]] = []

    @property
    def name(self) -> str:
        """Return ``'scripted'``."""
        return "scripted"

    def add(self, prompt: str, entry: ScriptEntry) -> None:
        """Script (or re-script) the answer for *prompt*."""
        self._script[prompt] = entry

    def _latency_for(self, prompt: str) -> float:
        if isinstance(self._latency_s, Mapping):
            return float(self._latency_s.get(prompt, 0.0))
        return float(self._latency_s)

    async def generate(self, prompt: str, params: SamplingParams) -> ProviderResponse:
        """Return (or raise) the scripted entry for *prompt*."""
        self.calls.append((prompt, params))
        delay = self._latency_for(prompt)
        if delay > 0:
            await asyncio.sleep(delay)

        entry = self._script.get(prompt, self._default)
        if entry is None:
            raise ProviderFailureError("No scripted response", detail=repr(prompt))
        if isinstance(entry, BaseException):
            raise entry
        return _to_response(entry)

    def health_check(self) -> dict[str, Any]:
        """Return provider status with the number of scripted prompts."""
        return {"provider": self.name, "prompts": len(self._script), "calls": len(self.calls)}
