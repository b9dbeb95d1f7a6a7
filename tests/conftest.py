"""Shared pytest fixtures for token-wheel tests.

Provides reusable configuration objects, a scripted provider that plays
the "cat on the mat" continuation, and a provider guard that fails the
test if a call is made while it is armed.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping

import pytest

from token_wheel.config import TokenWheelConfig
from token_wheel.generation.scripted import ScriptedProvider
from token_wheel.generation.types import SamplingParams
from token_wheel.session import GenerationSession


class GuardedProvider(ScriptedProvider):
    """Scripted provider that fails the test when called while armed.

    ``pytest.fail`` raises a ``BaseException``, so the session cannot
    classify it away as a provider failure.
    """

    def __init__(self, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        super().__init__(*args, **kwargs)
        self.armed = False

    async def generate(self, prompt: str, params: SamplingParams):  # type: ignore[no-untyped-def]
        if self.armed:
            pytest.fail(f"Provider called while armed (prompt={prompt!r})")
        return await super().generate(prompt, params)


def cat_script() -> dict[str, tuple[list[str], list[dict[str, float]]]]:
    """Continuations for the cat prompt and its divergences."""
    return {
        "The cat sat on the": (
            [" mat", " and", " purred", "."],
            [
                {" mat": 0.6, " floor": 0.25, " rug": 0.15},
                {" and": 0.7, ",": 0.3},
                {" purred": 0.8, " slept": 0.2},
                {".": 0.9, "!": 0.1},
            ],
        ),
        "The cat sat on the floor": (
            [" quietly", "."],
            [
                {" quietly": 0.5, " and": 0.3, ".": 0.2},
                {".": 1.0},
            ],
        ),
        "The cat sat on the rug": (
            [" again", "."],
            [
                {" again": 0.9, " today": 0.1},
                {".": 1.0},
            ],
        ),
    }


@pytest.fixture
def config() -> TokenWheelConfig:
    """Silent config that keeps every transition record in memory."""
    return TokenWheelConfig(  # type: ignore[call-arg]
        _env_file=None,
        provider_type="scripted",
        log_level="none",
        diagnostic_mode=True,
    )


@pytest.fixture
def summary_config() -> TokenWheelConfig:
    """Config with one log line per transition."""
    return TokenWheelConfig(  # type: ignore[call-arg]
        _env_file=None,
        provider_type="scripted",
        log_level="summary",
    )


@pytest.fixture
def provider() -> GuardedProvider:
    """Scripted provider serving the cat continuations."""
    return GuardedProvider(cat_script())


@pytest.fixture
def session(provider: GuardedProvider, config: TokenWheelConfig) -> GenerationSession:
    """Idle session over the scripted cat provider."""
    return GenerationSession(provider, config)


@pytest.fixture
def make_session(config: TokenWheelConfig) -> Callable[..., GenerationSession]:
    """Factory for sessions whose cat provider answers with latency.

    ``make_session({"The cat sat on the floor": 0.05})`` delays only that
    prompt; a float delays every prompt.
    """

    def _make(latency_s: float | Mapping[str, float] = 0.0) -> GenerationSession:
        return GenerationSession(GuardedProvider(cat_script(), latency_s=latency_s), config)

    return _make
