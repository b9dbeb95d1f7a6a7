"""Generation Provider subsystem for token-wheel.

Re-exports the ABC, registry, data types and built-in providers::

    from token_wheel.generation import GenerationProvider, build_provider
    from token_wheel.generation import GeminiProvider, ScriptedProvider
"""

from token_wheel.generation.base import GenerationProvider, normalize_logprobs
from token_wheel.generation.gemini import GeminiProvider
from token_wheel.generation.registry import (
    GenerationProviderRegistry,
    build_provider,
    register_provider,
)
from token_wheel.generation.scripted import ScriptedProvider
from token_wheel.generation.types import GenerationResult, ProviderResponse, SamplingParams

__all__ = [
    "GeminiProvider",
    "GenerationProvider",
    "GenerationProviderRegistry",
    "GenerationResult",
    "ProviderResponse",
    "SamplingParams",
    "ScriptedProvider",
    "build_provider",
    "normalize_logprobs",
    "register_provider",
]
