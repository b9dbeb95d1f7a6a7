"""token-wheel: step through a language model's continuation token by token.

At every position the user may accept the model's chosen token, or force a
different candidate from the returned distribution and regenerate from
there. Undo restores earlier steps without any network call, and the
likeliest divergence is regenerated speculatively before it is confirmed.
"""

from __future__ import annotations

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("token-wheel")
except PackageNotFoundError:
    __version__ = "0.0.0"

from token_wheel.config import TokenWheelConfig, resolve_config, validate_overrides
from token_wheel.exceptions import (
    ConfigValidationError,
    GenerationError,
    InvalidPromptError,
    InvalidTransitionError,
    ProviderFailureError,
    SafetyBlockedError,
    TokenWheelError,
)
from token_wheel.session import GenerationSession, SessionView
from token_wheel.stitching import stitch, stitch_all

__all__ = [
    "ConfigValidationError",
    "GenerationError",
    "GenerationSession",
    "InvalidPromptError",
    "InvalidTransitionError",
    "ProviderFailureError",
    "SafetyBlockedError",
    "SessionView",
    "TokenWheelConfig",
    "TokenWheelError",
    "__version__",
    "resolve_config",
    "stitch",
    "stitch_all",
    "validate_overrides",
]
