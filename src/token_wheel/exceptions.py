"""Exception hierarchy for token-wheel.

All exceptions derive from TokenWheelError, enabling broad catch patterns
at the application boundary while allowing fine-grained handling internally.
"""

from __future__ import annotations

from typing import Any


class TokenWheelError(Exception):
    """Base exception for all token-wheel errors."""


class GenerationError(TokenWheelError):
    """A Generation Provider call did not produce a usable result.

    Subclasses classify the failure. The session stores the instance in its
    ``Idle`` state so the presentation layer can show ``user_message``.
    """

    kind: str = "generation_error"
    user_message: str = "Generation failed"


class SafetyBlockedError(GenerationError):
    """The provider refused or stopped generation on safety grounds.

    Args:
        reason: Machine-readable reason string reported by the provider.
    """

    kind = "safety_blocked"
    user_message = "Your prompt was flagged by the safety filter. Please try a different prompt."

    def __init__(self, reason: str) -> None:
        super().__init__(f"Content blocked due to: {reason}")
        self.reason = reason


class ProviderFailureError(GenerationError):
    """Transport, format or otherwise unexpected provider failure.

    Args:
        message: Short description of what failed.
        detail: Optional diagnostic detail (HTTP body excerpt, wrapped error).
    """

    kind = "provider_failure"
    user_message = "Failed to generate text"

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail


class InvalidTransitionError(TokenWheelError):
    """An intent was issued in a session state that does not support it.

    This is a programming error in the caller, not a user-facing failure.
    """

    def __init__(self, intent: str, state: Any) -> None:
        super().__init__(f"{intent}() is not valid in state {type(state).__name__}")
        self.intent = intent
        self.state = state


class InvalidPromptError(TokenWheelError):
    """The starting prompt is empty or exceeds ``max_prompt_chars``."""


class ConfigValidationError(TokenWheelError):
    """Configuration override validation failed.

    Raised when overrides contain unknown keys, attempt to override
    infrastructure fields, or fail type validation.
    """
