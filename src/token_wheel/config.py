"""Configuration system for token-wheel.

Uses pydantic-settings for declarative, layered configuration:
init kwargs -> environment variables (TW_*) -> .env file -> field defaults.

Per-session overrides (for example a remembered temperature) are applied
via resolve_config() which creates a new config instance without mutating
the defaults. Infrastructure fields are protected from override.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from token_wheel.exceptions import ConfigValidationError

DEFAULT_SYSTEM_INSTRUCTION = """You are a text continuation assistant. The user will provide incomplete text, and you must continue it naturally.

CRITICAL: Your output is concatenated directly to the user's input with no separator. If the user's text ends with a complete word (like "the" or "a"), your first token MUST start with a space. Only omit the leading space if the user's text ends with a space or mid-word.

Rules:
1. Write 1-2 complete sentences to finish the thought naturally.
2. Do NOT repeat the ending of the user's input at the start of your response.
3. Do NOT use markdown formatting, bullet points, or special characters.
4. Write in a natural, flowing style that matches the tone of the input."""

# Fields that can be overridden per session via resolve_config().
_OVERRIDABLE_FIELDS: frozenset[str] = frozenset(
    {
        "max_tokens",
        "temperature",
        "top_p",
        "top_k",
        "num_candidates",
        "system_instruction",
    }
)

# All known config field names (populated after class definition).
_ALL_FIELDS: frozenset[str] = frozenset()


class TokenWheelConfig(BaseSettings):
    """Configuration for token-wheel.

    Resolution order: init kwargs -> env vars (TW_*) -> .env file -> defaults.

    Fields are divided into two groups:
    - **Infrastructure**: provider selection, endpoint, credentials,
      timeouts and prompt limits. NOT overridable per session.
    - **Sampling parameters**: token budget, temperature, nucleus/top-k
      settings, candidate count and system instruction. Overridable per
      session via resolve_config().
    - **Logging**: fixed for the lifetime of a session, NOT overridable.
    """

    model_config = SettingsConfigDict(
        env_prefix="TW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Infrastructure (NOT overridable) ---

    provider_type: str = Field(
        default="gemini",
        description="Registered Generation Provider identifier",
    )
    api_base: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Base URL of the hosted model API",
    )
    model: str = Field(
        default="gemini-2.0-flash",
        description="Model name used for generateContent calls",
    )
    api_key: str = Field(
        default="",
        description="API key sent with every provider call (empty = none)",
    )
    request_timeout_s: float = Field(
        default=30.0,
        gt=0,
        description="Per-call timeout for the provider in seconds",
    )
    max_prompt_chars: int = Field(
        default=1000,
        gt=0,
        description="Longest starting prompt accepted by start()",
    )

    # --- Sampling (overridable) ---

    max_tokens: int = Field(
        default=50,
        ge=1,
        description="Maximum continuation tokens per provider call",
    )
    temperature: float = Field(
        default=0.9,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )
    top_p: float = Field(
        default=0.95,
        gt=0.0,
        le=1.0,
        description="Nucleus sampling threshold",
    )
    top_k: int = Field(
        default=40,
        ge=1,
        description="Top-k sampling cutoff",
    )
    num_candidates: int = Field(
        default=8,
        ge=1,
        le=20,
        description="Candidate log-probabilities requested per position",
    )
    system_instruction: str = Field(
        default=DEFAULT_SYSTEM_INSTRUCTION,
        description="System instruction sent with every generation",
    )

    # --- Logging (NOT overridable) ---

    log_level: str = Field(
        default="summary",
        description="Transition logging verbosity: 'none', 'summary', 'full'",
    )
    diagnostic_mode: bool = Field(
        default=False,
        description="Store all transition records in memory for analysis",
    )


# Populate _ALL_FIELDS now that the class is defined.
_ALL_FIELDS = frozenset(TokenWheelConfig.model_fields.keys())


def validate_overrides(overrides: dict[str, Any]) -> None:
    """Validate override keys without creating a config.

    Args:
        overrides: Mapping of config field names to new values.

    Raises:
        ConfigValidationError: If any key is unknown or non-overridable.
    """
    for key in overrides:
        if key not in _ALL_FIELDS:
            raise ConfigValidationError(f"Unknown config field: '{key}'")
        if key not in _OVERRIDABLE_FIELDS:
            raise ConfigValidationError(
                f"Field '{key}' cannot be overridden per session"
            )


def resolve_config(
    defaults: TokenWheelConfig,
    overrides: dict[str, Any] | None,
) -> TokenWheelConfig:
    """Create a new config instance merging defaults with overrides.

    Args:
        defaults: The base configuration loaded from environment.
        overrides: Per-session overrides keyed by field name.

    Returns:
        A new TokenWheelConfig with overrides applied, or *defaults*
        itself when there is nothing to override.

    Raises:
        ConfigValidationError: If any key is unknown, non-overridable, or
            its value fails validation.
    """
    if not overrides:
        return defaults

    validate_overrides(overrides)

    # model_copy(update=...) skips validation, so "0.5" would stay a string
    # and out-of-range temperatures would pass. model_validate runs it all.
    merged = defaults.model_dump()
    merged.update(overrides)
    try:
        return TokenWheelConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigValidationError(f"Invalid config override: {exc}") from exc
