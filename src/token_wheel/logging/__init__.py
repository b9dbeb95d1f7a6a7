"""Diagnostic logging subsystem for token-wheel.

Provides immutable per-transition records and a configurable logger
that supports none/summary/full verbosity and in-memory diagnostic mode.
"""

from token_wheel.logging.logger import SessionLogger
from token_wheel.logging.types import TransitionRecord

__all__ = [
    "SessionLogger",
    "TransitionRecord",
]
