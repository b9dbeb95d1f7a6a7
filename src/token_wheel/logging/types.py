"""Data types for the diagnostic logging subsystem."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TransitionRecord:
    """Immutable record of a single session transition.

    Attributes:
        timestamp_ns: Wall-clock time the transition completed (ns since epoch).
        intent: Name of the intent that caused it (``'accept_current'``, ...).
        from_state: State kind before the transition.
        to_state: State kind after the transition.
        position: Cursor position after the transition (0 when not stepping).
        total: Token count of the active generation (0 when none).
        accepted_count: Number of accepted tokens after the transition.
        generation_id: Id of the active generation, if any.
        network_call: True if this transition issued a fresh provider call.
        speculation: How a divergence was served: ``'hit'`` (resolved
            speculation adopted), ``'awaited'`` (in-flight speculation
            awaited), ``'miss'`` (fresh call) or ``''`` when not applicable.
        latency_ms: Time spent awaiting the provider (0.0 if none).
        error_kind: ``GenerationError.kind`` if the transition ended in error.
    """

    timestamp_ns: int
    intent: str
    from_state: str
    to_state: str
    position: int
    total: int
    accepted_count: int
    generation_id: int | None
    network_call: bool
    speculation: str
    latency_ms: float
    error_kind: str | None
