"""Read-only projection of session state for the presentation layer."""

from __future__ import annotations

from dataclasses import dataclass

from token_wheel.session.states import (
    Complete,
    Diverging,
    Idle,
    Loading,
    SessionState,
    StateKind,
    Stepping,
)
from token_wheel.stitching import format_token_for_display


@dataclass(frozen=True, slots=True)
class CandidateView:
    """One candidate of the active distribution."""

    token: str
    label: str
    probability: float
    chosen: bool


@dataclass(frozen=True, slots=True)
class SessionView:
    """Everything the presentation layer reads on each render.

    Attributes:
        kind: Active state tag.
        prompt: The starting prompt.
        display_text: Built text; when diverging it includes the proposed
            token, which is also reported in ``divergent_token``.
        accepted_tokens: Tokens committed so far.
        divergent_token: Proposed token while diverging.
        position: 0-based cursor within the active generation.
        total: Number of tokens in the active generation.
        generation_id: Id of the active generation (for remount keys).
        candidates: Active distribution, most probable first (stepping only).
        error_kind: ``'safety_blocked'`` or ``'provider_failure'`` if in error.
        error_message: User-facing message for the error.
        error_detail: Diagnostic detail (safety reason or failure detail).
        can_undo: Whether ``undo()`` is currently valid.
        can_retry: Whether a failed divergence can be retried.
    """

    kind: StateKind
    prompt: str
    display_text: str
    accepted_tokens: tuple[str, ...]
    divergent_token: str | None
    position: int
    total: int
    generation_id: int | None
    candidates: tuple[CandidateView, ...]
    error_kind: str | None
    error_message: str | None
    error_detail: str | None
    can_undo: bool
    can_retry: bool


def _candidates(state: Stepping) -> tuple[CandidateView, ...]:
    chosen = state.chosen_token
    return tuple(
        CandidateView(
            token=token,
            label=format_token_for_display(token),
            probability=probability,
            chosen=token == chosen,
        )
        for token, probability in state.generation.ranked(state.position)
    )


def project(state: SessionState, prompt: str) -> SessionView:
    """Build the :class:`SessionView` for *state*."""
    display_text = ""
    accepted: tuple[str, ...] = ()
    divergent = None
    position = total = 0
    generation_id = None
    candidates: tuple[CandidateView, ...] = ()
    error_kind = error_message = error_detail = None
    can_undo = can_retry = False

    if isinstance(state, Stepping):
        display_text = state.prefix_text
        accepted = state.accepted_tokens
        position, total = state.position, state.total
        generation_id = state.generation.id
        candidates = _candidates(state)
        can_undo = bool(state.undo_log)
    elif isinstance(state, Diverging):
        display_text = state.display_text
        accepted = state.stepping.accepted_tokens
        divergent = state.divergent_token
        position, total = state.position, state.stepping.total
        generation_id = state.generation.id
        can_undo = True
    elif isinstance(state, Complete):
        display_text = state.prefix_text
        accepted = state.accepted_tokens
        position = total = len(state.generation)
        generation_id = state.generation.id
        can_undo = bool(state.undo_log)
    elif isinstance(state, Loading):
        display_text = state.prompt
        if state.resume is not None:
            accepted = state.resume.stepping.accepted_tokens
            divergent = state.resume.divergent_token
    elif isinstance(state, Idle):
        if state.resume is not None:
            display_text = state.resume.stepping.prefix_text
            accepted = state.resume.stepping.accepted_tokens
            divergent = state.resume.divergent_token
            can_undo = can_retry = True
        if state.error is not None:
            error_kind = state.error.kind
            error_message = state.error.user_message
            error_detail = getattr(state.error, "reason", None) or getattr(
                state.error, "detail", None
            )

    return SessionView(
        kind=state.kind,
        prompt=prompt,
        display_text=display_text,
        accepted_tokens=accepted,
        divergent_token=divergent,
        position=position,
        total=total,
        generation_id=generation_id,
        candidates=candidates,
        error_kind=error_kind,
        error_message=error_message,
        error_detail=error_detail,
        can_undo=can_undo,
        can_retry=can_retry,
    )
