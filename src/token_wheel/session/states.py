"""Session states, undo entries and their invariants.

Exactly one state is active at a time. All states are immutable: a
transition builds the next state (undo log first) and swaps it in
atomically, so an observer never sees an undo log shorter than the
accepted-token list it must reverse.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Union

from token_wheel.stitching import stitch

if TYPE_CHECKING:
    from token_wheel.exceptions import GenerationError
    from token_wheel.generation.types import GenerationResult


class StateKind(str, Enum):
    """Tag of the active session state."""

    IDLE = "idle"
    LOADING = "loading"
    STEPPING = "stepping"
    DIVERGING = "diverging"
    COMPLETE = "complete"


class UndoKind(str, Enum):
    """What an undo entry reverses."""

    NORMAL = "normal"  # an accepted model token
    GHOST = "ghost"  # a confirmed divergence


@dataclass(frozen=True, slots=True)
class UndoEntry:
    """Snapshot restored by ``undo()`` without any network call.

    Attributes:
        kind: Whether the reversed token was accepted or forced.
        prior_generation: Generation active before the token was committed.
        prior_position: Cursor position before the token was committed.
    """

    kind: UndoKind
    prior_generation: GenerationResult
    prior_position: int


@dataclass(frozen=True, slots=True)
class Stepping:
    """Interactive state: deciding the token at ``position``.

    ``prefix_text`` always equals the starting prompt with every accepted
    token stitched on; ``accepted_tokens`` is the source of truth.
    ``0 <= position < len(generation)`` holds, since reaching the end of a
    generation moves the session to :class:`Complete`.
    """

    generation: GenerationResult
    position: int
    prefix_text: str
    accepted_tokens: tuple[str, ...]
    undo_log: tuple[UndoEntry, ...]

    kind: ClassVar[StateKind] = StateKind.STEPPING

    @property
    def chosen_token(self) -> str:
        return self.generation.chosen(self.position)

    @property
    def distribution(self) -> Mapping[str, float]:
        return self.generation.distribution(self.position)

    @property
    def total(self) -> int:
        return len(self.generation)


@dataclass(frozen=True, slots=True)
class Diverging:
    """The user proposed ``divergent_token`` instead of the model's choice.

    Wraps the :class:`Stepping` state it came from; cancelling returns to it
    unchanged.
    """

    stepping: Stepping
    divergent_token: str

    kind: ClassVar[StateKind] = StateKind.DIVERGING

    @property
    def generation(self) -> GenerationResult:
        return self.stepping.generation

    @property
    def position(self) -> int:
        return self.stepping.position

    @property
    def display_text(self) -> str:
        """The prefix with the proposed token stitched on."""
        return stitch(self.stepping.prefix_text, self.divergent_token)


@dataclass(frozen=True, slots=True)
class Complete:
    """The active generation has been fully decided."""

    generation: GenerationResult
    prefix_text: str
    accepted_tokens: tuple[str, ...]
    undo_log: tuple[UndoEntry, ...]

    kind: ClassVar[StateKind] = StateKind.COMPLETE


@dataclass(frozen=True, slots=True)
class Idle:
    """No active generation.

    Attributes:
        error: The failure that led here, if any.
        resume: The divergence whose confirmation failed. While set, the
            accepted tokens and undo history it carries are still live:
            ``confirm_divergence()`` retries it and ``undo()`` returns to
            the step before it.
    """

    error: GenerationError | None = None
    resume: Diverging | None = None

    kind: ClassVar[StateKind] = StateKind.IDLE


@dataclass(frozen=True, slots=True)
class Loading:
    """A provider call for ``prompt`` is outstanding."""

    prompt: str
    resume: Diverging | None = None

    kind: ClassVar[StateKind] = StateKind.LOADING


SessionState = Union[Idle, Loading, Stepping, Diverging, Complete]
