"""The generation session: token-stepping and divergence state machine.

A :class:`GenerationSession` owns the current state, the starting prompt,
the sampling parameters, the speculation slot and the Generation Provider.
Every intent reads the current state, builds the next one and swaps it in,
so intents are serialized by the single owning controller. The only
suspension points are provider calls; a call's result is adopted only if
the session is still in the ``Loading`` state that issued it.

Intent validity::

    start                       Idle | Complete  -> Loading -> Stepping | Complete | Idle
    accept_current              Stepping         -> Stepping | Complete
    select_token                Stepping         -> Stepping | Complete | Diverging
    notify_divergent_candidate  Stepping         (no transition; starts speculation)
    confirm_divergence          Diverging | Idle(resume) -> Stepping | Complete | Loading | Idle
    cancel_divergence           Diverging        -> Stepping
    undo                        Stepping | Complete | Diverging | Idle(resume) -> Stepping
    reset                       any              -> Idle

Any other combination raises :class:`~token_wheel.exceptions.InvalidTransitionError`.
"""

from __future__ import annotations

import itertools
import logging
import time
from typing import TYPE_CHECKING, Any

from token_wheel.config import TokenWheelConfig, resolve_config
from token_wheel.exceptions import (
    GenerationError,
    InvalidPromptError,
    InvalidTransitionError,
    ProviderFailureError,
)
from token_wheel.generation.registry import build_provider
from token_wheel.generation.types import GenerationResult, SamplingParams
from token_wheel.logging.logger import SessionLogger
from token_wheel.logging.types import TransitionRecord
from token_wheel.session.speculation import (
    SpeculationCoordinator,
    SpeculationEntry,
    SpeculationStatus,
)
from token_wheel.session.states import (
    Complete,
    Diverging,
    Idle,
    Loading,
    SessionState,
    Stepping,
    UndoEntry,
    UndoKind,
)
from token_wheel.session.view import SessionView, project
from token_wheel.stitching import stitch, stitch_all

if TYPE_CHECKING:
    from token_wheel.generation.base import GenerationProvider

logger = logging.getLogger("token_wheel")


def _landing_state(
    generation: GenerationResult,
    prefix_text: str,
    accepted_tokens: tuple[str, ...],
    undo_log: tuple[UndoEntry, ...],
) -> Stepping | Complete:
    """State entered when a fresh generation arrives.

    An empty generation has nothing to decide and completes immediately.
    """
    if len(generation) == 0:
        return Complete(generation, prefix_text, accepted_tokens, undo_log)
    return Stepping(generation, 0, prefix_text, accepted_tokens, undo_log)


class GenerationSession:
    """Interactive, steerable generation over a Generation Provider.

    The session takes ownership of *provider* and closes it in
    :meth:`aclose`. Use it as an async context manager::

        async with GenerationSession(provider, config) as session:
            await session.start("The cat sat on the")
            session.accept_current()

    Args:
        provider: Generation Provider performing the model calls.
        config: Configuration; loaded from the environment when omitted.
    """

    def __init__(
        self,
        provider: GenerationProvider,
        config: TokenWheelConfig | None = None,
    ) -> None:
        self._config = config if config is not None else TokenWheelConfig()
        self._provider = provider
        self._params = SamplingParams.from_config(self._config)
        self._logger = SessionLogger(self._config)
        self._ids = itertools.count(1)
        self._speculation = SpeculationCoordinator(self._request)
        self._state: SessionState = Idle()
        self._prompt = ""

    @classmethod
    def from_config(cls, config: TokenWheelConfig | None = None) -> GenerationSession:
        """Build a session with the provider named by ``config.provider_type``."""
        config = config if config is not None else TokenWheelConfig()
        return cls(build_provider(config), config)

    async def __aenter__(self) -> GenerationSession:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # --- Read side ---

    @property
    def state(self) -> SessionState:
        """The active state."""
        return self._state

    @property
    def prompt(self) -> str:
        """The starting prompt of the current session."""
        return self._prompt

    @property
    def params(self) -> SamplingParams:
        """Sampling parameters used for every call of the current session."""
        return self._params

    @property
    def provider(self) -> GenerationProvider:
        """The Generation Provider owned by this session."""
        return self._provider

    @property
    def speculation(self) -> SpeculationCoordinator:
        """The single-slot speculative regeneration cache."""
        return self._speculation

    @property
    def session_logger(self) -> SessionLogger:
        """The transition diagnostics logger."""
        return self._logger

    def view(self) -> SessionView:
        """Project the active state for rendering."""
        return project(self._state, self._prompt)

    # --- Intents ---

    async def start(
        self,
        prompt: str,
        overrides: dict[str, Any] | None = None,
    ) -> SessionState:
        """Generate a continuation of *prompt* and begin stepping through it.

        Args:
            prompt: Starting text.
            overrides: Per-session sampling overrides (e.g. a remembered
                ``temperature``), validated by :func:`resolve_config`.

        Returns:
            The state reached once the call settled.

        Raises:
            InvalidTransitionError: If not in ``Idle`` or ``Complete``.
            InvalidPromptError: If *prompt* is blank or too long.
            ConfigValidationError: If *overrides* are invalid.
        """
        current = self._require("start", Idle, Complete)
        if not prompt.strip():
            raise InvalidPromptError("Prompt is required")
        if len(prompt) > self._config.max_prompt_chars:
            raise InvalidPromptError(
                f"Prompt too long (max {self._config.max_prompt_chars} characters)"
            )
        config = resolve_config(self._config, overrides)

        self._speculation.clear()
        self._params = SamplingParams.from_config(config)
        self._prompt = prompt
        loading = Loading(prompt)
        self._commit("start", current, loading)

        start = time.perf_counter()
        try:
            generation = await self._request(prompt)
        except GenerationError as exc:
            return self._settle(loading, Idle(error=exc), "start", start, network_call=True)
        return self._settle(
            loading, _landing_state(generation, prompt, (), ()), "start", start, network_call=True
        )

    def accept_current(self) -> SessionState:
        """Accept the model's chosen token at the current position."""
        state = self._require("accept_current", Stepping)
        return self._advance(state, "accept_current")

    def select_token(self, candidate: str) -> SessionState:
        """Pick *candidate* at the current position.

        Picking the model's chosen token is exactly :meth:`accept_current`.
        Anything else enters ``Diverging`` pending confirmation.
        """
        state = self._require("select_token", Stepping)
        if candidate == state.chosen_token:
            return self._advance(state, "select_token")
        if state.generation.probability(state.position, candidate) is None:
            logger.warning(
                "Candidate %r is not in the distribution at position %d; "
                "treating it as a divergence of unknown probability",
                candidate,
                state.position,
            )
        return self._commit("select_token", state, Diverging(state, candidate))

    def notify_divergent_candidate(self, candidate: str) -> SpeculationEntry | None:
        """Signal that the user is about to pick *candidate*.

        Starts (or reuses) a speculative regeneration from the prefix the
        divergence would produce. Does nothing for the model's own choice.
        Must be called from a running event loop.

        Returns:
            The live speculation entry, or ``None`` for the chosen token.
        """
        state = self._require("notify_divergent_candidate", Stepping)
        if candidate == state.chosen_token:
            return None
        return self._speculation.begin(
            candidate,
            stitch(state.prefix_text, candidate),
            state.accepted_tokens + (candidate,),
        )

    async def confirm_divergence(self) -> SessionState:
        """Commit the divergent token and continue from the new prefix.

        Uses a resolved speculation immediately, awaits one still in flight,
        or issues a fresh call when none was started. Also retries a
        divergence whose confirmation failed earlier (``Idle`` with resume).

        Returns:
            The state reached once any call settled.
        """
        current = self._state
        if isinstance(current, Diverging):
            diverging = current
        elif isinstance(current, Idle) and current.resume is not None:
            diverging = current.resume
        else:
            raise InvalidTransitionError("confirm_divergence", current)

        base = diverging.stepping
        token = diverging.divergent_token
        undo_log = base.undo_log + (UndoEntry(UndoKind.GHOST, base.generation, base.position),)
        accepted = base.accepted_tokens + (token,)
        prefix_text = stitch(base.prefix_text, token)

        entry = self._speculation.consume(token, prefix_text)
        if entry is not None and entry.settled:
            if entry.status is SpeculationStatus.RESOLVED and entry.result is not None:
                landing: SessionState = _landing_state(
                    entry.result, prefix_text, accepted, undo_log
                )
            else:
                landing = Idle(error=entry.error, resume=diverging)
            return self._commit("confirm_divergence", current, landing, speculation="hit")

        loading = Loading(prefix_text, resume=diverging)
        self._commit("confirm_divergence", current, loading)
        start = time.perf_counter()

        if entry is not None:
            await entry.wait()
            if entry.status is SpeculationStatus.RESOLVED and entry.result is not None:
                landing = _landing_state(entry.result, prefix_text, accepted, undo_log)
            else:
                landing = Idle(error=entry.error, resume=diverging)
            return self._settle(
                loading, landing, "confirm_divergence", start, speculation="awaited"
            )

        try:
            generation = await self._request(prefix_text)
        except GenerationError as exc:
            landing = Idle(error=exc, resume=diverging)
        else:
            landing = _landing_state(generation, prefix_text, accepted, undo_log)
        return self._settle(
            loading, landing, "confirm_divergence", start, network_call=True, speculation="miss"
        )

    def cancel_divergence(self) -> SessionState:
        """Drop the divergent token and return to the same step."""
        state = self._require("cancel_divergence", Diverging)
        self._speculation.clear()
        return self._commit("cancel_divergence", state, state.stepping)

    def undo(self) -> SessionState:
        """Step back one committed token, restoring the stored snapshot.

        From ``Diverging`` this only cancels the divergence; from ``Idle``
        after a failed divergence it returns to the step before it. Never
        calls the provider.
        """
        current = self._state
        if isinstance(current, Diverging):
            self._speculation.clear()
            return self._commit("undo", current, current.stepping)
        if isinstance(current, Idle) and current.resume is not None:
            return self._commit("undo", current, current.resume.stepping)
        if not isinstance(current, (Stepping, Complete)):
            raise InvalidTransitionError("undo", current)
        if not current.undo_log or not current.accepted_tokens:
            raise InvalidTransitionError("undo", current)

        entry = current.undo_log[-1]
        accepted = current.accepted_tokens[:-1]
        # Replayed from the prompt rather than trimmed, so it cannot drift.
        prefix_text = stitch_all(self._prompt, accepted)
        self._speculation.clear()
        return self._commit(
            "undo",
            current,
            Stepping(
                entry.prior_generation,
                entry.prior_position,
                prefix_text,
                accepted,
                current.undo_log[:-1],
            ),
        )

    def reset(self) -> SessionState:
        """Return to ``Idle``, dropping all history and any speculation."""
        current = self._state
        self._speculation.clear()
        self._prompt = ""
        return self._commit("reset", current, Idle())

    async def aclose(self) -> None:
        """Abandon speculation, wait for stray calls and close the provider."""
        self._speculation.clear()
        await self._speculation.drain()
        await self._provider.close()

    # --- Internals ---

    def _require(self, intent: str, *kinds: type) -> Any:
        state = self._state
        if not isinstance(state, kinds):
            raise InvalidTransitionError(intent, state)
        return state

    def _advance(self, state: Stepping, intent: str) -> SessionState:
        token = state.chosen_token
        undo_log = state.undo_log + (UndoEntry(UndoKind.NORMAL, state.generation, state.position),)
        accepted = state.accepted_tokens + (token,)
        prefix_text = stitch(state.prefix_text, token)
        self._speculation.clear()

        if state.position + 1 >= len(state.generation):
            new_state: SessionState = Complete(state.generation, prefix_text, accepted, undo_log)
        else:
            new_state = Stepping(
                state.generation, state.position + 1, prefix_text, accepted, undo_log
            )
        return self._commit(intent, state, new_state)

    async def _request(self, prompt: str) -> GenerationResult:
        """One provider call, with every failure classified."""
        try:
            response = await self._provider.generate(prompt, self._params)
        except GenerationError:
            raise
        except Exception as exc:
            logger.warning("Provider %r raised unexpectedly", self._provider.name, exc_info=True)
            raise ProviderFailureError(
                f"Unexpected provider error: {exc.__class__.__name__}", detail=str(exc)
            ) from exc
        return GenerationResult.from_response(next(self._ids), response)

    def _settle(
        self,
        loading: Loading,
        landing: SessionState,
        intent: str,
        started: float,
        *,
        network_call: bool = False,
        speculation: str = "",
    ) -> SessionState:
        latency_ms = (time.perf_counter() - started) * 1000.0
        if self._state is not loading:
            logger.debug(
                "Discarding %s result that arrived after the session moved on (%.1fms)",
                intent,
                latency_ms,
            )
            return self._state
        return self._commit(
            intent,
            loading,
            landing,
            network_call=network_call,
            speculation=speculation,
            latency_ms=latency_ms,
        )

    def _commit(
        self,
        intent: str,
        previous: SessionState,
        new_state: SessionState,
        *,
        network_call: bool = False,
        speculation: str = "",
        latency_ms: float = 0.0,
    ) -> SessionState:
        self._state = new_state
        self._logger.log_transition(
            self._record(intent, previous, new_state, network_call, speculation, latency_ms)
        )
        return new_state

    @staticmethod
    def _record(
        intent: str,
        previous: SessionState,
        new_state: SessionState,
        network_call: bool,
        speculation: str,
        latency_ms: float,
    ) -> TransitionRecord:
        position = total = 0
        accepted: tuple[str, ...] = ()
        generation_id = None
        error_kind = None
        stepping: Stepping | None = None
        if isinstance(new_state, Stepping):
            stepping = new_state
        elif isinstance(new_state, Diverging):
            stepping = new_state.stepping
        elif isinstance(new_state, (Idle, Loading)) and new_state.resume is not None:
            # A failed or pending divergence keeps its history live.
            stepping = new_state.resume.stepping

        if stepping is not None:
            position, total = stepping.position, stepping.total
            accepted = stepping.accepted_tokens
            generation_id = stepping.generation.id
        elif isinstance(new_state, Complete):
            position = total = len(new_state.generation)
            accepted = new_state.accepted_tokens
            generation_id = new_state.generation.id
        if isinstance(new_state, Idle) and new_state.error is not None:
            error_kind = new_state.error.kind

        return TransitionRecord(
            timestamp_ns=time.time_ns(),
            intent=intent,
            from_state=previous.kind.value,
            to_state=new_state.kind.value,
            position=position,
            total=total,
            accepted_count=len(accepted),
            generation_id=generation_id,
            network_call=network_call,
            speculation=speculation,
            latency_ms=latency_ms,
            error_kind=error_kind,
        )
