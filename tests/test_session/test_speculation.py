"""Tests for speculative regeneration: the coordinator and its use by the session."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from token_wheel.exceptions import InvalidTransitionError, ProviderFailureError, SafetyBlockedError
from token_wheel.generation.types import GenerationResult
from token_wheel.session import (
    GenerationSession,
    Idle,
    SpeculationCoordinator,
    SpeculationStatus,
    Stepping,
)

CAT = "The cat sat on the"
FLOOR = "The cat sat on the floor"
RUG = "The cat sat on the rug"


def _prompts(session: GenerationSession) -> list[str]:
    return [prompt for prompt, _ in session.provider.calls]  # type: ignore[attr-defined]


def _confirm_records(session: GenerationSession) -> list[tuple[str, str, str]]:
    return [
        (r.from_state, r.to_state, r.speculation)
        for r in session.session_logger.get_diagnostic_data()
        if r.intent == "confirm_divergence"
    ]


class TestSpeculationCoordinator:
    """Unit tests for the single-slot coordinator."""

    @staticmethod
    def _coordinator(
        delays: dict[str, float] | None = None,
    ) -> tuple[SpeculationCoordinator, list[str]]:
        calls: list[str] = []
        delays = delays or {}

        async def generate(prompt: str) -> GenerationResult:
            calls.append(prompt)
            await asyncio.sleep(delays.get(prompt, 0.0))
            if prompt == "fail":
                raise ProviderFailureError("down")
            return GenerationResult(id=len(calls), tokens=("x",), distributions=({"x": 1.0},))

        return SpeculationCoordinator(generate), calls

    def test_begin_resolves_entry(self) -> None:
        coordinator, calls = self._coordinator()

        async def scenario() -> None:
            entry = coordinator.begin("X", "pX", ("X",))
            assert entry.status is SpeculationStatus.PENDING
            assert coordinator.entry is entry
            await entry.wait()
            assert entry.status is SpeculationStatus.RESOLVED
            assert entry.result is not None
            assert entry.settled is True

        asyncio.run(scenario())
        assert calls == ["pX"]

    def test_repeated_begin_reuses_the_call(self) -> None:
        coordinator, calls = self._coordinator()

        async def scenario() -> None:
            first = coordinator.begin("X", "pX", ("X",))
            second = coordinator.begin("X", "pX", ("X",))
            assert first is second
            await coordinator.drain()

        asyncio.run(scenario())
        assert calls == ["pX"]

    def test_failure_is_recorded_not_raised(self) -> None:
        coordinator, _ = self._coordinator()

        async def scenario() -> None:
            entry = coordinator.begin("F", "fail", ("F",))
            await entry.wait()
            assert entry.status is SpeculationStatus.FAILED
            assert isinstance(entry.error, ProviderFailureError)

        asyncio.run(scenario())

    def test_superseded_entry_is_abandoned_and_dropped(self) -> None:
        coordinator, calls = self._coordinator({"pX": 0.02})

        async def scenario() -> None:
            x = coordinator.begin("X", "pX", ("X",))
            y = coordinator.begin("Y", "pY", ("Y",))
            assert x.abandoned is True
            assert coordinator.entry is y
            await coordinator.drain()
            assert x.status is SpeculationStatus.PENDING
            assert x.result is None
            assert y.status is SpeculationStatus.RESOLVED
            assert coordinator.in_flight == 0

        asyncio.run(scenario())
        assert calls == ["pX", "pY"]

    def test_consume_match_and_mismatch(self) -> None:
        coordinator, _ = self._coordinator()

        async def scenario() -> None:
            entry = coordinator.begin("X", "pX", ("X",))
            assert coordinator.consume("Y", "pY") is None
            assert entry.abandoned is True
            assert coordinator.entry is None

            again = coordinator.begin("X", "pX", ("X",))
            assert coordinator.consume("X", "pX") is again
            assert coordinator.consume("X", "pX") is None
            await coordinator.drain()

        asyncio.run(scenario())

    def test_same_token_different_prefix_is_a_new_call(self) -> None:
        coordinator, calls = self._coordinator()

        async def scenario() -> None:
            first = coordinator.begin("X", "a X", ("X",))
            second = coordinator.begin("X", "b X", ("X",))
            assert first is not second
            assert first.abandoned is True
            await coordinator.drain()

        asyncio.run(scenario())
        assert calls == ["a X", "b X"]

    def test_clear(self) -> None:
        coordinator, _ = self._coordinator()

        async def scenario() -> None:
            entry = coordinator.begin("X", "pX", ("X",))
            coordinator.clear()
            assert entry.abandoned is True
            assert coordinator.entry is None
            await coordinator.drain()
            assert entry.status is SpeculationStatus.PENDING

        asyncio.run(scenario())

    def test_begin_requires_running_loop(self) -> None:
        coordinator, _ = self._coordinator()
        with pytest.raises(RuntimeError):
            coordinator.begin("X", "pX", ("X",))


class TestSessionSpeculation:
    """Speculation as driven through GenerationSession."""

    def test_chosen_token_does_not_speculate(self, session: GenerationSession) -> None:
        async def scenario() -> None:
            await session.start(CAT)
            assert session.notify_divergent_candidate(" mat") is None
            assert session.speculation.entry is None

        asyncio.run(scenario())
        assert _prompts(session) == [CAT]

    def test_notify_starts_one_call_for_the_divergent_prefix(
        self, session: GenerationSession
    ) -> None:
        async def scenario() -> None:
            await session.start(CAT)
            entry = session.notify_divergent_candidate(" floor")
            assert entry is not None
            assert entry.status is SpeculationStatus.PENDING
            assert session.speculation.entry is entry
            assert session.speculation.in_flight == 1
            await session.speculation.drain()
            assert entry.status is SpeculationStatus.RESOLVED

        asyncio.run(scenario())
        assert _prompts(session) == [CAT, FLOOR]

    def test_notify_outside_stepping_is_invalid(self, session: GenerationSession) -> None:
        with pytest.raises(InvalidTransitionError):
            session.notify_divergent_candidate(" floor")

    def test_resolved_speculation_skips_loading(self, session: GenerationSession) -> None:
        async def scenario() -> None:
            await session.start(CAT)
            entry = session.notify_divergent_candidate(" floor")
            assert entry is not None
            assert entry.predicted_prefix_text == FLOOR
            assert entry.predicted_accepted_tokens == (" floor",)
            await entry.wait()

            session.select_token(" floor")
            state = await session.confirm_divergence()
            assert isinstance(state, Stepping)
            assert state.chosen_token == " quietly"
            assert state.accepted_tokens == (" floor",)
            assert state.prefix_text == FLOOR

        asyncio.run(scenario())
        assert _prompts(session) == [CAT, FLOOR]
        assert _confirm_records(session) == [("diverging", "stepping", "hit")]

    def test_pending_speculation_is_awaited_not_duplicated(
        self, make_session: Callable[..., GenerationSession]
    ) -> None:
        session = make_session({FLOOR: 0.03})

        async def scenario() -> None:
            await session.start(CAT)
            session.notify_divergent_candidate(" floor")
            session.select_token(" floor")
            state = await session.confirm_divergence()
            assert isinstance(state, Stepping)
            assert state.chosen_token == " quietly"

        asyncio.run(scenario())
        assert _prompts(session) == [CAT, FLOOR]
        assert _confirm_records(session) == [
            ("diverging", "loading", ""),
            ("loading", "stepping", "awaited"),
        ]

    def test_superseded_result_never_touches_state(
        self, make_session: Callable[..., GenerationSession]
    ) -> None:
        """X is hovered, then Y; X settles last and is ignored, Y is adopted."""
        session = make_session({RUG: 0.05, FLOOR: 0.01})

        async def scenario() -> None:
            await session.start(CAT)
            x = session.notify_divergent_candidate(" rug")
            y = session.notify_divergent_candidate(" floor")
            assert x is not None and y is not None
            assert x.abandoned is True

            session.select_token(" floor")
            adopted = await session.confirm_divergence()
            assert isinstance(adopted, Stepping)
            assert adopted.chosen_token == " quietly"

            await session.speculation.drain()
            assert session.state is adopted
            assert x.status is SpeculationStatus.PENDING
            assert x.result is None

        asyncio.run(scenario())
        assert sorted(_prompts(session)) == sorted([CAT, RUG, FLOOR])

    def test_superseded_result_settling_first_is_ignored(
        self, make_session: Callable[..., GenerationSession]
    ) -> None:
        """X settles while Y is still in flight; only Y's result is adopted."""
        session = make_session({RUG: 0.01, FLOOR: 0.05})

        async def scenario() -> None:
            await session.start(CAT)
            session.notify_divergent_candidate(" rug")
            session.notify_divergent_candidate(" floor")
            session.select_token(" floor")
            state = await session.confirm_divergence()
            assert isinstance(state, Stepping)
            assert state.prefix_text == FLOOR
            assert state.chosen_token == " quietly"

        asyncio.run(scenario())
        assert _prompts(session).count(FLOOR) == 1

    def test_failed_speculation_is_silent_until_confirmed(
        self, session: GenerationSession
    ) -> None:
        session.provider.add(FLOOR, SafetyBlockedError("SAFETY"))  # type: ignore[attr-defined]

        async def scenario() -> None:
            stepping = await session.start(CAT)
            entry = session.notify_divergent_candidate(" floor")
            assert entry is not None
            await entry.wait()
            assert entry.status is SpeculationStatus.FAILED

            assert session.state is stepping
            assert session.view().error_kind is None

            session.select_token(" floor")
            state = await session.confirm_divergence()
            assert isinstance(state, Idle)
            assert isinstance(state.error, SafetyBlockedError)
            assert state.resume is not None

        asyncio.run(scenario())
        assert _confirm_records(session) == [("diverging", "idle", "hit")]

    def test_confirm_other_token_ignores_speculation(self, session: GenerationSession) -> None:
        async def scenario() -> None:
            await session.start(CAT)
            rug = session.notify_divergent_candidate(" rug")
            assert rug is not None
            session.select_token(" floor")
            state = await session.confirm_divergence()
            assert isinstance(state, Stepping)
            assert state.prefix_text == FLOOR
            assert rug.abandoned is True
            await session.speculation.drain()

        asyncio.run(scenario())
        assert _confirm_records(session)[-1] == ("loading", "stepping", "miss")

    @pytest.mark.parametrize("intent", ["accept_current", "reset"])
    def test_leaving_the_step_clears_speculation(
        self, session: GenerationSession, intent: str
    ) -> None:
        async def scenario() -> None:
            await session.start(CAT)
            entry = session.notify_divergent_candidate(" floor")
            assert entry is not None
            getattr(session, intent)()
            assert entry.abandoned is True
            assert session.speculation.entry is None
            await session.speculation.drain()

        asyncio.run(scenario())

    def test_cancel_and_undo_clear_speculation(self, session: GenerationSession) -> None:
        async def scenario() -> None:
            await session.start(CAT)
            session.accept_current()
            first = session.notify_divergent_candidate(",")
            session.select_token(",")
            session.cancel_divergence()
            assert first is not None and first.abandoned is True

            second = session.notify_divergent_candidate(",")
            assert second is not None and second is not first
            session.undo()
            assert second.abandoned is True
            assert session.speculation.entry is None
            await session.speculation.drain()

        asyncio.run(scenario())

    def test_aclose_drains_outstanding_calls(
        self, make_session: Callable[..., GenerationSession]
    ) -> None:
        session = make_session({FLOOR: 0.02})

        async def scenario() -> None:
            await session.start(CAT)
            session.notify_divergent_candidate(" floor")
            assert session.speculation.in_flight == 1
            await session.aclose()
            assert session.speculation.in_flight == 0
            assert session.speculation.entry is None

        asyncio.run(scenario())
