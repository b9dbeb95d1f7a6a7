"""Generation session subsystem: states, speculation and the controller.

Typical use::

    from token_wheel.session import GenerationSession

    async with GenerationSession.from_config() as session:
        await session.start("The cat sat on the")
        view = session.view()
"""

from token_wheel.session.session import GenerationSession
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
    StateKind,
    Stepping,
    UndoEntry,
    UndoKind,
)
from token_wheel.session.view import CandidateView, SessionView, project

__all__ = [
    "CandidateView",
    "Complete",
    "Diverging",
    "GenerationSession",
    "Idle",
    "Loading",
    "SessionState",
    "SessionView",
    "SpeculationCoordinator",
    "SpeculationEntry",
    "SpeculationStatus",
    "StateKind",
    "Stepping",
    "UndoEntry",
    "UndoKind",
    "project",
]
