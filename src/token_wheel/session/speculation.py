"""Speculative regeneration for the most likely next divergence.

When the presentation layer signals that the user is about to pick a
non-chosen candidate (hover, pointer-down), the coordinator starts the
regeneration for that candidate immediately. If the user then confirms
the same divergence, the session adopts the result without a loading
phase, or awaits the call already in flight instead of issuing another.

The coordinator is a single-slot cache. Starting a speculation for a
different token abandons the current one; there is no request
cancellation. An abandoned call runs to completion and its outcome is
dropped at settlement. Failures stay silent until the user confirms the
divergence that produced them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from token_wheel.exceptions import GenerationError

if TYPE_CHECKING:
    from token_wheel.generation.types import GenerationResult

logger = logging.getLogger("token_wheel")


class SpeculationStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(eq=False, slots=True)
class SpeculationEntry:
    """One speculative regeneration, keyed by the divergent token.

    Attributes:
        token: Candidate the regeneration was started for.
        predicted_prefix_text: Prefix the divergence would produce; this is
            the prompt of the speculative call.
        predicted_accepted_tokens: Accepted tokens the divergence would produce.
        status: Settlement status, updated in place.
        result: Generation on ``RESOLVED``.
        error: Classified failure on ``FAILED``.
        abandoned: Set when superseded or cleared; the outcome is then dropped.
        latency_ms: Provider latency once settled.
        task: The running call, held until it settles.
    """

    token: str
    predicted_prefix_text: str
    predicted_accepted_tokens: tuple[str, ...]
    status: SpeculationStatus = SpeculationStatus.PENDING
    result: GenerationResult | None = None
    error: GenerationError | None = None
    abandoned: bool = False
    latency_ms: float = 0.0
    task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def settled(self) -> bool:
        return self.status is not SpeculationStatus.PENDING

    async def wait(self) -> None:
        """Wait for settlement without exposing the call to cancellation."""
        if self.task is not None and not self.settled:
            await asyncio.shield(self.task)


class SpeculationCoordinator:
    """Owns at most one live :class:`SpeculationEntry`.

    Args:
        generate: Coroutine function performing one provider call for a
            prompt. It must raise only ``GenerationError`` subclasses.
    """

    def __init__(self, generate: Callable[[str], Awaitable[GenerationResult]]) -> None:
        self._generate = generate
        self._entry: SpeculationEntry | None = None
        # Strong references: the event loop only keeps weak ones to tasks.
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def entry(self) -> SpeculationEntry | None:
        """The live entry, if any."""
        return self._entry

    @property
    def in_flight(self) -> int:
        """Number of speculative calls still running, abandoned ones included."""
        return len(self._tasks)

    def begin(
        self,
        token: str,
        predicted_prefix_text: str,
        predicted_accepted_tokens: tuple[str, ...],
    ) -> SpeculationEntry:
        """Start (or reuse) the speculation for *token*.

        A live entry for the same token and prefix is returned as is, so a
        repeated hover never duplicates the call. Any other live entry is
        abandoned. Must be called from a running event loop.

        Returns:
            The live entry for *token*.

        Raises:
            RuntimeError: If no event loop is running.
        """
        loop = asyncio.get_running_loop()
        current = self._entry
        if (
            current is not None
            and current.token == token
            and current.predicted_prefix_text == predicted_prefix_text
        ):
            return current
        if current is not None:
            self._abandon(current)

        entry = SpeculationEntry(
            token=token,
            predicted_prefix_text=predicted_prefix_text,
            predicted_accepted_tokens=predicted_accepted_tokens,
        )
        self._entry = entry
        task = loop.create_task(self._run(entry))
        entry.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Speculation started for %r", token)
        return entry

    async def _run(self, entry: SpeculationEntry) -> None:
        start = time.perf_counter()
        result: GenerationResult | None = None
        error: GenerationError | None = None
        try:
            result = await self._generate(entry.predicted_prefix_text)
        except GenerationError as exc:
            error = exc
        latency_ms = (time.perf_counter() - start) * 1000.0

        if entry.abandoned:
            logger.debug(
                "Discarding speculation for %r settled after being superseded (%.1fms)",
                entry.token,
                latency_ms,
            )
            return

        entry.latency_ms = latency_ms
        if error is not None:
            entry.error = error
            entry.status = SpeculationStatus.FAILED
            logger.debug("Speculation for %r failed: %s", entry.token, error)
        else:
            entry.result = result
            entry.status = SpeculationStatus.RESOLVED
            logger.debug("Speculation for %r resolved in %.1fms", entry.token, latency_ms)

    def consume(self, token: str, predicted_prefix_text: str) -> SpeculationEntry | None:
        """Take the live entry if it was started for this divergence.

        The slot is emptied either way: a mismatching entry is abandoned,
        since the divergence being confirmed supersedes it.

        Returns:
            The matching entry, or ``None``.
        """
        entry = self._entry
        self._entry = None
        if entry is None:
            return None
        if entry.token == token and entry.predicted_prefix_text == predicted_prefix_text:
            return entry
        self._abandon(entry)
        return None

    def clear(self) -> None:
        """Abandon the live entry, if any."""
        if self._entry is not None:
            self._abandon(self._entry)
            self._entry = None

    async def drain(self) -> None:
        """Wait for every outstanding speculative call to settle."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    @staticmethod
    def _abandon(entry: SpeculationEntry) -> None:
        entry.abandoned = True
        logger.debug("Speculation for %r abandoned", entry.token)
