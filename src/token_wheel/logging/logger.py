"""Diagnostic logger for session transitions.

Uses the standard ``logging`` module with the ``"token_wheel"`` logger.
No ``print()`` statements. Supports three verbosity levels and an
in-memory diagnostic mode for post-hoc analysis.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from token_wheel.config import TokenWheelConfig
    from token_wheel.logging.types import TransitionRecord

logger = logging.getLogger("token_wheel")


class SessionLogger:
    """Per-transition diagnostic logger.

    Log levels:
        ``"none"``: No logging output. Records are still stored if
        ``diagnostic_mode=True``.

        ``"summary"``: One line per transition (intent, states, progress,
        network/speculation outcome).

        ``"full"``: Full JSON dump of all record fields.
    """

    def __init__(self, config: TokenWheelConfig) -> None:
        self._log_level = config.log_level
        self._diagnostic_mode = config.diagnostic_mode
        self._records: list[TransitionRecord] = []

    def log_transition(self, record: TransitionRecord) -> None:
        """Log a single transition.

        Args:
            record: Immutable record of the transition.
        """
        if self._diagnostic_mode:
            self._records.append(record)

        if self._log_level == "none":
            return

        if self._log_level == "summary":
            logger.info(
                "%s: %s -> %s pos=%d/%d accepted=%d gen=%s%s%s%s",
                record.intent,
                record.from_state,
                record.to_state,
                record.position,
                record.total,
                record.accepted_count,
                record.generation_id if record.generation_id is not None else "-",
                f" call={record.latency_ms:.1f}ms" if record.network_call else "",
                f" speculation={record.speculation}" if record.speculation else "",
                f" error={record.error_kind}" if record.error_kind else "",
            )
        elif self._log_level == "full":
            logger.info("transition_record: %s", json.dumps(asdict(record), default=str))

    def get_diagnostic_data(self) -> list[TransitionRecord]:
        """Return all stored records (requires ``diagnostic_mode=True``)."""
        return list(self._records)

    def clear(self) -> None:
        """Drop all stored records."""
        self._records.clear()

    def get_summary_stats(self) -> dict[str, Any]:
        """Compute summary statistics over all stored records.

        Returns:
            Dictionary with aggregate stats, or empty dict if no records.
        """
        if not self._records:
            return {}

        intents = Counter(r.intent for r in self._records)
        speculation = Counter(r.speculation for r in self._records if r.speculation)
        timed = [r.latency_ms for r in self._records if r.latency_ms > 0]
        errors = sum(1 for r in self._records if r.error_kind)

        return {
            "total_transitions": len(self._records),
            "intents": dict(intents),
            "divergences": sum(1 for r in self._records if r.to_state == "diverging"),
            "network_calls": sum(1 for r in self._records if r.network_call),
            "speculation_hits": speculation.get("hit", 0),
            "speculation_awaited": speculation.get("awaited", 0),
            "speculation_misses": speculation.get("miss", 0),
            "errors": errors,
            "mean_latency_ms": sum(timed) / len(timed) if timed else 0.0,
            "max_latency_ms": max(timed) if timed else 0.0,
        }
