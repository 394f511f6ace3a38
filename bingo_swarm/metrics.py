"""
Process-wide counters shared by every virtual participant.

Participants increment, the spawn controller reads.  Each increment is
atomic on its own; there is no ordering between increments coming from
different participants.  Counters live only for the lifetime of the
process and are never persisted.
"""

from __future__ import annotations

import threading
from enum import Enum

from .errors import ErrorCategory


class Counter(str, Enum):
    """Names of every counter the swarm maintains."""

    PARTICIPANTS_STARTED = "participants_started"
    PARTICIPANTS_SUCCEEDED = "participants_succeeded"
    FAILURES = "failures"
    FAILURES_TRANSPORT = "failures_transport"
    FAILURES_PROTOCOL = "failures_protocol"
    FAILURES_APPLICATION = "failures_application"
    IDENTITY_COLLISIONS = "identity_collisions"
    CLAIM_CONFLICTS = "claim_conflicts"
    FORCED_CLAIMS = "forced_claims"
    CARDS_SELECTED = "cards_selected"
    MARKS_SUBMITTED = "marks_submitted"
    MARKS_CONFIRMED = "marks_confirmed"
    MARKS_REJECTED = "marks_rejected"
    WIN_CLAIMS = "win_claims"
    WIN_CLAIMS_FAILED = "win_claims_failed"
    TRANSPORT_ERRORS = "transport_errors"
    PROTOCOL_ERRORS = "protocol_errors"
    RECONNECTS = "reconnects"


_FAILURE_COUNTERS = {
    ErrorCategory.TRANSPORT: Counter.FAILURES_TRANSPORT,
    ErrorCategory.PROTOCOL: Counter.FAILURES_PROTOCOL,
    ErrorCategory.APPLICATION: Counter.FAILURES_APPLICATION,
}

# Counters shown in periodic progress lines, in display order.
_PROGRESS_COUNTERS = (
    Counter.PARTICIPANTS_STARTED,
    Counter.FAILURES,
    Counter.CARDS_SELECTED,
    Counter.MARKS_CONFIRMED,
    Counter.CLAIM_CONFLICTS,
    Counter.FORCED_CLAIMS,
)


class Metrics:
    """
    Fixed set of named integer counters guarded by a single lock.

    The lock is held only for the duration of one increment or one
    snapshot copy.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[Counter, int] = {counter: 0 for counter in Counter}

    def increment(self, counter: Counter, amount: int = 1) -> None:
        with self._lock:
            self._values[counter] += amount

    def record_failure(self, category: ErrorCategory) -> None:
        """Count one participant failure under its error category."""
        with self._lock:
            self._values[Counter.FAILURES] += 1
            self._values[_FAILURE_COUNTERS[category]] += 1

    def get(self, counter: Counter) -> int:
        with self._lock:
            return self._values[counter]

    def snapshot(self) -> dict[str, int]:
        """Return a consistent copy of every counter keyed by name."""
        with self._lock:
            return {counter.value: value for counter, value in self._values.items()}

    def format_progress(self) -> str:
        """One-line summary used by the spawn controller's progress log."""
        snapshot = self.snapshot()
        return ", ".join(
            f"{counter.value}={snapshot[counter.value]}" for counter in _PROGRESS_COUNTERS
        )
