"""
Countdown-gated submission pacing for one participant.

When a number is announced every participant holding it on their card
wants to tell the backend at once.  Sending those requests immediately
would hit the backend with thousands of simultaneous calls on every
announcement.  The pacer queues the values instead and releases them on
a single countdown tick chosen per participant:

    trigger_tick = (actor_id % window) + 1

so N participants spread their submissions over ``window`` distinct
ticks.  A small random jitter on top of that keeps participants sharing
a tick from firing in lockstep.

Tick zero is special: it never submits, it evaluates the win patterns
and reports any that are complete.

One pacer belongs to one participant and is only touched from that
participant's thread, so it needs no locking.

Key Concepts Demonstrated:
- Deterministic load spreading without coordination between actors
- Idempotent queueing (confirmed and pending values are never re-queued)
- Injected ``sleep`` and ``random.Random`` for deterministic tests
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .errors import SwarmError
from .metrics import Counter, Metrics
from .models import Grid, WinPredicates
from .scoring import DEFAULT_SCORING_LINES, ScoringLines, evaluate_win, score

logger = logging.getLogger(__name__)

WIN_CHECK_TICK = 0


def trigger_tick_for(actor_id: int, window: int) -> int:
    """Return the countdown value on which *actor_id* fires its queue."""
    if window <= 0:
        raise ValueError("Trigger window must be positive")
    return (actor_id % window) + 1


@dataclass
class TickOutcome:
    """
    What one :meth:`SelectionPacer.on_tick` call did.

    Attributes:
        fired: ``True`` when the tick matched the trigger and the queue
            was drained.
        confirmed: Values accepted by the backend on this tick.
        rejected: Values whose submission failed on this tick.
        win: Predicates evaluated on a tick-zero event, else ``None``.
        win_reported: ``True`` when a win claim was sent successfully.
    """

    fired: bool = False
    confirmed: list[int] = field(default_factory=list)
    rejected: list[int] = field(default_factory=list)
    win: WinPredicates | None = None
    win_reported: bool = False


class SelectionPacer:
    """
    Per-participant queue of announced values awaiting submission.

    Args:
        actor_id: Integer id of the owning participant; decides the
            trigger tick.
        window: Number of distinct ticks submissions are spread over.
        submit: Callable ``(value, score)`` that sends one mark to the
            backend and raises :class:`~bingo_swarm.errors.SwarmError`
            on failure.
        report_win: Callable receiving :class:`WinPredicates` when a win
            pattern is complete on a tick-zero event.
        metrics: Shared counters.
        jitter: Upper bound in seconds of the random delay before each
            submission.
        scoring_lines: Lines used when computing submission scores.
        rng: Random source for the jitter.
        sleep: Sleep function, replaced in tests.
    """

    def __init__(
        self,
        actor_id: int,
        window: int,
        submit: Callable[[int, int], None],
        report_win: Callable[[WinPredicates], None],
        metrics: Metrics,
        jitter: float = 0.1,
        scoring_lines: ScoringLines = DEFAULT_SCORING_LINES,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.actor_id = actor_id
        self.trigger_tick = trigger_tick_for(actor_id, window)
        self._submit = submit
        self._report_win = report_win
        self._metrics = metrics
        self._jitter = jitter
        self._scoring_lines = scoring_lines
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._grid: Grid | None = None
        self._pending: dict[int, None] = {}
        self._confirmed: set[int] = set()

    @property
    def grid(self) -> Grid | None:
        return self._grid

    @property
    def confirmed(self) -> frozenset[int]:
        return frozenset(self._confirmed)

    @property
    def pending(self) -> tuple[int, ...]:
        return tuple(self._pending)

    def bind(self, grid: Grid) -> None:
        """Attach the playing grid; values outside it are never queued."""
        self._grid = grid

    def enqueue(self, value: int) -> bool:
        """
        Queue *value* for the next trigger tick.

        Returns:
            ``True`` if the value was queued.  Values already confirmed,
            already pending, or absent from the grid are dropped
            silently, which makes repeated announcements harmless.
        """
        if self._grid is None or value not in self._grid:
            return False
        if value in self._confirmed or value in self._pending:
            return False
        self._pending[value] = None
        return True

    def on_tick(self, countdown: int) -> TickOutcome:
        """
        React to one countdown tick.

        Tick zero evaluates win patterns.  The trigger tick drains the
        queue.  Every other tick is ignored.
        """
        if self._grid is None:
            return TickOutcome()
        if countdown == WIN_CHECK_TICK:
            return self._check_win()
        if countdown != self.trigger_tick:
            return TickOutcome()
        return self._fire()

    def _fire(self) -> TickOutcome:
        outcome = TickOutcome(fired=True)
        batch = list(self._pending)
        self._pending.clear()

        for value in batch:
            if value in self._confirmed:
                continue
            if self._jitter > 0:
                self._sleep(self._rng.uniform(0, self._jitter))

            mark_score = score(self._grid, self._confirmed, value, self._scoring_lines)
            self._metrics.increment(Counter.MARKS_SUBMITTED)
            try:
                self._submit(value, mark_score)
            except SwarmError as exc:
                logger.warning(
                    "Participant %d: submitting %d failed: %s", self.actor_id, value, exc
                )
                self._metrics.increment(Counter.MARKS_REJECTED)
                outcome.rejected.append(value)
                continue

            self._confirmed.add(value)
            self._metrics.increment(Counter.MARKS_CONFIRMED)
            outcome.confirmed.append(value)
            logger.debug(
                "Participant %d: confirmed %d (score %d)", self.actor_id, value, mark_score
            )
        return outcome

    def _check_win(self) -> TickOutcome:
        predicates = evaluate_win(self._grid, self._confirmed)
        outcome = TickOutcome(win=predicates)
        if not predicates.any():
            return outcome

        logger.info("Participant %d: claiming win %s", self.actor_id, predicates)
        try:
            self._report_win(predicates)
        except SwarmError as exc:
            logger.warning("Participant %d: win claim failed: %s", self.actor_id, exc)
            self._metrics.increment(Counter.WIN_CLAIMS_FAILED)
            return outcome

        self._metrics.increment(Counter.WIN_CLAIMS)
        outcome.win_reported = True
        return outcome
