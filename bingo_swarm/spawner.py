"""
Spawn controller: admits virtual participants and waits for them.

The controller launches exactly N participants, one daemon thread each,
with two brakes on the ramp-up:

- a **concurrency cap** -- a bounded semaphore that blocks admission
  while ``concurrency`` participants are still running;
- a fixed **inter-spawn delay** between admissions so the backend does
  not see every registration land at t=0.

It logs a progress line from the shared metrics every ``report_every``
admissions, then joins every participant.  Participants end themselves
when their own horizon expires; the controller never cancels them, it
only stops *waiting* once ``run_horizon + join_grace`` has passed after
the last admission.

Key Concepts Demonstrated:
- Admission control with ``threading.BoundedSemaphore``
- One-shot broadcast (``threading.Event``) for the operator go-ahead
- Dependency injection of the participant factory for tests
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from .api import GameApiClient
from .config import SwarmSettings
from .events import hub_stream_factory
from .metrics import Metrics
from .models import ParticipantState
from .participant import VirtualParticipant
from .registry import ClaimRegistry

logger = logging.getLogger(__name__)

ParticipantFactory = Callable[[int, "str | None"], VirtualParticipant]


@dataclass
class SwarmReport:
    """
    Outcome of one swarm run.

    Attributes:
        admitted: Participants started.
        succeeded: Participants that reached ``succeeded``.
        failed: Participants that reached ``failed``.
        unfinished: Participants still running when the join gave up.
        elapsed: Wall-clock seconds from first admission to report.
        metrics: Final snapshot of every counter.
    """

    admitted: int
    succeeded: int
    failed: int
    unfinished: int
    elapsed: float
    metrics: dict[str, int] = field(default_factory=dict)

    @property
    def failure_rate_percent(self) -> float:
        if self.admitted == 0:
            return 0.0
        return self.failed / self.admitted * 100.0


class SpawnController:
    """
    Launch and supervise a swarm of virtual participants.

    Args:
        settings: Shared run settings.
        tokens: Optional pre-issued bearer tokens.  When given, one
            participant is launched per token and ``settings.participants``
            is ignored.
        metrics: Shared counters (a fresh set by default).
        resource_registry: Card registry (a fresh one by default).
        identity_registry: Identity registry (a fresh one by default).
        participant_factory: Builds the participant for an admission
            index and optional token.  Defaults to real HTTP / hub
            clients built from *settings*.
        sleep: Sleep function, replaced in tests.
        clock: Monotonic clock, replaced in tests.
    """

    def __init__(
        self,
        settings: SwarmSettings,
        *,
        tokens: Sequence[str] | None = None,
        metrics: Metrics | None = None,
        resource_registry: ClaimRegistry | None = None,
        identity_registry: ClaimRegistry | None = None,
        participant_factory: ParticipantFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.tokens = list(tokens) if tokens else None
        self.metrics = metrics or Metrics()
        self.resource_registry = resource_registry or ClaimRegistry("cards")
        self.identity_registry = identity_registry or ClaimRegistry("identities")
        self.participant_factory = participant_factory or self.create_participant
        self.go_ahead = threading.Event() if settings.wait_for_go_ahead else None
        self.participants: list[VirtualParticipant] = []
        self._threads: list[threading.Thread] = []
        self._sleep = sleep
        self._clock = clock
        self._stream_factory = hub_stream_factory(
            f"{settings.base_url}{settings.hub_path}",
            timeout=settings.request_timeout,
            reconnect_delays=settings.reconnect_delays,
            keepalive_interval=settings.keepalive_interval,
        )

    @property
    def participant_count(self) -> int:
        return len(self.tokens) if self.tokens else self.settings.participants

    def create_participant(self, index: int, token: str | None) -> VirtualParticipant:
        """Build a participant wired to the real backend."""
        api = GameApiClient(
            self.settings.base_url,
            timeout=self.settings.request_timeout,
            win_claim_path=self.settings.win_claim_path,
        )
        return VirtualParticipant(
            index,
            self.settings,
            api=api,
            stream_factory=self._stream_factory,
            resource_registry=self.resource_registry,
            identity_registry=self.identity_registry,
            metrics=self.metrics,
            token=token,
            go_ahead=self.go_ahead,
        )

    def release(self) -> None:
        """Give every waiting participant the go-ahead.  Idempotent."""
        if self.go_ahead is not None and not self.go_ahead.is_set():
            logger.info("Go-ahead released")
            self.go_ahead.set()

    def _supervise(self, participant: VirtualParticipant, slots: threading.BoundedSemaphore) -> None:
        try:
            participant.run()
        finally:
            slots.release()

    def run(self) -> SwarmReport:
        """
        Admit every participant, then wait for them to finish.

        Returns:
            A :class:`SwarmReport` with terminal-state counts and the
            final metrics snapshot.
        """
        count = self.participant_count
        logger.info(
            "Starting bingo swarm: %d participants, concurrency %d, horizon %.0fs",
            count,
            self.settings.concurrency,
            self.settings.run_horizon,
        )
        started = self._clock()
        slots = threading.BoundedSemaphore(self.settings.concurrency)

        for index in range(count):
            slots.acquire()
            token = self.tokens[index] if self.tokens else None
            participant = self.participant_factory(index, token)
            thread = threading.Thread(
                target=self._supervise,
                args=(participant, slots),
                name=f"participant-{index}",
                daemon=True,
            )
            self.participants.append(participant)
            self._threads.append(thread)
            thread.start()

            admitted = index + 1
            if admitted % self.settings.report_every == 0:
                logger.info("Spawned %d/%d: %s", admitted, count, self.metrics.format_progress())
            if self.settings.spawn_delay > 0 and admitted < count:
                self._sleep(self.settings.spawn_delay)

        deadline = self._clock() + self.settings.run_horizon + self.settings.join_grace
        for thread in self._threads:
            thread.join(timeout=max(deadline - self._clock(), 0))

        report = self._build_report(self._clock() - started)
        logger.info(
            "Swarm finished: %d succeeded, %d failed, %d unfinished (%s)",
            report.succeeded,
            report.failed,
            report.unfinished,
            self.metrics.format_progress(),
        )
        return report

    def _build_report(self, elapsed: float) -> SwarmReport:
        states = [participant.state for participant in self.participants]
        return SwarmReport(
            admitted=len(states),
            succeeded=states.count(ParticipantState.SUCCEEDED),
            failed=states.count(ParticipantState.FAILED),
            unfinished=sum(1 for state in states if not state.terminal),
            elapsed=elapsed,
            metrics=self.metrics.snapshot(),
        )

